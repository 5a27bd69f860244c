"""
Single webhook delivery.
"""
import httpx

from leadflow.services.webhook_service import deliver_webhook, generate_webhook_signature
from tests.conftest import RecordingHandler, WEBHOOK_URL, mock_client


async def test_signature_header_only_with_secret():
    handler = RecordingHandler(200)

    async with mock_client(handler) as client:
        unsigned = await deliver_webhook(client, WEBHOOK_URL, '{"a": 1}', "LeadCreated")
        signed = await deliver_webhook(client, WEBHOOK_URL, '{"a": 1}', "LeadCreated", secret="topsecret")

    assert unsigned.ok and signed.ok
    assert "x-webhook-signature" not in handler.requests[0].headers
    assert handler.requests[1].headers["x-webhook-signature"] == generate_webhook_signature('{"a": 1}', "topsecret")


async def test_empty_payload_is_sent_as_empty_object():
    handler = RecordingHandler(200)

    async with mock_client(handler) as client:
        await deliver_webhook(client, WEBHOOK_URL, None, "LeadCreated")

    assert handler.requests[0].content == b"{}"


async def test_non_2xx_carries_status_and_reason():
    async with mock_client(RecordingHandler(404)) as client:
        result = await deliver_webhook(client, WEBHOOK_URL, "{}", "LeadCreated")

    assert not result.ok
    assert result.status_code == 404
    assert result.error == "HTTP 404 Not Found"


async def test_timeout_without_message_uses_exception_name():
    def hang(request):
        raise httpx.ReadTimeout("", request=request)

    async with mock_client(hang) as client:
        result = await deliver_webhook(client, WEBHOOK_URL, "{}", "LeadCreated")

    assert not result.ok
    assert result.status_code is None
    assert result.error == "ReadTimeout"
