"""
Webhook Service

Performs a single outbound webhook delivery. Retry and backoff decisions
belong to the automation dispatcher, so nothing here raises on delivery
failure: the outcome is returned as a DeliveryResult.
"""
import hmac
import hashlib
from dataclasses import dataclass

import httpx

from leadflow.config import settings


SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Leadflow-Event"
EVENT_ID_HEADER = "X-Leadflow-Event-Id"


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of one delivery attempt."""
    ok: bool
    status_code: int | None = None
    error: str | None = None


def generate_webhook_signature(payload: str, secret: str) -> str:
    """Generate HMAC-SHA256 signature for webhook payload."""
    return hmac.new(
        secret.encode(),
        payload.encode(),
        hashlib.sha256
    ).hexdigest()


def build_webhook_client() -> httpx.AsyncClient:
    """HTTP client used for webhook delivery, bounded by the configured timeout."""
    return httpx.AsyncClient(timeout=settings.WEBHOOK_TIMEOUT_SECONDS)


def describe_response(response: httpx.Response) -> str:
    """Human readable error for a non-2xx response, e.g. 'HTTP 500 Internal Server Error'."""
    reason = response.reason_phrase
    return f"HTTP {response.status_code} {reason}".strip()


def describe_exception(exc: Exception) -> str:
    # httpx timeouts can carry an empty message
    return str(exc) or exc.__class__.__name__


async def deliver_webhook(
    client: httpx.AsyncClient,
    url: str,
    payload: str | None,
    event_type: str,
    event_id: str | None = None,
    secret: str | None = None,
) -> DeliveryResult:
    """
    POST a JSON payload to a webhook target.

    Returns a DeliveryResult; transport errors are captured, not raised.
    Cancellation still propagates.
    """
    body = payload or "{}"
    headers = {
        "Content-Type": "application/json",
        EVENT_HEADER: event_type,
    }
    if event_id:
        headers[EVENT_ID_HEADER] = event_id
    if secret:
        headers[SIGNATURE_HEADER] = generate_webhook_signature(body, secret)

    try:
        response = await client.post(url, content=body, headers=headers)
    except Exception as e:
        return DeliveryResult(ok=False, error=describe_exception(e))

    if response.is_success:
        return DeliveryResult(ok=True, status_code=response.status_code)

    return DeliveryResult(
        ok=False,
        status_code=response.status_code,
        error=describe_response(response)
    )
