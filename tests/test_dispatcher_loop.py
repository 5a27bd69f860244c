"""
Polling loop: failure isolation between cycles and cooperative shutdown.
"""
import asyncio
from datetime import timedelta

from leadflow.dispatcher import AutomationEventDispatcher
from leadflow.models import AutomationEvent, AutomationEventStatus
from tests.conftest import RecordingHandler, make_event, make_lead, mock_client


async def seed_due_event(session_maker, now) -> str:
    async with session_maker() as session:
        lead = make_lead()
        session.add(lead)
        await session.flush()
        automation_event = make_event(lead, now - timedelta(minutes=1))
        session.add(automation_event)
        await session.commit()
        return automation_event.id


async def load_event(session_maker, event_id) -> AutomationEvent:
    async with session_maker() as session:
        return await session.get(AutomationEvent, event_id)


async def test_run_once_delivers_with_fresh_session_and_client(session_maker, now):
    event_id = await seed_due_event(session_maker, now)
    handler = RecordingHandler(200)
    clients = []

    def client_factory():
        client = mock_client(handler)
        clients.append(client)
        return client

    dispatcher = AutomationEventDispatcher(session_factory=session_maker, client_factory=client_factory)

    summary = await dispatcher.run_once()
    await dispatcher.run_once()

    assert summary.sent == 1
    assert len(clients) == 2
    assert all(client.is_closed for client in clients)
    stored = await load_event(session_maker, event_id)
    assert stored.status == AutomationEventStatus.SENT.value


async def test_failed_cycle_is_logged_and_the_loop_keeps_going(session_maker, now):
    event_id = await seed_due_event(session_maker, now)
    handler = RecordingHandler(200)
    calls = []

    def flaky_session_factory():
        calls.append(1)
        if len(calls) == 1:
            raise ConnectionError("database unavailable")
        return session_maker()

    dispatcher = AutomationEventDispatcher(
        session_factory=flaky_session_factory,
        client_factory=lambda: mock_client(handler),
        interval=0.01,
        grace=1
    )

    assert await dispatcher.run_once() is None

    dispatcher.start()
    for _ in range(200):
        if handler.requests:
            break
        await asyncio.sleep(0.01)
    await dispatcher.stop()

    assert len(calls) >= 2
    assert len(handler.requests) == 1
    stored = await load_event(session_maker, event_id)
    assert stored.status == AutomationEventStatus.SENT.value


async def test_failed_cycle_goes_through_the_error_reporter(session_maker):
    def broken_session_factory():
        raise ConnectionError("database unavailable")

    dispatcher = AutomationEventDispatcher(
        session_factory=broken_session_factory,
        client_factory=lambda: mock_client(RecordingHandler(200))
    )

    # Sentry is not initialised in tests, so the real reporter must be a no-op
    assert await dispatcher.run_once() is None


async def test_a_failing_error_reporter_does_not_stop_the_loop(session_maker, now, monkeypatch):
    event_id = await seed_due_event(session_maker, now)
    handler = RecordingHandler(200)
    reports = []
    calls = []

    def broken_reporter(exc_info=None):
        reports.append(1)
        raise AttributeError("reporter is broken")

    def flaky_session_factory():
        calls.append(1)
        if len(calls) == 1:
            raise ConnectionError("database unavailable")
        return session_maker()

    monkeypatch.setattr("leadflow.dispatcher.capture_exception", broken_reporter)
    dispatcher = AutomationEventDispatcher(
        session_factory=flaky_session_factory,
        client_factory=lambda: mock_client(handler),
        interval=0.01,
        grace=1
    )

    assert await dispatcher.run_once() is None
    assert reports == [1]

    dispatcher.start()
    for _ in range(200):
        if handler.requests:
            break
        await asyncio.sleep(0.01)
    await dispatcher.stop()

    assert len(handler.requests) == 1
    stored = await load_event(session_maker, event_id)
    assert stored.status == AutomationEventStatus.SENT.value


async def test_stop_interrupts_the_wait_between_cycles(session_maker):
    dispatcher = AutomationEventDispatcher(
        session_factory=session_maker,
        client_factory=lambda: mock_client(RecordingHandler(200)),
        interval=3600,
        grace=5
    )

    task = dispatcher.start()
    await asyncio.sleep(0.05)
    await asyncio.wait_for(dispatcher.stop(), timeout=2)

    assert task.done()
    assert not task.cancelled()
    assert not dispatcher.is_running


async def test_stop_cancels_a_cycle_that_outlives_the_grace_period(session_maker):
    entered = asyncio.Event()

    class HangingClient:
        async def __aenter__(self):
            entered.set()
            await asyncio.sleep(3600)

        async def __aexit__(self, *exc_info):
            return False

    dispatcher = AutomationEventDispatcher(
        session_factory=session_maker,
        client_factory=HangingClient,
        interval=3600,
        grace=0.05
    )

    task = dispatcher.start()
    await asyncio.wait_for(entered.wait(), timeout=2)
    await asyncio.wait_for(dispatcher.stop(), timeout=2)

    assert task.cancelled()


async def test_start_twice_returns_the_running_task(session_maker):
    dispatcher = AutomationEventDispatcher(
        session_factory=session_maker,
        client_factory=lambda: mock_client(RecordingHandler(200)),
        interval=3600
    )

    first = dispatcher.start()
    second = dispatcher.start()
    await dispatcher.stop()

    assert first is second
