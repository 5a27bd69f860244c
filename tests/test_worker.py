"""
On-demand dispatch trigger: queueing through arq and the worker job.
"""
import leadflow.worker as worker
from leadflow.services.automation_service import DispatchSummary


class FakePool:
    def __init__(self, enqueue_error: Exception | None = None, job=object()):
        self.enqueue_error = enqueue_error
        self.job = job
        self.enqueued = []
        self.closed = False

    async def enqueue_job(self, function, _job_id=None):
        self.enqueued.append((function, _job_id))
        if self.enqueue_error is not None:
            raise self.enqueue_error
        return self.job

    async def aclose(self):
        self.closed = True


def use_pool(monkeypatch, pool: FakePool) -> None:
    async def fake_create_pool(redis_settings):
        return pool

    monkeypatch.setattr(worker, "create_pool", fake_create_pool)


async def test_enqueue_dispatch_queues_a_single_deduplicated_job(monkeypatch):
    pool = FakePool()
    use_pool(monkeypatch, pool)

    assert await worker.enqueue_dispatch() is True
    assert pool.enqueued == [(worker.DISPATCH_JOB, worker.DISPATCH_JOB_ID)]
    assert pool.closed


async def test_enqueue_dispatch_closes_the_pool_when_enqueue_fails(monkeypatch):
    pool = FakePool(enqueue_error=ConnectionError("redis went away"))
    use_pool(monkeypatch, pool)

    assert await worker.enqueue_dispatch() is False
    assert pool.closed


async def test_enqueue_dispatch_reports_unreachable_redis(monkeypatch):
    async def unreachable(redis_settings):
        raise ConnectionError("connection refused")

    monkeypatch.setattr(worker, "create_pool", unreachable)

    assert await worker.enqueue_dispatch() is False


async def test_dispatch_job_returns_the_cycle_summary(monkeypatch):
    async def fake_run_once(self):
        return DispatchSummary(selected=2, attempted=1, sent=1)

    monkeypatch.setattr(worker.AutomationEventDispatcher, "run_once", fake_run_once)

    result = await worker.dispatch_pending_job({"job_try": 1})

    assert result["status"] == "completed"
    assert result["sent"] == 1
