import asyncio
import json
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest
from arq import Retry
from redis.exceptions import ConnectionError as RedisConnectionError

from app.clients.mail import MailClient
from app.config import Settings
from app.jobs.cancellation_mail import CANCELLATION_MAIL, CancellationMail, build_mail_handlers
from app.jobs.queue import (
    DEAD_LETTER_KEY,
    PROCESS_MAIL_JOB,
    ArqMailDispatcher,
    InMemoryMailQueue,
    MailWorker,
    retry_delay,
)
from app.services.exceptions import DownstreamServiceError, InfrastructureError
from app.worker import process_mail_job

from conftest import NOW


CANCELLATION_PAYLOAD = {
    "appointment": {
        "id": 7,
        "date": "2026-10-21T14:00:00+00:00",
        "canceled_at": NOW.isoformat(),
        "provider": {"id": 1, "name": "Diego Fernandes", "email": "diego@barbershop.test"},
        "user": {"id": 3, "name": "Lucas Almeida", "email": "lucas@example.com"},
    }
}


class FlakyHandler:
    """Fails a fixed number of times, then succeeds."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    async def __call__(self, payload) -> None:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"transport down ({self.calls})")


def _worker(queue, handlers, clock, **kwargs) -> MailWorker:
    return MailWorker(queue, handlers, clock=clock, poll_interval=0.01, **kwargs)


def test_retry_delay_doubles_each_attempt() -> None:
    assert retry_delay(1, 5.0) == 5.0
    assert retry_delay(2, 5.0) == 10.0
    assert retry_delay(3, 5.0) == 20.0


def test_worker_delivers_cancellation_mail(clock) -> None:
    queue = InMemoryMailQueue(clock)
    mail_client = MailClient(None, sender="Scheduling <noreply@test>")
    worker = _worker(queue, build_mail_handlers(mail_client, Settings()), clock)

    asyncio.run(queue.enqueue(CANCELLATION_MAIL, CANCELLATION_PAYLOAD))
    job = asyncio.run(worker.process_next())

    assert job is not None and job.attempts == 1
    assert queue.pending() == [] and queue.dead_letters == []
    assert len(mail_client.outbox) == 1
    message = mail_client.outbox[0]
    assert message.to == "Diego Fernandes <diego@barbershop.test>"
    assert message.subject == "Appointment canceled"
    assert "Lucas Almeida" in message.text
    assert "October 21, at 14:00h" in message.text
    assert "<strong>Lucas Almeida</strong>" in message.html


def test_worker_returns_none_when_queue_is_empty(clock) -> None:
    worker = _worker(InMemoryMailQueue(clock), {}, clock)

    assert asyncio.run(worker.process_next()) is None


def test_failed_job_is_retried_after_backoff(clock) -> None:
    queue = InMemoryMailQueue(clock)
    handler = FlakyHandler(failures=2)
    worker = _worker(queue, {"Flaky": handler}, clock, max_tries=3, backoff=5.0)
    asyncio.run(queue.enqueue("Flaky", {}))

    first = asyncio.run(worker.process_next())
    assert first.attempts == 1
    assert first.available_at == NOW + timedelta(seconds=5)
    assert asyncio.run(worker.process_next()) is None

    clock.advance(seconds=5)
    second = asyncio.run(worker.process_next())
    assert second.attempts == 2
    assert second.available_at == clock.now() + timedelta(seconds=10)

    clock.advance(seconds=10)
    asyncio.run(worker.process_next())

    assert handler.calls == 3
    assert queue.pending() == []
    assert queue.dead_letters == []


def test_job_is_dead_lettered_after_max_tries(clock) -> None:
    queue = InMemoryMailQueue(clock)
    handler = FlakyHandler(failures=10)
    worker = _worker(queue, {"Flaky": handler}, clock, max_tries=3, backoff=0.0)
    asyncio.run(queue.enqueue("Flaky", {"n": 1}))

    for _ in range(5):
        asyncio.run(worker.process_next())

    assert handler.calls == 3
    assert queue.pending() == []
    assert len(queue.dead_letters) == 1
    dead = queue.dead_letters[0]
    assert dead.attempts == 3
    assert dead.last_error == "transport down (3)"


def test_unknown_job_key_is_dead_lettered_immediately(clock) -> None:
    queue = InMemoryMailQueue(clock)
    worker = _worker(queue, {}, clock)
    asyncio.run(queue.enqueue("WelcomeMail", {}))

    asyncio.run(worker.process_next())

    assert queue.pending() == []
    assert queue.dead_letters[0].attempts == 0
    assert "WelcomeMail" in queue.dead_letters[0].last_error


def test_malformed_cancellation_payload_is_not_retried(clock) -> None:
    queue = InMemoryMailQueue(clock)
    mail_client = MailClient(None, sender="noreply@test")
    worker = _worker(queue, build_mail_handlers(mail_client, Settings()), clock, max_tries=3)
    asyncio.run(queue.enqueue(CANCELLATION_MAIL, {"appointment": {"id": 1}}))

    asyncio.run(worker.process_next())

    assert queue.pending() == []
    assert len(queue.dead_letters) == 1
    assert queue.dead_letters[0].attempts == 1
    assert mail_client.outbox == []


def test_enqueued_payload_is_a_snapshot(clock) -> None:
    queue = InMemoryMailQueue(clock)
    payload = {"appointment": {"id": 1, "provider": {"name": "Before"}}}

    asyncio.run(queue.enqueue(CANCELLATION_MAIL, payload))
    payload["appointment"]["provider"]["name"] = "After"

    assert queue.pending()[0].payload["appointment"]["provider"]["name"] == "Before"


def test_worker_task_drains_queue_in_background(clock) -> None:
    queue = InMemoryMailQueue(clock)
    handler = FlakyHandler(failures=0)
    worker = _worker(queue, {"Ping": handler}, clock)

    async def scenario():
        worker.start()
        await queue.enqueue("Ping", {})
        await queue.enqueue("Ping", {})
        for _ in range(100):
            if handler.calls == 2:
                break
            await asyncio.sleep(0.01)
        await worker.stop()

    asyncio.run(scenario())

    assert handler.calls == 2
    assert queue.pending() == []


def test_mail_client_posts_to_mail_api() -> None:
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers.get("Authorization")
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "msg-1"})

    client = MailClient(
        "https://mail.example.com/",
        sender="Scheduling <noreply@test>",
        use_mock_data=False,
        token="secret",
        transport=httpx.MockTransport(handler),
    )

    async def send():
        try:
            await CancellationMail(client).handle(CANCELLATION_PAYLOAD)
        finally:
            await client.close()

    asyncio.run(send())

    assert captured["url"] == "https://mail.example.com/emails"
    assert captured["auth"] == "Bearer secret"
    assert captured["body"]["from"] == "Scheduling <noreply@test>"
    assert captured["body"]["to"] == "Diego Fernandes <diego@barbershop.test>"
    assert captured["body"]["subject"] == "Appointment canceled"
    assert client.outbox == []


def test_mail_client_wraps_http_errors() -> None:
    client = MailClient(
        "https://mail.example.com",
        sender="noreply@test",
        use_mock_data=False,
        transport=httpx.MockTransport(lambda request: httpx.Response(502)),
    )

    async def send():
        try:
            await client.send_mail(to="a@example.com", subject="s", text="t")
        finally:
            await client.close()

    with pytest.raises(DownstreamServiceError) as excinfo:
        asyncio.run(send())

    assert excinfo.value.status_code == 502


def _arq_ctx(handlers, job_try=1, max_tries=3):
    return {
        "job_id": "arq-job-1",
        "job_try": job_try,
        "handlers": handlers,
        "max_tries": max_tries,
        "retry_backoff": 5.0,
        "redis": AsyncMock(),
    }


def test_arq_task_delivers_job() -> None:
    handler = FlakyHandler(failures=0)
    ctx = _arq_ctx({"Ping": handler})

    result = asyncio.run(process_mail_job(ctx, "Ping", {}))

    assert result == "delivered"
    assert handler.calls == 1
    ctx["redis"].rpush.assert_not_awaited()


def test_arq_task_requests_retry_before_last_try() -> None:
    ctx = _arq_ctx({"Ping": FlakyHandler(failures=1)}, job_try=1)

    with pytest.raises(Retry):
        asyncio.run(process_mail_job(ctx, "Ping", {}))

    ctx["redis"].rpush.assert_not_awaited()


def test_arq_task_dead_letters_on_last_try() -> None:
    ctx = _arq_ctx({"Ping": FlakyHandler(failures=1)}, job_try=3, max_tries=3)

    result = asyncio.run(process_mail_job(ctx, "Ping", {"n": 1}))

    assert result == "dead-lettered"
    key, raw_entry = ctx["redis"].rpush.await_args.args
    assert key == DEAD_LETTER_KEY
    entry = json.loads(raw_entry)
    assert entry["key"] == "Ping"
    assert entry["payload"] == {"n": 1}
    assert entry["attempts"] == 3


def test_arq_task_dead_letters_unknown_keys() -> None:
    ctx = _arq_ctx({})

    result = asyncio.run(process_mail_job(ctx, "Nope", {}))

    assert result == "dead-lettered"
    ctx["redis"].rpush.assert_awaited_once()


def test_arq_dispatcher_enqueues_process_mail_job() -> None:
    pool = AsyncMock()
    pool.enqueue_job.return_value = SimpleNamespace(job_id="abc123")
    dispatcher = ArqMailDispatcher(redis_settings=None, pool=pool)

    job_id = asyncio.run(dispatcher.enqueue(CANCELLATION_MAIL, CANCELLATION_PAYLOAD))

    assert job_id == "abc123"
    pool.enqueue_job.assert_awaited_once_with(PROCESS_MAIL_JOB, CANCELLATION_MAIL, CANCELLATION_PAYLOAD)


def test_arq_dispatcher_reports_queue_outage() -> None:
    pool = AsyncMock()
    pool.enqueue_job.side_effect = RedisConnectionError("connection refused")
    dispatcher = ArqMailDispatcher(redis_settings=None, pool=pool)

    with pytest.raises(InfrastructureError):
        asyncio.run(dispatcher.enqueue(CANCELLATION_MAIL, CANCELLATION_PAYLOAD))
