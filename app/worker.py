"""
ARQ background worker for mail delivery.

Run with ``arq app.worker.WorkerSettings``. Jobs are enqueued by
``ArqMailDispatcher`` as ``process_mail_job(key, payload)`` and dispatched
to the handler registered for ``key``.
"""

import json
import logging
from datetime import datetime, timezone

from arq import Retry
from arq.connections import RedisSettings

from app.clients.mail import MailClient
from app.config import get_settings
from app.jobs.cancellation_mail import build_mail_handlers
from app.jobs.queue import DEAD_LETTER_KEY, InvalidMailPayload, retry_delay

logger = logging.getLogger(__name__)


def get_redis_settings() -> RedisSettings:
    """Redis settings for the ARQ pool and worker."""
    settings = get_settings()
    return RedisSettings.from_dsn(settings.redis_url)


async def startup(ctx) -> None:
    settings = get_settings()
    mail_client = MailClient(
        settings.mail_service_base_url,
        sender=settings.mail_from,
        timeout=settings.mail_service_timeout,
        use_mock_data=settings.use_mock_data,
        token=settings.mail_service_token,
    )
    ctx["mail_client"] = mail_client
    ctx["handlers"] = build_mail_handlers(mail_client, settings)
    ctx["max_tries"] = settings.mail_max_tries
    ctx["retry_backoff"] = settings.mail_retry_backoff
    logger.info("Mail worker ready with handlers: %s", sorted(ctx["handlers"]))


async def shutdown(ctx) -> None:
    mail_client = ctx.get("mail_client")
    if mail_client is not None:
        await mail_client.close()


async def _dead_letter(ctx, key: str, payload: dict, error: str) -> None:
    entry = {
        "job_id": ctx.get("job_id"),
        "key": key,
        "payload": payload,
        "attempts": ctx.get("job_try", 1),
        "error": error,
        "failed_at": datetime.now(timezone.utc).isoformat(),
    }
    await ctx["redis"].rpush(DEAD_LETTER_KEY, json.dumps(entry, default=str))
    logger.error("Mail job %s (%s) moved to dead letters: %s", entry["job_id"], key, error)


async def process_mail_job(ctx, key: str, payload: dict) -> str:
    """
    Deliver one mail job.

    Args:
        ctx: ARQ context (``job_id``, ``job_try``, ``redis`` and the handlers set up in ``startup``)
        key: Job type, e.g. ``CancellationMail``
        payload: Snapshot of the data the handler renders

    Returns:
        "delivered" or "dead-lettered"
    """
    job_try = ctx.get("job_try", 1)
    max_tries = ctx.get("max_tries") or get_settings().mail_max_tries

    handler = ctx["handlers"].get(key)
    if handler is None:
        await _dead_letter(ctx, key, payload, f"No handler registered for {key!r}")
        return "dead-lettered"

    try:
        await handler(payload)
    except InvalidMailPayload as exc:
        await _dead_letter(ctx, key, payload, str(exc))
        return "dead-lettered"
    except Exception as exc:
        error = str(exc) or exc.__class__.__name__
        if job_try >= max_tries:
            logger.exception("Mail job %s failed after %s attempts", ctx.get("job_id"), job_try)
            await _dead_letter(ctx, key, payload, error)
            return "dead-lettered"
        delay = retry_delay(job_try, ctx.get("retry_backoff", 5.0))
        logger.warning(
            "Mail job %s failed (attempt %s/%s), retrying in %.1fs: %s",
            ctx.get("job_id"),
            job_try,
            max_tries,
            delay,
            error,
        )
        raise Retry(defer=delay) from exc

    logger.info("Mail job %s (%s) delivered", ctx.get("job_id"), key)
    return "delivered"



class WorkerSettings:
    """ARQ Worker Settings"""

    functions = [process_mail_job]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = get_redis_settings()

    job_timeout = 60
    keep_result = 3600
    max_tries = get_settings().mail_max_tries
