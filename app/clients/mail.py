from __future__ import annotations

import logging
from typing import List, Optional

import httpx

from app.schemas.mail import MailMessage
from app.services.exceptions import DownstreamServiceError

logger = logging.getLogger(__name__)


class MailClient:
    """Async HTTP client responsible for handing messages to the mail API."""

    def __init__(
        self,
        base_url: str | None,
        *,
        sender: str,
        timeout: float = 10.0,
        use_mock_data: bool = True,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = str(base_url).rstrip("/") if base_url else None
        self._timeout = timeout
        self.sender = sender
        self.use_mock_data = use_mock_data or not self._base_url
        self._headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if token:
            self._headers["Authorization"] = f"Bearer {token}"
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self.outbox: List[MailMessage] = []
        if not self.use_mock_data and self._base_url:
            self._client = self._build_client()

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers=self._headers,
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self.use_mock_data or not self._base_url:
            raise RuntimeError("HTTP client requested while running in mock mode")
        if self._client is None:
            self._client = self._build_client()
        return self._client

    async def send_mail(
        self,
        *,
        to: str,
        subject: str,
        text: str,
        html: str | None = None,
    ) -> MailMessage:
        message = MailMessage(sender=self.sender, to=to, subject=subject, text=text, html=html)
        if self.use_mock_data:
            self.outbox.append(message)
            logger.info("Mock mail to %s: %s", to, subject)
            return message

        client = await self._ensure_client()
        try:
            response = await client.post(
                "/emails", json=message.model_dump(by_alias=True, exclude_none=True)
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.exception("Mail service returned error %s", exc.response.status_code)
            raise DownstreamServiceError(
                "Mail service returned an error response",
                status_code=exc.response.status_code,
                cause=exc,
            ) from exc
        except httpx.RequestError as exc:
            logger.exception("Unable to reach mail service: %s", exc)
            raise DownstreamServiceError(
                "Unable to reach mail service", status_code=None, cause=exc
            ) from exc

        logger.info("Mail sent to %s: %s", to, subject)
        return message
