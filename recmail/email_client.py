from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from loguru import logger

from .config import (
    HTTP_CONNECT_TIMEOUT,
    HTTP_READ_TIMEOUT,
    SENDGRID_BASE_URL,
    SENDGRID_SEND_PATH,
)

ACCEPTED_STATUS_CODES = frozenset({200, 202})


@dataclass
class EmailResponse:
    status_code: int
    body: str = ""

    @property
    def accepted(self) -> bool:
        return self.status_code in ACCEPTED_STATUS_CODES


class SendGridClient:
    """
    Minimal SendGrid v3 mail-send client.

    One ``send`` is one HTTP POST; there is no retry.  Transport errors
    (timeouts, connection failures) propagate as ``httpx`` exceptions.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = SENDGRID_BASE_URL,
        timeout: Optional[httpx.Timeout] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not api_key or not api_key.strip():
            raise ValueError("SendGrid API key is required")
        self._client = httpx.Client(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout or httpx.Timeout(HTTP_READ_TIMEOUT, connect=HTTP_CONNECT_TIMEOUT),
            transport=transport,
        )

    def send(self, message: Dict[str, Any]) -> EmailResponse:
        n = len(message.get("personalizations", []))
        logger.debug("POST {} with {} personalizations", SENDGRID_SEND_PATH, n)
        r = self._client.post(SENDGRID_SEND_PATH, json=message)
        return EmailResponse(status_code=r.status_code, body=r.text)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "SendGridClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
