import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import aiohttp
from loguru import logger


class HandlerNotFoundError(LookupError):
    pass


class UnknownWebhookVariantError(ValueError):
    pass


class ForwardError(RuntimeError):
    pass


class WebhookHandler(ABC):
    @abstractmethod
    async def handle_webhook(self, payload: Any) -> None:
        """Interpret a provider payload and perform its side effects.

        Raising marks the attempt as failed; the queue takes care of retries.
        """


class HttpForwardHandler(WebhookHandler):
    """Forward a queued payload as JSON to an internal HTTP endpoint."""

    def __init__(
        self,
        source: str,
        target_url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: int = 10,
    ):
        self.source = source
        self.target_url = target_url
        self.headers = headers or {}
        self.timeout = timeout

        parsed_url = urlparse(target_url)
        self.target_label = f"{parsed_url.netloc}{parsed_url.path}"

    async def handle_webhook(self, payload: Any) -> None:
        headers = self.headers.copy()
        headers.setdefault("Content-Type", "application/json")
        headers["X-Webhook-Queue-Source"] = self.source

        body = json.dumps(payload)

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.target_url,
                    headers=headers,
                    data=body,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if response.status >= 400:
                        response_text = await response.text()
                        raise ForwardError(
                            f"{self.target_label} responded {response.status}: {response_text[:200]}"
                        )
        except aiohttp.ClientError as e:
            raise ForwardError(f"Error forwarding webhook to {self.target_label}: {e}") from e

        logger.debug(f"Webhook from {self.source} forwarded to {self.target_url}")

    def __repr__(self) -> str:
        return f"HttpForwardHandler({self.source!r} -> {self.target_url!r})"
