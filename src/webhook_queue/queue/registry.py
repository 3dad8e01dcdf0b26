from typing import Any, Dict, List, Optional

from loguru import logger

from webhook_queue.common.models import MetaObjectType, WebhookSource
from webhook_queue.queue.handlers import (
    HandlerNotFoundError,
    UnknownWebhookVariantError,
    WebhookHandler,
)

# Sources that share a handler with another source when it is registered
HANDLER_ALIASES: Dict[str, List[str]] = {
    WebhookSource.TWILIO.value: [WebhookSource.TWILIO_SMS.value],
}

META_TARGETS = {
    MetaObjectType.INSTAGRAM: WebhookSource.INSTAGRAM.value,
    MetaObjectType.PAGE: WebhookSource.MESSENGER.value,
}


class MetaWebhookDispatcher(WebhookHandler):
    """Route the unified Meta endpoint to the Instagram or Messenger handler."""

    def __init__(self, registry: "HandlerRegistry"):
        self.registry = registry

    def resolve(self, payload: Any) -> WebhookHandler:
        discriminant = payload.get("object") if isinstance(payload, dict) else None
        try:
            variant = MetaObjectType(discriminant)
        except ValueError:
            raise UnknownWebhookVariantError(f"Unknown Meta webhook object type: {discriminant}")
        return self.registry.require(META_TARGETS[variant])

    async def handle_webhook(self, payload: Any) -> None:
        await self.resolve(payload).handle_webhook(payload)


class HandlerRegistry:
    def __init__(self):
        self._handlers: Dict[str, WebhookHandler] = {}
        self._handlers[WebhookSource.META.value] = MetaWebhookDispatcher(self)

    def register(self, source: str, handler: WebhookHandler) -> None:
        for name in [source] + HANDLER_ALIASES.get(source, []):
            self._handlers[name] = handler
            logger.info(f"Registered webhook handler for source '{name}'")

    def get(self, source: str) -> Optional[WebhookHandler]:
        return self._handlers.get(source)

    def require(self, source: str) -> WebhookHandler:
        handler = self._handlers.get(source)
        if handler is None:
            raise HandlerNotFoundError(f"Handler not found for source: {source}")
        return handler

    def sources(self) -> List[str]:
        return sorted(self._handlers)

    def __contains__(self, source: str) -> bool:
        return source in self._handlers
