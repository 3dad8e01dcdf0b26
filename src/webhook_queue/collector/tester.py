"""Mock provider payloads and webhook simulation for testing the queue."""

import random
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from loguru import logger

from webhook_queue.common.models import WebhookSource
from webhook_queue.queue.service import WebhookQueueService
from webhook_queue.queue.validators import InvalidWebhookError, validate_webhook

SIMULATION_PRIORITY = 9


def _numeric_id(digits: int = 15) -> str:
    return str(random.randrange(10 ** (digits - 1), 10**digits))


def _hex_id() -> str:
    return uuid.uuid4().hex


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _twilio() -> dict:
    return {
        "SmsMessageSid": f"SM{_hex_id()}",
        "MessageSid": f"MM{_hex_id()}",
        "AccountSid": "FAKE_ACCOUNT_NOT_REAL_TEST_ONLY",
        "From": "whatsapp:+5511999999999",
        "To": "whatsapp:+14155238886",
        "Body": "Test message via Twilio WhatsApp",
        "NumMedia": "0",
        "ProfileName": "Test User",
        "WaId": "5511999999999",
        "SmsStatus": "received",
        "ChannelPrefix": "whatsapp",
    }


def _twilio_sms() -> dict:
    return {
        "SmsSid": f"SM{_hex_id()}",
        "MessageSid": f"SM{_hex_id()}",
        "SmsStatus": "received",
        "Body": "Test SMS message",
        "From": "+5511999999999",
        "To": "+14155238886",
        "NumMedia": "0",
        "AccountSid": "FAKE_ACCOUNT_NOT_REAL_TEST_ONLY",
        "ApiVersion": "2010-04-01",
    }


def _meta_entry(text: str) -> dict:
    now_ms = int(time.time() * 1000)
    return {
        "id": _numeric_id(),
        "time": now_ms,
        "messaging": [
            {
                "sender": {"id": _numeric_id()},
                "recipient": {"id": _numeric_id()},
                "timestamp": now_ms,
                "message": {"mid": f"m_{_hex_id()}", "text": text, "seq": 1},
            }
        ],
    }


def _meta() -> dict:
    return {
        "object": random.choice(["page", "instagram"]),
        "entry": [_meta_entry("Test message via Meta platform")],
    }


def _messenger() -> dict:
    return {"object": "page", "entry": [_meta_entry("Test message via Facebook Messenger")]}


def _instagram() -> dict:
    return {"object": "instagram", "entry": [_meta_entry("Test message via Instagram DM")]}


def _telegram() -> dict:
    return {
        "update_id": random.randrange(10**9),
        "message": {
            "message_id": random.randrange(10**4),
            "from": {
                "id": random.randrange(10**9),
                "is_bot": False,
                "first_name": "Test",
                "last_name": "User",
                "username": "test_user",
            },
            "chat": {"id": random.randrange(10**9), "type": "private"},
            "date": int(time.time()),
            "text": "Test message via Telegram",
        },
    }


def _zapapi() -> dict:
    return {
        "phone": "5511999999999",
        "from": "5511999999999",
        "messageId": _hex_id().upper(),
        "momment": int(time.time() * 1000),
        "senderName": "Test User",
        "text": {"message": "Test message via Z-API"},
    }


def _whatsapp_business() -> dict:
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": _numeric_id(),
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "messaging_product": "whatsapp",
                            "contacts": [{"wa_id": "5511999999999", "profile": {"name": "Test User"}}],
                            "messages": [
                                {
                                    "from": "5511999999999",
                                    "id": f"wamid.{_hex_id()}",
                                    "timestamp": str(int(time.time())),
                                    "type": "text",
                                    "text": {"body": "Test message via WhatsApp Business"},
                                }
                            ],
                        },
                    }
                ],
            }
        ],
    }


def _sendgrid() -> list:
    return [
        {
            "email": "test@example.com",
            "timestamp": int(time.time()),
            "event": "delivered",
            "sg_event_id": _hex_id(),
            "sg_message_id": f"{_hex_id()}.filter",
        }
    ]


def _slack() -> dict:
    ts = f"{time.time():.6f}"
    return {
        "token": "FAKE_TOKEN_TEST_ONLY",
        "team_id": "T12345",
        "api_app_id": "A12345",
        "event": {
            "type": "message",
            "user": "U12345",
            "text": "Test message via Slack",
            "ts": ts,
            "channel": "C12345",
            "event_ts": ts,
        },
        "type": "event_callback",
        "event_id": f"Ev{_hex_id()[:8]}",
        "event_time": int(time.time()),
    }


def _discord() -> dict:
    return {
        "id": str(uuid.uuid4()),
        "t": "MESSAGE_CREATE",
        "d": {
            "id": _numeric_id(18),
            "type": 0,
            "content": "Test message via Discord",
            "channel_id": _numeric_id(18),
            "author": {"id": _numeric_id(18), "username": "test_user"},
            "timestamp": _iso_now(),
        },
    }


def _asaas() -> dict:
    now = _iso_now()
    return {
        "event": "PAYMENT_RECEIVED",
        "payment": {
            "id": str(uuid.uuid4()),
            "dateCreated": now,
            "customer": str(uuid.uuid4()),
            "value": 100.00,
            "netValue": 97.00,
            "billingType": "BOLETO",
            "status": "RECEIVED",
            "description": "Test charge",
            "paymentDate": now,
        },
    }


def _test() -> dict:
    return {"event": "test", "id": str(uuid.uuid4()), "sent_at": _iso_now()}


MOCK_PAYLOADS: Dict[WebhookSource, Callable[[], Any]] = {
    WebhookSource.TWILIO: _twilio,
    WebhookSource.TWILIO_SMS: _twilio_sms,
    WebhookSource.META: _meta,
    WebhookSource.MESSENGER: _messenger,
    WebhookSource.INSTAGRAM: _instagram,
    WebhookSource.TELEGRAM: _telegram,
    WebhookSource.ZAPAPI: _zapapi,
    WebhookSource.WHATSAPP_BUSINESS: _whatsapp_business,
    WebhookSource.SENDGRID: _sendgrid,
    WebhookSource.SLACK: _slack,
    WebhookSource.DISCORD: _discord,
    WebhookSource.ASAAS: _asaas,
    WebhookSource.TEST: _test,
}


def deep_merge(target: Any, overrides: Dict[str, Any]) -> Any:
    """Merge nested dicts from ``overrides`` into ``target`` in place."""
    if not isinstance(target, dict):
        return target
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            deep_merge(target[key], value)
        else:
            target[key] = value
    return target


class WebhookTester:
    def __init__(self, queue_service: WebhookQueueService):
        self.queue_service = queue_service

    def generate_mock_webhook(
        self, source: WebhookSource, custom_data: Optional[Dict[str, Any]] = None
    ) -> Any:
        generator = MOCK_PAYLOADS.get(WebhookSource(source))
        if generator is None:
            raise ValueError(f"Unsupported webhook type for simulation: {source}")
        return deep_merge(generator(), custom_data or {})

    async def simulate_webhook(
        self,
        source: WebhookSource,
        custom_data: Optional[Dict[str, Any]] = None,
        process_directly: bool = False,
        channel_id: Optional[int] = None,
        skip_validation: bool = False,
    ) -> Dict[str, Any]:
        source = WebhookSource(source)
        payload = self.generate_mock_webhook(source, custom_data)

        if not skip_validation and not validate_webhook(source.value, payload):
            error = f"Invalid payload for webhook source: {source.value}"
            if process_directly:
                logger.warning(f"Simulated {source.value} webhook rejected: {error}")
                return {"success": False, "error": error, "payload": payload}
            raise InvalidWebhookError(error)

        if process_directly:
            handler = self.queue_service.registry.require(source.value)
            try:
                await handler.handle_webhook(payload)
            except Exception as e:
                logger.warning(f"Simulated {source.value} webhook failed: {e}")
                return {"success": False, "error": str(e), "payload": payload}
            return {"success": True, "payload": payload}

        item = await self.queue_service.enqueue_webhook(
            source,
            payload,
            channel_id=channel_id,
            priority=SIMULATION_PRIORITY,
        )
        return {"id": item.id, "payload": payload}

    async def simulate_batch(self, source: WebhookSource, count: int = 10) -> Dict[str, Any]:
        source = WebhookSource(source)
        batch_id = str(uuid.uuid4())
        enqueued = 0

        for _ in range(count):
            try:
                await self.queue_service.enqueue_webhook(
                    source,
                    self.generate_mock_webhook(source),
                    priority=SIMULATION_PRIORITY,
                    tags=["batch-test", f"type-{source.value}"],
                    batch_id=batch_id,
                )
                enqueued += 1
            except Exception as e:
                logger.error(f"Failed to enqueue simulated {source.value} webhook: {e}")

        logger.info(f"Simulated batch {batch_id}: {enqueued}/{count} {source.value} webhooks queued")
        return {"batch_id": batch_id, "count": enqueued}
