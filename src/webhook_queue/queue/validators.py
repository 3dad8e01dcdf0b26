"""Payload shape checks per webhook source."""

from typing import Any, Callable, Dict

from loguru import logger

from webhook_queue.common.models import MetaObjectType, WebhookSource


class InvalidWebhookError(ValueError):
    pass


def _entries(payload: dict) -> list:
    entry = payload.get("entry")
    return entry if isinstance(entry, list) else []


def _has_messaging(payload: dict) -> bool:
    return any(
        isinstance(entry, dict) and isinstance(entry.get("messaging"), list) and entry["messaging"]
        for entry in _entries(payload)
    )


def validate_twilio(payload: dict) -> bool:
    has_sid = bool(
        payload.get("SmsMessageSid") or payload.get("SmsSid") or payload.get("MessageSid")
    )
    return has_sid and bool(payload.get("From") and payload.get("To"))


def validate_twilio_sms(payload: dict) -> bool:
    has_sid = bool(payload.get("SmsSid") or payload.get("MessageSid"))
    return has_sid and bool(payload.get("From") and payload.get("To"))


def validate_meta(payload: dict) -> bool:
    return (
        payload.get("object") in (MetaObjectType.PAGE.value, MetaObjectType.INSTAGRAM.value)
        and len(_entries(payload)) > 0
    )


def validate_messenger(payload: dict) -> bool:
    return payload.get("object") == MetaObjectType.PAGE.value and _has_messaging(payload)


def validate_instagram(payload: dict) -> bool:
    return payload.get("object") == MetaObjectType.INSTAGRAM.value and _has_messaging(payload)


def validate_telegram(payload: dict) -> bool:
    return any(
        payload.get(key)
        for key in ("update_id", "message", "callback_query", "edited_message", "channel_post")
    )


def validate_zapapi(payload: dict) -> bool:
    sender = payload.get("from")
    return bool(
        (sender and isinstance(sender, str)) or (payload.get("key") and payload.get("phone"))
    )


def validate_whatsapp_business(payload: dict) -> bool:
    if payload.get("object") == "whatsapp_business_account":
        return True
    return any(
        isinstance(entry, dict)
        and any(
            isinstance(change, dict) and change.get("field") == "messages"
            for change in entry.get("changes") or []
        )
        for entry in _entries(payload)
    )


def validate_sendgrid(payload: Any) -> bool:
    # SendGrid posts a JSON array of events
    return (
        isinstance(payload, list)
        and len(payload) > 0
        and any(isinstance(event, dict) and event.get("sg_event_id") for event in payload)
    )


def validate_slack(payload: dict) -> bool:
    return any(
        payload.get(key) for key in ("event", "challenge", "payload", "team_id", "api_app_id")
    )


def validate_discord(payload: dict) -> bool:
    op = payload.get("op")
    return bool(
        (payload.get("id") and payload.get("t"))
        or (op and isinstance(op, int))
        or (payload.get("d") and isinstance(payload.get("d"), dict))
    )


def validate_asaas(payload: dict) -> bool:
    payment = payload.get("payment")
    return bool(
        payload.get("event")
        and isinstance(payment, dict)
        and isinstance(payment.get("id"), str)
    )


VALIDATORS: Dict[WebhookSource, Callable[[Any], bool]] = {
    WebhookSource.TWILIO: validate_twilio,
    WebhookSource.TWILIO_SMS: validate_twilio_sms,
    WebhookSource.META: validate_meta,
    WebhookSource.MESSENGER: validate_messenger,
    WebhookSource.INSTAGRAM: validate_instagram,
    WebhookSource.TELEGRAM: validate_telegram,
    WebhookSource.ZAPAPI: validate_zapapi,
    WebhookSource.WHATSAPP_BUSINESS: validate_whatsapp_business,
    WebhookSource.SENDGRID: validate_sendgrid,
    WebhookSource.SLACK: validate_slack,
    WebhookSource.DISCORD: validate_discord,
    WebhookSource.ASAAS: validate_asaas,
}

# Validators that accept a JSON array rather than an object
LIST_PAYLOAD_SOURCES = {WebhookSource.SENDGRID}


def validate_webhook(source: str, payload: Any) -> bool:
    """Check a payload has the shape its source sends.

    Sources without a validator, including unknown ones, are accepted.
    """
    try:
        validator = VALIDATORS.get(WebhookSource(source))
    except ValueError:
        validator = None
    if validator is None:
        logger.debug(f"No payload validator for webhook source: {source}")
        return True

    if WebhookSource(source) not in LIST_PAYLOAD_SOURCES and not isinstance(payload, dict):
        return False
    return bool(validator(payload))


def ensure_valid_webhook(source: str, payload: Any) -> None:
    if not validate_webhook(source, payload):
        raise InvalidWebhookError(f"Invalid payload for webhook source: {WebhookSource(source).value}")
