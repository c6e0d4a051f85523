"""Pull the payer email, payment identifier and receipt link out of a Stripe event."""
from dataclasses import dataclass
from typing import Any, Sequence

# Lookup paths for the payer email, first non-empty wins
EMAIL_PATHS: tuple[tuple[Any, ...], ...] = (
    ("customer_details", "email"),
    ("customer_email",),
    ("receipt_email",),
    ("customer", "email"),
    ("charges", "data", 0, "billing_details", "email"),
    ("charges", "data", 0, "receipt_email"),
)

RECEIPT_URL_PATHS: tuple[tuple[Any, ...], ...] = (
    ("receipt_url",),
    ("charges", "data", 0, "receipt_url"),
)

# Which field of ``data.object`` identifies the payment, per event type
PAYMENT_ID_FIELDS: dict[str, tuple[str, ...]] = {
    "checkout.session.completed": ("id",),
    "checkout.session.async_payment_succeeded": ("id",),
    "payment_intent.succeeded": ("id",),
    "charge.succeeded": ("payment_intent",),
    "charge.captured": ("payment_intent",),
}
DEFAULT_PAYMENT_ID_FIELDS: tuple[str, ...] = ("id", "payment_intent")


@dataclass(frozen=True)
class ExtractedPayment:
    payer_email: str | None
    provider_payment_id: str | None
    receipt_url: str | None


def to_text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def get_nested(obj: Any, path: Sequence[Any]) -> Any:
    current = obj
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or len(current) <= key:
                return None
            current = current[key]
        else:
            if not isinstance(current, dict):
                return None
            current = current.get(key)
    return current


def first_text(obj: Any, paths: Sequence[Sequence[Any]]) -> str | None:
    for path in paths:
        value = to_text(get_nested(obj, path))
        if value:
            return value
    return None


def extract_payment_details(
    event: dict[str, Any], fallback_event_type: str | None = None
) -> ExtractedPayment:
    obj = get_nested(event, ("data", "object"))
    if not isinstance(obj, dict):
        obj = {}

    event_type = to_text(event.get("type")) or fallback_event_type or ""
    id_fields = PAYMENT_ID_FIELDS.get(event_type, DEFAULT_PAYMENT_ID_FIELDS)

    return ExtractedPayment(
        payer_email=first_text(obj, EMAIL_PATHS),
        provider_payment_id=first_text(obj, [(field,) for field in id_fields]),
        receipt_url=first_text(obj, RECEIPT_URL_PATHS),
    )
