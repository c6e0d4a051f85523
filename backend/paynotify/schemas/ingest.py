import json
from typing import Any, TypeVar

from paynotify.core.exceptions import ErrorCode, ValidationError
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


class StripeEventPayload(BaseModel):
    model_config = ConfigDict(extra="allow", str_strip_whitespace=True)

    id: str = Field(..., min_length=1, description="Provider event ID")
    type: str = Field(..., min_length=1, description="Event type")


class EnqueueRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    event_id: str = Field(..., min_length=1)
    event_type: str = Field(..., min_length=1)


class PaymentStatusRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    provider_payment_id: str = Field(..., min_length=1)


class OkResponse(BaseModel):
    ok: bool = True


class WorkerRunResponse(OkResponse):
    processed: int


class PaymentStatus(BaseModel):
    purchase_id: str
    status: str
    access_code: str | None = None
    valid_until: str | None = None


class PaymentStatusResponse(OkResponse):
    payment: PaymentStatus


def parse_body(
    raw: bytes,
    model: type[ModelT],
    missing_code: ErrorCode = ErrorCode.MISSING_FIELDS,
) -> ModelT:
    """Decode a JSON request body; bad JSON and missing fields are distinct 400s."""
    try:
        data: Any = json.loads(raw)
    except ValueError:
        raise ValidationError(ErrorCode.INVALID_JSON)
    if not isinstance(data, dict):
        raise ValidationError(ErrorCode.INVALID_JSON)
    try:
        return model.model_validate(data)
    except PydanticValidationError as ve:
        field = ".".join(str(p) for p in ve.errors()[0]["loc"]) if ve.errors() else None
        raise ValidationError(missing_code, field=field)
