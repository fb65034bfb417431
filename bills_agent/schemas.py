from __future__ import annotations

from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from bills_agent.core.errors import BadRequest
from bills_agent.core.logging import logger
from bills_agent.services.projection import is_month_key

ModelT = TypeVar("ModelT", bound=BaseModel)


class RequestModel(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        populate_by_name=True,
        str_strip_whitespace=True,
        allow_inf_nan=False,
    )


class MonthRequest(RequestModel):
    month: Optional[str] = None

    @field_validator("month")
    @classmethod
    def check_month(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        if not is_month_key(value):
            raise ValueError("month must be formatted as YYYY-MM")
        return value


class CreateBillRequest(RequestModel):
    id: Optional[str] = Field(default=None, max_length=200, pattern=r"^[^/]*$")
    name: str = Field(min_length=1)
    due_day: int = Field(alias="dueDay", ge=1, le=31)
    amount: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None


class UpdateBillRequest(RequestModel):
    name: Optional[str] = Field(default=None, min_length=1)
    due_day: Optional[int] = Field(default=None, alias="dueDay", ge=1, le=31)
    amount: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None

    @field_validator("name", "due_day", "amount", mode="before")
    @classmethod
    def reject_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("may not be null")
        return value

    def changes(self) -> Dict[str, Any]:
        """Only the fields the client actually sent, keyed by bill attribute."""
        updates = self.model_dump(exclude_unset=True)
        if "notes" in updates:
            updates["notes"] = updates["notes"] or ""
        return updates


class SetPaidRequest(MonthRequest):
    is_paid: bool = Field(alias="isPaid")


class PushRegisterRequest(RequestModel):
    token: str = Field(min_length=1)
    platform: Optional[str] = None


class PushUnregisterRequest(RequestModel):
    token: str = Field(min_length=1)
    platform: Optional[str] = None


class SendUpcomingRequest(MonthRequest):
    pass


class ChatRequest(MonthRequest):
    message: str = Field(min_length=1)


def _field_name(loc: tuple) -> str:
    return ".".join(str(part) for part in loc) or "body"


def parse_body(model: Type[ModelT], data: Dict[str, Any]) -> ModelT:
    """Validate a decoded JSON body, turning pydantic errors into ``BadRequest``."""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        errors = exc.errors(include_url=False)
        first = errors[0]
        field = _field_name(first.get("loc", ()))
        if first.get("type") == "missing":
            message = f"{field} is required"
        elif first.get("type") == "extra_forbidden":
            message = f"{field} is not a recognized field"
        else:
            message = f"{field}: {first.get('msg')}"
        details = "; ".join(f"{_field_name(err.get('loc', ()))}: {err.get('msg')}" for err in errors)
        logger.warning("Rejected %s body: %s", model.__name__, details)
        raise BadRequest(message, details=details) from exc
