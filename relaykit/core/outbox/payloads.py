"""
Outbox Payload Schemas

Every message kind has a schema. Messages are validated when they are
enqueued so malformed payloads never reach durable storage.

Usage:
    message = parse_outbox_message({
        "kind": "email",
        "payload": {"to": "ops@example.com", "subject": "Hi", "text": "..."},
    })
    await store.enqueue(message)
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import (
    AnyHttpUrl,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)
from typing_extensions import Annotated, Literal

from ..errors import PayloadValidationError

WebhookMethod = Literal["POST", "PUT", "PATCH"]


class EmailPayload(BaseModel):
    """An email to send through the caller's email provider."""

    model_config = ConfigDict(extra="forbid")

    to: List[EmailStr] = Field(min_length=1)
    subject: str = Field(min_length=1, max_length=998)
    text: Optional[str] = None
    html: Optional[str] = None
    from_address: Optional[EmailStr] = None
    reply_to: Optional[EmailStr] = None
    template: Optional[str] = None
    variables: Dict[str, Any] = Field(default_factory=dict)
    headers: Dict[str, str] = Field(default_factory=dict)

    @field_validator("to", mode="before")
    @classmethod
    def _single_recipient(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value

    @model_validator(mode="after")
    def _require_body(self) -> "EmailPayload":
        if not (self.text or self.html or self.template):
            raise ValueError("email needs one of text, html or template")
        return self


class WebhookPayload(BaseModel):
    """An HTTP callback to deliver."""

    model_config = ConfigDict(extra="forbid")

    url: AnyHttpUrl
    method: WebhookMethod = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = None
    event: Optional[str] = None
    signing_secret: Optional[str] = None

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.upper()
        return value


class _MessageBase(BaseModel):
    scope_id: Optional[str] = Field(default=None, max_length=255)

    def payload_dict(self) -> Dict[str, Any]:
        """Payload as stored: JSON-compatible, unset optionals dropped."""
        return self.payload.model_dump(mode="json", exclude_none=True)


class EmailMessage(_MessageBase):
    kind: Literal["email"] = "email"
    payload: EmailPayload


class WebhookMessage(_MessageBase):
    kind: Literal["webhook"] = "webhook"
    payload: WebhookPayload


OutboxMessage = Annotated[Union[EmailMessage, WebhookMessage], Field(discriminator="kind")]

_message_adapter: TypeAdapter = TypeAdapter(OutboxMessage)


def parse_outbox_message(data: Any) -> Union[EmailMessage, WebhookMessage]:
    """
    Validate a raw message against the schema for its kind.

    Already-validated messages are returned unchanged.

    Raises:
        PayloadValidationError: unknown kind or a payload that fails its schema
    """
    if isinstance(data, (EmailMessage, WebhookMessage)):
        return data
    try:
        return _message_adapter.validate_python(data)
    except ValidationError as e:
        kind = data.get("kind") if isinstance(data, dict) else None
        raise PayloadValidationError(
            f"Invalid outbox message (kind={kind!r}): {e.error_count()} error(s)",
            errors=e.errors(include_url=False, include_context=False),
        ) from e
