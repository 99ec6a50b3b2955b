from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from learn_rabbitmq.core.exceptions import DecodeError

CONTENT_TYPE = "application/json"
MAX_ID = 2**32 - 1


class Message(BaseModel):
    """Domain message carried by every tutorial routine."""

    model_config = ConfigDict(strict=True, extra="ignore", frozen=True)

    id: int = Field(..., ge=0, le=MAX_ID, description="Unsigned 32-bit message id")
    content: str = Field(..., description="Free text payload")


def encode(message: Message) -> bytes:
    return message.model_dump_json().encode("utf-8")


def decode(body: bytes | str) -> Message:
    """
    Parse a delivery body into a Message.
    DecodeError is raised when the body is not UTF-8, not JSON, or not
    an {id, content} record.
    """
    if isinstance(body, (bytes, bytearray)):
        try:
            body = bytes(body).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError(f"message body is not valid UTF-8: {exc.reason} at byte {exc.start}") from exc
    try:
        return Message.model_validate_json(body)
    except ValidationError as exc:
        raise DecodeError(f"invalid message body: {exc.error_count()} error(s)") from exc
