"""Request and response bodies of the HTTP surface.

Response models never include ``access_credentials``: inbox URLs and other
provider secrets stay server-side.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from smsrental.core.models import Message, MessageSource, ProviderKind, Rental, RentalStatus
from smsrental.orchestrator.sync import SyncResult
from smsrental.providers.base import LeaseUpdate
from smsrental.service import RentalStatusView
from smsrental.storage.messages import UpsertResult

__all__ = [
    "RentRequest",
    "ExtendRequest",
    "AssignRequest",
    "ManualRegistrationRequest",
    "TestMessageRequest",
    "GoGetSmsWebhookRequest",
    "VisibilityRequest",
    "RentalOut",
    "MessageOut",
    "LeaseResponse",
    "DeleteResponse",
    "StatusResponse",
    "SyncResponse",
    "TestMessageResponse",
    "HealthResponse",
    "ProviderOut",
    "WebhookAck",
    "VisibilityResponse",
    "ErrorResponse",
]


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class RentRequest(BaseModel):
    provider: ProviderKind
    service: str = Field(..., min_length=1)
    country: str = Field(..., min_length=2, max_length=2)
    duration: int | None = Field(default=None, ge=1, le=24 * 365, description="Lease hours.")
    mode: str | None = None


class ExtendRequest(BaseModel):
    duration: int = Field(..., ge=1, le=24 * 365, description="Hours to add.")


class AssignRequest(BaseModel):
    assignee: str = Field(..., min_length=1)
    force: bool = False


class ManualRegistrationRequest(BaseModel):
    phone_number: str = Field(..., min_length=5)
    service: str = ""
    country: str = ""
    access_url: str | None = Field(
        default=None,
        description="receive-sms-online.info private inbox URL; omit for a manual number.",
    )
    duration: int | None = Field(default=None, ge=1, le=24 * 365)


class TestMessageRequest(BaseModel):
    __test__ = False  # not a pytest class

    sender: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    received_at: datetime | None = None


class GoGetSmsWebhookRequest(BaseModel):
    """Payload GoGetSMS posts for every received SMS."""

    model_config = {"str_strip_whitespace": True}

    id: str | int = Field(..., description="Provider activation / rent id.")
    phone: str | int
    text: str = Field(..., min_length=1)
    sender: str | None = None
    date: str | int | float | None = None


class VisibilityRequest(BaseModel):
    visible: bool


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class RentalOut(BaseModel):
    id: str
    phone_number: str
    provider: ProviderKind
    provider_native_ids: dict[str, str]
    service_code: str
    country_code: str
    status: RentalStatus
    leased_at: datetime
    expires_at: datetime
    assignee: str | None

    @classmethod
    def from_rental(cls, rental: Rental) -> RentalOut:
        return cls.model_validate(rental.model_dump(exclude={"access_credentials"}))


class MessageOut(BaseModel):
    id: str
    sender: str
    body: str
    received_at: datetime
    source: MessageSource

    @classmethod
    def from_message(cls, message: Message) -> MessageOut:
        return cls(
            id=message.id,
            sender=message.sender,
            body=message.body,
            received_at=message.received_at,
            source=message.source,
        )


class LeaseResponse(BaseModel):
    rental: RentalOut
    warning: str | None = None

    @classmethod
    def from_update(cls, update: LeaseUpdate) -> LeaseResponse:
        return cls(rental=RentalOut.from_rental(update.rental), warning=update.warning)


class DeleteResponse(BaseModel):
    deleted: bool
    rental: RentalOut | None = None
    warning: str | None = None


class StatusResponse(BaseModel):
    rental: RentalOut
    messages: list[MessageOut]
    unseen_count: int = 0
    stale: bool = False
    error: str | None = None

    @classmethod
    def from_view(cls, view: RentalStatusView) -> StatusResponse:
        return cls(
            rental=RentalOut.from_rental(view.rental),
            messages=[MessageOut.from_message(m) for m in view.messages],
            unseen_count=view.unseen_count,
            stale=view.stale,
            error=view.error,
        )


class SyncResponse(BaseModel):
    rental_id: str
    new_messages_count: int
    success: bool
    error_kind: str | None = None
    error_message: str | None = None
    retryable: bool = False
    skipped: bool = False

    @classmethod
    def from_result(cls, result: SyncResult) -> SyncResponse:
        return cls(
            rental_id=result.rental_id,
            new_messages_count=result.new_messages_count,
            success=result.success,
            error_kind=str(result.error_kind) if result.error_kind else None,
            error_message=result.error_message,
            retryable=result.retryable,
            skipped=result.skipped,
        )


class TestMessageResponse(BaseModel):
    __test__ = False

    inserted: bool
    message: MessageOut

    @classmethod
    def from_upsert(cls, result: UpsertResult) -> TestMessageResponse:
        return cls(inserted=result.inserted, message=MessageOut.from_message(result.message))


class HealthResponse(BaseModel):
    status: str
    providers: list[str]


class ProviderOut(BaseModel):
    provider: ProviderKind
    rentable: bool


class WebhookAck(BaseModel):
    status: str = "success"
    message: str
    inserted: bool = False
    rental_id: str | None = None
    message_id: str | None = None


class VisibilityResponse(BaseModel):
    reconnected: bool


class ErrorResponse(BaseModel):
    error: str
    code: str
    retryable: bool = False
    hint: str | None = None
