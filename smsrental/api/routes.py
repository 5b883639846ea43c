"""HTTP routes for renting, registering, syncing and reading numbers.

Every route except ``/health`` and the provider webhook requires an
``X-Caller-Id`` header.  Routes that target one rental additionally pass
the caller through the injected :class:`~smsrental.api.deps.AuthorizationGate`;
the list route filters its output through the same gate.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query

from smsrental.api.deps import (
    AuthorizationGate,
    authorized_rental_id,
    get_caller,
    get_gate,
    get_service,
)
from smsrental.api.schemas import (
    AssignRequest,
    DeleteResponse,
    ExtendRequest,
    GoGetSmsWebhookRequest,
    HealthResponse,
    LeaseResponse,
    ManualRegistrationRequest,
    ProviderOut,
    RentalOut,
    RentRequest,
    StatusResponse,
    SyncResponse,
    TestMessageRequest,
    TestMessageResponse,
    VisibilityRequest,
    VisibilityResponse,
    WebhookAck,
)
from smsrental.core.models import (
    MessageSource,
    ProviderKind,
    RawMessage,
    RentalSpec,
    RentalStatus,
    ServiceCatalog,
)
from smsrental.orchestrator.sync import SyncTrigger
from smsrental.providers.normalizers import normalise_text, parse_timestamp_exact
from smsrental.service import RentalService
from smsrental.storage.rentals import REGISTERED_PROVIDERS

__all__ = ["router"]

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(service: RentalService = Depends(get_service)) -> HealthResponse:
    return HealthResponse(status="ok", providers=[str(p) for p in service.enabled_providers])


# ---------------------------------------------------------------------------
# Leases
# ---------------------------------------------------------------------------


@router.post("/rentals", response_model=RentalOut, status_code=201)
async def rent_number(
    body: RentRequest,
    caller: str = Depends(get_caller),
    service: RentalService = Depends(get_service),
) -> RentalOut:
    spec = RentalSpec(
        provider=body.provider,
        service=body.service,
        country=body.country,
        duration_hours=body.duration or service.settings.default_rent_hours,
        mode=body.mode,
    )
    rental = await service.rent(spec)
    logger.info("Caller %s rented %s from %s", caller, rental.id, rental.provider)
    return RentalOut.from_rental(rental)


@router.post("/rentals/manual", response_model=RentalOut, status_code=201)
async def register_number(
    body: ManualRegistrationRequest,
    caller: str = Depends(get_caller),
    service: RentalService = Depends(get_service),
) -> RentalOut:
    rental = await service.register_manual(
        body.phone_number,
        service=body.service,
        country=body.country,
        access_url=body.access_url,
        hours=body.duration,
    )
    return RentalOut.from_rental(rental)


@router.post("/rentals/{rental_id}/extend", response_model=LeaseResponse)
async def extend_rental(
    body: ExtendRequest,
    rental_id: str = Depends(authorized_rental_id),
    service: RentalService = Depends(get_service),
) -> LeaseResponse:
    return LeaseResponse.from_update(await service.extend(rental_id, body.duration))


@router.delete("/rentals/{rental_id}", response_model=DeleteResponse)
async def delete_rental(
    rental_id: str = Depends(authorized_rental_id),
    service: RentalService = Depends(get_service),
) -> DeleteResponse:
    update = await service.remove(rental_id)
    if update is None:
        return DeleteResponse(deleted=True)
    return DeleteResponse(
        deleted=False,
        rental=RentalOut.from_rental(update.rental),
        warning=update.warning,
    )


@router.post("/rentals/{rental_id}/assign", response_model=RentalOut)
async def assign_rental(
    body: AssignRequest,
    rental_id: str = Depends(authorized_rental_id),
    service: RentalService = Depends(get_service),
) -> RentalOut:
    return RentalOut.from_rental(await service.assign(rental_id, body.assignee, force=body.force))


# ---------------------------------------------------------------------------
# Reads and sync
# ---------------------------------------------------------------------------


@router.get("/rentals", response_model=list[RentalOut])
async def list_rentals(
    status: RentalStatus | None = Query(default=None),
    assignee: str | None = Query(default=None),
    caller: str = Depends(get_caller),
    gate: AuthorizationGate = Depends(get_gate),
    service: RentalService = Depends(get_service),
) -> list[RentalOut]:
    rentals = await service.list_rentals(status=status, assignee=assignee)
    return [RentalOut.from_rental(r) for r in rentals if gate.may_operate(caller, r.id)]


@router.get("/rentals/{rental_id}/status", response_model=StatusResponse)
async def rental_status(
    refresh: bool = Query(default=False),
    rental_id: str = Depends(authorized_rental_id),
    service: RentalService = Depends(get_service),
) -> StatusResponse:
    return StatusResponse.from_view(await service.status(rental_id, refresh=refresh))


@router.post("/rentals/{rental_id}/sync", response_model=SyncResponse)
async def sync_rental(
    rental_id: str = Depends(authorized_rental_id),
    service: RentalService = Depends(get_service),
) -> SyncResponse:
    return SyncResponse.from_result(await service.sync(rental_id, SyncTrigger.USER_REFRESH))


@router.post("/rentals/{rental_id}/messages/test", response_model=TestMessageResponse, status_code=201)
async def inject_test_message(
    body: TestMessageRequest,
    rental_id: str = Depends(authorized_rental_id),
    service: RentalService = Depends(get_service),
) -> TestMessageResponse:
    result = await service.inject_test_message(rental_id, body.sender, body.body, body.received_at)
    return TestMessageResponse.from_upsert(result)


# ---------------------------------------------------------------------------
# Providers and catalog
# ---------------------------------------------------------------------------


@router.get("/providers", response_model=list[ProviderOut])
async def list_providers(
    caller: str = Depends(get_caller),
    service: RentalService = Depends(get_service),
) -> list[ProviderOut]:
    return [
        ProviderOut(provider=kind, rentable=kind not in REGISTERED_PROVIDERS)
        for kind in service.enabled_providers
    ]


@router.get("/services", response_model=ServiceCatalog)
async def service_catalog(
    provider: ProviderKind = Query(...),
    country: str | None = Query(default=None, min_length=2, max_length=2),
    duration: int | None = Query(default=None, ge=1, le=24 * 365),
    caller: str = Depends(get_caller),
    service: RentalService = Depends(get_service),
) -> ServiceCatalog:
    return await service.catalog(provider, country=country, hours=duration)


# ---------------------------------------------------------------------------
# Push ingestion and client state
# ---------------------------------------------------------------------------


@router.post("/webhook/gogetsms", response_model=WebhookAck)
async def gogetsms_webhook(
    body: GoGetSmsWebhookRequest,
    service: RentalService = Depends(get_service),
) -> WebhookAck:
    """Store a pushed GoGetSMS message.

    Unknown numbers are acknowledged with 200 so the provider does not retry.
    """
    received_at, exact = parse_timestamp_exact(body.date)
    raw = RawMessage(
        sender=normalise_text(body.sender, fallback="Unknown"),
        body=normalise_text(body.text),
        received_at=received_at,
        timestamp_exact=exact,
        source=MessageSource.WEBHOOK,
    )
    result = await service.ingest_pushed_message(
        ProviderKind.GOGETSMS, raw, native_id=str(body.id), phone_number=str(body.phone)
    )
    if result is None:
        return WebhookAck(message="Phone number not found")
    return WebhookAck(
        message="Webhook processed" if result.inserted else "Message already processed",
        inserted=result.inserted,
        rental_id=result.message.rental_id,
        message_id=result.message.id,
    )


@router.post("/client/visibility", response_model=VisibilityResponse)
async def report_visibility(
    body: VisibilityRequest,
    caller: str = Depends(get_caller),
    service: RentalService = Depends(get_service),
) -> VisibilityResponse:
    if not body.visible:
        service.client_hidden()
        return VisibilityResponse(reconnected=False)
    return VisibilityResponse(reconnected=await service.client_visible())
