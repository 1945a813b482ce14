"""Pickup lifecycle API router — proposals, transitions, completion, live view."""

import asyncio
import uuid
from typing import Literal

from fastapi import APIRouter, Depends, Query, Request, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ecopickup.database.session import get_db, get_session_factory
from ecopickup.exceptions import AppException, ForbiddenException
from ecopickup.models.enums import PickupStatus
from ecopickup.modules.identity.auth import (
    AuthenticatedUser,
    get_current_user,
    get_websocket_user,
)
from ecopickup.modules.pickup.authorizer import is_party
from ecopickup.modules.pickup.completion_service import CompletionService
from ecopickup.modules.pickup.live_feed import PickupFeed, get_pickup_feed
from ecopickup.modules.pickup.schemas import (
    CancellationCheckResponse,
    CancelRequest,
    CompletionRequest,
    PickupListResponse,
    PickupProposalCreate,
    PickupProposalUpdate,
    PickupResponse,
)
from ecopickup.modules.pickup.service import PickupService
from ecopickup.rate_limit import limiter

router = APIRouter(prefix="/pickups", tags=["pickups"])


# ---------------------------------------------------------------------------
# Proposal
# ---------------------------------------------------------------------------


@router.post("", response_model=PickupResponse, status_code=201)
@limiter.limit("30/minute")
async def propose_pickup(
    request: Request,
    body: PickupProposalCreate,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: PickupFeed = Depends(get_pickup_feed),
):
    """Collector proposes a pickup schedule for a waste post."""
    svc = PickupService(db, feed=feed)
    return await svc.propose_pickup(
        post_id=body.post_id,
        collector_id=user.id,
        details=body.model_dump(exclude={"post_id"}),
        actor_role=user.role,
    )


@router.patch("/{pickup_id}", response_model=PickupResponse)
async def edit_proposal(
    pickup_id: uuid.UUID,
    body: PickupProposalUpdate,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: PickupFeed = Depends(get_pickup_feed),
):
    """Proposer changes schedule or contact details while the pickup is Proposed."""
    svc = PickupService(db, feed=feed)
    return await svc.edit_proposal(
        pickup_id=pickup_id,
        actor_id=user.id,
        changes=body.model_dump(exclude_unset=True),
    )


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@router.get("", response_model=PickupListResponse)
async def list_my_pickups(
    role: Literal["giver", "collector", "any"] = Query("any"),
    status_filter: PickupStatus | None = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List pickups where the caller is the giver, the collector, or either."""
    svc = PickupService(db)
    items, total = await svc.list_for_user(
        user.id, role=role, status=status_filter, limit=limit, offset=offset
    )
    return PickupListResponse(
        items=[PickupResponse.model_validate(p) for p in items],
        total=total,
    )


@router.get("/upcoming", response_model=PickupListResponse)
async def list_upcoming_pickups(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Next Proposed or Confirmed pickups for the caller, soonest first."""
    svc = PickupService(db)
    items, total = await svc.list_upcoming(user.id)
    return PickupListResponse(
        items=[PickupResponse.model_validate(p) for p in items],
        total=total,
    )


@router.get("/by-post/{post_id}", response_model=list[PickupResponse])
async def list_post_pickups(
    post_id: uuid.UUID,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Pickup history of a post, limited to pickups the caller takes part in."""
    svc = PickupService(db)
    pickups = await svc.list_for_post(post_id)
    if not user.is_admin:
        pickups = [p for p in pickups if is_party(p, user.id)]
    return [PickupResponse.model_validate(p) for p in pickups]


@router.get("/by-post/{post_id}/active", response_model=PickupResponse | None)
async def get_active_post_pickup(
    post_id: uuid.UUID,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The post's current non-terminal pickup, or null."""
    svc = PickupService(db)
    pickup = await svc.get_active_for_post(post_id)
    if pickup is None:
        return None
    if not user.is_admin and not is_party(pickup, user.id):
        raise ForbiddenException("You are not a party to this pickup")
    return PickupResponse.model_validate(pickup)


@router.get("/{pickup_id}", response_model=PickupResponse)
async def get_pickup(
    pickup_id: uuid.UUID,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    svc = PickupService(db)
    pickup = await svc.get_pickup_for_actor(pickup_id, user.id, user.role)
    return PickupResponse.model_validate(pickup)


@router.get("/{pickup_id}/cancellation", response_model=CancellationCheckResponse)
async def check_cancellation(
    pickup_id: uuid.UUID,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Whether the caller may cancel now, with hours left and the cutoff."""
    svc = PickupService(db)
    return await svc.check_cancellation(pickup_id, user.id, user.role)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


async def _transition(
    pickup_id: uuid.UUID,
    user: AuthenticatedUser,
    db: AsyncSession,
    feed: PickupFeed,
    requested: PickupStatus,
    reason: str | None = None,
) -> PickupResponse:
    svc = PickupService(db, feed=feed)
    return await svc.apply_transition(pickup_id, user.id, user.role, requested, reason=reason)


@router.post("/{pickup_id}/confirm", response_model=PickupResponse)
async def confirm_pickup(
    pickup_id: uuid.UUID,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: PickupFeed = Depends(get_pickup_feed),
):
    """Giver accepts the collector's proposal."""
    return await _transition(pickup_id, user, db, feed, PickupStatus.CONFIRMED)


@router.post("/{pickup_id}/in-transit", response_model=PickupResponse)
async def mark_in_transit(
    pickup_id: uuid.UUID,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: PickupFeed = Depends(get_pickup_feed),
):
    """Collector is on the way."""
    return await _transition(pickup_id, user, db, feed, PickupStatus.IN_TRANSIT)


@router.post("/{pickup_id}/start-picking", response_model=PickupResponse)
async def start_picking(
    pickup_id: uuid.UUID,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: PickupFeed = Depends(get_pickup_feed),
):
    """Collector has arrived and is picking up the materials."""
    return await _transition(pickup_id, user, db, feed, PickupStatus.PICKING_ONGOING)


@router.post("/{pickup_id}/cancel", response_model=PickupResponse)
async def cancel_pickup(
    pickup_id: uuid.UUID,
    body: CancelRequest | None = None,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: PickupFeed = Depends(get_pickup_feed),
):
    """Either party cancels; Confirmed pickups need enough notice."""
    return await _transition(
        pickup_id,
        user,
        db,
        feed,
        PickupStatus.CANCELLED,
        reason=body.reason if body else None,
    )


@router.post("/{pickup_id}/complete", response_model=PickupResponse)
async def complete_pickup(
    pickup_id: uuid.UUID,
    body: CompletionRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: PickupFeed = Depends(get_pickup_feed),
):
    """Giver records the collected materials and payment, completing the pickup."""
    svc = CompletionService(db, feed=feed)
    return await svc.complete(
        pickup_id=pickup_id,
        actor_id=user.id,
        lines=body.lines,
        payment_method=body.payment_method,
        notes=body.notes,
    )


# ---------------------------------------------------------------------------
# Live view
# ---------------------------------------------------------------------------


@router.websocket("/{pickup_id}/live")
async def pickup_live_view(
    websocket: WebSocket,
    pickup_id: uuid.UUID,
    user: AuthenticatedUser | None = Depends(get_websocket_user),
    feed: PickupFeed = Depends(get_pickup_feed),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Stream the pickup's snapshot, then every committed change, to one of its parties."""
    if user is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    async with session_factory() as db:
        svc = PickupService(db)
        try:
            pickup = await svc.get_pickup_for_actor(pickup_id, user.id, user.role)
        except AppException:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        await websocket.accept()

        last_sent = 0
        send_lock = asyncio.Lock()

        async def forward(record: dict) -> None:
            nonlocal last_sent
            async with send_lock:
                if record["version"] <= last_sent:
                    return
                last_sent = record["version"]
                await websocket.send_json(record)

        unsubscribe = await feed.subscribe(pickup_id, forward)
        try:
            # Re-read after subscribing so no commit falls between snapshot and feed
            await db.refresh(pickup)
            await forward(PickupResponse.model_validate(pickup).model_dump(mode="json"))
            await db.close()
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            await unsubscribe()
