"""Pickup lifecycle service — proposals, status transitions, queries.

Every write follows the same path: load the pickup row, authorize against
what was loaded, stamp the change, stage an outbox event, commit. The
commit is guarded by the row's version column, so a writer that read a
stale version gets ``StaleDataError`` and re-evaluates from fresh state.

Only after the commit do the best-effort steps run, in order: post status
update, system notice to the other party, live feed push. None of them can
undo a committed transition; their failures are logged.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, date, datetime
from typing import Any, Literal
from zoneinfo import ZoneInfo

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from ecopickup.config import settings
from ecopickup.database.base import utcnow
from ecopickup.database.errors import store_errors, violates_unique
from ecopickup.exceptions import (
    AppException,
    ConflictException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
    WrongStateException,
)
from ecopickup.models.enums import ActorRole, PickupStatus, PostStatus, PostType
from ecopickup.models.pickup import Pickup
from ecopickup.modules.conversation.service import ConversationService
from ecopickup.modules.events.outbox_service import OutboxService
from ecopickup.modules.pickup.authorizer import (
    authorize,
    authorize_edit,
    cancellation_deadline,
    is_party,
    other_party,
    scheduled_at,
)
from ecopickup.modules.pickup.constants import (
    EDITABLE_FIELDS,
    EVENT_PICKUP_PROPOSED,
    EVENT_PICKUP_UPDATED,
    LEAD_TIME_GUARDED,
    NOTICE_ACTIONS,
    NOTICE_PROPOSED,
    NOTICE_UPDATED,
    REQUIRED_DETAIL_FIELDS,
    TERMINAL_STATUSES,
    TIMESTAMP_FIELDS,
    TRANSITION_EVENTS,
    post_status_after,
    transition_notice,
)
from ecopickup.modules.pickup.live_feed import PickupFeed
from ecopickup.modules.pickup.schemas import (
    CancellationCheckResponse,
    PickupDetails,
    PickupResponse,
)
from ecopickup.modules.post.service import PostService

logger = logging.getLogger(__name__)

PrepareHook = Callable[[Pickup], None]
WriteStep = Callable[[Pickup], Awaitable[Any]]


class PickupService:
    def __init__(self, db: AsyncSession, feed: PickupFeed | None = None):
        self.db = db
        self.feed = feed
        self.posts = PostService(db)
        self.conversation = ConversationService(db)
        self.outbox = OutboxService(db)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_pickup(self, pickup_id: uuid.UUID) -> Pickup:
        """Get a pickup by ID. Raises NotFoundException if not found."""
        result = await self.db.execute(select(Pickup).where(Pickup.id == pickup_id))
        pickup = result.scalar_one_or_none()
        if pickup is None:
            raise NotFoundException(f"Pickup {pickup_id} not found")
        return pickup

    async def get_pickup_for_actor(
        self, pickup_id: uuid.UUID, actor_id: uuid.UUID, actor_role: ActorRole
    ) -> Pickup:
        """Get a pickup visible to the caller: one of its parties, or an admin."""
        async with store_errors("get pickup"):
            pickup = await self.get_pickup(pickup_id)
        if actor_role != ActorRole.ADMIN and not is_party(pickup, actor_id):
            raise ForbiddenException("You are not a party to this pickup")
        return pickup

    async def list_for_user(
        self,
        user_id: uuid.UUID,
        role: Literal["giver", "collector", "any"] = "any",
        status: PickupStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Pickup], int]:
        """List pickups where the user is the giver, the collector, or either (paginated)."""
        if role == "giver":
            condition = Pickup.giver_id == user_id
        elif role == "collector":
            condition = Pickup.collector_id == user_id
        else:
            condition = or_(Pickup.giver_id == user_id, Pickup.collector_id == user_id)

        query = select(Pickup).where(condition)
        count_query = select(func.count()).select_from(Pickup).where(condition)

        if status is not None:
            query = query.where(Pickup.status == status)
            count_query = count_query.where(Pickup.status == status)

        query = query.order_by(Pickup.proposed_at.desc()).limit(limit).offset(offset)

        async with store_errors("list pickups"):
            total = (await self.db.execute(count_query)).scalar_one()
            items = list((await self.db.execute(query)).scalars().all())
        return items, total

    async def list_upcoming(
        self,
        user_id: uuid.UUID,
        today: date | None = None,
        limit: int | None = None,
    ) -> tuple[list[Pickup], int]:
        """Proposed and Confirmed pickups scheduled from today on, soonest first."""
        today = today or datetime.now(ZoneInfo(settings.pickup_timezone)).date()
        limit = limit or settings.upcoming_pickups_limit
        condition = (
            or_(Pickup.giver_id == user_id, Pickup.collector_id == user_id)
            & Pickup.status.in_([PickupStatus.PROPOSED, PickupStatus.CONFIRMED])
            & (Pickup.pickup_date >= today)
        )
        query = (
            select(Pickup)
            .where(condition)
            .order_by(Pickup.pickup_date.asc(), Pickup.pickup_time.asc())
            .limit(limit)
        )
        count_query = select(func.count()).select_from(Pickup).where(condition)

        async with store_errors("list upcoming pickups"):
            total = (await self.db.execute(count_query)).scalar_one()
            items = list((await self.db.execute(query)).scalars().all())
        return items, total

    async def list_for_post(self, post_id: uuid.UUID) -> list[Pickup]:
        """All pickups ever proposed for a post, newest first."""
        query = (
            select(Pickup).where(Pickup.post_id == post_id).order_by(Pickup.proposed_at.desc())
        )
        async with store_errors("list pickups for post"):
            result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_active_for_post(self, post_id: uuid.UUID) -> Pickup | None:
        """The post's non-terminal pickup, if any. There is at most one."""
        query = select(Pickup).where(
            Pickup.post_id == post_id,
            Pickup.status.not_in(list(TERMINAL_STATUSES)),
        )
        async with store_errors("get active pickup for post"):
            result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def check_cancellation(
        self,
        pickup_id: uuid.UUID,
        actor_id: uuid.UUID,
        actor_role: ActorRole,
        now: datetime | None = None,
    ) -> CancellationCheckResponse:
        """Report whether the caller could cancel right now, without changing anything."""
        now = now or datetime.now(UTC)
        pickup = await self.get_pickup_for_actor(pickup_id, actor_id, actor_role)
        decision = authorize(pickup, actor_id, actor_role, PickupStatus.CANCELLED, now=now)
        hours_until = (scheduled_at(pickup) - now).total_seconds() / 3600
        deadline = cancellation_deadline(pickup) if pickup.status in LEAD_TIME_GUARDED else None
        return CancellationCheckResponse(
            can_cancel=decision.allowed,
            reason=decision.reason,
            message=decision.message or "Pickup can be cancelled",
            hours_until_pickup=round(hours_until, 1),
            deadline=deadline,
        )

    # ------------------------------------------------------------------
    # Proposal
    # ------------------------------------------------------------------

    async def propose_pickup(
        self,
        post_id: uuid.UUID,
        collector_id: uuid.UUID,
        details: dict,
        actor_role: ActorRole = ActorRole.COLLECTOR,
    ) -> PickupResponse:
        """Create a Proposed pickup on an active waste post, proposed by the collector."""
        if actor_role != ActorRole.COLLECTOR:
            raise ForbiddenException("Only collectors can schedule pickups")
        try:
            schedule = PickupDetails.model_validate(details)
        except PydanticValidationError as exc:
            raise ValidationException(
                "Invalid pickup details",
                details=[
                    {
                        "field": ".".join(str(part) for part in err["loc"]),
                        "message": err["msg"],
                    }
                    for err in exc.errors()
                ],
            ) from exc

        async with store_errors("propose pickup"):
            post = await self.posts.get_post(post_id)
            if post.post_type != PostType.WASTE:
                raise ValidationException(
                    "Pickups can only be scheduled for waste posts",
                    details=[{"field": "post_id", "message": post.post_type.value}],
                )
            if post.user_id == collector_id:
                raise ForbiddenException("You cannot schedule a pickup for your own post")
            if post.status != PostStatus.ACTIVE:
                raise WrongStateException(
                    f"Post is {post.status.value}; pickups can only be proposed on active posts"
                )
            if await self.get_active_for_post(post_id) is not None:
                raise ConflictException("This post already has an active pickup")

            pickup = Pickup(
                post_id=post_id,
                giver_id=post.user_id,
                collector_id=collector_id,
                proposed_by=collector_id,
                status=PickupStatus.PROPOSED,
                proposed_at=utcnow(),
                **schedule.model_dump(include=set(EDITABLE_FIELDS)),
            )
            self.db.add(pickup)
            try:
                await self.db.flush()
            except IntegrityError as exc:
                await self.db.rollback()
                if violates_unique(exc, "uq_pickups_one_active_per_post", "pickups.post_id"):
                    raise ConflictException("This post already has an active pickup") from exc
                raise ValidationException(
                    "Pickup details were rejected by the store",
                    details=[{"message": str(exc.orig)}],
                ) from exc

            await self._stage_event(
                EVENT_PICKUP_PROPOSED, pickup, actor_id=collector_id, previous=None
            )
            await self.db.commit()

        snapshot = PickupResponse.model_validate(pickup)
        logger.info(
            "Pickup %s proposed on post %s by collector %s", pickup.id, post_id, collector_id
        )
        await self._after_commit(
            snapshot,
            post_status=None,
            recipient_id=snapshot.giver_id,
            text=NOTICE_PROPOSED,
            metadata={"pickup_id": str(snapshot.id), "action": "pickup_proposed"},
        )
        return snapshot

    async def edit_proposal(
        self,
        pickup_id: uuid.UUID,
        actor_id: uuid.UUID,
        changes: dict,
    ) -> PickupResponse:
        """Change schedule or contact details while the pickup is still Proposed."""
        changes = {field: value for field, value in changes.items() if field in EDITABLE_FIELDS}
        if not changes:
            raise ValidationException("No editable fields were provided")
        cleared = [f for f in REQUIRED_DETAIL_FIELDS if f in changes and changes[f] is None]
        if cleared:
            raise ValidationException(
                "Required pickup details cannot be cleared",
                details=[{"field": field, "message": "must not be null"} for field in cleared],
            )

        async def step(pickup: Pickup) -> None:
            authorize_edit(pickup, actor_id).raise_for_denial()
            for field, value in changes.items():
                setattr(pickup, field, value)
            await self._stage_event(
                EVENT_PICKUP_UPDATED,
                pickup,
                actor_id=actor_id,
                previous=pickup.status,
                extra={"fields": sorted(changes)},
            )

        pickup, _ = await self._write(pickup_id, "edit pickup proposal", step)
        snapshot = PickupResponse.model_validate(pickup)
        logger.info("Pickup %s details updated by %s: %s", pickup_id, actor_id, sorted(changes))
        await self._after_commit(
            snapshot,
            post_status=None,
            recipient_id=other_party(pickup, actor_id),
            text=NOTICE_UPDATED,
            metadata={
                "pickup_id": str(pickup_id),
                "action": "pickup_updated",
                "fields": sorted(changes),
            },
        )
        return snapshot

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def apply_transition(
        self,
        pickup_id: uuid.UUID,
        actor_id: uuid.UUID,
        actor_role: ActorRole,
        requested: PickupStatus,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> PickupResponse:
        """Move a pickup to ``requested`` on behalf of the actor.

        Completion carries a material record and goes through
        ``CompletionService`` instead.
        """
        if requested == PickupStatus.COMPLETED:
            raise WrongStateException(
                "Pickups are completed by recording the collected materials"
            )
        return await self.commit_transition(
            pickup_id, actor_id, actor_role, requested, reason=reason, now=now
        )

    async def commit_transition(
        self,
        pickup_id: uuid.UUID,
        actor_id: uuid.UUID,
        actor_role: ActorRole,
        requested: PickupStatus,
        reason: str | None = None,
        prepare: PrepareHook | None = None,
        notice: str | None = None,
        now: datetime | None = None,
    ) -> PickupResponse:
        """Authorize, stamp and commit one transition, then run the best-effort steps.

        ``prepare`` runs on the stamped pickup before the commit so callers
        can attach data that must be persisted atomically with the status.
        """
        previous_status: dict[str, PickupStatus] = {}

        async def step(pickup: Pickup) -> PostStatus | None:
            authorize(pickup, actor_id, actor_role, requested, now=now).raise_for_denial()
            previous = pickup.status
            previous_status["value"] = previous
            self._stamp(pickup, requested, actor_id, reason)
            if prepare is not None:
                prepare(pickup)
            post_status = post_status_after(previous, requested)
            await self._stage_event(
                TRANSITION_EVENTS[requested],
                pickup,
                actor_id=actor_id,
                previous=previous,
                extra={
                    "post_status": post_status.value if post_status else None,
                    "reason": reason,
                },
            )
            return post_status

        pickup, post_status = await self._write(
            pickup_id, f"transition to {requested.value}", step
        )
        snapshot = PickupResponse.model_validate(pickup)
        logger.info(
            "Pickup %s %s -> %s by %s (%s)",
            pickup_id,
            previous_status["value"].value,
            requested.value,
            actor_id,
            actor_role.value,
        )

        metadata: dict[str, Any] = {
            "pickup_id": str(pickup_id),
            "action": NOTICE_ACTIONS[requested],
        }
        if reason:
            metadata["reason"] = reason
        await self._after_commit(
            snapshot,
            post_status=post_status,
            recipient_id=other_party(pickup, actor_id),
            text=notice or transition_notice(requested, actor_role, reason),
            metadata=metadata,
        )
        return snapshot

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _load_for_update(self, pickup_id: uuid.UUID) -> Pickup:
        result = await self.db.execute(
            select(Pickup)
            .where(Pickup.id == pickup_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        pickup = result.scalar_one_or_none()
        if pickup is None:
            raise NotFoundException(f"Pickup {pickup_id} not found")
        return pickup

    async def _write(
        self, pickup_id: uuid.UUID, operation: str, step: WriteStep
    ) -> tuple[Pickup, Any]:
        """Run ``step`` against freshly loaded state and commit, retrying on version conflicts."""
        attempts = settings.transition_max_attempts
        for attempt in range(1, attempts + 1):
            try:
                async with store_errors(operation):
                    pickup = await self._load_for_update(pickup_id)
                    outcome = await step(pickup)
                    await self.db.commit()
                return pickup, outcome
            except StaleDataError:
                await self.db.rollback()
                logger.info(
                    "Pickup %s changed during %s (attempt %d/%d), re-evaluating",
                    pickup_id,
                    operation,
                    attempt,
                    attempts,
                )
            except AppException:
                await self.db.rollback()
                raise
            except IntegrityError as exc:
                await self.db.rollback()
                raise ValidationException(
                    f"Pickup {pickup_id} change was rejected by the store",
                    details=[{"message": str(exc.orig)}],
                ) from exc
        raise ConflictException(
            f"Pickup {pickup_id} kept changing during {operation}; please retry"
        )

    def _stamp(
        self,
        pickup: Pickup,
        status: PickupStatus,
        actor_id: uuid.UUID,
        reason: str | None,
    ) -> None:
        # Never earlier than a stamp already on the record
        stamps = [getattr(pickup, field) for field in TIMESTAMP_FIELDS.values()]
        now = max([utcnow(), *(stamp for stamp in stamps if stamp is not None)])

        pickup.status = status
        setattr(pickup, TIMESTAMP_FIELDS[status], now)
        if status == PickupStatus.CANCELLED:
            pickup.cancelled_by = actor_id
            pickup.cancellation_reason = reason

    async def _stage_event(
        self,
        event_type: str,
        pickup: Pickup,
        actor_id: uuid.UUID,
        previous: PickupStatus | None,
        extra: dict | None = None,
    ) -> None:
        payload = {
            "pickup_id": str(pickup.id),
            "post_id": str(pickup.post_id),
            "giver_id": str(pickup.giver_id),
            "collector_id": str(pickup.collector_id),
            "actor_id": str(actor_id),
            "from_status": previous.value if previous else None,
            "to_status": pickup.status.value,
        }
        payload.update(extra or {})
        await self.outbox.publish_event(
            event_type=event_type,
            aggregate_type="pickup",
            aggregate_id=str(pickup.id),
            payload=payload,
        )

    async def _after_commit(
        self,
        snapshot: PickupResponse,
        post_status: PostStatus | None,
        recipient_id: uuid.UUID,
        text: str,
        metadata: dict,
    ) -> None:
        if post_status is not None:
            try:
                await self.posts.set_post_status(snapshot.post_id, post_status)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                logger.exception(
                    "Post %s status update to %s failed after pickup %s committed; "
                    "the outbox handler will retry",
                    snapshot.post_id,
                    post_status.value,
                    snapshot.id,
                )

        try:
            await self.conversation.append_system_message(
                snapshot.post_id, recipient_id, text, metadata
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.exception(
                "System notice for pickup %s to %s failed; transition stays committed",
                snapshot.id,
                recipient_id,
            )

        if self.feed is None:
            return
        try:
            await self.feed.publish(snapshot.id, snapshot.model_dump(mode="json"))
        except Exception:
            logger.exception("Live update for pickup %s could not be published", snapshot.id)
