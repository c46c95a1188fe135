"""Compliance item state machine.

    pending -> in_progress -> completed
    (pending | in_progress) -> expired   once due_date has passed

``completed`` and ``expired`` are terminal for the automatic rules. Only an
explicit ``reopen`` moves an item out of them.

Expiry is evaluated lazily: on every read that surfaces an item and inside
every recompute. There is no background sweep.

Every write to an item is a compare-and-set on its ``version`` column. A
unit of work that loses the race is rolled back and re-run from scratch;
after ``max_recompute_retries`` further attempts the conflict is surfaced as
``ConcurrentModification``.
"""

import uuid
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, TypeVar

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.db.models import ComplianceItemDB
from src.db.repositories import ComplianceRepository, RiskScoreRepository

from .config import ComplianceConfig, default_config
from .errors import ComplianceItemNotFound, ConcurrentModification, InvalidTransition
from .models import (
    ComplianceItem,
    ComplianceItemCreate,
    ComplianceStatus,
    RiskLevel,
    utcnow,
)
from .scoring import highest_level

logger = structlog.get_logger()

T = TypeVar("T")

# Explicit caller-driven moves. Everything else goes through reopen or the
# automatic rules.
_EXPLICIT_TRANSITIONS = {
    (ComplianceStatus.PENDING, ComplianceStatus.IN_PROGRESS),
    (ComplianceStatus.IN_PROGRESS, ComplianceStatus.COMPLETED),
}


class VersionConflict(Exception):
    """Raised inside a unit of work when a compare-and-set matched no row."""

    def __init__(self, compliance_item_id: uuid.UUID) -> None:
        super().__init__(str(compliance_item_id))
        self.compliance_item_id = compliance_item_id


@dataclass(frozen=True)
class LifecycleState:
    status: ComplianceStatus
    risk_level: RiskLevel


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def is_overdue(due_date: datetime | None, now: datetime) -> bool:
    due = as_utc(due_date)
    return due is not None and due < now


def next_state(
    status: ComplianceStatus,
    risk_level: RiskLevel,
    due_date: datetime | None,
    latest_levels: Iterable[RiskLevel],
    now: datetime,
    score_recorded: bool = False,
) -> LifecycleState:
    """Derive an item's status and risk_level from its current state.

    Pure function. ``latest_levels`` holds the level of the latest score per
    category; an empty set leaves ``risk_level`` untouched. ``score_recorded``
    marks the first-score implicit ``pending -> in_progress`` move.
    """
    level = highest_level(latest_levels) or risk_level

    if status.is_terminal:
        return LifecycleState(status, level)
    if is_overdue(due_date, now):
        return LifecycleState(ComplianceStatus.EXPIRED, level)
    if score_recorded and status == ComplianceStatus.PENDING:
        return LifecycleState(ComplianceStatus.IN_PROGRESS, level)
    return LifecycleState(status, level)


class ComplianceLifecycleManager:
    """Owns every status and risk_level change of a compliance item."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: ComplianceConfig | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config = config or default_config

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    async def run_unit_of_work(
        self,
        compliance_item_id: uuid.UUID,
        work: Callable[[AsyncSession], Awaitable[T]],
    ) -> T:
        """Run ``work`` in its own transaction, retrying on version conflicts.

        ``work`` must be safe to re-run from scratch: everything it wrote is
        rolled back before the next attempt.
        """
        attempts = self._config.lifecycle.max_recompute_retries + 1
        for attempt in range(1, attempts + 1):
            async with self._session_factory() as session:
                try:
                    result = await work(session)
                    await session.commit()
                    return result
                except VersionConflict:
                    await session.rollback()
                    logger.warning(
                        "compliance_item_version_conflict",
                        compliance_item_id=str(compliance_item_id),
                        attempt=attempt,
                        max_attempts=attempts,
                    )

        logger.error(
            "compliance_item_concurrent_modification",
            compliance_item_id=str(compliance_item_id),
            attempts=attempts,
        )
        raise ConcurrentModification(compliance_item_id, attempts)

    async def _load(
        self, session: AsyncSession, compliance_item_id: uuid.UUID, owner: str | None
    ) -> ComplianceItemDB:
        item = await ComplianceRepository(session).get(compliance_item_id, owner=owner, refresh=True)
        if item is None:
            raise ComplianceItemNotFound(compliance_item_id)
        return item

    async def _write(
        self, session: AsyncSession, item: ComplianceItemDB, **values: Any
    ) -> ComplianceItemDB:
        repo = ComplianceRepository(session)
        if not await repo.update_fields(item, **values):
            raise VersionConflict(item.id)
        return await self._load(session, item.id, owner=None)

    # ------------------------------------------------------------------
    # Recompute
    # ------------------------------------------------------------------

    async def recompute_in_session(
        self,
        session: AsyncSession,
        compliance_item_id: uuid.UUID,
        *,
        owner: str | None = None,
        score_recorded: bool = False,
    ) -> ComplianceItemDB:
        """Recompute risk_level and status inside the caller's transaction.

        Raises ``VersionConflict`` when the item changed underneath; the
        caller's unit of work is expected to retry.
        """
        item = await self._load(session, compliance_item_id, owner)
        latest = await RiskScoreRepository(session).list_latest_by_category(compliance_item_id)

        current = LifecycleState(ComplianceStatus(item.status), RiskLevel(item.risk_level))
        target = next_state(
            current.status,
            current.risk_level,
            item.due_date,
            (RiskLevel(score.risk_level) for score in latest),
            utcnow(),
            score_recorded=score_recorded,
        )

        # A recorded score always goes through the compare-and-set so that
        # concurrent scorers serialize on the item's version.
        if target == current and not score_recorded:
            return item

        item = await self._write(
            session,
            item,
            status=target.status.value,
            risk_level=target.risk_level.value,
        )

        self._log_change(compliance_item_id, current, target, categories=len(latest))
        return item

    async def recompute_risk_level(
        self, compliance_item_id: uuid.UUID, owner: str | None = None
    ) -> ComplianceItem:
        """Derive risk_level from the latest score per category and apply expiry.

        Idempotent: running it again without new scores changes nothing.
        """

        async def work(session: AsyncSession) -> ComplianceItem:
            item = await self.recompute_in_session(session, compliance_item_id, owner=owner)
            return ComplianceItem.model_validate(item)

        return await self.run_unit_of_work(compliance_item_id, work)

    def _log_change(
        self,
        compliance_item_id: uuid.UUID,
        before: LifecycleState,
        after: LifecycleState,
        **context: Any,
    ) -> None:
        if after.risk_level != before.risk_level:
            logger.info(
                "compliance_item_risk_level_changed",
                compliance_item_id=str(compliance_item_id),
                previous=before.risk_level.value,
                risk_level=after.risk_level.value,
                **context,
            )
        if after.status != before.status:
            event = (
                "compliance_item_expired"
                if after.status == ComplianceStatus.EXPIRED
                else "compliance_item_status_changed"
            )
            logger.info(
                event,
                compliance_item_id=str(compliance_item_id),
                previous=before.status.value,
                status=after.status.value,
            )

    # ------------------------------------------------------------------
    # Reads with lazy expiry
    # ------------------------------------------------------------------

    async def _expire_if_overdue(
        self, session: AsyncSession, item: ComplianceItemDB
    ) -> ComplianceItemDB:
        status = ComplianceStatus(item.status)
        if status.is_terminal or not is_overdue(item.due_date, utcnow()):
            return item
        item = await self._write(session, item, status=ComplianceStatus.EXPIRED.value)
        logger.info(
            "compliance_item_expired",
            compliance_item_id=str(item.id),
            previous=status.value,
            status=ComplianceStatus.EXPIRED.value,
        )
        return item

    async def refresh(self, compliance_item_id: uuid.UUID, owner: str | None = None) -> ComplianceItem:
        """Load an item, expiring it first if its due date has passed."""

        async def work(session: AsyncSession) -> ComplianceItem:
            item = await self._load(session, compliance_item_id, owner)
            item = await self._expire_if_overdue(session, item)
            return ComplianceItem.model_validate(item)

        return await self.run_unit_of_work(compliance_item_id, work)

    async def refresh_many(
        self, owner: str, status: ComplianceStatus | None = None
    ) -> list[ComplianceItem]:
        """List an owner's items with lazy expiry applied.

        The status filter is applied after expiry, so an overdue item never
        shows up under ``pending`` or ``in_progress``.
        """
        async with self._session_factory() as session:
            rows = await ComplianceRepository(session).list_for_owner(owner)
            items = [ComplianceItem.model_validate(row) for row in rows]

        now = utcnow()
        refreshed: list[ComplianceItem] = []
        for item in items:
            if not item.status.is_terminal and is_overdue(item.due_date, now):
                try:
                    item = await self.refresh(item.id, owner=owner)
                except ComplianceItemNotFound:
                    # Deleted since the listing query.
                    continue
            refreshed.append(item)

        if status is not None:
            refreshed = [item for item in refreshed if item.status == status]
        return refreshed

    # ------------------------------------------------------------------
    # Explicit caller actions
    # ------------------------------------------------------------------

    async def create(self, owner: str, payload: ComplianceItemCreate) -> ComplianceItem:
        async with self._session_factory() as session:
            row = await ComplianceRepository(session).create(
                owner=owner,
                title=payload.title,
                description=payload.description,
                risk_level=payload.risk_level.value,
                due_date=as_utc(payload.due_date),
            )
            await session.commit()
            item = ComplianceItem.model_validate(row)

        logger.info(
            "compliance_item_created",
            compliance_item_id=str(item.id),
            owner=owner,
            risk_level=item.risk_level.value,
        )
        return item

    async def transition(
        self,
        compliance_item_id: uuid.UUID,
        target: ComplianceStatus,
        owner: str | None = None,
    ) -> ComplianceItem:
        """Explicit status change requested by a caller.

        Only ``pending -> in_progress`` and ``in_progress -> completed`` are
        allowed. Expiry is applied first, so an overdue item cannot be
        started or completed.
        """
        # Persist any pending expiry in its own unit so a rejected
        # transition still leaves the item in its effective state.
        await self.refresh(compliance_item_id, owner=owner)

        async def work(session: AsyncSession) -> ComplianceItem:
            item = await self._load(session, compliance_item_id, owner)
            current = ComplianceStatus(item.status)
            if (current, target) not in _EXPLICIT_TRANSITIONS or is_overdue(
                item.due_date, utcnow()
            ):
                message = None
                if current.is_terminal:
                    message = (
                        f"Compliance item is {current.value}; use reopen to move it back"
                    )
                raise InvalidTransition(compliance_item_id, current.value, target.value, message)

            item = await self._write(session, item, status=target.value)
            logger.info(
                "compliance_item_status_changed",
                compliance_item_id=str(compliance_item_id),
                previous=current.value,
                status=target.value,
                explicit=True,
            )
            return ComplianceItem.model_validate(item)

        return await self.run_unit_of_work(compliance_item_id, work)

    async def start(self, compliance_item_id: uuid.UUID, owner: str | None = None) -> ComplianceItem:
        return await self.transition(compliance_item_id, ComplianceStatus.IN_PROGRESS, owner)

    async def complete(
        self, compliance_item_id: uuid.UUID, owner: str | None = None
    ) -> ComplianceItem:
        # Critical items are not blocked from completion.
        return await self.transition(compliance_item_id, ComplianceStatus.COMPLETED, owner)

    async def reopen(
        self,
        compliance_item_id: uuid.UUID,
        due_date: datetime | None = None,
        owner: str | None = None,
    ) -> ComplianceItem:
        """Move a completed or expired item back to ``pending``.

        ``due_date`` replaces the current one when given. The effective due
        date must not already be in the past, otherwise the item would
        expire again on the next read.
        """
        await self.refresh(compliance_item_id, owner=owner)

        async def work(session: AsyncSession) -> ComplianceItem:
            item = await self._load(session, compliance_item_id, owner)
            current = ComplianceStatus(item.status)
            target = ComplianceStatus.PENDING
            if not current.is_terminal:
                raise InvalidTransition(
                    compliance_item_id,
                    current.value,
                    target.value,
                    "Only completed or expired items can be reopened",
                )

            effective_due = as_utc(due_date if due_date is not None else item.due_date)
            if is_overdue(effective_due, utcnow()):
                raise InvalidTransition(
                    compliance_item_id,
                    current.value,
                    target.value,
                    "Reopening requires a due date in the future",
                )

            item = await self._write(
                session, item, status=target.value, due_date=effective_due
            )
            logger.info(
                "compliance_item_reopened",
                compliance_item_id=str(compliance_item_id),
                previous=current.value,
                due_date=effective_due.isoformat() if effective_due else None,
            )
            return ComplianceItem.model_validate(item)

        return await self.run_unit_of_work(compliance_item_id, work)

    async def update_details(
        self,
        compliance_item_id: uuid.UUID,
        changes: dict[str, Any],
        owner: str | None = None,
    ) -> ComplianceItem:
        """Apply user edits to title, description and due_date.

        Status and risk_level are not editable here. A due date moved into
        the past expires the item in the same write.
        """
        editable = {"title", "description", "due_date"}
        values = {key: value for key, value in changes.items() if key in editable}
        if "due_date" in values:
            values["due_date"] = as_utc(values["due_date"])

        async def work(session: AsyncSession) -> ComplianceItem:
            item = await self._load(session, compliance_item_id, owner)
            if not values:
                item = await self._expire_if_overdue(session, item)
                return ComplianceItem.model_validate(item)

            status = ComplianceStatus(item.status)
            due = values.get("due_date", item.due_date)
            update = dict(values)
            if not status.is_terminal and is_overdue(due, utcnow()):
                update["status"] = ComplianceStatus.EXPIRED.value

            item = await self._write(session, item, **update)
            logger.info(
                "compliance_item_updated",
                compliance_item_id=str(compliance_item_id),
                fields=sorted(values),
                status=item.status,
            )
            return ComplianceItem.model_validate(item)

        return await self.run_unit_of_work(compliance_item_id, work)

    async def delete(self, compliance_item_id: uuid.UUID, owner: str | None = None) -> None:
        """Delete an item together with its risk scores (cascade)."""
        async with self._session_factory() as session:
            repo = ComplianceRepository(session)
            if await repo.get(compliance_item_id, owner=owner) is None:
                raise ComplianceItemNotFound(compliance_item_id)
            await repo.delete(compliance_item_id)
            await session.commit()

        logger.info("compliance_item_deleted", compliance_item_id=str(compliance_item_id))
