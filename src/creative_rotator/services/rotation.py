"""Rotation service: the single entry point that applies rotation decisions.

Both the scheduler sweep and the queue task call ``check_session``. A check
never holds a database transaction across a network call:

1. load a snapshot of the session (short transaction)
2. fetch cumulative impressions from the marketplace
3. decide with the pure ``decide`` function
4. on a transition, swap the listing's main image first
5. persist with a conditional update matching the snapshot's step and
   ``running`` status; zero matched rows means another writer got there
   first and this attempt is dropped

If the image swap fails nothing about the step is written, so the next
check retries the same transition.
"""

from collections.abc import Callable, Sequence
from contextlib import AbstractContextManager
from datetime import date, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import ColumnElement, Update, case, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from creative_rotator.adapters.marketplace.base import MarketplaceAdapter
from creative_rotator.config import settings
from creative_rotator.db.models import RotationSessionModel
from creative_rotator.db.session import get_session_context
from creative_rotator.domain.enums import (
    CheckTrigger,
    RotationAction,
    RotationOutcome,
    SessionStatus,
)
from creative_rotator.domain.errors import (
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    ProviderError,
)
from creative_rotator.domain.models import (
    RotationDecision,
    RotationResult,
    SessionResults,
    SessionSnapshot,
)
from creative_rotator.domain.rotation import decide
from creative_rotator.logging import get_logger
from creative_rotator.services import sessions as store
from creative_rotator.services.accounts import build_marketplace_adapter
from creative_rotator.services.alerting import (
    AlertingService,
    get_alerting_service,
    rotation_alert,
)
from creative_rotator.services.budget import BudgetGuard
from creative_rotator.services.campaign_stats import MetricsAggregator
from creative_rotator.services.resilience import ResilientCaller
from creative_rotator.utils.time_utils import utcnow

logger = get_logger(__name__)

AdapterFactory = Callable[[Session, UUID], MarketplaceAdapter]


class RotationService:
    """Starts, controls and checks rotation sessions."""

    def __init__(
        self,
        adapter_factory: AdapterFactory | None = None,
        caller: ResilientCaller | None = None,
        aggregator: MetricsAggregator | None = None,
        budget_guard: BudgetGuard | None = None,
        notifier: AlertingService | None = None,
        session_factory: sessionmaker[Session] | None = None,
        check_interval: timedelta | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.adapter_factory = adapter_factory or build_marketplace_adapter
        self.caller = caller or ResilientCaller()
        self.aggregator = aggregator or MetricsAggregator(self.caller)
        self.notifier = notifier
        self.budget_guard = budget_guard or BudgetGuard(self.caller, notifier)
        self.session_factory = session_factory
        self.check_interval = check_interval or timedelta(
            minutes=settings.rotation_check_interval_minutes
        )
        self._clock = clock

    def transaction(self) -> AbstractContextManager[Session]:
        """Short transaction on the configured session factory."""
        return get_session_context(self.session_factory)

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_session(
        self,
        account_id: UUID,
        campaign_id: int,
        listing_id: int,
        creatives: Sequence[str],
        views_per_step: int | None = None,
        auto_top_up: bool = False,
        top_up_threshold: int | None = None,
        top_up_amount: int | None = None,
        metrics_since: date | None = None,
        start: bool = True,
    ) -> SessionSnapshot:
        """Create a session; when ``start`` is set, make the first creative live first.

        Raises:
            ValidationError: Bad input or the campaign already has an active session.
            NotFoundError: Unknown account.
            ProviderError: The first creative could not be set; nothing was stored.
            PersistenceError: A concurrent start for the same campaign won.
        """
        with self.transaction() as db:
            params = store.validate_new_session(
                db,
                account_id,
                campaign_id,
                listing_id,
                creatives,
                views_per_step=views_per_step,
                top_up_threshold=top_up_threshold,
                top_up_amount=top_up_amount,
            )
            adapter = self.adapter_factory(db, account_id) if start else None

        if adapter is not None:
            try:
                await self._swap(adapter, listing_id, params.creatives[0])
            finally:
                await adapter.close()

        now = self._clock()
        try:
            with self.transaction() as db:
                model = store.create_session(
                    db,
                    account_id,
                    campaign_id,
                    listing_id,
                    params.creatives,
                    views_per_step=params.views_per_step,
                    auto_top_up=auto_top_up,
                    top_up_threshold=params.top_up_threshold,
                    top_up_amount=params.top_up_amount,
                    metrics_since=metrics_since,
                    start=start,
                    now=now,
                )
                snapshot = store.to_snapshot(model)
        except IntegrityError as e:
            raise PersistenceError(
                f"Campaign {campaign_id} already has an active rotation session"
            ) from e

        return snapshot

    def pause_session(self, session_id: UUID) -> SessionSnapshot:
        with self.transaction() as db:
            return store.pause_session(db, session_id)

    async def resume_session(self, session_id: UUID) -> SessionSnapshot:
        """Resume a paused session, or start a draft (making its creative live first)."""
        with self.transaction() as db:
            snapshot = store.get_status(db, session_id)
            if snapshot.status not in (SessionStatus.PAUSED, SessionStatus.DRAFT):
                raise InvalidTransitionError(session_id, snapshot.status, "resume")
            adapter = (
                self.adapter_factory(db, snapshot.account_id)
                if snapshot.status == SessionStatus.DRAFT
                else None
            )

        if adapter is not None:
            try:
                await self._swap(adapter, snapshot.listing_id, snapshot.current_creative)
            finally:
                await adapter.close()

        with self.transaction() as db:
            return store.resume_session(db, session_id, now=self._clock())

    def stop_session(self, session_id: UUID) -> SessionSnapshot:
        with self.transaction() as db:
            return store.stop_session(db, session_id, now=self._clock())

    def update_session_settings(
        self,
        session_id: UUID,
        auto_top_up: bool | None = None,
        top_up_threshold: int | None = None,
        top_up_amount: int | None = None,
    ) -> SessionSnapshot:
        with self.transaction() as db:
            return store.update_session_settings(
                db,
                session_id,
                auto_top_up=auto_top_up,
                top_up_threshold=top_up_threshold,
                top_up_amount=top_up_amount,
            )

    def get_status(self, session_id: UUID) -> SessionSnapshot:
        with self.transaction() as db:
            return store.get_status(db, session_id)

    def get_results(self, session_id: UUID) -> SessionResults:
        with self.transaction() as db:
            return store.get_session_results(db, session_id, now=self._clock())

    def resolve_session_id(self, account_id: UUID, campaign_id: int) -> UUID:
        """Active session of a campaign.

        Raises:
            NotFoundError: The campaign has no draft, running or paused session.
        """
        with self.transaction() as db:
            model = store.find_active_session(db, account_id, campaign_id)
            if model is None:
                raise NotFoundError(
                    f"No active rotation session for campaign {campaign_id} "
                    f"of account {account_id}"
                )
            return model.id

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    async def force_check(self, session_id: UUID) -> RotationResult:
        """Check a session right now, outside the schedule."""
        return await self.check_session(session_id, trigger=CheckTrigger.MANUAL)

    async def check_session(
        self,
        session_id: UUID,
        trigger: CheckTrigger = CheckTrigger.SCHEDULER,
    ) -> RotationResult:
        """Measure a session's impressions and rotate or complete it when due.

        Provider failures are reported in the result, not raised.

        Raises:
            NotFoundError: Unknown session.
        """
        with self.transaction() as db:
            snapshot = store.get_status(db, session_id)
            if snapshot.status != SessionStatus.RUNNING:
                logger.debug(
                    "rotation_check_skipped",
                    session_id=str(session_id),
                    status=snapshot.status.value,
                    trigger=trigger.value,
                )
                return RotationResult(session_id, RotationOutcome.SKIPPED)
            adapter = self.adapter_factory(db, snapshot.account_id)

        try:
            return await self._check(adapter, snapshot, trigger)
        finally:
            await adapter.close()

    async def _check(
        self,
        adapter: MarketplaceAdapter,
        snapshot: SessionSnapshot,
        trigger: CheckTrigger,
    ) -> RotationResult:
        log = logger.bind(
            session_id=str(snapshot.id),
            campaign_id=snapshot.campaign_id,
            trigger=trigger.value,
        )

        try:
            fresh_views = await self.aggregator.cumulative_impressions(
                adapter, snapshot.campaign_id, snapshot.metrics_since
            )
        except ProviderError as e:
            return self._fail(snapshot, e, log, "rotation_metrics_failed")

        decision = decide(snapshot, fresh_views)
        now = self._clock()

        if decision.action == RotationAction.NOOP:
            return RotationResult(snapshot.id, RotationOutcome.SKIPPED, views=decision.views)

        if decision.action == RotationAction.RECORD_VIEWS:
            if not self._record_views(snapshot, decision, now):
                log.info("rotation_check_superseded", step=snapshot.current_step)
                return RotationResult(
                    snapshot.id, RotationOutcome.SUPERSEDED, views=decision.views
                )
            log.debug("rotation_views_recorded", views=decision.views, step=decision.from_step)
            await self.budget_guard.maybe_top_up(adapter, snapshot)
            return RotationResult(
                snapshot.id,
                RotationOutcome.UNCHANGED,
                views=decision.views,
                from_step=decision.from_step,
                to_step=decision.to_step,
            )

        if decision.action == RotationAction.ADVANCE:
            try:
                target_creative = snapshot.creatives[decision.to_step]
                await self._swap(adapter, snapshot.listing_id, target_creative)
            except ProviderError as e:
                return self._fail(
                    snapshot,
                    e,
                    log,
                    "rotation_swap_failed",
                    from_step=decision.from_step,
                    to_step=decision.to_step,
                    views=decision.views,
                )

        if not self._apply_transition(snapshot, decision, now):
            log.info(
                "rotation_transition_superseded",
                from_step=decision.from_step,
                to_step=decision.to_step,
            )
            return RotationResult(
                snapshot.id,
                RotationOutcome.SUPERSEDED,
                views=decision.views,
                from_step=decision.from_step,
                to_step=decision.to_step,
            )

        outcome = RotationOutcome.COMPLETED if decision.completes else RotationOutcome.ROTATED
        log.info(
            "rotation_transition_applied",
            outcome=outcome.value,
            from_step=decision.from_step,
            to_step=decision.to_step,
            views=decision.views,
        )

        await self._after_transition(adapter, snapshot, decision)
        return RotationResult(
            snapshot.id,
            outcome,
            views=decision.views,
            from_step=decision.from_step,
            to_step=decision.to_step,
        )

    async def _swap(self, adapter: MarketplaceAdapter, listing_id: int, image_ref: str) -> None:
        await self.caller.call(
            lambda: adapter.set_primary_image(listing_id, image_ref),
            operation="set_primary_image",
        )

    def _fail(
        self,
        snapshot: SessionSnapshot,
        error: ProviderError,
        log: Any,
        event: str,
        **context: int,
    ) -> RotationResult:
        log.error(event, error=str(error), error_class=type(error).__name__, **context)
        with self.transaction() as db:
            store.record_check_error(
                db, snapshot.id, f"{type(error).__name__}: {error}", self._clock()
            )
        return RotationResult(
            snapshot.id,
            RotationOutcome.FAILED,
            from_step=context.get("from_step"),
            to_step=context.get("to_step"),
            views=context.get("views"),
            error=str(error),
        )

    @staticmethod
    def _monotonic_views(views: int) -> ColumnElement[int]:
        return case(
            (RotationSessionModel.cumulative_views < views, views),
            else_=RotationSessionModel.cumulative_views,
        )

    def _guarded_update(self, snapshot: SessionSnapshot) -> Update:
        return (
            update(RotationSessionModel)
            .where(
                RotationSessionModel.id == snapshot.id,
                RotationSessionModel.current_step == snapshot.current_step,
                RotationSessionModel.status == SessionStatus.RUNNING.value,
            )
            .execution_options(synchronize_session=False)
        )

    def _record_views(
        self, snapshot: SessionSnapshot, decision: RotationDecision, now: datetime
    ) -> bool:
        stmt = self._guarded_update(snapshot).values(
            cumulative_views=self._monotonic_views(decision.views),
            last_check_at=now,
            next_check_at=now + self.check_interval,
            last_error=None,
            last_error_at=None,
        )
        with self.transaction() as db:
            return db.execute(stmt).rowcount == 1

    def _apply_transition(
        self, snapshot: SessionSnapshot, decision: RotationDecision, now: datetime
    ) -> bool:
        """Persist a step change and/or completion in one conditional write."""
        values: dict[str, object] = {
            "cumulative_views": self._monotonic_views(decision.views),
            "last_check_at": now,
            "last_error": None,
            "last_error_at": None,
        }
        if decision.action == RotationAction.ADVANCE:
            values["current_step"] = decision.to_step
            values["views_at_step_start"] = decision.views
        if decision.completes:
            values["status"] = SessionStatus.COMPLETED.value
            values["next_check_at"] = None
        else:
            values["next_check_at"] = now + self.check_interval

        with self.transaction() as db:
            if db.execute(self._guarded_update(snapshot).values(**values)).rowcount != 1:
                return False

            store.close_open_step(db, snapshot.id, decision.views, now)
            if decision.action == RotationAction.ADVANCE:
                store.open_step(
                    db,
                    snapshot.id,
                    decision.to_step,
                    snapshot.creatives[decision.to_step],
                    decision.views,
                    now,
                )
                if decision.completes:
                    db.flush()
                    store.close_open_step(db, snapshot.id, decision.views, now)
        return True

    async def _after_transition(
        self,
        adapter: MarketplaceAdapter,
        snapshot: SessionSnapshot,
        decision: RotationDecision,
    ) -> None:
        """Notification and budget top-up; neither can undo the transition."""
        if settings.alert_on_rotation:
            notifier = self.notifier or get_alerting_service()
            await notifier.notify(
                rotation_alert(
                    snapshot.id,
                    snapshot.campaign_id,
                    decision.from_step,
                    decision.to_step,
                    len(snapshot.creatives),
                    decision.views,
                    decision.completes,
                )
            )
        if not decision.completes:
            await self.budget_guard.maybe_top_up(adapter, snapshot)
