"""hypeledger.ledger.attribution

The attribution engine: event in, ledger mutation and transitions out.

    ClickEvent -> AntiGamingValidator -> ScoreCalculator -> PointsLedger.apply_delta
               -> LeaderboardAggregator.refresh -> LedgerTransition subscribers

Per-event failures never escape ``record_click`` or ``submit_participation``; they
come back as a result with status ``rejected`` or ``duplicate``. A click redirect
must never fail because scoring did.

Concurrency: one in-process lock per (user, drop) serializes read-compute-apply
for that pair. Writers in other processes are caught by the ledger's version
check and the whole step is retried from a fresh read.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from hypeledger.core.config import Config
from hypeledger.core.database import Database
from hypeledger.core.events import ClickEvent, DropStatus, EntryState, EventType, ParticipationRecord, TransitionKind
from hypeledger.core.exceptions import (
    ConcurrencyConflict,
    DropClosed,
    DuplicateEvent,
    DuplicateParticipation,
    EntryNotFound,
    HypeLedgerError,
    LedgerError,
    ValidationError,
)
from hypeledger.core.locks import KeyedLocks
from hypeledger.core.metrics import (
    CAS_RETRIES,
    CLICKS_APPLIED,
    CLICKS_DUPLICATE,
    CLICKS_FLAGGED,
    CLICKS_REJECTED,
    PARTICIPATIONS_APPLIED,
    PARTICIPATIONS_REJECTED,
    REGISTRY,
    TRANSITIONS,
    MetricsRegistry,
)
from hypeledger.core.time import to_iso, utc_now
from hypeledger.core.types import (
    AttributionResult,
    LedgerTransition,
    ParticipationResult,
    PointsBreakdown,
    ResultStatus,
)
from hypeledger.core.webhooks import dispatch_event_webhooks
from hypeledger.ledger.leaderboard import LeaderboardAggregator
from hypeledger.ledger.points import OpenedEntry, PointsLedger
from hypeledger.ledger.registry import DropRegistry, UserRegistry
from hypeledger.scoring.anti_gaming import AntiGamingValidator
from hypeledger.scoring.calculator import ScoreCalculator

logger = logging.getLogger(__name__)

TransitionHandler = Callable[[LedgerTransition], None]


def _first_error(e: PydanticValidationError) -> str:
    errs = e.errors()
    if not errs:
        return str(e)
    first = errs[0]
    loc = ".".join(str(p) for p in first.get("loc", ()))
    return f"{loc}: {first.get('msg', 'invalid')}" if loc else str(first.get("msg", "invalid"))


def _transition_dedupe_key(t: LedgerTransition, *, version: int | None = None) -> str:
    parts = ["transition", str(t.kind), t.user_id, t.drop_id]
    if t.kind == TransitionKind.CLICK_THRESHOLD:
        parts.append(str(t.details.get("threshold")))
    if version is not None:
        parts.append(f"v{version}")
    return ":".join(parts)


class AttributionEngine:
    def __init__(
        self,
        config: Config,
        *,
        db: Database | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self.config = config
        self.db = db or Database(config.db_path, busy_timeout_seconds=config.ledger.busy_timeout_seconds)
        self.metrics = metrics or REGISTRY

        self.drops = DropRegistry(self.db)
        self.users = UserRegistry(self.db)
        self.calculator = ScoreCalculator(config.scoring)
        self.validator = AntiGamingValidator(self.db, config=config.anti_gaming)
        self.ledger = PointsLedger(
            self.db,
            week_start_weekday=config.ledger.week_start_weekday,
            cross_platform_min_platforms=config.scoring.cross_platform_min_platforms,
        )
        self.leaderboard = LeaderboardAggregator(
            self.ledger,
            self.users,
            max_staleness=config.ledger.leaderboard_max_staleness_ms / 1000.0,
            sync_overlap=config.ledger.busy_timeout_seconds + 1.0,
        )
        self.leaderboard.rebuild()

        self._locks = KeyedLocks()
        self._handlers_lock = threading.Lock()
        self._handlers: list[TransitionHandler] = []

    # -----------------
    # Subscribers
    # -----------------

    def subscribe(self, handler: TransitionHandler) -> Callable[[], None]:
        """Register a transition handler. Returns a callable that unsubscribes it."""

        with self._handlers_lock:
            self._handlers.append(handler)

        def _unsubscribe() -> None:
            with self._handlers_lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return _unsubscribe

    # -----------------
    # Clicks
    # -----------------

    def record_click(self, event: ClickEvent | Mapping[str, Any]) -> AttributionResult:
        try:
            click = event if isinstance(event, ClickEvent) else ClickEvent.model_validate(dict(event))
        except PydanticValidationError as e:
            self.metrics.counter(CLICKS_REJECTED, ValidationError.code).inc()
            return AttributionResult(
                status=ResultStatus.REJECTED, reason=_first_error(e), code=ValidationError.code
            )

        try:
            result, transitions = self._apply_click(click)
        except DuplicateEvent as e:
            self.metrics.counter(CLICKS_DUPLICATE).inc()
            logger.info("click_duplicate", extra={"idempotency_key": click.idempotency_key})
            entry = self.ledger.get_entry(click.user_id, click.drop_id)
            return AttributionResult(
                status=ResultStatus.DUPLICATE,
                user_id=click.user_id,
                drop_id=click.drop_id,
                click_count=entry.click_count if entry else 0,
                total_hype=entry.total_hype if entry else 0,
                reason=str(e),
                code=e.code,
            )
        except HypeLedgerError as e:
            self.metrics.counter(CLICKS_REJECTED, e.code).inc()
            logger.info(
                "click_rejected",
                extra={"user_id": click.user_id, "drop_id": click.drop_id, "code": e.code, "error": str(e)},
            )
            return AttributionResult(
                status=ResultStatus.REJECTED,
                user_id=click.user_id,
                drop_id=click.drop_id,
                reason=str(e),
                code=e.code,
            )
        except Exception as e:
            # Storage faults included: the redirect still goes through.
            self.metrics.counter(CLICKS_REJECTED, LedgerError.code).inc()
            logger.exception("click_failed", extra={"user_id": click.user_id, "drop_id": click.drop_id})
            return AttributionResult(
                status=ResultStatus.REJECTED,
                user_id=click.user_id,
                drop_id=click.drop_id,
                reason=str(e),
                code=LedgerError.code,
            )

        self.metrics.counter(CLICKS_APPLIED).inc(click.clicks)
        if result.flagged:
            self.metrics.counter(CLICKS_FLAGGED).inc()
        self._publish(transitions)
        return result

    def _apply_click(self, click: ClickEvent) -> tuple[AttributionResult, list[LedgerTransition]]:
        drop = self.drops.require(click.drop_id)

        with self._locks.hold((click.user_id, click.drop_id)):
            verdict = self.validator.check_click(click)
            if not verdict.allowed:
                raise DuplicateEvent(verdict.reason)
            if not drop.accepts_events_at(click.timestamp):
                raise DropClosed(f"drop {drop.id} is not accepting clicks ({drop.status})")

            max_retries = int(self.config.ledger.max_retries)
            for attempt in range(max_retries + 1):
                before = self.ledger.get_entry(click.user_id, click.drop_id)
                if before is None:
                    raise EntryNotFound(f"{click.user_id} has not participated in {click.drop_id}")
                if before.state == EntryState.CLOSED:
                    raise DropClosed(f"ledger entry closed for {click.user_id} in {click.drop_id}")

                after_clicks = before.click_count + click.clicks
                multiplier = self.validator.plausible_multiplier(
                    self.calculator.multiplier(after_clicks, before.followers),
                    clicks=after_clicks,
                    followers=before.followers,
                )
                bonus_clicks = self.validator.plausible_clicks(after_clicks, followers=before.followers)
                delta = self.calculator.click_delta(
                    clicks_before=before.click_count,
                    clicks_in_event=click.clicks,
                    bonus_awarded=before.bonus_points,
                    multiplier=self.calculator.multiplier(bonus_clicks, before.followers),
                    drop=drop,
                    bonus_clicks=bonus_clicks,
                )
                try:
                    after = self.ledger.apply_delta(
                        click.user_id,
                        click.drop_id,
                        delta,
                        expected_version=before.version,
                        click=click,
                        flag_review=verdict.flagged,
                        at=click.timestamp,
                    )
                    break
                except ConcurrencyConflict:
                    self.metrics.counter(CAS_RETRIES).inc()
                    if attempt >= max_retries:
                        raise
                    time.sleep(self.config.ledger.retry_backoff_ms / 1000.0 * (attempt + 1))

            self.leaderboard.refresh(click.user_id, click.drop_id)

        now = utc_now()
        transitions: list[LedgerTransition] = []
        for threshold in sorted(self.config.ledger.click_thresholds):
            if before.click_count < threshold <= after.click_count:
                transitions.append(
                    LedgerTransition(
                        kind=TransitionKind.CLICK_THRESHOLD,
                        user_id=click.user_id,
                        drop_id=click.drop_id,
                        ts=now,
                        details={"threshold": threshold, "click_count": after.click_count},
                    )
                )
        if after.under_review and not before.under_review:
            transitions.append(
                LedgerTransition(
                    kind=TransitionKind.UNDER_REVIEW,
                    user_id=click.user_id,
                    drop_id=click.drop_id,
                    ts=now,
                    details={"reason": verdict.reason, "version": after.version},
                )
            )

        logger.info(
            "click_applied",
            extra={
                "user_id": click.user_id,
                "drop_id": click.drop_id,
                "points": delta.points,
                "click_count": after.click_count,
                "multiplier": multiplier,
                "flagged": verdict.flagged,
            },
        )
        result = AttributionResult(
            status=ResultStatus.APPLIED,
            user_id=click.user_id,
            drop_id=click.drop_id,
            delta=delta,
            click_count=after.click_count,
            total_hype=after.total_hype,
            multiplier=multiplier,
            flagged=verdict.flagged,
            reason=verdict.reason or None,
            code=verdict.code or None,
        )
        return result, transitions

    # -----------------
    # Participation
    # -----------------

    def submit_participation(self, record: ParticipationRecord | Mapping[str, Any]) -> ParticipationResult:
        try:
            rec = record if isinstance(record, ParticipationRecord) else ParticipationRecord.model_validate(dict(record))
        except PydanticValidationError as e:
            self.metrics.counter(PARTICIPATIONS_REJECTED, ValidationError.code).inc()
            return ParticipationResult(
                status=ResultStatus.REJECTED, reason=_first_error(e), code=ValidationError.code
            )

        try:
            opened = self._open(rec)
        except HypeLedgerError as e:
            self.metrics.counter(PARTICIPATIONS_REJECTED, e.code).inc()
            logger.info(
                "participation_rejected",
                extra={"user_id": rec.user_id, "drop_id": rec.drop_id, "code": e.code, "error": str(e)},
            )
            return ParticipationResult(
                status=ResultStatus.REJECTED,
                user_id=rec.user_id,
                drop_id=rec.drop_id,
                reason=str(e),
                code=e.code,
            )

        self.metrics.counter(PARTICIPATIONS_APPLIED).inc()
        self._journal(
            EventType.PARTICIPATION_ACCEPTED_V1,
            {
                "user_id": rec.user_id,
                "drop_id": rec.drop_id,
                "copy_type": str(rec.copy_type),
                "breakdown": opened.breakdown.as_dict(),
                "participation_seq": opened.participation_seq,
            },
            dedupe_key=f"participation:{rec.user_id}:{rec.drop_id}",
        )

        transitions: list[LedgerTransition] = []
        if opened.drops_participated == 1:
            transitions.append(
                LedgerTransition(
                    kind=TransitionKind.FIRST_PARTICIPATION,
                    user_id=rec.user_id,
                    drop_id=rec.drop_id,
                    ts=utc_now(),
                    details={"first_in_drop": opened.participation_seq == 1},
                )
            )
        self._publish(transitions)

        return ParticipationResult(
            status=ResultStatus.APPLIED,
            user_id=rec.user_id,
            drop_id=rec.drop_id,
            breakdown=opened.breakdown,
            total_hype=opened.entry.total_hype,
        )

    def _open(self, rec: ParticipationRecord) -> OpenedEntry:
        drop = self.drops.require(rec.drop_id)
        if not drop.accepts_events_at(rec.submitted_at):
            raise DropClosed(f"drop {drop.id} is not accepting participation ({drop.status})")

        verdict = self.validator.check_participation(rec)
        if not verdict.allowed:
            raise DuplicateParticipation(verdict.reason)

        def score(seq: int) -> PointsBreakdown:
            return self.calculator.participation(rec, drop=drop, first_participant=seq == 1)

        with self._locks.hold((rec.user_id, rec.drop_id)):
            max_retries = int(self.config.ledger.max_retries)
            for attempt in range(max_retries + 1):
                try:
                    opened = self.ledger.open_entry(rec, score=score)
                    break
                except ConcurrencyConflict:
                    self.metrics.counter(CAS_RETRIES).inc()
                    if attempt >= max_retries:
                        raise
                    time.sleep(self.config.ledger.retry_backoff_ms / 1000.0 * (attempt + 1))
            self.leaderboard.refresh(rec.user_id, rec.drop_id)

        logger.info(
            "participation_applied",
            extra={
                "user_id": rec.user_id,
                "drop_id": rec.drop_id,
                "points": opened.breakdown.total,
                "seq": opened.participation_seq,
            },
        )
        return opened

    # -----------------
    # Admin hooks
    # -----------------

    def close_drop(self, drop_id: str, *, actor: str | None = None) -> int:
        """Complete a drop and close all of its entries. Returns entries closed."""

        drop = self.drops.require(drop_id)
        transitioned = False
        if drop.status == DropStatus.ACTIVE:
            self.drops.transition(drop_id, DropStatus.COMPLETED)
            transitioned = True
        elif drop.status == DropStatus.DRAFT:
            raise ValidationError(f"drop {drop_id} never opened", code="drop.illegal_transition")

        closed = self.ledger.close_drop(drop_id)
        entries = self.ledger.list_entries(drop_id=drop_id)
        for e in entries:
            self.leaderboard.refresh(e.user_id, drop_id)

        if transitioned or closed:
            self._journal(EventType.DROP_CLOSED_V1, {"drop_id": drop_id, "entries_closed": closed, "actor": actor})
            self.db.audit(
                action="drop_closed", actor=actor, component="ledger", details={"drop_id": drop_id, "entries": closed}
            )

        now = utc_now()
        if closed:
            self._publish(
                [
                    LedgerTransition(
                        kind=TransitionKind.DROP_CLOSED,
                        user_id=e.user_id,
                        drop_id=drop_id,
                        ts=now,
                        details={"total_hype": e.total_hype, "click_count": e.click_count},
                    )
                    for e in entries
                ]
            )
        logger.info("drop_closed", extra={"drop_id": drop_id, "entries": closed})
        return closed

    def clear_review(self, user_id: str, drop_id: str, *, actor: str | None = None) -> bool:
        """Clear the review flag on a pair. Returns False if it was not flagged."""

        uid = str(user_id).strip().lower()
        with self._locks.hold((uid, drop_id)):
            changed = self.ledger.clear_review(uid, drop_id)
            self.leaderboard.refresh(uid, drop_id)
        if not changed:
            return False

        entry = self.ledger.get_entry(uid, drop_id)
        version = entry.version if entry else None
        self._journal(
            EventType.REVIEW_CLEARED_V1,
            {"user_id": uid, "drop_id": drop_id, "actor": actor},
        )
        self.db.audit(action="review_cleared", actor=actor, component="ledger", details={"user_id": uid, "drop_id": drop_id})
        self._publish(
            [
                LedgerTransition(
                    kind=TransitionKind.REVIEW_CLEARED,
                    user_id=uid,
                    drop_id=drop_id,
                    ts=utc_now(),
                    details={"actor": actor, "version": version},
                )
            ]
        )
        return True

    def status(self) -> dict[str, Any]:
        board = self.leaderboard.get_state()
        self.metrics.observe_leaderboard(board)
        return {
            "drops": {str(s): len(self.drops.list_all(status=s)) for s in DropStatus},
            "leaderboard": board,
            "metrics": self.metrics.snapshot(),
        }

    # -----------------
    # Transitions
    # -----------------

    def _journal(self, event_type: EventType, payload: dict[str, Any], *, dedupe_key: str | None = None):
        try:
            return self.db.append_event(event_type=event_type, payload=payload, source="hypeledger", dedupe_key=dedupe_key)
        except HypeLedgerError:
            # The ledger write already committed; a journal miss is logged, not surfaced.
            logger.exception("journal_append_failed", extra={"event_type": str(event_type), "dedupe_key": dedupe_key})
            return None

    def _publish(self, transitions: list[LedgerTransition]) -> None:
        if not transitions:
            return

        with self._handlers_lock:
            handlers = list(self._handlers)

        for t in transitions:
            payload = {
                "kind": str(t.kind),
                "user_id": t.user_id,
                "drop_id": t.drop_id,
                "ts": to_iso(t.ts),
                "details": dict(t.details),
            }
            version = t.details.get("version") if t.kind in (TransitionKind.UNDER_REVIEW, TransitionKind.REVIEW_CLEARED) else None
            event = self._journal(
                EventType.LEDGER_TRANSITION_V1,
                payload,
                dedupe_key=_transition_dedupe_key(t, version=version),
            )
            self.metrics.counter(TRANSITIONS, str(t.kind)).inc()
            logger.info("ledger_transition", extra={"kind": str(t.kind), "user_id": t.user_id, "drop_id": t.drop_id})

            for h in handlers:
                try:
                    h(t)
                except Exception:
                    logger.exception("transition_handler_failed", extra={"kind": str(t.kind)})

            if event is not None and self.config.notifications.webhooks_enabled:
                dispatch_event_webhooks(self.db, event, timeout_s=self.config.notifications.timeout_seconds)
