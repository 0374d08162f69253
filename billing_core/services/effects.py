"""
Side effects produced by lifecycle transitions, and the dispatcher that runs them.

A transition returns a list of these records instead of calling the notifier or
the entitlement synchronizer inline. ``dispatch`` executes them one by one after
the subscription row is committed; a failing effect is logged, optionally
written to ``effect_failure_logs`` and never re-raised.
"""
import json
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import ClassVar, Dict, List, Optional, Union

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from billing_core.extensions import db
from billing_core.models import EffectFailureLog
from billing_core.services import entitlements, notifications
from billing_core.utils.helpers import utcnow


@dataclass(frozen=True)
class Notify:
    kind: ClassVar[str] = "notify"
    user_id: str
    title: str
    message: str
    severity: str = "info"
    link: Optional[str] = None


@dataclass(frozen=True)
class GrantEnrollment:
    kind: ClassVar[str] = "grant_enrollment"
    sale_id: str
    student_email: str
    student_name: str
    product_id: str
    # Sent only when the grant returns an enrollment id
    on_success: Optional[Notify] = None


@dataclass(frozen=True)
class RevokeEnrollment:
    kind: ClassVar[str] = "revoke_enrollment"
    sale_id: str
    reason: str


@dataclass(frozen=True)
class RevokeEnrollmentByLookup:
    kind: ClassVar[str] = "revoke_enrollment_by_lookup"
    email: str
    product_id: str
    reason: str


Effect = Union[Notify, GrantEnrollment, RevokeEnrollment, RevokeEnrollmentByLookup]

EFFECT_TYPES: Dict[str, type] = {
    cls.kind: cls for cls in (Notify, GrantEnrollment, RevokeEnrollment, RevokeEnrollmentByLookup)
}


@dataclass
class EffectOutcome:
    effect: Effect
    ok: bool
    error: Optional[str] = None
    result: Optional[str] = None


def effect_from_payload(kind: str, payload: dict) -> Effect:
    cls = EFFECT_TYPES.get(kind)
    if cls is None:
        raise ValueError(f"Unknown effect kind: {kind!r}")
    data = dict(payload)
    if cls is GrantEnrollment and isinstance(data.get("on_success"), dict):
        data["on_success"] = Notify(**data["on_success"])
    return cls(**data)


def _run_notify(effect: Notify):
    return notifications.notify(effect.user_id, effect.title, effect.message, effect.severity, effect.link)


def _run_grant(effect: GrantEnrollment):
    enrollment_id = entitlements.grant(effect.sale_id, effect.student_email, effect.student_name, effect.product_id)
    if enrollment_id and effect.on_success:
        _run_notify(effect.on_success)
    return enrollment_id


def _run_revoke(effect: RevokeEnrollment):
    entitlements.revoke(effect.sale_id, effect.reason)


def _run_revoke_by_lookup(effect: RevokeEnrollmentByLookup):
    entitlements.revoke_by_lookup(effect.email, effect.product_id, effect.reason)


_RUNNERS = {
    Notify: _run_notify,
    GrantEnrollment: _run_grant,
    RevokeEnrollment: _run_revoke,
    RevokeEnrollmentByLookup: _run_revoke_by_lookup,
}


def run_effect(effect: Effect):
    """Execute one effect and let its exception propagate."""
    return _RUNNERS[type(effect)](effect)


def _record_failure(effect: Effect, error: str, subscription_id: Optional[str]) -> None:
    if not current_app.config.get("RECORD_EFFECT_FAILURES", True):
        return
    try:
        db.session.add(EffectFailureLog(
            kind=effect.kind,
            payload=asdict(effect),
            subscription_id=subscription_id,
            error=error[:255],
        ))
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("effect_failure_log_write_failed")


def dispatch(effects: List[Effect], *, subscription_id: Optional[str] = None) -> List[EffectOutcome]:
    outcomes: List[EffectOutcome] = []
    for effect in effects:
        try:
            result = run_effect(effect)
        except Exception as exc:
            # The effect may have left a half-flushed session behind
            db.session.rollback()
            error = f"{type(exc).__name__}: {exc}"
            current_app.logger.exception(json.dumps({
                "event": "effect_failed",
                "kind": effect.kind,
                "subscription_id": subscription_id,
                "error": error,
            }))
            _record_failure(effect, error, subscription_id)
            outcomes.append(EffectOutcome(effect=effect, ok=False, error=error))
            continue
        outcomes.append(EffectOutcome(effect=effect, ok=True, result=str(result) if result is not None else None))
    return outcomes


def retry_failed(limit: int = 100, now: datetime | None = None) -> Dict[str, int]:
    """Re-run unresolved failures, oldest first. Used by `flask effects retry`."""
    now = now or utcnow()
    rows = (
        EffectFailureLog.query
        .filter(EffectFailureLog.resolved_at.is_(None))
        .order_by(EffectFailureLog.created_at.asc(), EffectFailureLog.id.asc())
        .limit(limit)
        .all()
    )
    stats = {"resolved": 0, "failed": 0}
    for row in rows:
        row_id = row.id
        try:
            run_effect(effect_from_payload(row.kind, row.payload or {}))
        except Exception as exc:
            db.session.rollback()
            row = db.session.get(EffectFailureLog, row_id)
            row.retries = (row.retries or 0) + 1
            row.error = f"{type(exc).__name__}: {exc}"[:255]
            db.session.commit()
            current_app.logger.warning(json.dumps({"event": "effect_retry_failed", "id": row_id, "kind": row.kind}))
            stats["failed"] += 1
            continue
        row = db.session.get(EffectFailureLog, row_id)
        row.retries = (row.retries or 0) + 1
        row.resolved_at = now
        db.session.commit()
        stats["resolved"] += 1
    return stats
