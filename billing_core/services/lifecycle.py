"""
Subscription lifecycle: create, activate, renew, cancel, payment failure,
access check and listing.

Every mutating operation
  1. loads the row (by internal id, or by the payment provider's id),
  2. checks the status change against the transition table,
  3. writes the new values with ``UPDATE ... WHERE id = :id AND status = :seen``
     so a concurrent writer cannot be silently overwritten,
  4. returns the committed row plus the side effects the caller should run.

Effects are planned from read-only lookups (product, profile). A failure while
planning is logged and yields fewer effects; it never fails the transition.
"""
import json
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from billing_core.billing.periods import calculate_period_end
from billing_core.billing.state_machine import SubscriptionStatus, ensure_transition
from billing_core.errors import Conflict, InternalError, InvalidState, NotFound, ValidationError
from billing_core.extensions import db
from billing_core.models import Subscription
from billing_core.services import store
from billing_core.services.effects import (
    Effect,
    GrantEnrollment,
    Notify,
    RevokeEnrollment,
    RevokeEnrollmentByLookup,
)
from billing_core.utils.helpers import as_utc, utcnow
from billing_core.utils.validators import is_valid_email, sanitize_external_id

REVOKE_REASON_USER_CANCEL = "Subscription canceled by the user"
DEFAULT_SUBSCRIBER_NAME = "Subscriber"


@dataclass
class TransitionResult:
    subscription: Subscription
    effects: List[Effect] = field(default_factory=list)


def _log(event: str, **fields):
    current_app.logger.info(json.dumps({"event": event, **fields}))


def _product_name(product) -> str:
    return (product.name if product and product.name else None) or "your product"


def _require(subscription_id: str | None, external_subscription_id: str | None) -> Subscription:
    if not subscription_id and not external_subscription_id:
        raise ValidationError("Missing subscription_id or external_subscription_id")
    sub = store.find_subscription(subscription_id, external_subscription_id)
    if not sub:
        raise NotFound("Subscription not found")
    return sub


def _write(sub: Subscription, verb: str, values: Dict[str, Any]) -> Subscription:
    """Conditional write keyed on (id, status as read). Commits and refreshes ``sub``."""
    seen_status = sub.status
    try:
        result = db.session.execute(
            update(Subscription)
            .where(Subscription.id == sub.id, Subscription.status == seen_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.session.rollback()
            raise InternalError(
                f"Failed to {verb} subscription: it was modified concurrently, retry the request",
                {"subscription_id": sub.id},
            )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception(json.dumps({"event": f"subscription_{verb}_failed", "subscription_id": sub.id}))
        raise InternalError(f"Failed to {verb} subscription")
    db.session.refresh(sub)
    return sub


def _plan(planner: Callable[[], List[Effect]], sub_id: str) -> List[Effect]:
    try:
        return planner()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception(json.dumps({"event": "effect_planning_failed", "subscription_id": sub_id}))
        return []


# ---------------------------------------------------------------- create

def create(
    *,
    user_id: str,
    product_id: str,
    amount: Decimal,
    plan_interval: str = "monthly",
    payment_method: str = "credit_card",
    external_subscription_id: Optional[str] = None,
    external_customer_id: Optional[str] = None,
    metadata: Optional[dict] = None,
    now: datetime | None = None,
) -> TransitionResult:
    now = now or utcnow()

    product = store.get_product(product_id)
    if not product:
        raise NotFound("Product not found")
    if not product.is_subscription:
        raise InvalidState("Product is not a subscription type")

    existing = store.find_open_subscription(user_id, product_id)
    if existing:
        raise Conflict(
            "User already has an active subscription for this product",
            {"subscription_id": existing.id},
        )

    max_len = current_app.config.get("EXTERNAL_ID_MAX_LENGTH", 100)
    sub = Subscription(
        user_id=user_id,
        product_id=product_id,
        status=SubscriptionStatus.PENDING.value,
        plan_interval=plan_interval,
        amount=amount,
        currency=current_app.config.get("DEFAULT_CURRENCY", "BRL"),
        payment_method=payment_method,
        current_period_start=now,
        current_period_end=calculate_period_end(now, plan_interval),
        cancel_at_period_end=False,
        external_subscription_id=sanitize_external_id(external_subscription_id, max_len),
        external_customer_id=sanitize_external_id(external_customer_id, max_len),
        meta=metadata or None,
        created_at=now,
        updated_at=now,
    )
    try:
        db.session.add(sub)
        db.session.commit()
    except IntegrityError:
        # Lost the race against a concurrent create for the same pair
        db.session.rollback()
        existing = store.find_open_subscription(user_id, product_id)
        if existing:
            raise Conflict(
                "User already has an active subscription for this product",
                {"subscription_id": existing.id},
            )
        current_app.logger.exception(json.dumps({"event": "subscription_create_failed", "user_id": user_id}))
        raise InternalError("Failed to create subscription")
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception(json.dumps({"event": "subscription_create_failed", "user_id": user_id}))
        raise InternalError("Failed to create subscription")

    _log("subscription_created", subscription_id=sub.id, user_id=user_id, product_id=product_id,
         plan_interval=plan_interval)
    return TransitionResult(subscription=sub)


# ---------------------------------------------------------------- activate

def _activation_effects(sub: Subscription) -> List[Effect]:
    product = store.get_product(sub.product_id)
    name = _product_name(product)
    effects: List[Effect] = [Notify(
        user_id=sub.user_id,
        title="Subscription activated",
        message=f"Your subscription to {name} is now active.",
        severity="success",
    )]
    if not (product and product.has_member_area):
        return effects

    profile = store.get_profile(sub.user_id)
    if not (profile and is_valid_email(profile.email)):
        _log("entitlement_grant_skipped", subscription_id=sub.id, reason="no_profile_email")
        return effects

    sale_id = sub.sale_id
    if not sale_id:
        # No sale to correlate the enrollment with; left to the checkout flow
        _log("entitlement_grant_skipped", subscription_id=sub.id, reason="no_sale_id")
        return effects

    student_name = profile.full_name or DEFAULT_SUBSCRIBER_NAME
    seller_notice = None
    if product.user_id:
        seller_notice = Notify(
            user_id=product.user_id,
            title="New subscriber enrolled",
            message=f"{student_name} was enrolled in the member area.",
            severity="info",
            link=f"/dashboard/produtos/{sub.product_id}",
        )
    effects.append(GrantEnrollment(
        sale_id=sale_id,
        student_email=profile.email,
        student_name=student_name,
        product_id=sub.product_id,
        on_success=seller_notice,
    ))
    return effects


def activate(
    subscription_id: str | None = None,
    external_subscription_id: str | None = None,
    *,
    now: datetime | None = None,
) -> TransitionResult:
    now = now or utcnow()
    sub = _require(subscription_id, external_subscription_id)
    ensure_transition(sub.status, SubscriptionStatus.ACTIVE, subscription_id=sub.id)

    _write(sub, "activate", {
        "status": SubscriptionStatus.ACTIVE.value,
        "started_at": now,
        "current_period_start": now,
        "current_period_end": calculate_period_end(now, sub.plan_interval),
        "updated_at": now,
    })
    _log("subscription_activated", subscription_id=sub.id)
    return TransitionResult(subscription=sub, effects=_plan(lambda: _activation_effects(sub), sub.id))


# ---------------------------------------------------------------- renew

def renew(
    subscription_id: str | None = None,
    external_subscription_id: str | None = None,
    *,
    now: datetime | None = None,
) -> TransitionResult:
    now = now or utcnow()
    sub = _require(subscription_id, external_subscription_id)
    ensure_transition(sub.status, SubscriptionStatus.ACTIVE, subscription_id=sub.id)

    # Early renewals extend from the current end instead of compressing the period
    current_end = as_utc(sub.current_period_end)
    new_start = max(now, current_end) if current_end else now
    _write(sub, "renew", {
        "status": SubscriptionStatus.ACTIVE.value,
        "current_period_start": new_start,
        "current_period_end": calculate_period_end(new_start, sub.plan_interval),
        "updated_at": now,
    })
    _log("subscription_renewed", subscription_id=sub.id)
    return TransitionResult(subscription=sub)


# ---------------------------------------------------------------- cancel

def _cancel_effects(sub: Subscription, at_period_end: bool) -> List[Effect]:
    product = store.get_product(sub.product_id)
    name = _product_name(product)
    if at_period_end:
        message = f"Your subscription to {name} will be canceled at the end of the current period."
    else:
        message = f"Your subscription to {name} has been canceled."
    effects: List[Effect] = [Notify(
        user_id=sub.user_id,
        title="Subscription canceled",
        message=message,
        severity="warning",
    )]
    # Scheduled cancellations keep access until the expiry sweep runs
    if at_period_end or not (product and product.has_member_area):
        return effects

    sale_id = sub.sale_id
    if sale_id:
        effects.append(RevokeEnrollment(sale_id=sale_id, reason=REVOKE_REASON_USER_CANCEL))
        return effects

    profile = store.get_profile(sub.user_id)
    if profile and is_valid_email(profile.email):
        effects.append(RevokeEnrollmentByLookup(
            email=profile.email,
            product_id=sub.product_id,
            reason=REVOKE_REASON_USER_CANCEL,
        ))
    else:
        _log("entitlement_revoke_skipped", subscription_id=sub.id, reason="no_sale_id_or_profile_email")
    return effects


def cancel(subscription_id: str, cancel_at_period_end: bool = True, *, now: datetime | None = None) -> TransitionResult:
    now = now or utcnow()
    if not subscription_id:
        raise ValidationError("Missing subscription_id")
    sub = store.find_subscription(subscription_id)
    if not sub:
        raise NotFound("Subscription not found")

    if cancel_at_period_end:
        ensure_transition(sub.status, sub.status, subscription_id=sub.id)
        values = {"cancel_at_period_end": True, "canceled_at": now, "updated_at": now}
    else:
        ensure_transition(sub.status, SubscriptionStatus.CANCELED, subscription_id=sub.id)
        values = {"status": SubscriptionStatus.CANCELED.value, "canceled_at": now, "updated_at": now}

    _write(sub, "cancel", values)
    _log("subscription_canceled", subscription_id=sub.id, at_period_end=bool(cancel_at_period_end))
    return TransitionResult(
        subscription=sub,
        effects=_plan(lambda: _cancel_effects(sub, bool(cancel_at_period_end)), sub.id),
    )


# ---------------------------------------------------------------- payment failure

def _payment_failure_effects(sub: Subscription) -> List[Effect]:
    name = _product_name(store.get_product(sub.product_id))
    return [Notify(
        user_id=sub.user_id,
        title="Payment problem",
        message=(
            f"We could not process the payment for your subscription to {name}. "
            "Please update your payment details."
        ),
        severity="error",
    )]


def report_payment_failure(
    subscription_id: str | None = None,
    external_subscription_id: str | None = None,
    *,
    now: datetime | None = None,
) -> TransitionResult:
    now = now or utcnow()
    sub = _require(subscription_id, external_subscription_id)
    ensure_transition(sub.status, SubscriptionStatus.PAST_DUE, subscription_id=sub.id)

    _write(sub, "update", {"status": SubscriptionStatus.PAST_DUE.value, "updated_at": now})
    _log("subscription_payment_failed", subscription_id=sub.id)
    return TransitionResult(subscription=sub, effects=_plan(lambda: _payment_failure_effects(sub), sub.id))


# ---------------------------------------------------------------- reads

def check_access(user_id: str, product_id: str, *, now: datetime | None = None) -> Dict[str, Any]:
    if not user_id or not product_id:
        raise ValidationError("Missing user_id or product_id")
    has_access = store.has_active_access(user_id, product_id, now=now)
    sub = store.get_active_subscription(user_id, product_id)
    return {
        "has_access": bool(has_access),
        "subscription": sub.to_dict() if sub else None,
    }


def list_subscriptions(user_id: str) -> List[Dict[str, Any]]:
    if not user_id:
        raise ValidationError("Missing user_id")
    rows = []
    for sub in store.list_for_user(user_id):
        item = sub.to_dict()
        item["product"] = sub.product.display_dict() if sub.product else None
        rows.append(item)
    return rows
