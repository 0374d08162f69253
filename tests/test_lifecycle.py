from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from conftest import NOW, add_product, add_profile
from billing_core.errors import Conflict, InternalError, InvalidState, NotFound, ValidationError
from billing_core.extensions import db
from billing_core.models import Enrollment, Notification, Subscription
from billing_core.services import enrollments, lifecycle
from billing_core.services.effects import (
    GrantEnrollment,
    Notify,
    RevokeEnrollment,
    RevokeEnrollmentByLookup,
    dispatch,
)
from billing_core.utils.helpers import as_utc

UTC = timezone.utc

def _create(**kw):
    params = dict(user_id="U1", product_id="P1", amount=Decimal("29.90"), now=NOW)
    params.update(kw)
    return lifecycle.create(**params).subscription

def _active(**kw):
    sub = _create(**kw)
    return lifecycle.activate(sub.id, now=NOW).subscription

def _kinds(effects):
    return [e.kind for e in effects]


# ---------------------------------------------------------------- create

def test_create_starts_pending_with_one_period(app_ctx):
    add_product()
    result = lifecycle.create(user_id="U1", product_id="P1", amount=Decimal("29.90"), now=NOW)
    sub = result.subscription

    assert sub.status == "pending"
    assert as_utc(sub.current_period_start) == NOW
    assert as_utc(sub.current_period_end) == datetime(2026, 2, 15, 12, 0, tzinfo=UTC)
    assert sub.cancel_at_period_end is False
    assert sub.started_at is None
    assert sub.currency == "BRL"
    assert sub.payment_method == "credit_card"
    assert sub.amount == Decimal("29.90")
    assert result.effects == []

def test_create_weekly_and_yearly_periods(app_ctx):
    add_product("P1")
    add_product("P2")
    weekly = _create(plan_interval="weekly")
    yearly = _create(product_id="P2", plan_interval="yearly")
    assert as_utc(weekly.current_period_end) == NOW + timedelta(days=7)
    assert as_utc(yearly.current_period_end) == datetime(2027, 1, 15, 12, 0, tzinfo=UTC)

def test_create_unknown_product(app_ctx):
    with pytest.raises(NotFound):
        _create(product_id="missing")

def test_create_rejects_one_time_product(app_ctx):
    add_product(payment_type="one_time")
    with pytest.raises(InvalidState) as exc:
        _create()
    assert exc.value.message == "Product is not a subscription type"
    assert Subscription.query.count() == 0

def test_duplicate_create_returns_existing_id(app_ctx):
    add_product()
    first = _create()
    with pytest.raises(Conflict) as exc:
        _create(amount=Decimal("10.00"))
    assert exc.value.details == {"subscription_id": first.id}
    assert exc.value.status_code == 409
    assert Subscription.query.count() == 1

@pytest.mark.parametrize("advance", ["activate", "report_payment_failure"])
def test_duplicate_guard_covers_active_and_past_due(app_ctx, advance):
    add_product()
    sub = _active()
    if advance == "report_payment_failure":
        lifecycle.report_payment_failure(sub.id, now=NOW)
    with pytest.raises(Conflict):
        _create()

def test_create_allowed_again_after_cancel(app_ctx):
    add_product()
    first = _create()
    lifecycle.cancel(first.id, cancel_at_period_end=False, now=NOW)
    second = _create()
    assert second.id != first.id
    assert Subscription.query.count() == 2

def test_create_sanitizes_external_ids(app_ctx):
    add_product()
    sub = _create(
        external_subscription_id="  <sub_123>  ",
        external_customer_id="c" * 150,
    )
    assert sub.external_subscription_id == "sub_123"
    assert sub.external_customer_id == "c" * 100

def test_create_drops_non_string_external_ids(app_ctx):
    add_product()
    sub = _create(external_subscription_id=12345)
    assert sub.external_subscription_id is None

def test_create_keeps_metadata(app_ctx):
    add_product()
    sub = _create(metadata={"sale_id": "SALE-1", "coupon": "WELCOME"})
    assert sub.meta == {"sale_id": "SALE-1", "coupon": "WELCOME"}
    assert sub.sale_id == "SALE-1"


def test_create_race_loser_gets_conflict(app_ctx, monkeypatch):
    add_product()
    existing_id = _create().id
    real_lookup = lifecycle.store.find_open_subscription
    calls = []

    def lookup_misses_once(user_id, product_id):
        calls.append((user_id, product_id))
        # First check runs before the concurrent insert is visible
        if len(calls) == 1:
            return None
        return real_lookup(user_id, product_id)

    monkeypatch.setattr(lifecycle.store, "find_open_subscription", lookup_misses_once)
    with pytest.raises(Conflict) as exc:
        _create(amount=Decimal("10.00"))

    assert len(calls) == 2
    assert exc.value.details == {"subscription_id": existing_id}
    assert Subscription.query.count() == 1

def test_create_integrity_error_without_open_row_is_internal(app_ctx, monkeypatch):
    add_product()
    _create()
    monkeypatch.setattr(lifecycle.store, "find_open_subscription", lambda user_id, product_id: None)
    with pytest.raises(InternalError) as exc:
        _create()
    assert exc.value.message == "Failed to create subscription"
    assert exc.value.status_code == 500
    assert Subscription.query.count() == 1

# ---------------------------------------------------------------- activate

def test_activate_recomputes_period_from_activation(app_ctx):
    add_product()
    sub = _create()
    later = NOW + timedelta(days=2, hours=3)

    sub = lifecycle.activate(sub.id, now=later).subscription

    assert sub.status == "active"
    assert as_utc(sub.started_at) == later
    assert as_utc(sub.current_period_start) == later
    assert as_utc(sub.current_period_end) == datetime(2026, 2, 17, 15, 0, tzinfo=UTC)

def test_activate_twice_refreshes_period(app_ctx):
    add_product()
    sub = _create()
    first = lifecycle.activate(sub.id, now=NOW).subscription
    assert first.status == "active"
    assert as_utc(first.started_at) == NOW

    later = NOW + timedelta(days=3)
    second = lifecycle.activate(sub.id, now=later).subscription

    assert second.id == sub.id
    assert second.status == "active"
    assert as_utc(second.started_at) == later
    assert as_utc(second.current_period_start) == later
    assert as_utc(second.current_period_end) == datetime(2026, 2, 18, 12, 0, tzinfo=UTC)
    assert second.cancel_at_period_end is False
    assert Subscription.query.count() == 1

def test_activate_by_external_id(app_ctx):
    add_product()
    sub = _create(external_subscription_id="sub_ext_1")
    result = lifecycle.activate(external_subscription_id="sub_ext_1", now=NOW)
    assert result.subscription.id == sub.id
    assert result.subscription.status == "active"

def test_internal_id_wins_over_external_id(app_ctx):
    add_product("P1")
    add_product("P2")
    a = _create(external_subscription_id="ext_a")
    b = _create(product_id="P2", external_subscription_id="ext_b")
    result = lifecycle.activate(b.id, "ext_a", now=NOW)
    assert result.subscription.id == b.id
    assert db.session.get(Subscription, a.id).status == "pending"

def test_activate_requires_a_key(app_ctx):
    with pytest.raises(ValidationError):
        lifecycle.activate()

def test_activate_unknown_subscription(app_ctx):
    with pytest.raises(NotFound):
        lifecycle.activate("nope")

def test_activation_effects_without_member_area(app_ctx):
    add_product(delivery_method="download")
    add_profile()
    sub = _create(metadata={"sale_id": "SALE-1"})
    result = lifecycle.activate(sub.id, now=NOW)
    assert result.effects == [Notify(
        user_id="U1",
        title="Subscription activated",
        message="Your subscription to Pro Course is now active.",
        severity="success",
    )]

def test_activation_grants_enrollment_and_notifies_seller(app_ctx):
    add_product()
    add_profile()
    sub = _create(metadata={"sale_id": "SALE-1"})
    result = lifecycle.activate(sub.id, now=NOW)

    assert _kinds(result.effects) == ["notify", "grant_enrollment"]
    grant = result.effects[1]
    assert grant == GrantEnrollment(
        sale_id="SALE-1",
        student_email="u1@example.com",
        student_name="Ana Souza",
        product_id="P1",
        on_success=Notify(
            user_id="S1",
            title="New subscriber enrolled",
            message="Ana Souza was enrolled in the member area.",
            severity="info",
            link="/dashboard/produtos/P1",
        ),
    )

    outcomes = dispatch(result.effects, subscription_id=sub.id)
    assert all(o.ok for o in outcomes)

    enrollment = Enrollment.query.filter_by(sale_id="SALE-1").one()
    assert enrollment.status == "active"
    assert enrollment.student.email == "u1@example.com"
    titles = {(n.user_id, n.title, n.type) for n in Notification.query.all()}
    assert titles == {
        ("U1", "Subscription activated", "success"),
        ("S1", "New subscriber enrolled", "info"),
    }

def test_activation_without_sale_id_skips_grant(app_ctx):
    add_product()
    add_profile()
    sub = _create()
    result = lifecycle.activate(sub.id, now=NOW)
    assert _kinds(result.effects) == ["notify"]

def test_activation_without_profile_email_skips_grant(app_ctx):
    add_product()
    add_profile(email=None)
    sub = _create(metadata={"sale_id": "SALE-1"})
    assert _kinds(lifecycle.activate(sub.id, now=NOW).effects) == ["notify"]

def test_activation_uses_default_name_without_full_name(app_ctx):
    add_product()
    add_profile(full_name=None)
    sub = _create(metadata={"sale_id": "SALE-1"})
    grant = lifecycle.activate(sub.id, now=NOW).effects[1]
    assert grant.student_name == "Subscriber"

def test_activation_survives_planning_failure(app_ctx, monkeypatch):
    add_product()
    sub = _create()

    def broken(product_id):
        raise SQLAlchemyError("products table unavailable")

    monkeypatch.setattr(lifecycle.store, "get_product", broken)
    result = lifecycle.activate(sub.id, now=NOW)
    assert result.subscription.status == "active"
    assert result.effects == []

def test_past_due_can_be_reactivated(app_ctx):
    add_product()
    sub = _active()
    lifecycle.report_payment_failure(sub.id, now=NOW)
    later = NOW + timedelta(days=3)
    sub = lifecycle.activate(sub.id, now=later).subscription
    assert sub.status == "active"
    assert as_utc(sub.current_period_start) == later

def test_canceled_cannot_be_activated(app_ctx):
    add_product()
    sub = _create()
    lifecycle.cancel(sub.id, cancel_at_period_end=False, now=NOW)
    with pytest.raises(InvalidState) as exc:
        lifecycle.activate(sub.id, now=NOW)
    assert exc.value.details["current_status"] == "canceled"
    assert db.session.get(Subscription, sub.id).status == "canceled"


# ---------------------------------------------------------------- renew

def test_renew_extends_from_current_end(app_ctx):
    add_product()
    sub = _active()
    old_end = as_utc(sub.current_period_end)

    result = lifecycle.renew(sub.id, now=NOW + timedelta(days=29))
    sub = result.subscription

    assert sub.status == "active"
    assert as_utc(sub.current_period_start) == old_end
    assert as_utc(sub.current_period_end) == datetime(2026, 3, 15, 12, 0, tzinfo=UTC)
    assert result.effects == []

def test_late_renew_starts_now(app_ctx):
    add_product()
    sub = _active()
    late = NOW + timedelta(days=40)
    sub = lifecycle.renew(sub.id, now=late).subscription
    assert as_utc(sub.current_period_start) == late
    assert as_utc(sub.current_period_end) == datetime(2026, 3, 24, 12, 0, tzinfo=UTC)

def test_renew_after_payment_failure_restores_active(app_ctx):
    add_product()
    sub = _active()
    assert lifecycle.report_payment_failure(sub.id, now=NOW).subscription.status == "past_due"
    sub = lifecycle.renew(sub.id, now=NOW + timedelta(days=1)).subscription
    assert sub.status == "active"

def test_renew_from_pending_activates(app_ctx):
    add_product()
    sub = _create()
    assert lifecycle.renew(sub.id, now=NOW).subscription.status == "active"

def test_renew_canceled_rejected(app_ctx):
    add_product()
    sub = _create()
    lifecycle.cancel(sub.id, cancel_at_period_end=False, now=NOW)
    with pytest.raises(InvalidState):
        lifecycle.renew(sub.id, now=NOW)


# ---------------------------------------------------------------- payment failure

def test_payment_failure_marks_past_due_and_warns_subscriber(app_ctx):
    add_product()
    sub = _active()
    result = lifecycle.report_payment_failure(sub.id, now=NOW)

    assert result.subscription.status == "past_due"
    assert len(result.effects) == 1
    notice = result.effects[0]
    assert notice.user_id == "U1"
    assert notice.title == "Payment problem"
    assert notice.severity == "error"
    assert "Pro Course" in notice.message

def test_payment_failure_is_idempotent(app_ctx):
    add_product()
    sub = _active()
    lifecycle.report_payment_failure(sub.id, now=NOW)
    again = lifecycle.report_payment_failure(sub.id, now=NOW + timedelta(hours=1))
    assert again.subscription.status == "past_due"

def test_payment_failure_on_pending_rejected(app_ctx):
    add_product()
    sub = _create()
    with pytest.raises(InvalidState):
        lifecycle.report_payment_failure(sub.id, now=NOW)
    assert db.session.get(Subscription, sub.id).status == "pending"

def test_payment_failure_by_external_id(app_ctx):
    add_product()
    sub = _create(external_subscription_id="sub_ext_9")
    lifecycle.activate(sub.id, now=NOW)
    result = lifecycle.report_payment_failure(external_subscription_id="sub_ext_9", now=NOW)
    assert result.subscription.id == sub.id
    assert result.subscription.status == "past_due"


# ---------------------------------------------------------------- cancel

def test_scheduled_cancel_keeps_status_and_access(app_ctx):
    add_product()
    sub = _active(metadata={"sale_id": "SALE-1"})
    later = NOW + timedelta(days=5)

    result = lifecycle.cancel(sub.id, now=later)
    sub = result.subscription

    assert sub.status == "active"
    assert sub.cancel_at_period_end is True
    assert as_utc(sub.canceled_at) == later
    assert _kinds(result.effects) == ["notify"]
    assert result.effects[0].severity == "warning"
    assert "end of the current period" in result.effects[0].message
    assert lifecycle.check_access("U1", "P1", now=later)["has_access"] is True

def test_immediate_cancel_revokes_enrollment_by_sale(app_ctx):
    add_product()
    add_profile()
    sub = _create(metadata={"sale_id": "SALE-1"})
    dispatch(lifecycle.activate(sub.id, now=NOW).effects, subscription_id=sub.id)
    assert Enrollment.query.filter_by(sale_id="SALE-1").one().status == "active"

    result = lifecycle.cancel(sub.id, cancel_at_period_end=False, now=NOW + timedelta(days=3))
    assert result.subscription.status == "canceled"
    assert result.effects[1] == RevokeEnrollment(sale_id="SALE-1", reason="Subscription canceled by the user")

    outcomes = dispatch(result.effects, subscription_id=sub.id)
    assert all(o.ok for o in outcomes)

    db.session.expire_all()
    enrollment = Enrollment.query.filter_by(sale_id="SALE-1").one()
    assert enrollment.status == "cancelled"
    assert enrollment.revoke_reason == "Subscription canceled by the user"
    assert enrollment.access_revoked_at is not None
    assert lifecycle.check_access("U1", "P1", now=NOW + timedelta(days=3))["has_access"] is False

def test_immediate_cancel_without_sale_id_revokes_by_lookup(app_ctx):
    add_product()
    add_profile()
    sub = _active()
    enrollments.create_enrollment_after_payment("SALE-OLD", "U1@Example.com", "Ana Souza", "P1")

    result = lifecycle.cancel(sub.id, cancel_at_period_end=False, now=NOW)
    assert result.effects[1] == RevokeEnrollmentByLookup(
        email="u1@example.com",
        product_id="P1",
        reason="Subscription canceled by the user",
    )
    dispatch(result.effects, subscription_id=sub.id)

    db.session.expire_all()
    assert Enrollment.query.filter_by(sale_id="SALE-OLD").one().status == "cancelled"

def test_immediate_cancel_without_profile_only_notifies(app_ctx):
    add_product()
    sub = _active()
    result = lifecycle.cancel(sub.id, cancel_at_period_end=False, now=NOW)
    assert _kinds(result.effects) == ["notify"]

def test_immediate_cancel_without_member_area_only_notifies(app_ctx):
    add_product(delivery_method=None)
    add_profile()
    sub = _active(metadata={"sale_id": "SALE-1"})
    result = lifecycle.cancel(sub.id, cancel_at_period_end=False, now=NOW)
    assert _kinds(result.effects) == ["notify"]
    assert result.effects[0].message == "Your subscription to Pro Course has been canceled."

def test_cancel_pending(app_ctx):
    add_product()
    sub = _create()
    assert lifecycle.cancel(sub.id, cancel_at_period_end=False, now=NOW).subscription.status == "canceled"

@pytest.mark.parametrize("at_period_end", [True, False])
def test_cancel_twice_rejected(app_ctx, at_period_end):
    add_product()
    sub = _create()
    lifecycle.cancel(sub.id, cancel_at_period_end=False, now=NOW)
    with pytest.raises(InvalidState):
        lifecycle.cancel(sub.id, cancel_at_period_end=at_period_end, now=NOW)

def test_cancel_requires_internal_id(app_ctx):
    with pytest.raises(ValidationError):
        lifecycle.cancel("")
    with pytest.raises(NotFound):
        lifecycle.cancel("nope")


# ---------------------------------------------------------------- concurrency

def test_write_detects_concurrent_status_change(app_ctx):
    add_product()
    sub = _active()
    # Another writer moves the row; our in-memory copy still says "active"
    db.session.execute(
        update(Subscription)
        .where(Subscription.id == sub.id)
        .values(status="past_due")
        .execution_options(synchronize_session=False)
    )
    assert sub.status == "active"

    with pytest.raises(InternalError) as exc:
        lifecycle._write(sub, "renew", {"status": "active", "updated_at": NOW})
    assert "modified concurrently" in exc.value.message


# ---------------------------------------------------------------- reads

def test_check_access_pending_has_no_access(app_ctx):
    add_product()
    _create()
    assert lifecycle.check_access("U1", "P1", now=NOW) == {"has_access": False, "subscription": None}

def test_check_access_active(app_ctx):
    add_product()
    sub = _active()
    result = lifecycle.check_access("U1", "P1", now=NOW + timedelta(days=1))
    assert result["has_access"] is True
    assert result["subscription"]["id"] == sub.id

def test_check_access_expired_period(app_ctx):
    add_product()
    sub = _active()
    result = lifecycle.check_access("U1", "P1", now=as_utc(sub.current_period_end) + timedelta(seconds=1))
    assert result["has_access"] is False
    assert result["subscription"]["status"] == "active"

def test_check_access_past_due_reports_subscription_without_access(app_ctx):
    add_product()
    sub = _active()
    lifecycle.report_payment_failure(sub.id, now=NOW)
    result = lifecycle.check_access("U1", "P1", now=NOW)
    assert result["has_access"] is False
    assert result["subscription"]["status"] == "past_due"

def test_check_access_requires_both_ids(app_ctx):
    with pytest.raises(ValidationError):
        lifecycle.check_access("U1", "")

def test_list_newest_first_with_product_fields(app_ctx):
    add_product("P1", name="Pro Course")
    add_product("P2", name="Yoga Club", price="9.90")
    older = _create(now=NOW)
    newer = _create(product_id="P2", now=NOW + timedelta(days=1))
    _create(user_id="U2")

    rows = lifecycle.list_subscriptions("U1")

    assert [r["id"] for r in rows] == [newer.id, older.id]
    assert rows[0]["product"] == {
        "id": "P2",
        "name": "Yoga Club",
        "image_url": "https://cdn.example.test/P2.png",
        "price": 9.9,
    }

def test_list_empty(app_ctx):
    assert lifecycle.list_subscriptions("nobody") == []
