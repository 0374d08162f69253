import json
from flask import current_app, jsonify, request
from . import bp
from .actions import (
    ActivateSubscription,
    CancelSubscription,
    CheckAccess,
    CreateSubscription,
    ListSubscriptions,
    RenewSubscription,
    ReportPaymentFailure,
    parse_action,
)
from billing_core.errors import SubscriptionError
from billing_core.extensions import limiter
from billing_core.services import lifecycle
from billing_core.services.effects import dispatch


def _transition_response(result, status: int = 200):
    sub = result.subscription
    payload = {"success": True, "subscription": sub.to_dict()}
    # Effects run after the commit; their outcome never changes the response
    dispatch(result.effects, subscription_id=sub.id)
    return jsonify(payload), status


def _create(req: CreateSubscription):
    result = lifecycle.create(
        user_id=req.user_id,
        product_id=req.product_id,
        amount=req.amount,
        plan_interval=req.plan_interval,
        payment_method=req.payment_method,
        external_subscription_id=req.external_subscription_id,
        external_customer_id=req.external_customer_id,
        metadata=req.metadata,
    )
    return _transition_response(result, 201)


def _activate(req: ActivateSubscription):
    return _transition_response(lifecycle.activate(req.subscription_id, req.external_subscription_id))


def _renew(req: RenewSubscription):
    return _transition_response(lifecycle.renew(req.subscription_id, req.external_subscription_id))


def _cancel(req: CancelSubscription):
    return _transition_response(lifecycle.cancel(req.subscription_id, req.cancel_at_period_end))


def _payment_failed(req: ReportPaymentFailure):
    return _transition_response(lifecycle.report_payment_failure(req.subscription_id, req.external_subscription_id))


def _check_access(req: CheckAccess):
    return jsonify({"success": True, **lifecycle.check_access(req.user_id, req.product_id)}), 200


def _list(req: ListSubscriptions):
    return jsonify({"success": True, "subscriptions": lifecycle.list_subscriptions(req.user_id)}), 200


HANDLERS = {
    CreateSubscription: _create,
    ActivateSubscription: _activate,
    RenewSubscription: _renew,
    CancelSubscription: _cancel,
    ReportPaymentFailure: _payment_failed,
    CheckAccess: _check_access,
    ListSubscriptions: _list,
}


@bp.after_request
def _cors_headers(resp):
    cfg = current_app.config
    resp.headers["Access-Control-Allow-Origin"] = cfg.get("CORS_ALLOW_ORIGIN", "*")
    resp.headers["Access-Control-Allow-Headers"] = cfg.get(
        "CORS_ALLOW_HEADERS", "authorization, x-client-info, apikey, content-type"
    )
    resp.headers["Access-Control-Allow-Methods"] = "POST, OPTIONS"
    return resp


@bp.errorhandler(SubscriptionError)
def _subscription_error(e: SubscriptionError):
    level = current_app.logger.error if e.status_code >= 500 else current_app.logger.info
    level(json.dumps({"event": "manage_subscription_error", "status": e.status_code, "error": e.message}))
    return jsonify(e.to_dict()), e.status_code


# OPTIONS preflight is answered by Flask's automatic OPTIONS handling; the
# after_request hook above adds the CORS headers to it as well.
@bp.post("/manage-subscription")
@limiter.limit(lambda: current_app.config.get("MANAGE_SUBSCRIPTION_RATE_LIMIT", "600/minute"))
def manage_subscription():
    """
    Single RPC-style entry point: {"action": ..., ...params}.
    Called by the checkout flow, the payment webhook relay, the subscriber's
    cancel screen, the storefront access gate and the account dashboard.
    """
    body = request.get_json(silent=True)
    req = parse_action(body, current_app.config)
    current_app.logger.info(json.dumps({"event": "manage_subscription", "action": req.action}))

    try:
        return HANDLERS[type(req)](req)
    except SubscriptionError:
        raise
    except Exception:
        current_app.logger.exception(json.dumps({"event": "manage_subscription_unhandled", "action": req.action}))
        return jsonify({"error": "Internal server error"}), 500
