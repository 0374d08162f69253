import json
import click
from flask.cli import with_appcontext
from billing_core.errors import SubscriptionError
from billing_core.models import EffectFailureLog
from billing_core.services import lifecycle, store
from billing_core.services.effects import dispatch, retry_failed


def _echo_subscription(sub):
    click.echo(json.dumps(sub.to_dict(), indent=2, sort_keys=True))


def _run_transition(fn, *args, **kwargs):
    try:
        result = fn(*args, **kwargs)
    except SubscriptionError as e:
        raise click.ClickException(e.message)
    outcomes = dispatch(result.effects, subscription_id=result.subscription.id)
    failed = [o for o in outcomes if not o.ok]
    _echo_subscription(result.subscription)
    if failed:
        click.echo(f"{len(failed)} side effect(s) failed; see `flask effects failed`", err=True)


@click.group()
def subscriptions():
    """Subscription lifecycle operations (support/ops)."""

@subscriptions.command("show")
@click.argument("subscription_id")
@with_appcontext
def subscriptions_show(subscription_id):
    sub = store.find_subscription(subscription_id)
    if not sub:
        raise click.ClickException("Subscription not found")
    _echo_subscription(sub)

@subscriptions.command("activate")
@click.argument("subscription_id")
@with_appcontext
def subscriptions_activate(subscription_id):
    _run_transition(lifecycle.activate, subscription_id)

@subscriptions.command("renew")
@click.argument("subscription_id")
@with_appcontext
def subscriptions_renew(subscription_id):
    _run_transition(lifecycle.renew, subscription_id)

@subscriptions.command("payment-failed")
@click.argument("subscription_id")
@with_appcontext
def subscriptions_payment_failed(subscription_id):
    _run_transition(lifecycle.report_payment_failure, subscription_id)

@subscriptions.command("cancel")
@click.argument("subscription_id")
@click.option("--immediate", is_flag=True, help="Cancel now and revoke member-area access")
@with_appcontext
def subscriptions_cancel(subscription_id, immediate):
    _run_transition(lifecycle.cancel, subscription_id, not immediate)


@click.group()
def effects():
    """Side effects that failed during dispatch."""

@effects.command("failed")
@click.option("--limit", type=int, default=50, show_default=True)
@with_appcontext
def effects_failed(limit):
    rows = (
        EffectFailureLog.query
        .filter(EffectFailureLog.resolved_at.is_(None))
        .order_by(EffectFailureLog.created_at.asc(), EffectFailureLog.id.asc())
        .limit(limit)
        .all()
    )
    if not rows:
        click.echo("No unresolved effect failures")
        return
    for row in rows:
        click.echo(f"{row.id}\t{row.kind}\tsubscription={row.subscription_id}\tretries={row.retries}\t{row.error}")

@effects.command("retry")
@click.option("--limit", type=int, default=100, show_default=True)
@with_appcontext
def effects_retry(limit):
    stats = retry_failed(limit=limit)
    click.echo(f"Retried effects: resolved={stats['resolved']} failed={stats['failed']}")


def register_cli(app):
    app.cli.add_command(subscriptions)
    app.cli.add_command(effects)
