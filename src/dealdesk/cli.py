from __future__ import annotations

import json
import logging
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

import typer

from dealdesk import __version__
from dealdesk.config import (
    DEFAULT_TIMEZONE,
    WorkspaceError,
    ensure_workspaces_dir,
    load_workspace,
    set_current_workspace,
    workspace_config_path,
    write_workspace_config,
)
from dealdesk.domain import rules
from dealdesk.domain.moment import ScheduleMoment, moment_from_input, today
from dealdesk.domain.rules import NotFoundError, ValidationError
from dealdesk.domain.stages import (
    ActivityStatus,
    DealStatus,
    InteractionStatus,
    LeaderboardMetric,
    LostReason,
    SellerRole,
    TaskSource,
)
from dealdesk.domain.transitions import allowed_targets
from dealdesk.services import activity, advisor, deals, metrics, notifications, tasks
from dealdesk.services.events import EventLogger
from dealdesk.services.utils import format_amount, format_percent, utc_now
from dealdesk.store import repository
from dealdesk.store.migrations import SchemaError
from dealdesk.store.sqlite import SqliteStore

app = typer.Typer(help="Dealdesk CLI")
workspace_app = typer.Typer(help="Workspace management")
schema_app = typer.Typer(help="Schema operations")
seller_app = typer.Typer(help="Sellers and goals")
client_app = typer.Typer(help="Clients")
deal_app = typer.Typer(help="Deal operations")
reminder_app = typer.Typer(help="Standalone reminders")
metrics_app = typer.Typer(help="Pipeline metrics")
advise_app = typer.Typer(help="AI advice with offline fallbacks")

app.add_typer(workspace_app, name="workspace")
app.add_typer(schema_app, name="schema")
app.add_typer(seller_app, name="seller")
app.add_typer(client_app, name="client")
app.add_typer(deal_app, name="deal")
app.add_typer(reminder_app, name="reminder")
app.add_typer(metrics_app, name="metrics")
app.add_typer(advise_app, name="advise")

SCHEMA_PATH = Path("resources/schema/canonical.yaml")

DOMAIN_ERRORS = (ValidationError, NotFoundError)


@app.callback()
def version_callback(
    version: bool = typer.Option(False, "--version", help="Show version and exit."),
    verbose: bool = typer.Option(False, "--verbose", help="Show advisor diagnostics."),
):
    if version:
        typer.echo(__version__)
        raise typer.Exit()
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@app.command("init")
def init() -> None:
    """Initialize the workspaces directory."""
    ensure_workspaces_dir()
    typer.echo("Initialized dealdesk directories.")


@workspace_app.command("add")
def workspace_add(
    name: str = typer.Argument(...),
    timezone: str = typer.Option(
        DEFAULT_TIMEZONE, "--timezone", help="IANA timezone used for calendar days."
    ),
    use: bool = typer.Option(True, "--use/--no-use", help="Set as current workspace."),
    force: bool = typer.Option(
        False, "--force", help="Overwrite existing workspace config if it exists."
    ),
) -> None:
    config_path = workspace_config_path(name)
    if config_path.exists() and not force:
        raise typer.BadParameter(
            f"Workspace already exists: {config_path}. Use --force to overwrite."
        )
    try:
        config_path = write_workspace_config(name, timezone)
    except WorkspaceError as exc:
        _exit_with_error(str(exc))
    if use:
        set_current_workspace(name)
    typer.echo(f"Workspace created: {config_path}")


@workspace_app.command("use")
def workspace_use(name: str = typer.Argument(...)) -> None:
    if not workspace_config_path(name).exists():
        raise typer.BadParameter(f"Workspace config not found: {workspace_config_path(name)}")
    set_current_workspace(name)
    typer.echo(f"Active workspace: {name}")


@schema_app.command("apply")
def schema_apply() -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        schema = store.apply_schema(SCHEMA_PATH)
    except SchemaError as exc:
        _exit_with_error(str(exc))
    typer.echo(f"Applied schema v{schema.version} to local SQLite.")


@seller_app.command("add")
def seller_add(
    name: str = typer.Argument(...),
    role: str = typer.Option(SellerRole.SALESPERSON.value, "--role"),
    goal: str | None = typer.Option(None, "--goal", help="Monthly sales goal."),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        seller_id = deals.add_seller(store, name, role, rules.parse_amount(goal, "goal"))
    except DOMAIN_ERRORS as exc:
        _exit_with_error(str(exc))
    typer.echo(f"Created seller: {seller_id}")


@seller_app.command("list")
def seller_list() -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    snapshot = repository.load_snapshot(store)
    now = utc_now()
    for seller in snapshot.sellers:
        progress = metrics.goal_progress(
            snapshot.deals, seller.seller_id, seller.monthly_goal, now=now, tz=ws.tz
        )
        typer.echo(
            f"{seller.seller_id} | {seller.name} | {seller.role.value} | "
            f"{format_amount(seller.monthly_goal)} | {format_percent(progress, scale=1)}"
        )


@client_app.command("add")
def client_add(
    name: str = typer.Argument(...),
    cnpj: str | None = typer.Option(None, "--cnpj"),
    address: str | None = typer.Option(None, "--address"),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        client_id = deals.add_client(store, name, cnpj, address)
    except DOMAIN_ERRORS as exc:
        _exit_with_error(str(exc))
    typer.echo(f"Client: {client_id}")


@client_app.command("list")
def client_list(
    status: str | None = typer.Option(None, "--status", help="active, inactive or idle"),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    if status:
        try:
            rules.validate_enum(status, [s.value for s in ActivityStatus], "status")
        except ValidationError as exc:
            _exit_with_error(str(exc))
    snapshot = repository.load_snapshot(store)
    profiles = activity.classify_clients(
        snapshot.clients, snapshot.deals, now=utc_now(), tz=ws.tz
    )
    for profile in profiles:
        if status and profile.activity_status.value != status:
            continue
        days = profile.days_since_activity
        typer.echo(
            f"{profile.client.client_id} | {profile.client.name} | "
            f"{profile.activity_status.value} | "
            f"{'-' if days is None else f'{days}d'} | {format_amount(profile.won_value)}"
        )
    summary = activity.summarize_clients(profiles)
    typer.echo(
        f"Active: {summary.active} | Inactive: {summary.inactive} | Idle: {summary.idle} | "
        f"Revenue: {format_amount(summary.total_revenue)}"
    )


@client_app.command("update")
def client_update(
    client_id: str = typer.Argument(...),
    name: str | None = typer.Option(None, "--name"),
    cnpj: str | None = typer.Option(None, "--cnpj"),
    address: str | None = typer.Option(None, "--address"),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        client = deals.update_client(
            store, client_id, name=name, cnpj=cnpj, address=address, logger=_event_logger(ws)
        )
    except DOMAIN_ERRORS as exc:
        _exit_with_error(str(exc))
    typer.echo(f"Updated client: {client.client_id} | {client.name}")


@client_app.command("delete")
def client_delete(client_id: str = typer.Argument(...)) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        deals.delete_client(store, client_id, logger=_event_logger(ws))
    except DOMAIN_ERRORS as exc:
        _exit_with_error(str(exc))
    typer.echo(f"Deleted client: {client_id}")


@deal_app.command("add")
def deal_add(
    client: str = typer.Option(..., "--client", help="Client id or name."),
    title: str = typer.Option(..., "--title"),
    value: str = typer.Option(..., "--value"),
    seller: str | None = typer.Option(None, "--seller", help="Seller id."),
    contact: str | None = typer.Option(None, "--contact"),
    sent: str | None = typer.Option(None, "--sent", help="Date sent (YYYY-MM-DD)."),
    due: str | None = typer.Option(None, "--due", help="Next follow-up date."),
    due_at: str | None = typer.Option(None, "--due-at", help="Next follow-up date and time."),
    notes: str | None = typer.Option(None, "--notes"),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        deal_id = deals.create_deal(
            store,
            client=client,
            title=title,
            value=rules.parse_amount(value, "value"),
            seller_id=seller,
            contact_id=contact,
            date_sent=rules.parse_date(sent, "sent"),
            next_follow_up=_moment_option(due, due_at),
            observations=notes,
            logger=_event_logger(ws),
            tz=ws.tz,
        )
    except DOMAIN_ERRORS as exc:
        _exit_with_error(str(exc))
    typer.echo(f"Created deal: {deal_id}")


@deal_app.command("list")
def deal_list(
    status: str | None = typer.Option(None, "--status"),
    client: str | None = typer.Option(None, "--client", help="Client id."),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    if status:
        try:
            rules.validate_enum(status, [s.value for s in DealStatus], "status")
        except ValidationError as exc:
            _exit_with_error(str(exc))
    rows = repository.list_deals(store, DealStatus(status) if status else None, client)
    for deal in rows:
        next_follow_up = deal.next_follow_up.display(ws.tz) if deal.next_follow_up else "-"
        typer.echo(
            f"{deal.deal_id} | {deal.title} | {deal.status.value} | "
            f"{format_amount(deal.value)} | {next_follow_up}"
        )


@deal_app.command("show")
def deal_show(
    deal_id: str = typer.Argument(...),
    json_output: bool = typer.Option(False, "--json", help="Emit JSON output."),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        deal = repository.get_deal(store, deal_id)
    except NotFoundError as exc:
        _exit_with_error(str(exc))
    payload = {
        "deal_id": deal.deal_id,
        "client_id": deal.client_id,
        "seller_id": deal.seller_id,
        "title": deal.title,
        "value": str(deal.value),
        "status": deal.status.value,
        "date_sent": deal.date_sent.isoformat(),
        "next_follow_up": deal.next_follow_up.isoformat() if deal.next_follow_up else None,
        "closing_value": str(deal.closing_value) if deal.closing_value is not None else None,
        "lost_reason": deal.lost_reason,
        "allowed_statuses": [s.value for s in allowed_targets(deal.status)],
        "follow_ups": [
            {
                "moment": f.moment.isoformat(),
                "interaction_status": f.interaction_status.value,
                "notes": f.notes,
                "audio_ref": f.audio_ref,
            }
            for f in deal.follow_ups
        ],
    }
    if json_output:
        typer.echo(json.dumps(payload, indent=2))
        return
    typer.echo(f"{deal.title} ({deal.status.value})")
    typer.echo(f"Value: {format_amount(deal.value)} | Sent: {deal.date_sent.display(ws.tz)}")
    if deal.next_follow_up:
        typer.echo(f"Next follow-up: {deal.next_follow_up.display(ws.tz)}")
    if deal.closing_value is not None:
        typer.echo(f"Closing value: {format_amount(deal.closing_value)}")
    if deal.lost_reason:
        typer.echo(f"Lost reason: {deal.lost_reason}")
    typer.echo("Allowed: " + (", ".join(payload["allowed_statuses"]) or "-"))
    for follow_up in deal.follow_ups:
        typer.echo(
            f"  {follow_up.moment.display(ws.tz)} | {follow_up.interaction_status.value} | "
            f"{follow_up.notes}"
        )


@deal_app.command("status")
def deal_status(
    deal_id: str = typer.Argument(...),
    target: str = typer.Argument(..., help="following_up, on_hold, won or lost"),
    closing_value: str | None = typer.Option(None, "--closing-value"),
    reason: str | None = typer.Option(
        None, "--reason", help=f"Lost reason: {', '.join(r.value for r in LostReason)}"
    ),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        deal = deals.change_deal_status(
            store,
            deal_id,
            target,
            closing_value=rules.parse_amount(closing_value, "closing_value"),
            lost_reason=reason,
            logger=_event_logger(ws),
        )
    except DOMAIN_ERRORS as exc:
        _exit_with_error(str(exc))
    typer.echo(f"Deal {deal.deal_id} is now {deal.status.value}")


@deal_app.command("follow-up")
def deal_follow_up(
    deal_id: str = typer.Argument(...),
    notes: str | None = typer.Option(None, "--notes"),
    audio: str | None = typer.Option(None, "--audio", help="Reference to a recorded note."),
    interaction: str = typer.Option(
        InteractionStatus.WAITING_RESPONSE.value, "--interaction"
    ),
    due: str | None = typer.Option(None, "--due", help="Next follow-up date."),
    due_at: str | None = typer.Option(None, "--due-at", help="Next follow-up date and time."),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        deal = deals.log_follow_up(
            store,
            deal_id,
            notes=notes,
            audio_ref=audio,
            next_moment=_moment_option(due, due_at),
            interaction_status=interaction,
            logger=_event_logger(ws),
            tz=ws.tz,
        )
    except DOMAIN_ERRORS as exc:
        _exit_with_error(str(exc))
    next_follow_up = deal.next_follow_up.display(ws.tz) if deal.next_follow_up else "-"
    typer.echo(f"Logged follow-up on {deal.deal_id} | next: {next_follow_up}")


@deal_app.command("replay")
def deal_replay(deal_id: str = typer.Argument(...)) -> None:
    """Rebuild a deal from its event log and compare with the stored row."""
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        stored = repository.get_deal(store, deal_id)
        rebuilt = deals.replay_deal(store, deal_id)
    except DOMAIN_ERRORS as exc:
        _exit_with_error(str(exc))
    matches = (
        rebuilt.status is stored.status
        and rebuilt.next_follow_up == stored.next_follow_up
        and len(rebuilt.follow_ups) == len(stored.follow_ups)
    )
    typer.echo(f"Replayed status: {rebuilt.status.value}")
    typer.echo(
        "Replayed next follow-up: "
        + (rebuilt.next_follow_up.display(ws.tz) if rebuilt.next_follow_up else "-")
    )
    if not matches:
        typer.echo("Stored deal differs from its event log.", err=True)
        raise typer.Exit(code=1)
    typer.echo("Stored deal matches its event log.")


@deal_app.command("delete")
def deal_delete(
    deal_id: str = typer.Argument(...),
    yes: bool = typer.Option(False, "--yes", help="Skip the confirmation prompt."),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    if not yes:
        typer.confirm(f"Delete deal {deal_id} and its history?", abort=True)
    try:
        deals.delete_deal(store, deal_id, logger=_event_logger(ws))
    except DOMAIN_ERRORS as exc:
        _exit_with_error(str(exc))
    typer.echo(f"Deleted deal: {deal_id}")


@reminder_app.command("list")
def reminder_list(
    all_reminders: bool = typer.Option(False, "--all", help="Include closed reminders."),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    for reminder in repository.list_reminders(store, include_closed=all_reminders):
        state = "done" if reminder.is_completed else "dismissed" if reminder.is_dismissed else "open"
        typer.echo(
            f"{reminder.reminder_id} | {reminder.title} | {reminder.moment.display(ws.tz)} | {state}"
        )


@reminder_app.command("add")
def reminder_add(
    title: str = typer.Argument(...),
    due: str | None = typer.Option(None, "--due", help="Reminder date."),
    due_at: str | None = typer.Option(None, "--due-at", help="Reminder date and time."),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        moment = _moment_option(due, due_at)
        if moment is None:
            raise ValidationError("--due or --due-at is required.")
        reminder_id = deals.add_reminder(store, title, moment, logger=_event_logger(ws))
    except DOMAIN_ERRORS as exc:
        _exit_with_error(str(exc))
    typer.echo(f"Created reminder: {reminder_id}")


@reminder_app.command("complete")
def reminder_complete(reminder_id: str = typer.Argument(...)) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        deals.complete_reminder(store, reminder_id, logger=_event_logger(ws))
    except DOMAIN_ERRORS as exc:
        _exit_with_error(str(exc))
    typer.echo(f"Completed reminder: {reminder_id}")


@reminder_app.command("dismiss")
def reminder_dismiss(reminder_id: str = typer.Argument(...)) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        deals.dismiss_reminder(store, reminder_id, logger=_event_logger(ws))
    except DOMAIN_ERRORS as exc:
        _exit_with_error(str(exc))
    typer.echo(f"Dismissed reminder: {reminder_id}")


@reminder_app.command("delete")
def reminder_delete(reminder_id: str = typer.Argument(...)) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        deals.delete_reminder(store, reminder_id, logger=_event_logger(ws))
    except DOMAIN_ERRORS as exc:
        _exit_with_error(str(exc))
    typer.echo(f"Deleted reminder: {reminder_id}")


@app.command("tasks")
def tasks_command(
    source: str | None = typer.Option(None, "--source", help="follow_up or reminder"),
    logged_today: bool = typer.Option(
        False, "--logged-today", help="List follow-ups logged today instead."
    ),
) -> None:
    """Overdue, today and upcoming work across deals and reminders."""
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    snapshot = repository.load_snapshot(store)
    names = snapshot.client_names()
    now = utc_now()

    if logged_today:
        logged = tasks.followups_logged_on(snapshot.deals, today(now, ws.tz), ws.tz)
        if not logged:
            typer.echo("No follow-ups logged today.")
        for item in logged:
            typer.echo(
                f"{item.follow_up.moment.display(ws.tz)} | {names.get(item.client_id, '-')} | "
                f"{item.title} | {item.follow_up.notes}"
            )
        return

    if source:
        try:
            rules.validate_enum(source, [s.value for s in TaskSource], "source")
        except ValidationError as exc:
            _exit_with_error(str(exc))
    triage = tasks.classify_tasks(snapshot.deals, snapshot.reminders, now=now, tz=ws.tz)
    if triage.total == 0:
        typer.echo("No pending tasks.")
        return
    for label, bucket in (
        ("Overdue", triage.overdue),
        ("Today", triage.today),
        ("Upcoming", triage.upcoming),
    ):
        shown = [t for t in bucket if not source or t.source_kind.value == source]
        typer.echo(f"{label} ({len(shown)})")
        for task in shown:
            typer.echo(
                f"  {task.moment.display(ws.tz)} | {task.source_kind.value} | {task.title} | "
                f"{names.get(task.client_id or '', '-')} | {format_amount(task.value)}"
            )
    typer.echo(f"Value at risk: {format_amount(triage.value_at_risk)}")


@app.command("notifications")
def notifications_command(
    json_output: bool = typer.Option(False, "--json", help="Emit JSON output."),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    snapshot = repository.load_snapshot(store)
    triage = tasks.classify_tasks(snapshot.deals, [], now=utc_now(), tz=ws.tz)
    items = notifications.generate_notifications(triage, snapshot.client_names())
    if json_output:
        payload = [
            {
                "id": item.notification_id,
                "kind": item.kind.value,
                "deal_id": item.deal_id,
                "client_name": item.client_name,
                "message": item.message,
            }
            for item in items
        ]
        typer.echo(json.dumps(payload, indent=2))
        return
    if not items:
        typer.echo("No notifications.")
    for item in items:
        typer.echo(f"[{item.kind.value}] {item.client_name}: {item.message}")


@metrics_app.command("summary")
def metrics_summary(
    period: str = typer.Option("month", "--period", help="month, 30days or all"),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    snapshot = repository.load_snapshot(store)
    try:
        summary = metrics.summarize(snapshot.deals, period=period, now=utc_now(), tz=ws.tz)
    except ValidationError as exc:
        _exit_with_error(str(exc))
    typer.echo(f"Active pipeline: {format_amount(summary.active_value)} ({summary.active_count})")
    typer.echo(f"Won: {format_amount(summary.won_value)}")
    typer.echo(f"Conversion: {format_percent(summary.conversion_rate)}")
    typer.echo(f"Pipeline conversion: {format_percent(summary.pipeline_conversion)}")
    typer.echo(f"Forecast: {format_amount(summary.forecast_value)}")
    typer.echo(f"Average ticket: {format_amount(summary.average_ticket)}")
    typer.echo(f"Overdue follow-ups: {summary.overdue_count}")
    top = metrics.top_clients(snapshot.deals, snapshot.client_names())
    if top:
        typer.echo("Top clients:")
        for entry in top:
            typer.echo(f"  {entry.name} | {format_amount(entry.value)}")
    months = metrics.monthly_performance(snapshot.deals, tz=ws.tz)
    if months:
        typer.echo("Monthly won value:")
        for month in months:
            typer.echo(f"  {month.month} | {format_amount(month.value)}")


@metrics_app.command("funnel")
def metrics_funnel() -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    for stage in metrics.funnel(repository.list_deals(store)):
        typer.echo(
            f"{stage.name} | {stage.count} | {format_amount(stage.value)} | "
            f"{format_percent(stage.conversion_from_previous, scale=1)}"
        )


@metrics_app.command("lost")
def metrics_lost(
    period: str = typer.Option("all", "--period", help="month, 30days or all"),
) -> None:
    """Lost deals grouped by reason."""
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        scoped = metrics.filter_by_period(
            repository.list_deals(store), period, now=utc_now(), tz=ws.tz
        )
    except ValidationError as exc:
        _exit_with_error(str(exc))
    reasons = metrics.lost_reasons(scoped)
    if not reasons:
        typer.echo("No lost deals.")
        return
    for entry in reasons:
        typer.echo(f"{entry.reason} | {entry.count}")
    typer.echo(f"Total lost: {sum(entry.count for entry in reasons)}")


@metrics_app.command("leaderboard")
def metrics_leaderboard(
    metric: str = typer.Option(
        LeaderboardMetric.WON_VALUE.value, "--metric", help="won_value, won_count or deals_created"
    ),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    snapshot = repository.load_snapshot(store)
    try:
        entries = metrics.leaderboard(
            snapshot.sellers, snapshot.deals, metric, now=utc_now(), tz=ws.tz
        )
    except ValidationError as exc:
        _exit_with_error(str(exc))
    for entry in entries:
        score = (
            format_amount(entry.score)
            if metric == LeaderboardMetric.WON_VALUE.value
            else str(int(entry.score))
        )
        typer.echo(f"{entry.rank}. {entry.name} | {score}")


@metrics_app.command("goal")
def metrics_goal(
    seller_id: str = typer.Argument(...),
    set_goal: str | None = typer.Option(None, "--set", help="Replace the monthly goal."),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        if set_goal is not None:
            seller = deals.set_monthly_goal(
                store, seller_id, rules.parse_amount(set_goal, "goal")
            )
        else:
            seller = repository.get_seller(store, seller_id)
    except DOMAIN_ERRORS as exc:
        _exit_with_error(str(exc))
    progress = metrics.goal_progress(
        repository.list_deals(store), seller.seller_id, seller.monthly_goal, now=utc_now(), tz=ws.tz
    )
    typer.echo(
        f"{seller.name} | goal {format_amount(seller.monthly_goal)} | "
        f"{format_percent(progress, scale=1)}"
    )


@advise_app.command("briefing")
def advise_briefing(
    seller: str | None = typer.Option(None, "--seller", help="Seller id."),
) -> None:
    """Daily briefing over overdue and due-today follow-ups."""
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    snapshot = repository.load_snapshot(store)
    own_deals = snapshot.deals
    seller_name = "team"
    if seller:
        try:
            seller_name = repository.get_seller(store, seller).name
        except NotFoundError as exc:
            _exit_with_error(str(exc))
        own_deals = [deal for deal in own_deals if deal.seller_id == seller]
    triage = tasks.classify_tasks(own_deals, [], now=utc_now(), tz=ws.tz)
    typer.echo(advisor.daily_briefing(advisor.build_client(ws.advisor), seller_name, triage))


@advise_app.command("reengage")
def advise_reengage(client_id: str = typer.Argument(...)) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        client = repository.get_client(store, client_id)
    except NotFoundError as exc:
        _exit_with_error(str(exc))
    profile = activity.classify_client(
        client, repository.list_deals(store, client_id=client_id), now=utc_now(), tz=ws.tz
    )
    if profile.activity_status is not ActivityStatus.INACTIVE:
        typer.echo(f"Note: {client.name} is {profile.activity_status.value}.")
    typer.echo(advisor.reengagement_idea(advisor.build_client(ws.advisor), profile))


@advise_app.command("goal")
def advise_goal(
    seller_id: str = typer.Argument(...),
    apply: bool = typer.Option(False, "--apply", help="Save the suggestion as the goal."),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        seller = repository.get_seller(store, seller_id)
    except NotFoundError as exc:
        _exit_with_error(str(exc))
    suggestion = advisor.suggest_monthly_goal(
        advisor.build_client(ws.advisor),
        seller,
        repository.list_deals(store),
        now=utc_now(),
        tz=ws.tz,
    )
    source = " (offline estimate)" if suggestion.from_fallback else ""
    typer.echo(f"Suggested goal: {format_amount(suggestion.suggested_goal)}{source}")
    typer.echo(suggestion.rationale)
    if apply:
        if suggestion.suggested_goal <= Decimal("0"):
            _exit_with_error("No usable goal to apply.")
        deals.set_monthly_goal(store, seller_id, suggestion.suggested_goal)
        typer.echo("Saved monthly goal.")


@advise_app.command("email")
def advise_email(deal_id: str = typer.Argument(...)) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        deal = repository.get_deal(store, deal_id)
        client = repository.get_client(store, deal.client_id)
        seller_name = (
            repository.get_seller(store, deal.seller_id).name if deal.seller_id else "Sales team"
        )
    except NotFoundError as exc:
        _exit_with_error(str(exc))
    typer.echo(
        advisor.draft_follow_up_email(
            advisor.build_client(ws.advisor), deal, client.name, seller_name
        )
    )


def _moment_option(due: str | None, due_at: str | None) -> ScheduleMoment | None:
    day: date | None = rules.parse_date(due, "due")
    instant: datetime | None = rules.parse_datetime(due_at, "due_at")
    return moment_from_input(day, instant, "due")


def _load_workspace():
    try:
        return load_workspace()
    except WorkspaceError as exc:
        typer.echo(str(exc))
        raise typer.Exit(code=1) from exc


def _exit_with_error(message: str) -> None:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(code=1)


def _event_logger(ws, enabled: bool = True) -> EventLogger:
    return EventLogger(path=ws.events_path, workspace=ws.name, enabled=enabled)


if __name__ == "__main__":
    app()
