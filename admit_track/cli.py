"""
CLI interface for the application tracker.

Commands:
    create-app          Create an application and seed its checklist
    list-apps           List applications
    status-info         Show an application's status and the next allowed step
    transition          Advance an application one step
    auto-check          Apply automatic status transitions
    confirm-submission  Record that an application was submitted
    requirement         Update a requirement's status, deadline or notes
    progress            Show requirement progress for an application
    upcoming            Show upcoming or overdue requirements for a student
    history             Show an application's status history
    recent              Show a student's recent status changes
    stats               Show a student's status statistics
    alerts              Show deadline alerts for one student or all students
    notifications       List and manage a student's notifications
    run-tasks           Run scheduled notification tasks (authenticated)
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

import click

from admit_track import __version__
from admit_track.errors import TrackerError


TRACKS = ["early_decision", "early_action", "regular", "rolling"]
STATUSES = ["not_started", "in_progress", "submitted", "under_review", "decided"]
DECISIONS = ["accepted", "rejected", "waitlisted"]
REQUIREMENT_STATUSES = ["not_started", "in_progress", "completed"]


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------

@click.group()
@click.version_option(version=__version__, prog_name="admit-track")
@click.option("--db", default="sqlite:///admit_track.db", help="Database URL for the tracker.")
@click.option("--verbose", "-v", is_flag=True, help="Log at DEBUG level.")
@click.pass_context
def cli(ctx: click.Context, db: str, verbose: bool) -> None:
    """University application tracker: statuses, requirements, deadlines and notifications."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["db_url"] = db


# ---------------------------------------------------------------------------
# applications
# ---------------------------------------------------------------------------

@cli.command(name="create-app")
@click.option("--student", "-s", required=True, help="Owning student ID.")
@click.option("--university", "-u", required=True, help="University name.")
@click.option("--track", "-t", default="regular", type=click.Choice(TRACKS), help="Application track.")
@click.option("--deadline", "-d", default=None, help="Deadline (YYYY-MM-DD or YYYY-MM-DDTHH:MM).")
@click.option("--system", "application_system", default=None, help="Application system, e.g. 'Common App'.")
@click.option("--notes", default=None, help="Free-form notes.")
@click.option("--no-checklist", is_flag=True, help="Do not seed the requirement checklist.")
@click.option("--requirement-deadlines", is_flag=True, help="Give seeded requirements deadlines.")
@click.pass_context
def create_app(
    ctx: click.Context,
    student: str,
    university: str,
    track: str,
    deadline: Optional[str],
    application_system: Optional[str],
    notes: Optional[str],
    no_checklist: bool,
    requirement_deadlines: bool,
) -> None:
    """Create an application."""
    from admit_track.tracker import ApplicationTrack

    store = _store(ctx)
    with _errors():
        app = store.create_application(
            student_id=student,
            university=university,
            track=ApplicationTrack(track),
            deadline=_parse_datetime(deadline) if deadline else None,
            application_system=application_system,
            notes=notes,
            seed_requirements=not no_checklist,
            requirement_deadlines=requirement_deadlines,
        )
    click.echo(f"Created application #{app.id} ({app.university}, deadline {app.deadline:%Y-%m-%d})")
    for req in store.requirements_for(app.id):
        due = f"due {req.deadline:%Y-%m-%d}" if req.deadline else "no deadline"
        click.echo(f"  #{req.id:4d} | {req.category.value:15s} | {req.title[:45]:45s} | {due}")


@cli.command(name="list-apps")
@click.option("--student", "-s", default=None, help="Filter by student ID.")
@click.option("--status", default=None, type=click.Choice(STATUSES), help="Filter by status.")
@click.pass_context
def list_apps(ctx: click.Context, student: Optional[str], status: Optional[str]) -> None:
    """List applications, soonest deadline first."""
    from admit_track.tracker import ApplicationStatus

    store = _store(ctx)
    with _errors():
        apps = store.list_applications(
            student_id=student,
            status=ApplicationStatus(status) if status else None,
        )
    if not apps:
        click.echo("No applications.")
        return

    click.echo(f"Applications ({len(apps)}):")
    for app in apps:
        click.echo(
            f"  #{app.id:4d} | {app.student_id:12s} | {app.university[:35]:35s} | "
            f"{app.status.value:12s} | deadline: {app.deadline:%Y-%m-%d}"
        )


@cli.command(name="status-info")
@click.option("--id", "application_id", type=int, required=True, help="Application ID.")
@click.option("--student", "-s", default=None, help="Only show if owned by this student.")
@click.pass_context
def status_info(ctx: click.Context, application_id: int, student: Optional[str]) -> None:
    """Show an application's status and allowed next step."""
    from admit_track.errors import NotFound
    from admit_track.tracker import StatusTransitionEngine

    store = _store(ctx)
    engine = StatusTransitionEngine(store)
    with _errors():
        app = store.get_application(application_id, student)
        if app is None:
            raise NotFound("Application", application_id)
    info = engine.get_status_info(app.status)
    nxt = engine.next_statuses(app.status)

    click.echo(f"Application #{app.id}")
    click.echo(f"  University:  {app.university}")
    click.echo(f"  Track:       {app.track.value}")
    click.echo(f"  Status:      {info.label} ({info.color})")
    click.echo(f"               {info.description}")
    click.echo(f"  Deadline:    {app.deadline:%Y-%m-%d %H:%M}")
    if app.decision:
        click.echo(f"  Decision:    {app.decision.value}")
    click.echo(f"  Submitted:   {'confirmed' if app.submission_confirmed else 'not confirmed'}")
    click.echo(f"  Next:        {', '.join(s.value for s in nxt) or 'none'}")


@cli.command()
@click.option("--id", "application_id", type=int, required=True, help="Application ID.")
@click.option("--actor", "-a", required=True, help="Who is making the change.")
@click.option("--to", "target", required=True, type=click.Choice(STATUSES), help="Target status.")
@click.option("--decision", default=None, type=click.Choice(DECISIONS), help="Decision outcome (with --to decided).")
@click.option("--notes", default=None, help="Reason for the change.")
@click.option("--student", "-s", default=None, help="Only act if owned by this student.")
@click.pass_context
def transition(
    ctx: click.Context,
    application_id: int,
    actor: str,
    target: str,
    decision: Optional[str],
    notes: Optional[str],
    student: Optional[str],
) -> None:
    """Advance an application by one status step."""
    from admit_track.tracker import ApplicationStatus, DecisionOutcome, StatusTransitionEngine

    engine = StatusTransitionEngine(_store(ctx))
    with _errors():
        app = engine.request_transition(
            application_id,
            actor,
            ApplicationStatus(target),
            notes=notes,
            owner_id=student,
            decision=DecisionOutcome(decision) if decision else None,
        )
    click.echo(f"Application #{app.id} is now {app.status.value}.")


@cli.command(name="auto-check")
@click.option("--id", "application_id", type=int, required=True, help="Application ID.")
@click.option("--student", "-s", default=None, help="Only act if owned by this student.")
@click.pass_context
def auto_check(ctx: click.Context, application_id: int, student: Optional[str]) -> None:
    """Apply any automatic transitions the requirement progress allows."""
    from admit_track.tracker import StatusTransitionEngine

    engine = StatusTransitionEngine(_store(ctx))
    with _errors():
        result = engine.evaluate_auto_transition(application_id, owner_id=student)
    _echo_auto(application_id, result)


@cli.command(name="confirm-submission")
@click.option("--id", "application_id", type=int, required=True, help="Application ID.")
@click.option("--student", "-s", default=None, help="Only act if owned by this student.")
@click.pass_context
def confirm_submission(ctx: click.Context, application_id: int, student: Optional[str]) -> None:
    """Record that the application was submitted, then re-check status."""
    from admit_track.tracker import StatusTransitionEngine

    engine = StatusTransitionEngine(_store(ctx))
    with _errors():
        result = engine.confirm_submission(application_id, student)
    click.echo(f"Submission confirmed for application #{application_id}.")
    _echo_auto(application_id, result)


# ---------------------------------------------------------------------------
# requirements
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--id", "requirement_id", type=int, required=True, help="Requirement ID.")
@click.option("--status", default=None, type=click.Choice(REQUIREMENT_STATUSES), help="New status.")
@click.option("--deadline", "-d", default=None, help="New deadline (YYYY-MM-DD or YYYY-MM-DDTHH:MM).")
@click.option("--clear-deadline", is_flag=True, help="Remove the deadline.")
@click.option("--add-note", default=None, help="Append a timestamped note.")
@click.option("--student", "-s", default=None, help="Only act if owned by this student.")
@click.pass_context
def requirement(
    ctx: click.Context,
    requirement_id: int,
    status: Optional[str],
    deadline: Optional[str],
    clear_deadline: bool,
    add_note: Optional[str],
    student: Optional[str],
) -> None:
    """Update a requirement."""
    from admit_track.tracker import RequirementService, RequirementStatus

    service = RequirementService(_store(ctx))
    if not (status or deadline or clear_deadline or add_note):
        raise click.UsageError("Nothing to update. Use --status, --deadline, --clear-deadline or --add-note.")

    with _errors():
        if deadline or clear_deadline:
            req = service.set_deadline(
                requirement_id, None if clear_deadline else _parse_datetime(deadline), student
            )
            due = f"{req.deadline:%Y-%m-%d %H:%M}" if req.deadline else "none"
            click.echo(f"Requirement #{req.id} deadline: {due}")
        if add_note:
            service.add_note(requirement_id, add_note, student)
            click.echo(f"Note added to requirement #{requirement_id}.")
        if status:
            update = service.update_status(requirement_id, RequirementStatus(status), student)
            click.echo(
                f"Requirement #{requirement_id}: {update.previous_status.value} -> "
                f"{update.requirement.status.value}"
                + (" (reverted)" if update.reverted else "")
            )
            _echo_auto(update.requirement.application_id, update.auto_transition)


@cli.command()
@click.option("--id", "application_id", type=int, required=True, help="Application ID.")
@click.option("--student", "-s", default=None, help="Only show if owned by this student.")
@click.option("--generate-deadlines", is_flag=True, help="Fill in missing requirement deadlines first.")
@click.option("--json-output", is_flag=True, help="Output the summary as JSON.")
@click.pass_context
def progress(
    ctx: click.Context,
    application_id: int,
    student: Optional[str],
    generate_deadlines: bool,
    json_output: bool,
) -> None:
    """Show requirement progress for an application."""
    from admit_track.tracker import RequirementService

    service = RequirementService(_store(ctx))
    with _errors():
        if generate_deadlines:
            generated = service.generate_deadlines(application_id, student)
            click.echo(f"Generated {len(generated)} requirement deadline(s).")
        summary = service.summary(application_id, student)
        rows = service.listing(application_id, student)

    if json_output:
        click.echo(json.dumps(summary.to_dict(), indent=2))
        return

    click.echo(
        f"Application #{application_id}: {summary.completed}/{summary.total} complete "
        f"({summary.completion_percentage}%), {summary.in_progress} in progress, "
        f"{summary.overdue} overdue"
    )
    for row in rows:
        req = row.requirement
        if row.days_until_deadline is None:
            due = "no deadline"
        elif row.is_overdue:
            due = f"OVERDUE {abs(row.days_until_deadline)}d"
        else:
            due = f"{row.days_until_deadline}d"
        click.echo(f"  #{req.id:4d} | {req.status.value:12s} | {req.title[:45]:45s} | {due}")


@cli.command()
@click.option("--student", "-s", required=True, help="Student ID.")
@click.option("--days", default=7, type=int, help="Look this many days ahead.")
@click.option("--overdue", is_flag=True, help="Show overdue requirements instead.")
@click.pass_context
def upcoming(ctx: click.Context, student: str, days: int, overdue: bool) -> None:
    """Show a student's upcoming or overdue requirements."""
    from admit_track.tracker import RequirementService

    service = RequirementService(_store(ctx))
    with _errors():
        rows = service.overdue(student) if overdue else service.upcoming(student, days)
    if not rows:
        click.echo("No overdue requirements." if overdue else "No upcoming requirements.")
        return
    for row in rows:
        req = row.requirement
        click.echo(
            f"  #{req.id:4d} | app #{req.application_id:<4d} | {req.title[:40]:40s} | "
            f"due {req.deadline:%Y-%m-%d} ({row.days_until_deadline}d)"
        )


# ---------------------------------------------------------------------------
# history
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--id", "application_id", type=int, required=True, help="Application ID.")
@click.option("--student", "-s", default=None, help="Only show if owned by this student.")
@click.option("--verify", is_flag=True, help="Check the history chain for consistency.")
@click.pass_context
def history(ctx: click.Context, application_id: int, student: Optional[str], verify: bool) -> None:
    """Show an application's status history, oldest first."""
    from admit_track.tracker import StatusHistoryLog

    log = StatusHistoryLog(_store(ctx))
    with _errors():
        entries = log.history(application_id, student)
        check = log.verify_chain(application_id) if verify else None

    for entry in entries:
        from_value = entry.from_status.value if entry.from_status else "-"
        click.echo(
            f"  {entry.created_at:%Y-%m-%d %H:%M} | {from_value:12s} -> {entry.to_status.value:12s} | "
            f"{entry.changed_by}" + (f" | {entry.notes}" if entry.notes else "")
        )
    if check is not None:
        if check.valid:
            click.echo("History chain OK.")
        else:
            click.echo("History chain problems:")
            for problem in check.problems:
                click.echo(f"  - {problem}")


@cli.command()
@click.option("--student", "-s", required=True, help="Student ID.")
@click.option("--limit", default=10, type=int, help="Number of entries.")
@click.pass_context
def recent(ctx: click.Context, student: str, limit: int) -> None:
    """Show a student's most recent status changes."""
    from admit_track.tracker import StatusHistoryLog

    log = StatusHistoryLog(_store(ctx))
    with _errors():
        rows = log.recent_changes(student, limit=limit)
    if not rows:
        click.echo("No status changes.")
        return
    for entry, app in rows:
        from_value = entry.from_status.value if entry.from_status else "-"
        click.echo(
            f"  {entry.created_at:%Y-%m-%d %H:%M} | {app.university[:30]:30s} | "
            f"{from_value} -> {entry.to_status.value} | {entry.changed_by}"
        )


@cli.command()
@click.option("--student", "-s", required=True, help="Student ID.")
@click.pass_context
def stats(ctx: click.Context, student: str) -> None:
    """Show application statistics for a student."""
    from admit_track.tracker import StatusHistoryLog

    log = StatusHistoryLog(_store(ctx))
    with _errors():
        data = log.statistics(student)

    click.echo("=== Application Statistics ===")
    click.echo(f"Total applications: {data.total}")
    click.echo(f"Changes in the last 7 days: {data.recent_changes}")
    click.echo("\nBy status:")
    for status, count in data.by_status.items():
        click.echo(f"  {status:15s}: {count}")


# ---------------------------------------------------------------------------
# alerts and notifications
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--student", "-s", default=None, help="Student ID.")
@click.option("--all-students", is_flag=True, help="Show alerts for every student.")
@click.option("--window", default=30, type=int, help="Look-ahead window in days (1-365).")
@click.option("--no-requirements", is_flag=True, help="Only show application deadlines.")
@click.option("--json-output", is_flag=True, help="Output as JSON.")
@click.pass_context
def alerts(
    ctx: click.Context,
    student: Optional[str],
    all_students: bool,
    window: int,
    no_requirements: bool,
    json_output: bool,
) -> None:
    """Show deadline alerts for a student, or for every student."""
    from admit_track.tracker import DeadlineAlertAggregator

    if all_students == bool(student):
        raise click.UsageError("Give exactly one of --student or --all-students.")

    aggregator = DeadlineAlertAggregator(_store(ctx))
    if all_students:
        with _errors():
            grouped = list(aggregator.collect_all(window, include_requirements=not no_requirements))
        if json_output:
            click.echo(json.dumps(
                {sid: [a.to_dict() for a in items] for sid, items in grouped}, indent=2
            ))
            return
        for sid, items in grouped:
            click.echo(f"=== {sid}: {len(items)} alert(s) ===")
            for alert in items:
                click.echo(alert.format_text())
        if not grouped:
            click.echo("No students tracked.")
        return

    with _errors():
        report = aggregator.report(student, window, include_requirements=not no_requirements)

    if json_output:
        click.echo(json.dumps(report.to_dict(), indent=2))
        return
    if not report.alerts:
        click.echo("No active alerts.")
        return
    click.echo(
        f"=== Active Alerts ({report.total}: {report.critical} critical, "
        f"{report.warning} warning, {report.info} info) ==="
    )
    for alert in report.alerts:
        click.echo(alert.format_text())


@cli.command()
@click.option("--student", "-s", required=True, help="Recipient student ID.")
@click.option("--unread", is_flag=True, help="Only unread notifications.")
@click.option("--mark-read", type=int, default=None, help="Mark one notification read.")
@click.option("--mark-all-read", is_flag=True, help="Mark every notification read.")
@click.option("--delete", "delete_id", type=int, default=None, help="Delete one notification.")
@click.option("--limit", default=20, type=int, help="Page size.")
@click.option("--offset", default=0, type=int, help="Page offset.")
@click.option("--json-output", is_flag=True, help="Output the page as JSON.")
@click.pass_context
def notifications(
    ctx: click.Context,
    student: str,
    unread: bool,
    mark_read: Optional[int],
    mark_all_read: bool,
    delete_id: Optional[int],
    limit: int,
    offset: int,
    json_output: bool,
) -> None:
    """List and manage a student's notifications."""
    from admit_track.notifications import NotificationInbox

    inbox = NotificationInbox(_store(ctx))
    with _errors():
        if mark_read is not None:
            inbox.mark_read(mark_read, student)
            click.echo(f"Notification #{mark_read} marked read.")
            return
        if mark_all_read:
            count = inbox.mark_all_read(student)
            click.echo(f"Marked {count} notification(s) read.")
            return
        if delete_id is not None:
            inbox.delete(delete_id, student)
            click.echo(f"Notification #{delete_id} deleted.")
            return
        if json_output:
            page = inbox.page(student, unread_only=unread, limit=limit, offset=offset)
            click.echo(json.dumps(page, indent=2))
            return
        items = inbox.list_notifications(student, unread_only=unread, limit=limit, offset=offset)
        unread_total = inbox.unread_count(student)

    click.echo(f"Notifications for {student} ({unread_total} unread):")
    if not items:
        click.echo("  (none)")
    for n in items:
        flag = " " if n.read else "*"
        click.echo(f" {flag} #{n.id:4d} | {n.created_at:%Y-%m-%d %H:%M} | {n.title}")
        click.echo(f"         {n.message}")


# ---------------------------------------------------------------------------
# scheduler
# ---------------------------------------------------------------------------

@cli.command(name="run-tasks")
@click.option("--task", default="all",
              type=click.Choice(["deadline-reminders", "overdue-deadlines", "cleanup", "all"]),
              help="Task to run.")
@click.option("--secret", envvar="ADMIT_TRACK_TRIGGER_CREDENTIAL", default=None,
              help="Trigger credential (or ADMIT_TRACK_TRIGGER_CREDENTIAL).")
@click.option("--config", "config_path", default=None, help="Scheduler config JSON file.")
@click.pass_context
def run_tasks(ctx: click.Context, task: str, secret: Optional[str], config_path: Optional[str]) -> None:
    """Run scheduled notification tasks, as the recurring trigger would."""
    from admit_track.scheduler import (
        NotificationScheduler,
        SchedulerConfig,
        handle_trigger,
        load_scheduler_config,
    )

    try:
        config = load_scheduler_config(config_path) if config_path else SchedulerConfig.from_environment()
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Bad scheduler config: {e}")

    with _errors():
        scheduler = NotificationScheduler(_store(ctx), config)
        response = handle_trigger(scheduler, secret, task)

    click.echo(json.dumps(response, indent=2))
    if not response["success"]:
        ctx.exit(1)


# ---------------------------------------------------------------------------
# Utility
# ---------------------------------------------------------------------------

def _store(ctx: click.Context):
    from admit_track.tracker import TrackerStore

    with _errors():
        return TrackerStore(ctx.obj["db_url"])


@contextmanager
def _errors() -> Iterator[None]:
    try:
        yield
    except TrackerError as e:
        raise click.ClickException(str(e))


def _echo_auto(application_id: int, result) -> None:
    if result.transitioned:
        path = " -> ".join([result.steps[0][0].value] + [b.value for _a, b in result.steps])
        click.echo(f"Application #{application_id} auto-advanced: {path}")


def _parse_datetime(s: str) -> datetime:
    for fmt in ("%Y-%m-%d", "%Y-%m-%dT%H:%M", "%Y-%m-%d %H:%M"):
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            continue
    raise click.BadParameter(f"Invalid date format: {s}. Use YYYY-MM-DD or YYYY-MM-DDTHH:MM.")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
