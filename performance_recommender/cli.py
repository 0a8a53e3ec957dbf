"""Command-line interface for the performance recommender."""

import json
import logging
import sys

import click
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .analysis import PerformanceAnalysisEngine, RuleEngine, max_priority
from .config import config
from .db import get_db
from .db.models import Priority
from .errors import PerformanceRecommenderError
from .workflow import RecommendationWorkflow

console = Console()

PRIORITY_STYLES = {
    Priority.CRITICAL: "bold red",
    Priority.HIGH: "red",
    Priority.MEDIUM: "yellow",
    Priority.LOW: "green",
}

STATE_STYLES = {
    "PENDING": "yellow",
    "IN_REVIEW": "blue",
    "FULFILLED": "green",
    "REJECTED": "red",
    "AMENDED": "magenta",
}


def _fail(error: Exception):
    console.print(f"[red]❌ {escape(str(error))}[/red]")
    sys.exit(1)


def _priority_text(priority: Priority) -> str:
    style = PRIORITY_STYLES.get(priority, "white")
    return f"[{style}]{priority.value}[/{style}]"


def _recommendation_table(title: str, recommendations) -> Table:
    table = Table(title=title, box=box.ROUNDED)
    table.add_column("ID", style="cyan")
    table.add_column("Athlete")
    table.add_column("Priority")
    table.add_column("State")
    table.add_column("Title")
    table.add_column("Created", style="black")

    for rec in recommendations:
        state_style = STATE_STYLES.get(rec.state.value, "white")
        table.add_row(
            str(rec.id),
            str(rec.athlete_id),
            _priority_text(rec.priority),
            f"[{state_style}]{rec.state.value}[/{state_style}]",
            escape(rec.title),
            rec.created_at.strftime("%Y-%m-%d %H:%M") if rec.created_at else "-",
        )
    return table


@click.group()
def cli():
    """Athlete Performance Analysis & Recommendation Tool."""
    pass


@cli.command("init-db")
def init_db():
    """Create database tables."""
    try:
        db = get_db()
        db.create_tables()
        console.print(f"[green]✅ Database ready at {escape(str(db.database_url))}[/green]")
    except Exception as e:
        _fail(e)


@cli.command()
@click.argument("athlete_id", type=int)
@click.option("--days", default=None, type=int, help="Analysis window in days")
@click.option("--json", "as_json", is_flag=True, help="Print the snapshot as JSON")
def analyze(athlete_id, days, as_json):
    """Analyze an athlete's exercise performance."""
    try:
        snapshot = PerformanceAnalysisEngine().analyze(athlete_id, days)
    except PerformanceRecommenderError as e:
        _fail(e)

    if as_json:
        click.echo(json.dumps(snapshot.to_dict(), indent=2))
        return

    console.print(Panel.fit(
        f"📊 Performance Analysis: {escape(snapshot.athlete_name)}\n"
        f"{snapshot.window.start:%Y-%m-%d} → {snapshot.window.end:%Y-%m-%d} ({snapshot.window.days} days)",
        style="bold blue",
    ))

    summary = snapshot.summary
    console.print(
        f"Sessions: {summary.total_sessions}   Records: {summary.total_records}   "
        f"Average: {summary.global_average:.2f}/10"
    )

    if not snapshot.categories:
        console.print("[yellow]⚠️  Not enough records in this window to analyze.[/yellow]")
        return

    table = Table(title="Exercise Categories", box=box.ROUNDED)
    table.add_column("Category")
    table.add_column("Average", style="magenta")
    table.add_column("Samples")
    table.add_column("Trend")
    table.add_column("R²")
    table.add_column("Z-Score")
    table.add_column("Anomaly")

    for performance in snapshot.categories:
        table.add_row(
            performance.category.value,
            f"{performance.average_rating:.2f}",
            str(performance.sample_count),
            performance.trend.classification.value,
            f"{performance.trend.r_squared:.2f}",
            f"{performance.anomaly.z_score:.2f}",
            performance.anomaly.interpretation.value,
        )
    console.print(table)

    if snapshot.problematic_exercises:
        problems = Table(title="Problematic Exercises", box=box.ROUNDED)
        problems.add_column("Exercise")
        problems.add_column("Category")
        problems.add_column("Average", style="magenta")
        problems.add_column("Assigned")
        problems.add_column("Incomplete", style="red")
        problems.add_column("Substitutes", style="green")

        for exercise in snapshot.problematic_exercises:
            problems.add_row(
                escape(exercise.name),
                exercise.category.value,
                f"{exercise.average_rating:.2f}",
                str(exercise.times_assigned),
                str(exercise.times_incomplete),
                ", ".join(escape(c.name) for c in exercise.substitute_candidates) or "-",
            )
        console.print(problems)

    for pattern in snapshot.patterns:
        console.print(f"• {_priority_text(pattern.severity)} {escape(pattern.description)}")

    if snapshot.needs_attention:
        console.print(f"\n[bold]Needs attention:[/bold] {_priority_text(snapshot.attention_priority)}")
    else:
        console.print("\n[green]✅ No attention needed[/green]")


@cli.command()
@click.argument("athlete_id", type=int)
@click.option("--days", default=None, type=int, help="Analysis window in days")
@click.option("--save", is_flag=True, help="Persist the drafts for review")
@click.option("--actor", default=None, type=int, help="User id recorded as creator")
def recommend(athlete_id, days, save, actor):
    """Evaluate the recommendation rules for an athlete."""
    try:
        if save:
            recommendations = RecommendationWorkflow().generate_for_athlete(athlete_id, days, actor)
            if not recommendations:
                console.print("[green]✅ No rules fired; nothing to review.[/green]")
                return
            console.print(_recommendation_table("Saved Recommendations", recommendations))
            return

        snapshot = PerformanceAnalysisEngine().analyze(athlete_id, days)
        drafts = RuleEngine().evaluate(snapshot)
    except PerformanceRecommenderError as e:
        _fail(e)

    if not drafts:
        console.print("[green]✅ No rules fired.[/green]")
        return

    for draft in drafts:
        style = PRIORITY_STYLES.get(draft.priority, "white")
        console.print(Panel(
            f"{escape(draft.message)}\n\n[bold]Suggested action:[/bold] {escape(draft.suggested_action)}",
            title=escape(f"[{draft.rule_id}] {draft.title}"),
            border_style=style,
        ))
    console.print(f"Highest priority: {_priority_text(max_priority(drafts))}")


@cli.command()
@click.option("--page", default=1, help="Page number")
@click.option("--limit", default=None, type=int, help="Items per page")
@click.option("--priority", type=click.Choice([p.value for p in Priority]), help="Filter by priority")
@click.option("--athlete", default=None, type=int, help="Filter by athlete id")
def pending(page, limit, priority, athlete):
    """List recommendations waiting for a decision."""
    result = RecommendationWorkflow().list_pending(
        page=page,
        limit=limit,
        priority=Priority(priority) if priority else None,
        athlete_id=athlete,
    )
    meta = result["meta"]
    if not result["data"]:
        console.print("[green]✅ No open recommendations.[/green]")
        return
    console.print(_recommendation_table(
        f"Open Recommendations (page {meta['page']}/{meta['totalPages']}, {meta['total']} total)",
        result["data"],
    ))


@cli.command()
@click.argument("recommendation_id")
@click.option("--actor", required=True, type=int, help="Reviewer user id")
def review(recommendation_id, actor):
    """Start reviewing a recommendation."""
    try:
        rec = RecommendationWorkflow().start_review(recommendation_id, actor)
    except PerformanceRecommenderError as e:
        _fail(e)
    console.print(f"[blue]🔍 Recommendation {rec.id} is now IN_REVIEW[/blue]")


@cli.command()
@click.argument("recommendation_id")
@click.option("--actor", required=True, type=int, help="Approver user id")
@click.option("--comment", default=None, help="Approval comment")
def approve(recommendation_id, actor, comment):
    """Approve a recommendation under review."""
    try:
        rec = RecommendationWorkflow().approve(recommendation_id, actor, comment)
    except PerformanceRecommenderError as e:
        _fail(e)
    console.print(f"[green]✅ Recommendation {rec.id} approved[/green]")


@cli.command()
@click.argument("recommendation_id")
@click.option("--actor", required=True, type=int, help="Reviewer user id")
@click.option("--reason", default=None, help="Why the recommendation is rejected")
@click.option("--alternative", default=None, help="What will be done instead")
def reject(recommendation_id, actor, reason, alternative):
    """Reject a recommendation and delete its generated sessions."""
    workflow = RecommendationWorkflow()
    try:
        rec = workflow.reject(recommendation_id, actor, reason, alternative)
        latest = workflow.get_history(rec.id)[0]
    except PerformanceRecommenderError as e:
        _fail(e)
    deleted = (latest.extra_data or {}).get("deletedSessionCount", 0)
    console.print(f"[red]🚫 Recommendation {rec.id} rejected; {deleted} session(s) deleted[/red]")


@cli.command()
@click.argument("recommendation_id")
@click.option("--actor", required=True, type=int, help="Reviewer user id")
@click.option("--justification", required=True, help="Why the recommendation is amended")
@click.option("--duration", default=None, type=int, help="Planned duration (minutes)")
@click.option("--volume", default=None, type=int, help="Planned volume (%)")
@click.option("--intensity", default=None, type=int, help="Planned intensity (%)")
@click.option("--notes", default=None, help="Session notes")
@click.option("--volume-adjustment", default=None, type=float, help="Global volume adjustment (-50..50)")
@click.option("--intensity-adjustment", default=None, type=float, help="Global intensity adjustment (-50..50)")
@click.option("--comment", default=None, help="Extra comment")
def amend(recommendation_id, actor, justification, duration, volume, intensity, notes,
          volume_adjustment, intensity_adjustment, comment):
    """Amend and apply a recommendation under review."""
    adjustments = {
        key: value
        for key, value in {
            "plannedDuration": duration,
            "plannedVolume": volume,
            "plannedIntensity": intensity,
            "notes": notes,
        }.items()
        if value is not None
    }
    amendments = {}
    if adjustments:
        amendments["sessionAdjustments"] = adjustments
    if volume_adjustment is not None:
        amendments["globalVolumeAdjustment"] = volume_adjustment
    if intensity_adjustment is not None:
        amendments["globalIntensityAdjustment"] = intensity_adjustment

    try:
        rec = RecommendationWorkflow().amend(recommendation_id, actor, amendments, justification, comment)
    except PerformanceRecommenderError as e:
        _fail(e)
    console.print(f"[magenta]✏️  Recommendation {rec.id} amended and applied[/magenta]")


@cli.command()
@click.argument("recommendation_id")
def history(recommendation_id):
    """Show the audit trail of a recommendation."""
    try:
        entries = RecommendationWorkflow().get_history(recommendation_id)
    except PerformanceRecommenderError as e:
        _fail(e)

    table = Table(title=f"History of Recommendation {escape(recommendation_id)}", box=box.ROUNDED)
    table.add_column("When", style="black")
    table.add_column("Action")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Actor")
    table.add_column("Comment")

    for entry in entries:
        table.add_row(
            entry.created_at.strftime("%Y-%m-%d %H:%M") if entry.created_at else "-",
            entry.action.value,
            entry.previous_state.value if entry.previous_state else "-",
            entry.new_state.value,
            str(entry.actor_id) if entry.actor_id else "-",
            escape(entry.comment or ""),
        )
    console.print(table)


@cli.command()
def stats():
    """Show recommendation workflow statistics."""
    statistics = RecommendationWorkflow().get_statistics()
    summary = statistics["summary"]

    table = Table(title="Recommendations", box=box.ROUNDED)
    table.add_column("State")
    table.add_column("Count", style="magenta")
    for label, key in (
        ("Pending", "pending"),
        ("In review", "inReview"),
        ("Fulfilled", "fulfilled"),
        ("Rejected", "rejected"),
        ("Amended", "amended"),
        ("Total", "total"),
    ):
        table.add_row(label, str(summary[key]))
    console.print(table)

    open_counts = ", ".join(f"{k}: {v}" for k, v in statistics["openByPriority"].items())
    console.print(f"Open by priority: {open_counts}")
    console.print(f"Approval rate: {statistics['approvalRate']}%   Amendment rate: {statistics['amendmentRate']}%")


@cli.command()
@click.option("--limit", default=None, type=int, help="Number of rejections to show")
def feedback(limit):
    """Show recent rejection feedback."""
    entries = RecommendationWorkflow().get_rejection_feedback(limit)
    if not entries:
        console.print("[green]✅ No rejected recommendations.[/green]")
        return

    table = Table(title="Rejection Feedback", box=box.ROUNDED)
    table.add_column("ID", style="cyan")
    table.add_column("Type")
    table.add_column("Priority")
    table.add_column("Reason")
    table.add_column("Alternative")
    table.add_column("Rejected", style="black")

    for entry in entries:
        stored = entry["feedback"] or {}
        table.add_row(
            entry["id"],
            entry["type"],
            entry["priority"],
            escape(entry["rejectionReason"] or "-"),
            escape(stored.get("alternativeAction") or "-"),
            entry["rejectedAt"] or "-",
        )
    console.print(table)


def main():
    """Main entry point."""
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config.validate()
        cli()
    except KeyboardInterrupt:
        console.print("\n[orange]Operation cancelled by user.[/orange]")
    except Exception as e:
        console.print(f"[red]❌ Unexpected error: {escape(str(e))}[/red]")


if __name__ == "__main__":
    main()
