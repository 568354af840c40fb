"""CLI commands for the self-learning store.

Kept out of cli.py so the entry module stays small.
Groups:
    learn_group  -- status, report, thresholds, reset, patterns, predict,
                    efficiency, audit, export, clear
"""

import json
from pathlib import Path
from typing import Optional

import click
from rich.table import Table

from nudge.cli_helpers import (
    console,
    effectiveness_style,
    format_db_size,
    print_error,
    print_success,
    print_warning,
    spinner,
)
from nudge.learning.store import LEARNED_TABLES

CLEARABLE_TABLES = LEARNED_TABLES + ("learning_audit",)


# =========================================================================
# Learning commands
# =========================================================================


@click.group("learn")
def learn_group():
    """Self-learning state.

    Inspect and manage what Nudge has learned about helper effectiveness,
    error patterns, trigger thresholds, and session shapes.
    """
    pass


@learn_group.command("status")
def learn_status():
    """Show store statistics and learning status."""
    from nudge.learning.engine import LearningEngine
    from nudge.learning.store import get_learning_store

    store = get_learning_store()
    stats = store.get_stats()

    table = Table(title="Nudge Learning Status")
    table.add_column("Table", style="bold")
    table.add_column("Entries", justify="right")

    for table_name in CLEARABLE_TABLES:
        table.add_row(table_name, str(stats.get(table_name, 0)))

    console.print(table)
    console.print()

    last_adjusted = stats.get("last_threshold_adjustment")
    if last_adjusted:
        console.print(f"  Last threshold adjustment: {last_adjusted[:19]}")
    else:
        console.print("  Last threshold adjustment: [white]never[/white]")
    console.print(f"  DB size: {format_db_size(stats.get('db_size_bytes', 0))}")

    status = LearningEngine(store).get_learning_status()
    console.print()
    if not status["has_data"]:
        console.print("[white]Nothing learned yet - use agents to start learning.[/white]")
        return
    console.print(f"  Agent usages (30 days): {status['agent_usages']}")
    console.print(f"  Error patterns: {status['error_patterns']}")
    console.print(f"  Agent types with a verdict: {status['thresholds_adjusted']}")


@learn_group.command("report")
@click.option("--days", default=None, type=int, help="Look-back window in days (default: from config)")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
def learn_report(days: Optional[int], as_json: bool):
    """Run a learning cycle and show what it found."""
    from nudge.config import load_config
    from nudge.learning.engine import LearningEngine
    from nudge.learning.store import get_learning_store

    window = days if days is not None else load_config().learning.window_days
    engine = LearningEngine(get_learning_store(), project_root=Path.cwd())

    if as_json:
        report = engine.run_learning_cycle(window)
        click.echo(json.dumps(report.to_dict(), indent=2, default=str))
        return

    with spinner("Running learning cycle"):
        report = engine.run_learning_cycle(window)

    if report.agent_effectiveness:
        table = Table(title=f"Agent Effectiveness (last {window} days)")
        table.add_column("Agent Type", style="bold")
        table.add_column("Samples", justify="right")
        table.add_column("Effectiveness", justify="right")
        table.add_column("Success", justify="right")

        for s in report.agent_effectiveness:
            style = effectiveness_style(s.avg_effectiveness)
            table.add_row(
                s.agent_type,
                str(s.sample_count),
                f"[{style}]{s.avg_effectiveness:.0%}[/{style}]",
                f"{s.success_rate:.0%}",
            )
        console.print(table)
        console.print(
            f"  agents used: {report.total_agent_usages} "
            f"(avg effectiveness: {report.average_effectiveness:.0%})"
        )
    else:
        console.print("[white]No agent usage data yet.[/white]")

    if report.threshold_adjustments:
        console.print()
        console.print("[bold]Threshold adjustments[/bold]")
        for adj in report.threshold_adjustments:
            note = "" if adj.persisted else " [red](not saved)[/red]"
            console.print(f"  {adj.agent_type}: {adj.old_value} -> {adj.new_value}{note}")

    if report.error_patterns:
        console.print()
        console.print(f"Error patterns: {len(report.error_patterns)} learned")
        for entry in report.top_error_categories:
            console.print(f"  {entry['category']}: {entry['count']}x")

    if report.current_prediction:
        console.print()
        pred = report.current_prediction
        console.print(f"[cyan]Predicted:[/cyan] {pred.agent_name} ({pred.confidence:.0%})")

    if report.insights:
        console.print()
        console.print("[bold]Insights[/bold]")
        for insight in report.insights:
            console.print(f"  - {insight}")


@learn_group.command("thresholds")
def learn_thresholds():
    """Show current trigger thresholds."""
    from nudge.learning.store import get_learning_store
    from nudge.learning.thresholds import ThresholdManager

    manager = ThresholdManager(get_learning_store())
    configs = manager.get_all_thresholds()
    statuses = {r["agent_type"]: r["status"] for r in manager.get_effectiveness_report()}

    table = Table(title="Agent Thresholds")
    table.add_column("Agent Type", style="bold")
    table.add_column("Threshold", justify="right")
    table.add_column("Range", justify="right")
    table.add_column("Samples", justify="right")
    table.add_column("Effectiveness", justify="right")
    table.add_column("Status")
    table.add_column("Last Adjusted", max_width=19)

    for c in configs:
        source = "" if c.stored else " [white](default)[/white]"
        table.add_row(
            c.agent_type,
            f"{c.threshold_value:g}{source}",
            f"{c.min_value:g}-{c.max_value:g}",
            str(c.sample_count),
            f"{c.effectiveness_avg:.0%}",
            statuses.get(c.agent_type, "-"),
            (c.last_adjusted or "")[:19],
        )

    console.print(table)


@learn_group.command("reset")
@click.argument("agent_type")
def learn_reset(agent_type: str):
    """Reset an agent type's threshold to its default."""
    from nudge.learning.store import get_learning_store
    from nudge.learning.thresholds import ThresholdManager

    config = ThresholdManager(get_learning_store()).reset_threshold(agent_type)
    print_success(f"Reset {agent_type} threshold to {config.threshold_value:g}")


@learn_group.command("patterns")
@click.option("--limit", default=20, type=int, help="Number of patterns to show")
def learn_patterns(limit: int):
    """Show learned error patterns."""
    from nudge.learning.clusterer import ErrorClusterer
    from nudge.learning.store import get_learning_store

    patterns = ErrorClusterer(get_learning_store()).get_learned_patterns(limit)

    if not patterns:
        console.print("[white]No error patterns learned yet.[/white]")
        return

    table = Table(title="Learned Error Patterns")
    table.add_column("ID", justify="right")
    table.add_column("Category", style="bold")
    table.add_column("Suggested Agent")
    table.add_column("Seen", justify="right")
    table.add_column("Fixed", justify="right")
    table.add_column("Pattern", max_width=60)

    for p in patterns:
        table.add_row(
            str(p.id),
            p.category or "[white]uncategorized[/white]",
            p.suggested_agent or "[white]-[/white]",
            str(p.occurrence_count),
            f"{p.fix_success_rate:.0%}",
            p.canonical_form[:60],
        )

    console.print(table)


@learn_group.command("predict")
def learn_predict():
    """Predict a helpful agent for the current session."""
    from nudge.learning.predictor import AgentPredictor, format_prediction
    from nudge.learning.store import get_learning_store

    prediction = AgentPredictor(get_learning_store(), Path.cwd()).predict_agent()
    if prediction is None:
        console.print("[white]No prediction - not enough similar past sessions.[/white]")
        return

    console.print(format_prediction(prediction))
    for match in prediction.similar_contexts:
        console.print(
            f"  [white]{match.snapshot.useful_agent}: "
            f"similarity {match.similarity:.2f}, "
            f"effectiveness {match.snapshot.agent_effectiveness:.2f}[/white]"
        )


@learn_group.command("efficiency")
def learn_efficiency():
    """Score the current session's efficiency."""
    from nudge.config import load_config
    from nudge.learning.hygiene import calculate_efficiency, format_efficiency_warning
    from nudge.learning.store import get_learning_store

    eff = calculate_efficiency(get_learning_store())

    table = Table(title="Session Efficiency")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Score", f"{eff.score}/100")
    table.add_row("Focus", f"{eff.focus_ratio:.2f} ({eff.files_read} read, {eff.files_edited} edited)")
    table.add_row("Loops", str(eff.loop_count))
    table.add_row("Search efficiency", f"{eff.search_efficiency:.0%}")
    console.print(table)

    warning = format_efficiency_warning(eff, load_config().hygiene.warn_on_low_efficiency)
    if warning:
        print_warning(warning)


@learn_group.command("audit")
@click.option("--limit", default=50, type=int, help="Number of entries to show")
def learn_audit(limit: int):
    """Show learning operation audit log."""
    from nudge.learning.store import get_learning_store

    entries = get_learning_store().get_audit_log(limit=limit)

    if not entries:
        console.print("[white]No audit entries.[/white]")
        return

    table = Table(title=f"Learning Audit Log (last {limit})")
    table.add_column("Timestamp", max_width=19)
    table.add_column("Op", style="bold")
    table.add_column("Table")
    table.add_column("Key", max_width=30)
    table.add_column("Result", max_width=50)

    for e in entries:
        table.add_row(
            (e.get("timestamp") or "")[:19],
            e.get("operation", "?"),
            e.get("table_name", "?"),
            (e.get("key_info") or "")[:30],
            (e.get("result") or "")[:50],
        )

    console.print(table)


@learn_group.command("export")
@click.option("--output", "-o", default=None, help="Output file path (default: stdout)")
def learn_export(output: Optional[str]):
    """Export all learned data to JSON."""
    from nudge.learning.store import get_learning_store

    data = get_learning_store().export_all()
    json_str = json.dumps(data, indent=2, default=str)

    if output:
        try:
            Path(output).write_text(json_str)
        except OSError as e:
            print_error(f"Could not write {output}: {e}", fix_hint="Check that the directory exists")
            return
        console.print(f"Exported learning data to {output}")
    else:
        click.echo(json_str)


@learn_group.command("clear")
@click.option("--table", "table_name", default=None,
              type=click.Choice(CLEARABLE_TABLES + ("all",)),
              help="Table to clear (default: all)")
@click.option("--confirm", is_flag=True, help="Skip confirmation prompt")
def learn_clear(table_name: Optional[str], confirm: bool):
    """Clear learned data."""
    from nudge.learning.store import get_learning_store

    if not confirm:
        target = table_name or "ALL"
        if not click.confirm(f"Clear {target} learning data? This cannot be undone"):
            console.print("[white]Cancelled.[/white]")
            return

    store = get_learning_store()

    if table_name and table_name != "all":
        count = store.clear_table(table_name)
        console.print(f"Cleared {count} entries from {table_name}")
    else:
        results = store.clear_all()
        for tbl, count in results.items():
            console.print(f"  {tbl}: {count} entries cleared")
        console.print("[bold]All learning data cleared.[/bold]")
