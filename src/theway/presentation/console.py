from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from theway.application.dtos import (
    PermitUpgradeView,
    PrerequisitesNotMet,
    StageProgressView,
    StaleProgress,
    StaleRelationship,
    StoryChapterView,
    StoryNodeView,
    StoryProgressView,
    TradeAccessView,
    TradeEligibilityView,
    TradeRecordView,
)


def _node_panel(view: StoryNodeView, *, title: str | None = None) -> Panel:
    lines = [f"[bold]{view.speaker}[/bold]: {view.text}"]
    for index, choice in enumerate(view.choices, start=1):
        suffix = f" [dim](starts {choice.quest_trigger})[/dim]" if choice.quest_trigger else ""
        lines.append(f"  {index}. {choice.text}{suffix}")
    if not view.choices:
        lines.append("[dim]No choices available.[/dim]")
    if view.rewards:
        rewards = ", ".join(f"{key}={value}" for key, value in view.rewards.items())
        lines.append(f"[green]Rewards:[/green] {rewards}")
    return Panel("\n".join(lines), title=title or f"{view.id} ({view.node_type})", border_style="cyan")


def _trade_table(view: TradeAccessView) -> Table:
    table = Table(title=f"Trade access: {view.player_id} @ {view.merchant_id}")
    table.add_column("Field")
    table.add_column("Value", justify="right")
    table.add_row("Trust stage", f"{view.trust_stage} ({view.stage_progress}/{view.stage_requirement})")
    table.add_row("Permit tier", str(view.permit_tier))
    table.add_row("Relationship max grade", str(view.relationship_max_grade))
    table.add_row("Permit max grade", str(view.permit_max_grade))
    table.add_row("Effective max grade", str(view.effective_max_grade))
    table.add_row("Can trade", "yes" if view.can_trade else "no")
    return table


def _eligibility_table(view: TradeEligibilityView) -> Table:
    table = _trade_table(view.access)
    distance = "unknown" if view.distance_meters is None else f"{view.distance_meters} m"
    table.add_row("Distance", f"{distance} (limit {view.trade_distance_limit} m)")
    table.add_row("Within reach", "yes" if view.within_trade_distance else "no")
    table.add_row("Can trade here", "yes" if view.can_trade else "no")
    return table


def _chapter_table(rows: list[StoryChapterView]) -> Table:
    table = Table(title="Story chapters")
    table.add_column("#", justify="right")
    table.add_column("Title")
    table.add_column("Type")
    table.add_column("Opens at")
    table.add_column("Seen")
    for row in rows:
        table.add_row(str(row.chapter), row.title, row.story_type, row.initial_node, "x" if row.completed else "")
    return table


def render(value: Any, console: Console) -> None:
    """Print a service result for people rather than scripts."""

    if isinstance(value, StoryNodeView):
        console.print(_node_panel(value))
    elif isinstance(value, StoryProgressView):
        label = "Already completed" if value.duplicate else "Completed"
        console.print(f"[bold]{label}[/bold] {value.completed_node}")
        if value.rewards:
            console.print(f"[green]Rewards:[/green] {value.rewards}")
        if value.next_node is not None:
            console.print(_node_panel(value.next_node, title=f"Next: {value.next_node.id}"))
        else:
            console.print("[dim]The story pauses here.[/dim]")
    elif isinstance(value, PrerequisitesNotMet):
        console.print(Panel(value.fallback_dialogue, border_style="yellow"))
        console.print(f"[dim]Missing: {', '.join(value.missing)}[/dim]")
    elif isinstance(value, TradeEligibilityView):
        console.print(_eligibility_table(value))
    elif isinstance(value, TradeRecordView):
        console.print(
            f"[green]Trade recorded[/green] {value.amount} with {value.merchant_id} "
            f"({value.total_trades} trades, {value.total_spent} spent)"
        )
    elif isinstance(value, TradeAccessView):
        console.print(_trade_table(value))
    elif isinstance(value, StageProgressView):
        status = "counted" if value.applied else "not counted"
        console.print(
            f"Quest {value.quest_id} {status}: stage {value.trust_stage} "
            f"({value.stage_progress}/{value.stage_requirement})"
        )
    elif isinstance(value, PermitUpgradeView):
        console.print(f"[green]Permit upgraded[/green] to tier {value.permit_tier} ({value.permit_item_id})")
    elif isinstance(value, (StaleProgress, StaleRelationship)):
        console.print("[yellow]Another update landed first; try again.[/yellow]")
    elif isinstance(value, list) and all(isinstance(row, StoryChapterView) for row in value):
        console.print(_chapter_table(value))
    else:
        console.print(value)
