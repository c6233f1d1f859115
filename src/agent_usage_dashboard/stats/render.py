"""Rich rendering helpers for the agent usage dashboard."""

from __future__ import annotations

import orjson
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .schemas import Catalog, DashboardUsage, ModelCard, ModelShare, PluginCard, SessionFact, SkillCard, TrendPoint

TABLE_ROW_STYLES = ["white", "yellow"]
QUERY_PREVIEW_CHARS = 60


def render_dashboard(usage: DashboardUsage, console: Console) -> None:
    """Render overview, trend, model, recent-session, catalog and coverage sections."""
    if usage.totals.sessions == 0:
        console.print("No session token usage found in the database.")
        _print_catalog(usage.catalog, console)
        _print_coverage(usage, console)
        return

    _print_overview(usage, console)
    console.print("\n")
    _print_trend_table(usage.trend, console)
    console.print("\n")
    _print_model_table(usage.models, usage.totals.total_tokens, console)
    console.print("\n")
    _print_recent_table(usage.recent, console)
    console.print("\n")
    _print_catalog(usage.catalog, console)
    _print_coverage(usage, console)


def _print_overview(usage: DashboardUsage, console: Console) -> None:
    table = Table(title="Overview", title_justify="left")
    table.add_column("Sessions", justify="right")
    table.add_column("Input Tokens", justify="right")
    table.add_column("Output Tokens", justify="right")
    table.add_column("Total Tokens", justify="right")
    table.add_row(
        str(usage.totals.sessions),
        f"{usage.totals.input_tokens:,}",
        f"{usage.totals.output_tokens:,}",
        f"{usage.totals.total_tokens:,}",
    )
    console.print(table)


def _print_trend_table(trend: list[TrendPoint], console: Console) -> None:
    table = Table(title="Daily Token Trend (UTC)", show_footer=True, footer_style="bold", title_justify="left")
    table.add_column("Day", footer="Total", justify="left")
    table.add_column("Date", justify="left")
    table.add_column("Total Tokens", justify="right")

    total_tokens = 0
    for index, point in enumerate(trend):
        total_tokens += point.tokens
        style = TABLE_ROW_STYLES[index % len(TABLE_ROW_STYLES)]
        table.add_row(point.label, point.day.isoformat(), f"{point.tokens:,}", style=style)

    table.columns[2].footer = f"{total_tokens:,}"
    console.print(table)


def _print_model_table(models: list[ModelShare], grand_total: int, console: Console) -> None:
    table = Table(title="Token Usage by Model", title_justify="left")
    table.add_column("Model", justify="left")
    table.add_column("Total Tokens", justify="right")
    table.add_column("Share", justify="right")

    for index, share in enumerate(models):
        ratio = share.tokens / grand_total if grand_total else 0.0
        style = TABLE_ROW_STYLES[index % len(TABLE_ROW_STYLES)]
        table.add_row(share.model, f"{share.tokens:,}", f"{ratio:.1%}", style=style)

    console.print(table)


def _print_recent_table(recent: list[SessionFact], console: Console) -> None:
    table = Table(title="Recent Sessions", title_justify="left")
    table.add_column("Updated (UTC)", justify="left")
    table.add_column("Source", justify="left")
    table.add_column("Agent", justify="left")
    table.add_column("Model", justify="left")
    table.add_column("Total Tokens", justify="right")
    table.add_column("Query", justify="left", overflow="ellipsis")

    for index, fact in enumerate(recent):
        style = TABLE_ROW_STYLES[index % len(TABLE_ROW_STYLES)]
        table.add_row(
            fact.updated_at.strftime("%Y-%m-%d %H:%M"),
            fact.source,
            fact.agent_id or "-",
            fact.model,
            f"{fact.total_tokens:,}",
            _preview(fact.input_query),
            style=style,
        )

    console.print(table)


def _print_catalog(catalog: Catalog | None, console: Console) -> None:
    """Print the non-empty catalog tables, each followed by a blank line."""
    if catalog is None:
        return
    if catalog.models:
        _print_model_catalog(catalog.models, console)
        console.print("\n")
    if catalog.skills:
        _print_skill_catalog(catalog.skills, console)
        console.print("\n")
    if catalog.plugins:
        _print_plugin_catalog(catalog.plugins, console)
        console.print("\n")


def _print_model_catalog(models: list[ModelCard], console: Console) -> None:
    table = Table(title="Configured Models", title_justify="left")
    table.add_column("Model", justify="left")
    table.add_column("Alias", justify="left")
    table.add_column("Role", justify="left")
    table.add_column("Context Window", justify="right")
    table.add_column("Last Seen Tokens", justify="right")

    for index, card in enumerate(models):
        style = TABLE_ROW_STYLES[index % len(TABLE_ROW_STYLES)]
        table.add_row(
            card.model_id,
            card.alias,
            card.role,
            f"{card.context_window:,}" if card.context_window else "-",
            f"{card.last_seen_tokens:,}",
            style=style,
        )

    console.print(table)


def _print_skill_catalog(skills: list[SkillCard], console: Console) -> None:
    table = Table(title="Skills", title_justify="left")
    table.add_column("Skill", justify="left")
    table.add_column("Source", justify="left")
    table.add_column("Description", justify="left", overflow="ellipsis")

    for index, card in enumerate(skills):
        style = TABLE_ROW_STYLES[index % len(TABLE_ROW_STYLES)]
        table.add_row(card.name, card.source, _preview(card.description), style=style)

    console.print(table)


def _print_plugin_catalog(plugins: list[PluginCard], console: Console) -> None:
    table = Table(title="Plugins", title_justify="left")
    table.add_column("Plugin", justify="left")
    table.add_column("Status", justify="left")
    table.add_column("Settings", justify="left", overflow="ellipsis")

    for index, card in enumerate(plugins):
        style = TABLE_ROW_STYLES[index % len(TABLE_ROW_STYLES)]
        settings = orjson.dumps(card.config, option=orjson.OPT_SORT_KEYS).decode("utf-8")
        table.add_row(card.name, "Enabled" if card.enabled else "Disabled", _preview(settings), style=style)

    console.print(table)


def _print_coverage(usage: DashboardUsage, console: Console) -> None:
    coverage = usage.coverage
    if coverage is None or coverage.bucket_count == 0:
        console.print("Daily bucket coverage: none")
        return
    console.print(
        f"Daily bucket coverage: {coverage.oldest_day} to {coverage.latest_day} ({coverage.bucket_count} buckets)"
    )


def _preview(text: str | None) -> str:
    if not text:
        return ""
    if len(text) <= QUERY_PREVIEW_CHARS:
        return escape(text)
    return escape(text[: QUERY_PREVIEW_CHARS - 1] + "…")
