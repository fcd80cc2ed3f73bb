"""Rich console output and markdown file save for consensus results."""

import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from consensus.models import AgentResponse, ConsensusResult, Round

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

_ROUND_LABELS = {"initial": "Initial Responses", "debate": "Critique", "final": "Final Positions"}


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _response_preview(response: AgentResponse, words: int = 50) -> str:
    """Return first N words of a response."""
    all_words = response.text.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def _verdict_label(result: ConsensusResult) -> str:
    if result.organic:
        return "consensus reached"
    if result.reached:
        return "forced verdict (no consensus)"
    return "no consensus"


def print_round_summary(rnd: Round) -> None:
    """Print a brief summary of a round's responses and failures to the console."""
    console.print(Rule(f"[bold cyan]Round {rnd.index} Summary[/bold cyan] [dim]({rnd.phase})[/dim]"))
    for resp in rnd.responses:
        subtitle = f"{resp.latency_sec:.1f}s"
        if resp.confidence is not None:
            subtitle += f" | confidence {resp.confidence:.2f}"
        console.print(
            Panel(
                _response_preview(resp),
                title=f"[bold]{resp.agent_id}[/bold] ({resp.model})",
                subtitle=subtitle,
                border_style="dim",
            )
        )
    for failure in rnd.failures:
        console.print(f"  [red]FAIL[/red] {failure.agent_id}: {failure.message}")


def print_result(result: ConsensusResult) -> None:
    """Print the verdict panel and, when present, agreement metadata."""
    console.print(Rule("[bold green]Consensus[/bold green]"))
    console.print(
        Text(
            f"Method: {result.consensus_method} | "
            f"Verdict: {_verdict_label(result)} | "
            f"Rounds: {result.rounds} | "
            f"Tokens: {result.total_tokens} | "
            f"Duration: {result.duration_sec:.1f}s",
            style="dim",
        )
    )
    border = "green" if result.organic else "yellow"
    console.print(Panel(Markdown(result.answer or "_no answer_"), title="Answer", border_style=border))

    agreement = (result.metadata or {}).get("agreement") or []
    if agreement:
        table = Table(title="Agreement by round", show_header=True, header_style="bold")
        table.add_column("Round", justify="right")
        table.add_column("Score", justify="right")
        table.add_column("Trend")
        for row in agreement:
            table.add_row(str(row["round"]), f"{row['score']:.2f}", row["trend"])
        console.print(table)

    if result.cache_stats is not None:
        stats = result.cache_stats
        console.print(
            Text(
                f"Cache: {stats.hits} hits, {stats.misses} misses, {stats.errors} errors, "
                f"{stats.time_saved_sec:.1f}s saved",
                style="dim",
            )
        )


def save_to_file(
    query: str,
    result: ConsensusResult,
    output_dir: Path,
    slug_override: str | None = None,
) -> Path:
    """Save the result (and the transcript, when history is present) as markdown.

    Args:
        query: The question that was debated.
        result: The completed ConsensusResult.
        output_dir: Directory to save the file in.
        slug_override: If provided, use this as the filename stem instead of
            deriving one from the query text.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = slug_override if slug_override is not None else _slug(query)
    filepath = output_dir / f"{timestamp}_{slug}.md"

    lines: list[str] = [
        f"# Consensus: {query[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Models:** {', '.join(result.models)}",
        f"**Method:** {result.consensus_method}",
        f"**Verdict:** {_verdict_label(result)}",
        f"**Rounds:** {result.rounds}",
        f"**Tokens:** {result.total_tokens}",
        f"**Duration:** {result.duration_sec:.1f}s",
    ]
    if result.supporting_confidence is not None:
        lines.append(f"**Supporting confidence:** {result.supporting_confidence:.2f}")
    lines += ["", "---", ""]

    for rnd in result.history or []:
        lines.append(f"## Round {rnd.index}: {_ROUND_LABELS.get(rnd.phase, rnd.phase)}")
        lines.append("")
        for resp in rnd.responses:
            lines.append(f"### {resp.agent_id} ({resp.model})")
            lines.append("")
            lines.append(resp.text)
            lines.append("")
            lines.append(
                f"*Latency: {resp.latency_sec:.2f}s"
                + (f" | Tokens: {resp.token_cost}" if resp.token_cost else "")
                + "*"
            )
            lines.append("")
        for failure in rnd.failures:
            lines.append(f"> **{failure.agent_id} failed:** {failure.message}")
            lines.append("")

    lines += ["## Answer", "", result.answer, ""]

    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Result saved to: %s", filepath)
    return filepath
