"""Click CLI: orchestrates config loading, provider selection, the debate, and output."""

import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from config.config_loader import AppConfig, ConsensusConfig, load_config
from consensus.cache.factory import resolve_cache_adapter
from consensus.engine import ConsensusEngine
from consensus.errors import ConsensusError
from consensus.healthcheck import run_health_checks
from consensus.methods import CONSENSUS_METHODS
from consensus.models import ConsensusResult, Round
from consensus.output import print_result, print_round_summary, save_to_file
from consensus.providers.base import AIProvider
from consensus.providers.registry import build_providers

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _determine_panel(config: AppConfig, models_arg: str | None) -> list[str]:
    """--models overrides the configured panel."""
    if models_arg:
        return [m.strip() for m in models_arg.split(",") if m.strip()]
    return list(config.consensus.models)


def _check_and_filter_providers(providers: dict[str, AIProvider]) -> dict[str, AIProvider]:
    """Run health checks, print results, and ask user what to do on failures.

    Returns the filtered dict of working providers. Exits if the user
    declines to continue or no providers pass.
    """
    console.print("\n[bold]Checking providers...[/bold]")
    results: dict[str, tuple[bool, str]] = asyncio.run(run_health_checks(providers))

    failed_names: list[str] = []
    for name in sorted(results):
        ok, err = results[name]
        if ok:
            console.print(f"  [green]OK  [/green] {name}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {name}: {short_err}")
            failed_names.append(name)

    if not failed_names:
        console.print()
        return providers

    working = {n: p for n, p in providers.items() if n not in failed_names}

    if not working:
        console.print("\n[bold red]Error:[/bold red] No providers passed the health check.")
        sys.exit(1)

    console.print(f"\n[yellow]{len(failed_names)} provider(s) failed:[/yellow] {', '.join(failed_names)}")
    console.print(f"Working providers: {', '.join(sorted(working))}")

    if not click.confirm("Continue with working providers only?", default=True):
        sys.exit(0)

    console.print()
    return working


def _effective_config(
    config: AppConfig,
    panel: list[str],
    rounds: int | None,
    method: str | None,
    no_cache: bool,
    history: bool,
    output_dir: Path | None,
) -> ConsensusConfig:
    base = config.consensus
    max_rounds = rounds if rounds is not None else base.max_rounds
    return replace(
        base,
        models=panel,
        max_rounds=max_rounds,
        min_rounds=min(base.min_rounds, max_rounds),
        consensus_method=method or base.consensus_method,
        cache=replace(base.cache, enabled=False) if no_cache else base.cache,
        output=replace(
            base.output,
            include_history=history or base.output.include_history,
            output_dir=output_dir or base.output.output_dir,
        ),
    )


async def _clear_cache(consensus_config: ConsensusConfig) -> None:
    adapter = resolve_cache_adapter(consensus_config.cache)
    try:
        await adapter.clear()
    finally:
        await adapter.close()


async def _run(
    question_text: str,
    consensus_config: ConsensusConfig,
    providers: dict[str, AIProvider],
    single: bool,
) -> ConsensusResult:
    engine = ConsensusEngine(consensus_config, providers=providers)

    mode = "single round" if single else f"up to {consensus_config.max_rounds} rounds"
    console.print(
        f"\n[bold cyan]Consensus[/bold cyan] | {len(engine.agents)} models, {mode}, "
        f"method: {engine.method.name}"
    )
    console.print(f"Panel: {', '.join(consensus_config.models)}")
    console.print(f"Question: [italic]{question_text[:80]}{'...' if len(question_text) > 80 else ''}[/italic]\n")

    completed_rounds: list[Round] = []
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        ) as progress:

            def on_round_complete(rnd: Round) -> None:
                completed_rounds.append(rnd)
                progress.print(f"[green]OK[/green] Round {rnd.index} complete ({len(rnd.responses)} responses)")

            progress.add_task("Running debate rounds...", total=None)
            if single:
                result = await engine.run(question_text)
            else:
                result = await engine.run_debate(question_text, on_round_complete=on_round_complete)
    finally:
        await engine.aclose()

    for rnd in result.history or completed_rounds:
        print_round_summary(rnd)
    print_result(result)
    return result


@click.command()
@click.argument("question", required=False)
@click.option("--file", "question_file", type=click.Path(exists=True), help="Read question from a text/markdown file")
@click.option("--rounds", default=None, type=click.IntRange(min=1), help="Maximum debate rounds (default: from config)")
@click.option("--models", default=None, help="Comma-separated model list, overrides the configured panel")
@click.option("--method", default=None, type=click.Choice(sorted(CONSENSUS_METHODS)),
              help="Consensus method (default: from config)")
@click.option("--single", is_flag=True, default=False, help="Ask each model once, no debate")
@click.option("--no-cache", is_flag=True, default=False, help="Disable the response cache for this run")
@click.option("--history", is_flag=True, default=False, help="Include the full round history in the output")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.option("--skip-health-check", is_flag=True, default=False,
              help="Skip the API connectivity check at startup")
@click.option("--clear-cache", is_flag=True, default=False, help="Clear the configured cache and exit")
def main(
    question: str | None,
    question_file: str | None,
    rounds: int | None,
    models: str | None,
    method: str | None,
    single: bool,
    no_cache: bool,
    history: bool,
    output_path: str | None,
    verbose: bool,
    skip_health_check: bool,
    clear_cache: bool,
) -> None:
    """Multi-agent consensus: models debate a question until they agree.

    \b
    Examples:
      consensus "What is 4+4?"
      consensus "What is the meaning of life?" --rounds 2 --history
      consensus "Is P equal to NP?" --models claude,openai --method unanimous
      consensus --file question.md --single
      consensus --clear-cache
    """
    # Reconfigure stdout/stderr to UTF-8 on Windows so model responses containing
    # Unicode chars don't crash the ANSI render path.
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
    except FileNotFoundError as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    panel = _determine_panel(config, models)
    consensus_config = _effective_config(
        config,
        panel,
        rounds=rounds,
        method=method,
        no_cache=no_cache,
        history=history,
        output_dir=Path(output_path) if output_path else None,
    )

    if clear_cache:
        try:
            asyncio.run(_clear_cache(consensus_config))
        except ConsensusError as exc:
            console.print(f"[bold red]Cache error:[/bold red] {exc}")
            sys.exit(1)
        console.print("Cache cleared.")
        return

    if question_file:
        question_text = Path(question_file).read_text(encoding="utf-8").strip()
    elif question:
        question_text = question
    else:
        console.print("[bold red]Error:[/bold red] Provide a QUESTION argument or --file.")
        sys.exit(1)

    providers = build_providers(config.models, panel)
    if not providers:
        console.print("[bold red]Error:[/bold red] No providers available. Check API keys in .env.")
        sys.exit(1)

    if not skip_health_check:
        providers = _check_and_filter_providers(providers)

    # Drop panel members that could not be built or failed the health check
    dropped = [name for name in panel if name not in providers]
    if dropped:
        console.print(f"[yellow]Skipping unavailable models:[/yellow] {', '.join(dropped)}")
        consensus_config = replace(consensus_config, models=[name for name in panel if name in providers])

    try:
        result = asyncio.run(_run(question_text, consensus_config, providers, single))
    except ConsensusError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)

    saved_path = save_to_file(question_text, result, consensus_config.output.output_dir)
    console.print(f"\n[dim]Saved to: {saved_path}[/dim]")


if __name__ == "__main__":
    main()
