"""CLI interface for crmflow."""

import asyncio
import json
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from crmflow.config import CrmflowConfig

app = typer.Typer(
    name="crmflow",
    help="Transcript-to-CRM reconciliation engine",
    add_completion=True,
    rich_markup_mode="rich",
)

console = Console()


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging level."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
    )
    # Suppress noisy libraries
    logging.getLogger("litellm").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _build_context(config: CrmflowConfig, model: str | None = None):
    from crmflow.context import EngineContext

    try:
        config.validate_store_key()
        config.validate_api_keys(model or config.default_model)
        return EngineContext.from_config(config, model=model)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None


@app.command()
def process(
    text: str | None = typer.Argument(None, help="Transcript text to process"),
    file: Path | None = typer.Option(None, "--file", "-f", help="Read the transcript from a file"),
    model: str | None = typer.Option(None, help="LLM model (e.g. groq/llama-3.3-70b-versatile)"),
    as_json: bool = typer.Option(False, "--json", help="Print the full result as JSON"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose logging"),
) -> None:
    """Reconcile one transcript against the CRM."""
    _setup_logging(verbose)
    if file is not None:
        if not file.is_file():
            console.print(f"[red]Error:[/red] Not a file: {file}")
            raise typer.Exit(1)
        text = file.read_text(encoding="utf-8")
    if not text or not text.strip():
        console.print("[red]Error:[/red] Provide transcript text or --file")
        raise typer.Exit(1)

    config = CrmflowConfig()
    context = _build_context(config, model)

    from crmflow.pipeline import run_process

    result = run_process(text, context=context)

    if as_json:
        console.print_json(result.model_dump_json())
        raise typer.Exit(0 if result.success else 1)

    if not result.success:
        console.print(f"[red]Processing failed:[/red] {result.error}")
        raise typer.Exit(1)

    if result.entity_plan and result.entity_plan.entities:
        console.print(
            "[cyan]Entities:[/cyan] "
            + ", ".join(f"{e.object_slug}({e.label or '?'})" for e in result.entity_plan.entities)
        )

    table = Table(title="Actions", show_header=True, header_style="bold cyan")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Action")
    table.add_column("Object", style="green")
    table.add_column("Outcome")

    for i, r in enumerate(result.results, 1):
        if r.success:
            outcome = r.result or {}
            detail = outcome.get("operation") or ("found" if outcome.get("found") else "not found")
            record_id = outcome.get("record_id") or ", ".join(outcome.get("record_ids") or [])
            cell = f"[green]{detail}[/green] {record_id}".strip()
        else:
            cell = f"[red]failed[/red] {r.error}"
        table.add_row(str(i), r.action.value, r.object, cell)

    console.print(table)
    if result.summary:
        console.print(result.summary.message)
    console.print(f"  LLM cost: ${context.llm.total_cost_usd:.4f}")


@app.command()
def schema(
    as_json: bool = typer.Option(False, "--json", help="Print as JSON"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose logging"),
) -> None:
    """List the CRM objects discovered from the store."""
    _setup_logging(verbose)
    config = CrmflowConfig()
    context = _build_context(config)

    from crmflow.pipeline import CRMProcessor
    from crmflow.schema.catalog import SchemaDiscoveryError

    processor = CRMProcessor(context)

    async def _discover() -> dict:
        try:
            await processor.initialize_schema()
            return processor.schema_info()
        finally:
            await processor.aclose()

    try:
        info = asyncio.run(_discover())
    except SchemaDiscoveryError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    if as_json:
        console.print_json(json.dumps(info))
        return

    table = Table(title="CRM Objects", show_header=True, header_style="bold cyan")
    table.add_column("Slug", style="green")
    table.add_column("Name")
    table.add_column("Kind")
    table.add_column("Attributes", justify="right")
    table.add_column("Template", justify="right")
    for obj in info["objects"]:
        table.add_row(
            obj["slug"], obj["name"], obj["kind"], str(obj["attributes"]), str(obj["template_fields"])
        )
    console.print(table)


@app.command()
def ping() -> None:
    """Check the record store connection."""
    _setup_logging()
    config = CrmflowConfig()
    try:
        config.validate_store_key()
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    from crmflow.store.http import HttpRecordStore

    store = HttpRecordStore(
        api_key=config.store_api_key or "",
        base_url=config.store_base_url,
        timeout=config.request_timeout,
    )

    async def _ping() -> dict:
        try:
            return await store.test_connection()
        finally:
            await store.aclose()

    status = asyncio.run(_ping())
    if status["success"]:
        console.print(f"[green]{status['message']}[/green] ({status['object_count']} objects)")
    else:
        console.print(f"[red]Connection failed:[/red] {status['message']}")
        raise typer.Exit(1)


@app.command()
def info() -> None:
    """Display the effective configuration."""
    config = CrmflowConfig()

    table = Table(title="crmflow Configuration", show_header=True, header_style="bold cyan")
    table.add_column("Setting", style="dim")
    table.add_column("Value")

    table.add_row("Default Model", config.default_model)
    table.add_row("Store URL", config.store_base_url)
    table.add_row("Store Key", "set" if config.store_api_key else "[red]missing[/red]")
    table.add_row("Store Budget", f"{config.store_rpm}/min")
    table.add_row("LLM Budget", f"{config.llm_rpm}/min")
    table.add_row(
        "Cache TTLs",
        f"store {config.store_cache_ttl:.0f}s, llm {config.llm_cache_ttl:.0f}s, "
        f"resolution {config.resolution_cache_ttl:.0f}s",
    )
    table.add_row("OpenAPI Spec", str(config.openapi_spec_path) if config.openapi_spec_path else "none")

    console.print(table)
