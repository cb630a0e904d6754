"""
codecontext CLI - command-line interface for the context engine.

Minimal commands for setting up a knowledge store, querying it and running
the background enrichment worker.
"""

import json
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from codecontext.bootstrap import Services, build_services
from codecontext.config import settings
from codecontext.exceptions import CodeContextError
from codecontext.logging_config import setup_logging

app = typer.Typer(
    name="codecontext",
    help="codecontext - context engine for AI coding assistants",
    no_args_is_help=True,
)

console = Console()

DB_OPTION_HELP = "Knowledge store URL (defaults to DATABASE_URL)"


def _services(database_url: Optional[str], init_schema: bool = True) -> Services:
    try:
        setup_logging(context="cli")
    except PermissionError:
        import logging

        logging.basicConfig(level=logging.INFO)

    config = settings.model_copy(update={"database_url": database_url}) if database_url else settings
    return build_services(config, init_schema=init_schema)


@app.command("init-db")
def init_db(
    database_url: Optional[str] = typer.Option(None, "--db", help=DB_OPTION_HELP),
) -> None:
    """Create the knowledge store tables and full-text indexes."""
    services = _services(database_url)
    try:
        ok = services.database.check_connection()
    finally:
        services.close()

    if not ok:
        console.print("[bold red]Error:[/bold red] knowledge store is not reachable")
        raise typer.Exit(1)
    console.print(f"[green]✓ Knowledge store ready[/green] ({services.config.database_url})")


@app.command()
def retrieve(
    query: str = typer.Argument(..., help="Free-text query"),
    conversation_id: Optional[str] = typer.Option(None, "--conversation", help="Conversation id"),
    token_budget: Optional[int] = typer.Option(None, "--budget", help="Token budget"),
    source: Optional[list[str]] = typer.Option(
        None, "--source", help="Restrict to a source group (fts, keywords, relationships, ...)"
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the raw response as JSON"),
    database_url: Optional[str] = typer.Option(None, "--db", help=DB_OPTION_HELP),
) -> None:
    """Retrieve ranked context snippets for a query."""
    from codecontext.handlers import ContextToolHandlers

    services = _services(database_url)
    try:
        response = ContextToolHandlers(services).retrieve_relevant_context(
            query,
            conversation_id,
            token_budget,
            {"include_sources": source} if source else None,
        )
    finally:
        services.close()

    if as_json:
        console.print_json(json.dumps(response, default=str))
        if not response["processed_ok"]:
            raise typer.Exit(1)
        return

    if not response["processed_ok"]:
        console.print(
            f"[bold red]Error:[/bold red] {response['error']['data']['details']}"
        )
        raise typer.Exit(1)

    snippets = response["context_snippets"]
    if not snippets:
        console.print("[yellow]No relevant context found[/yellow]")
        return

    table = Table(title=f"Context for: {query}")
    table.add_column("Score", justify="right")
    table.add_column("Type")
    table.add_column("Location")
    table.add_column("Preview")
    for snippet in snippets:
        preview = " ".join(snippet["content"].split())[:80]
        table.add_row(
            f"{snippet['score']:.3f}",
            snippet["type"],
            snippet.get("file_path") or snippet["id"],
            preview,
        )
    console.print(table)

    summary = response["retrieval_summary"]
    console.print(
        f"{summary['snippets_returned_after_compression']} snippets, "
        f"{summary['estimated_tokens_out']}/{summary['token_budget_given']} tokens"
    )


@app.command()
def enqueue(
    target_entity_id: str = typer.Argument(..., help="Entity, document or conversation id"),
    target_entity_type: str = typer.Option(
        "code_entity", "--type", help="code_entity, project_document or conversation"
    ),
    task_type: str = typer.Option(
        "enrich_entity_summary_keywords", "--task", help="Job task type"
    ),
    database_url: Optional[str] = typer.Option(None, "--db", help=DB_OPTION_HELP),
) -> None:
    """Queue a background enrichment job."""
    services = _services(database_url)
    try:
        job = services.job_queue.enqueue(target_entity_id, target_entity_type, task_type)
    except CodeContextError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)
    finally:
        services.close()
    console.print(f"[green]✓ Queued[/green] job={job.job_id} status={job.status}")


@app.command()
def cancel(
    entity_id: str = typer.Argument(..., help="Entity id whose waiting jobs to cancel"),
    database_url: Optional[str] = typer.Option(None, "--db", help=DB_OPTION_HELP),
) -> None:
    """Cancel pending and retrying jobs for an entity."""
    services = _services(database_url)
    try:
        cancelled = services.job_queue.cancel_for_entity(entity_id)
    finally:
        services.close()
    console.print(f"Cancelled {cancelled} job(s) for {entity_id}")


@app.command("queue-stats")
def queue_stats(
    database_url: Optional[str] = typer.Option(None, "--db", help=DB_OPTION_HELP),
) -> None:
    """Show background job counts by status."""
    services = _services(database_url)
    try:
        stats = services.job_queue.get_stats()
    finally:
        services.close()

    table = Table(title="Enrichment jobs")
    table.add_column("Status")
    table.add_column("Count", justify="right")
    for status, count in stats.to_dict().items():
        table.add_row(status, str(count))
    console.print(table)


@app.command()
def worker(
    once: bool = typer.Option(False, "--once", help="Run a single tick and exit"),
    concurrency: Optional[int] = typer.Option(None, help="Parallel enrichment calls"),
    polling_interval: Optional[float] = typer.Option(None, help="Seconds between idle polls"),
    database_url: Optional[str] = typer.Option(None, "--db", help=DB_OPTION_HELP),
) -> None:
    """
    Run the background enrichment worker.

    Runs in the foreground until interrupted; Ctrl-C stops polling and waits
    for in-flight jobs.
    """
    services = _services(database_url)
    enrichment_worker = services.worker

    if enrichment_worker.enricher is None:
        console.print(
            f"[bold red]Error:[/bold red] no API key configured for "
            f"{services.config.ai_provider}"
        )
        services.close()
        raise typer.Exit(1)

    if concurrency is not None:
        enrichment_worker.concurrency = max(concurrency, 1)

    if once:
        try:
            processed = enrichment_worker.run_once()
        finally:
            services.close()
        console.print(f"Processed {processed} job(s)")
        return

    console.print("[bold green]Starting enrichment worker...[/bold green]")
    thread = enrichment_worker.start(polling_interval=polling_interval)
    try:
        while thread.is_alive():
            thread.join(timeout=1.0)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopping, waiting for in-flight jobs...[/yellow]")
    finally:
        stats = enrichment_worker.get_stats()
        services.close()
    console.print(
        f"Processed: {stats['jobs_processed']}, "
        f"Succeeded: {stats['jobs_succeeded']}, Failed: {stats['jobs_failed']}"
    )


@app.command()
def summary(
    database_url: Optional[str] = typer.Option(None, "--db", help=DB_OPTION_HELP),
) -> None:
    """Show what the knowledge store knows about the project."""
    services = _services(database_url)
    try:
        structure = services.summaries.get_project_structure_summary()
        architecture = services.summaries.get_architecture_context_summary()
    finally:
        services.close()

    console.print(f"[bold]{structure['summary']}[/bold]")
    for section in ("languages", "entity_types", "document_types"):
        counts = structure.get(section) or {}
        if counts:
            console.print(
                f"  {section.replace('_', ' ')}: "
                + ", ".join(f"{k}={v}" for k, v in sorted(counts.items()))
            )
    if architecture.get("goal_hint"):
        console.print(f"\n[bold]Goal:[/bold] {architecture['goal_hint']}")
    for document in architecture.get("documents", []):
        console.print(f"  [cyan]{document['file_path']}[/cyan]")


if __name__ == "__main__":
    app()
