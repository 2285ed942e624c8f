"""Command-line interface for the NotebookLM content generator and queue worker."""

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
import structlog

from .config import DEFAULT_LANGUAGE, QUEUE_BACKEND, SETTINGS_FILE, WATCH_INTERVAL
from .errors import ConfigurationError, NotebookLMError
from .models import GenerationRequest
from .service import NotebookLMService, build_queue_store
from .utils import load_source_file


def configure_logging(verbose: bool = False) -> None:
    """JSON logs by default, human-readable console output with ``--verbose``."""
    renderer = structlog.dev.ConsoleRenderer() if verbose else structlog.processors.JSONRenderer()
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


log = structlog.get_logger()


def _build_request(source: Path, title: str, outputs, question, language, focus) -> GenerationRequest:
    try:
        return GenerationRequest(
            title=title or source.stem,
            source_content=load_source_file(source),
            outputs=list(outputs),
            question=question,
            language=language,
            focus_prompt=focus,
        )
    except (ValueError, FileNotFoundError) as e:
        raise click.BadParameter(str(e))


def _echo_json(data) -> None:
    click.echo(json.dumps(data, ensure_ascii=False, indent=2, default=str))


def _open_store(backend: str):
    try:
        return build_queue_store(backend)
    except ConfigurationError as e:
        log.error("Queue store not configured", backend=backend, error=str(e))
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


request_options = [
    click.argument("source", type=click.Path(exists=True, dir_okay=False, path_type=Path)),
    click.option("--title", "-t", default=None, help="Notebook title (defaults to the file name)"),
    click.option(
        "--output", "-o", "outputs",
        type=click.Choice(["podcast", "slides", "infographic"]),
        multiple=True,
        help="Artifact to generate; repeat for several"
    ),
    click.option("--question", "-q", default=None, help="Question to answer from the source"),
    click.option("--language", default=DEFAULT_LANGUAGE, show_default=True, help="Output language code"),
    click.option("--focus", default=None, help="Optional focus prompt for every artifact"),
]


def with_request_options(func):
    for option in reversed(request_options):
        func = option(func)
    return func


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option(
    "--settings-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=SETTINGS_FILE,
    help="Backend settings JSON file"
)
@click.option(
    "--queue",
    type=click.Choice(["supabase", "sqlite"]),
    default=QUEUE_BACKEND,
    show_default=True,
    help="Queue store to use"
)
@click.pass_context
def main(ctx: click.Context, verbose: bool, settings_file: Path, queue: str):
    """Generate podcasts, slides, infographics and answers from source text."""
    configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["settings_file"] = settings_file
    ctx.obj["queue"] = queue


@main.command("process-queue")
@click.option("--watch", is_flag=True, help="Keep processing in a loop")
@click.option(
    "--interval",
    type=float,
    default=WATCH_INTERVAL,
    show_default=True,
    help="Seconds between cycles in watch mode"
)
@click.pass_context
def process_queue(ctx: click.Context, watch: bool, interval: float):
    """Recover stuck rows and process pending batches."""
    store = _open_store(ctx.obj["queue"])
    service = NotebookLMService.from_config(ctx.obj["settings_file"], store=store)

    log.info("Starting queue processor", watch=watch, interval=interval, queue=ctx.obj["queue"])
    try:
        if watch:
            asyncio.run(service.processor.watch(interval))
        else:
            report = asyncio.run(service.processor.run_once())
            _echo_json(report.__dict__)
    except KeyboardInterrupt:
        log.info("Queue processor stopped")
    except Exception as e:
        log.error("Queue processing failed", error=str(e))
        raise click.ClickException(str(e))


@main.command()
@with_request_options
@click.pass_context
def generate(ctx: click.Context, source: Path, title, outputs, question, language, focus):
    """Generate content now and print the results."""
    request = _build_request(source, title, outputs, question, language, focus)
    service = NotebookLMService.from_config(ctx.obj["settings_file"])

    def show_progress(result):
        log.info("Progress", type=result.type, status=result.status)

    try:
        results = asyncio.run(service.generate_content(request, show_progress))
    except NotebookLMError as e:
        log.error("Generation failed", error=str(e))
        raise click.ClickException(str(e))

    _echo_json([result.model_dump(exclude_none=True) for result in results])


@main.command()
@with_request_options
@click.pass_context
def enqueue(ctx: click.Context, source: Path, title, outputs, question, language, focus):
    """Queue a request for the queue processor."""
    request = _build_request(source, title, outputs, question, language, focus)
    store = _open_store(ctx.obj["queue"])
    service = NotebookLMService.from_config(ctx.obj["settings_file"], store=store)

    batch_id, items = asyncio.run(service.enqueue(request))
    _echo_json({
        "batch_id": batch_id,
        "items": [{"id": item.id, "content_type": item.content_type} for item in items],
    })


@main.command()
@with_request_options
@click.option(
    "--now/--queue-only", "process_now",
    default=None,
    help="Run right away or only queue (default: run when a backend is available)"
)
@click.pass_context
def submit(ctx: click.Context, source: Path, title, outputs, question, language, focus, process_now):
    """Store a request as queue rows and process it now when possible."""
    request = _build_request(source, title, outputs, question, language, focus)
    store = _open_store(ctx.obj["queue"])
    service = NotebookLMService.from_config(ctx.obj["settings_file"], store=store)

    try:
        result = asyncio.run(service.submit(request, process_immediately=process_now))
    except NotebookLMError as e:
        log.error("Submission failed", error=str(e))
        raise click.ClickException(str(e))

    _echo_json({
        "batch_id": result.batch_id,
        "processed_immediately": result.processed_immediately,
        "items": [
            item.model_dump(include={"id", "content_type", "status", "task_id", "answer", "error_message"},
                            exclude_none=True)
            for item in result.items
        ],
    })


@main.command("check-status")
@click.argument("item_id")
@click.pass_context
def check_status(ctx: click.Context, item_id: str):
    """Poll the studio once for a processing queue row."""
    store = _open_store(ctx.obj["queue"])
    service = NotebookLMService.from_config(ctx.obj["settings_file"], store=store)

    try:
        item = asyncio.run(service.processor.check_item(item_id))
    except NotebookLMError as e:
        log.error("Status check failed", item_id=item_id, error=str(e))
        raise click.ClickException(str(e))

    _echo_json(item.model_dump(
        include={"id", "content_type", "status", "progress_percent", "content_url", "error_message"}
    ))


@main.command()
@click.pass_context
def status(ctx: click.Context):
    """Show which backend would serve a request right now."""
    service = NotebookLMService.from_config(ctx.obj["settings_file"])
    _echo_json(asyncio.run(service.get_status()).model_dump())


@main.command()
@click.option("--mode", type=click.Choice(["local", "cloud", "auto"]), default=None)
@click.option("--mcp-url", default=None, help="Local MCP server URL")
@click.option("--gemini-key", default=None, help="Gemini API key")
@click.pass_context
def settings(ctx: click.Context, mode, mcp_url, gemini_key):
    """Show or update the backend settings."""
    service = NotebookLMService.from_config(ctx.obj["settings_file"])
    changes = {
        key: value for key, value in
        (("mode", mode), ("local_mcp_url", mcp_url), ("gemini_api_key", gemini_key))
        if value is not None
    }
    current = service.update_settings(**changes) if changes else service.settings.current

    shown = current.model_dump()
    if shown["gemini_api_key"]:
        shown["gemini_api_key"] = shown["gemini_api_key"][:4] + "..."
    _echo_json(shown)


@main.command("check-queue")
@click.option("--limit", type=int, default=10, show_default=True)
@click.pass_context
def check_queue(ctx: click.Context, limit: int):
    """List the most recent queue rows."""
    store = _open_store(ctx.obj["queue"])
    items = asyncio.run(store.list_recent(limit))
    if not items:
        click.echo("Queue is empty")
        return
    for item in items:
        click.echo(f"{item.status:<11} {item.content_type:<12} {item.progress_percent:>3}%  "
                   f"{item.notebook_name or item.title or ''}")


if __name__ == "__main__":
    main()
