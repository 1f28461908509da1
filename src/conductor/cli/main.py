"""Main CLI entry point for conductor."""

import asyncio
import json
from pathlib import Path

import click

from conductor.agents import LLMReviewer, LLMWorker
from conductor.config.manager import ConfigError, ConfigManager
from conductor.config.schema import ConductorConfig
from conductor.errors import PatchError
from conductor.execution import InMemoryFileStore
from conductor.llm import LLMClient, LLMClientFactory
from conductor.orchestration.models import (
    AgentContext,
    ExecutionStatus,
    FileSnapshot,
    WorkerRole,
)
from conductor.orchestration.registry import CoordinatorRegistry
from conductor.orchestration.stuck_detector import StuckDetector
from conductor.output.formatter import configure_formatter, get_formatter
from conductor.patching import replace

DISPATCHABLE_ROLES = [role.value for role in WorkerRole if role is not WorkerRole.REVIEW]


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose output")
@click.option("--no-color", is_flag=True, help="Disable colors")
@click.version_option(package_name="conductor")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, no_color: bool) -> None:
    """Conductor - delegating code-edit coordinator.

    \b
    Examples:
        conductor patch theme.liquid --search "old" --replace "new"
        conductor detect session.jsonl
        conductor run "make the header sticky" -f header.liquid -f theme.css
        conductor config show
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["no_color"] = no_color

    try:
        config = ConfigManager.get_config()
    except ConfigError as e:
        configure_formatter(color=not no_color, verbose=verbose)
        get_formatter().print_error(str(e))
        raise SystemExit(2)
    configure_formatter(color=config.global_.color and not no_color, verbose=verbose or config.global_.verbose)


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("-s", "--search", required=True, help="Text to find")
@click.option("-r", "--replace", "replacement", required=True, help="Replacement text")
@click.option("--all", "replace_all", is_flag=True, help="Replace every occurrence")
@click.option("--dry-run", is_flag=True, help="Show the diff without writing")
def patch(file: Path, search: str, replacement: str, replace_all: bool, dry_run: bool) -> None:
    """Apply one search/replace edit to FILE."""
    formatter = get_formatter()
    original = file.read_text()

    try:
        result = replace(original, search, replacement, replace_all=replace_all)
    except PatchError as e:
        formatter.print_error(str(e), source=file.name)
        raise SystemExit(1)

    if not dry_run:
        file.write_text(result.content)
    formatter.print_patch_result(file.name, original, result, dry_run=dry_run)


@cli.command()
@click.argument("log", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "output_json", is_flag=True, help="JSON output")
def detect(log: Path, output_json: bool) -> None:
    """Replay a JSONL tool-call LOG through the stuck detector.

    \b
    Each line is one of:
        {"type": "tool_call", "name": ..., "input": {...}, "result": ..., "is_error": false, "is_edit": false}
        {"type": "message", "text": ...}
        {"type": "compaction", "edits_made": false}

    Exits with status 1 at the first detected loop.
    """
    formatter = get_formatter()
    detector = StuckDetector(ConfigManager.get_config().stuck)

    with log.open() as f:
        for line_number, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                entry = json.loads(line)
                _replay(detector, entry)
            except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                formatter.print_error(f"line {line_number}: {e}", source=log.name)
                raise SystemExit(2)

            detection = detector.detect()
            if detection.is_stuck:
                if output_json:
                    click.echo(json.dumps({"line": line_number, **detection.to_dict()}))
                else:
                    formatter.print_detection(detection, line_number)
                raise SystemExit(1)

    if output_json:
        click.echo(json.dumps({"line": None, **detector.detect().to_dict()}))
    else:
        formatter.print_detection(detector.detect())


def _replay(detector: StuckDetector, entry: dict) -> None:
    kind = entry["type"]
    if kind == "tool_call":
        detector.record_tool_call(
            entry["name"],
            entry.get("input"),
            str(entry.get("result", "")),
            bool(entry.get("is_error", False)),
            bool(entry.get("is_edit", False)),
        )
    elif kind == "message":
        detector.record_assistant_message(entry["text"])
    elif kind == "compaction":
        detector.record_compaction(bool(entry.get("edits_made", False)))
    else:
        raise ValueError(f"unknown entry type {kind!r}")


@cli.command()
@click.argument("request")
@click.option(
    "-f", "--file", "files", multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="File the workers may edit (repeatable)",
)
@click.option("--role", type=click.Choice(DISPATCHABLE_ROLES), default=WorkerRole.PROJECT_MANAGER.value,
              help="Worker that receives the request")
@click.option("--no-review", is_flag=True, help="Skip the review step")
@click.option("--apply", "apply_changes", is_flag=True, help="Write changes to disk when the execution completes")
@click.option("--json", "output_json", is_flag=True, help="JSON output")
def run(
    request: str,
    files: tuple[Path, ...],
    role: str,
    no_review: bool,
    apply_changes: bool,
    output_json: bool,
) -> None:
    """Run REQUEST through LLM-backed workers."""
    config = ConfigManager.get_config()
    if no_review:
        config = config.model_copy(update={"review": config.review.model_copy(update={"enabled": False})})

    client = LLMClientFactory.create(config.llm)
    if client is None:
        get_formatter().print_error("No LLM provider available (set ANTHROPIC_API_KEY or OPENAI_API_KEY)")
        raise SystemExit(1)

    status = asyncio.run(_run_execution(config, client, request, files, WorkerRole(role), apply_changes, output_json))
    if status is ExecutionStatus.FAILED:
        raise SystemExit(1)


async def _run_execution(
    config: ConductorConfig,
    client: LLMClient,
    request: str,
    files: tuple[Path, ...],
    role: WorkerRole,
    apply_changes: bool,
    output_json: bool,
) -> ExecutionStatus:
    formatter = get_formatter()
    contents = {str(path): path.read_text() for path in files}
    store = InMemoryFileStore(contents)
    workers = {r: LLMWorker(r, client) for r in WorkerRole if r is not WorkerRole.REVIEW}
    registry = CoordinatorRegistry(workers, reviewer=LLMReviewer(client), store=store, config=config)

    context = AgentContext(files=tuple(FileSnapshot(name, name, content) for name, content in contents.items()))
    state = await registry.execute("local", "cli", request, context=context, role=role, retain=True)

    if output_json:
        click.echo(json.dumps(state.to_dict(), indent=2))
    else:
        formatter.print_execution(state)

    if apply_changes:
        if state.status is not ExecutionStatus.COMPLETED:
            formatter.print_warning(f"Not applying changes: execution is {state.status.value}")
        else:
            tokens = await registry.get(state.execution_id).commit()
            written = store.snapshot()
            for file_id in tokens:
                Path(file_id).write_text(written[file_id])
                formatter.print_success(f"Wrote {file_id}")
    registry.discard(state.execution_id)
    return state.status


# --- Subcommands ---


@cli.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Show current configuration."""
    config = ConfigManager.get_config()
    formatter = get_formatter()

    config_dict = config.model_dump(by_alias=True)
    formatter.console.print_json(json.dumps(config_dict, indent=2))


@config.command("path")
def config_path() -> None:
    """Show the user config location and every file currently loaded."""
    click.echo(f"user: {ConfigManager.user_config_file()}")
    for source in ConfigManager.sources():
        click.echo(f"loaded: {source}")


if __name__ == "__main__":
    cli()
