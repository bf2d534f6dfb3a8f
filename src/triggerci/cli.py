# cli.py
from __future__ import annotations

import json
import signal
import subprocess
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import click

from triggerci.config import load_workflow
from triggerci.environment import DockerEnvironment, LocalEnvironment
from triggerci.errors import ConfigurationError, MalformedTriggerError
from triggerci.events import event_from_git, normalize
from triggerci.gate import matching_rule
from triggerci.git_facts.git import repo_root
from triggerci.graph import JobGraph
from triggerci.model import Event, RunStatus, Workflow
from triggerci.pipeline import Pipeline, exit_code
from triggerci.reporter import ConsoleSink, HttpSink, JsonFileSink, Sink
from triggerci.ui.console import Console, get_console, set_console

# exit status for a malformed trigger or an invalid workflow
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


def find_workflow_files() -> list[Path]:
    """
    Find all workflow files in the current directory.

    Returns:
        List of Path objects for workflow files
    """
    current_dir = Path(".")
    found: list[Path] = []
    for pattern in ("triggerci_workflow.py", "*_workflow.py", "triggerci.yml", "triggerci.yaml"):
        for path in sorted(current_dir.glob(pattern)):
            if path not in found:
                found.append(path)
    return found


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  triggerci run --workflow lints.yml",
            )
            sys.exit(EXIT_USAGE)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=["Looked for:", "  triggerci_workflow.py", "  *_workflow.py", "  triggerci.yml"],
            suggestion="Specify a workflow explicitly:\n  triggerci run --workflow lints.yml",
        )
        sys.exit(EXIT_USAGE)

    if len(workflow_files) > 1:
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[str(f) for f in workflow_files],
            suggestion="Specify a workflow explicitly:\n  triggerci run --workflow triggerci_workflow.py",
        )
        sys.exit(EXIT_USAGE)

    return workflow_files[0]


def _read_payload(event_file: str) -> Any:
    if event_file == "-":
        return json.load(sys.stdin)
    with open(event_file, "r", encoding="utf-8") as f:
        return json.load(f)


def _resolve_event(event_file: str | None, event_name: str | None, delivery_id: str | None, from_git: bool) -> Event:
    """Raises MalformedTriggerError when no usable event can be built."""
    if event_file:
        try:
            payload = _read_payload(event_file)
        except (OSError, json.JSONDecodeError) as e:
            raise MalformedTriggerError(f"could not read trigger payload: {e}") from e
        return normalize(payload, event_name, delivery_id=delivery_id)
    if from_git:
        try:
            return event_from_git()
        except (subprocess.CalledProcessError, FileNotFoundError) as e:
            raise MalformedTriggerError("not inside a git repository; pass --event") from e
    raise MalformedTriggerError("no trigger given: pass --event FILE or --from-git")


def _default_repository() -> str:
    try:
        return str(repo_root())
    except (subprocess.CalledProcessError, FileNotFoundError):
        return str(Path(".").resolve())


def _load(workflow: str | None) -> tuple[Path, Workflow]:
    path = discover_workflow(workflow)
    return path, load_workflow(path)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and step output)",
)
@click.option("--quiet", is_flag=True, default=False, help="Only print errors and the results table")
@click.pass_context
def cli(ctx, debug, quiet):
    """triggerci: event-gated CI pipeline runner."""
    console = Console(debug=debug, quiet=quiet)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.yml/.yaml/.json/.py)")
@click.option("--event", "event_file", default=None, help="Trigger payload JSON file ('-' for stdin)")
@click.option("--event-name", default=None, help="Webhook event name (push | pull_request) for raw webhook payloads")
@click.option("--delivery-id", default=None, help="Delivery id identifying this event for idempotent publishing")
@click.option("--from-git", is_flag=True, default=False, help="Describe the local checkout as a push event")
@click.option("--workers", default=None, type=click.IntRange(min=1), help="Maximum concurrent jobs (default: unbounded)")
@click.option("--backend", type=click.Choice(["local", "docker"]), default="local", show_default=True)
@click.option("--image", default="ubuntu:latest", show_default=True, help="Container image for the docker backend")
@click.option("--repository", default=None, help="Repository cloned by checkout steps (default: this repo)")
@click.option("--results-dir", default=None, help="Write the run result as JSON into this directory")
@click.option("--publish-url", default=None, help="POST the run result to this control-plane URL")
@click.pass_context
def run(ctx, workflow, event_file, event_name, delivery_id, from_git, workers, backend, image, repository, results_dir, publish_url):
    """Gate an event against a workflow and run the admitted jobs."""
    console = get_console()

    try:
        workflow_path, wf = _load(workflow)
        event = _resolve_event(event_file, event_name, delivery_id, from_git)
    except ConfigurationError as e:
        console.print_error("Invalid workflow", str(e))
        sys.exit(EXIT_USAGE)
    except MalformedTriggerError as e:
        console.print_error("Malformed trigger", str(e))
        sys.exit(EXIT_USAGE)

    environment = DockerEnvironment(image) if backend == "docker" else LocalEnvironment()
    sinks: List[Sink] = [ConsoleSink()]
    if results_dir:
        sinks.append(JsonFileSink(results_dir))
    if publish_url:
        sinks.append(HttpSink(publish_url))

    pipeline = Pipeline(
        wf,
        environment=environment,
        max_workers=workers,
        sinks=sinks,
        repository=repository or _default_repository(),
    )

    interrupted: Dict[str, bool] = {"flag": False}

    def _on_signal(signum, frame):
        console.print_info(f"\nReceived signal {signum}, cancelling in-flight jobs...")
        interrupted["flag"] = True
        pipeline.cancel()

    old_int = signal.signal(signal.SIGINT, _on_signal)
    old_term = signal.signal(signal.SIGTERM, _on_signal)
    try:
        result = pipeline.run_event(event)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)
    finally:
        signal.signal(signal.SIGINT, old_int)
        signal.signal(signal.SIGTERM, old_term)

    if interrupted["flag"] and result.status is RunStatus.CANCELLED:
        sys.exit(EXIT_INTERRUPTED)
    sys.exit(exit_code(result))


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.yml/.yaml/.json/.py)")
@click.option("--event", "event_file", default=None, help="Optional trigger payload to plan against")
@click.option("--event-name", default=None, help="Webhook event name for raw webhook payloads")
@click.pass_context
def check(ctx, workflow, event_file, event_name):
    """Validate a workflow and, given an event, show what would run."""
    console = get_console()

    try:
        workflow_path, wf = _load(workflow)
    except ConfigurationError as e:
        console.print_error("Invalid workflow", str(e))
        sys.exit(EXIT_USAGE)

    graph = JobGraph(wf.jobs)
    console.print_info(f"Workflow: {wf.name} ({workflow_path})")
    console.print_info("Triggers:")
    for rule in wf.triggers:
        kinds = ", ".join(sorted(k.value for k in rule.match_kinds))
        branches = ", ".join(sorted(rule.match_branches)) or "*"
        console.print_info(f"  [{kinds}] on {branches}")
    console.print_info("Stages:")
    for i, level in enumerate(graph.levels(), start=1):
        console.print_info(f"  {i}: {', '.join(level)}")

    if not event_file:
        return

    try:
        event = _resolve_event(event_file, event_name, None, False)
    except MalformedTriggerError as e:
        console.print_error("Malformed trigger", str(e))
        sys.exit(EXIT_USAGE)

    rule = matching_rule(event, wf.triggers)
    console.print_gate(event, rule is not None, rule)
    if rule is None:
        return
    _selected, skipped = graph.partition(event)
    skipped_names = {j.name for j in skipped}
    for j in graph:
        if j.name in skipped_names:
            console.print_plan_job_skipped(j.name, f"condition {j.condition.source!r} is false")
        else:
            console.print_plan_job(j.name, "would run")


def main(argv: Optional[List[str]] = None) -> None:
    cli(args=argv)


if __name__ == "__main__":
    main()
