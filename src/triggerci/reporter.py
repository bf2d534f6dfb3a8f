# reporter.py
from __future__ import annotations

import json
import re
import urllib.error
import urllib.request
from urllib.parse import quote
from pathlib import Path
from typing import Dict, Iterable, Optional, Protocol

from .model import Event, JobResult, RunResult
from .ui.console import get_console


def report(event: Event, admitted: bool, job_results: Iterable[JobResult]) -> RunResult:
    """
    Aggregate per-job outcomes into the run's terminal record.

    Pure: equal inputs always give an equal RunResult. A run that was not
    admitted carries no job results. Note the policy that a run whose jobs
    were all skipped is reported as passed.
    """
    results = tuple(job_results) if admitted else ()
    return RunResult(event=event, admitted=admitted, job_results=results)


# ----------------------------------------------------------------------
# Sinks
# ----------------------------------------------------------------------

class Sink(Protocol):
    def publish(self, run: RunResult) -> None: ...


class ReportError(Exception):
    """Raised when a sink cannot deliver a RunResult."""


class ConsoleSink:
    """Prints the results table."""

    def publish(self, run: RunResult) -> None:
        get_console().print_run_result(run)


class MemorySink:
    """Keeps the latest RunResult per event key."""

    def __init__(self) -> None:
        self.runs: Dict[str, RunResult] = {}

    def publish(self, run: RunResult) -> None:
        self.runs[run.event.key] = run


_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


class JsonFileSink:
    """Writes one JSON document per event; re-publishing overwrites it."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def path_for(self, event: Event) -> Path:
        return self.directory / f"{_UNSAFE.sub('_', event.key)}.json"

    def publish(self, run: RunResult) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(run.event)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(run.to_dict(), indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(path)


class HttpSink:
    """
    POSTs the RunResult as JSON to `<base_url>/results/<event key>`.

    PUT-like semantics on the receiving side make publishing idempotent per event.
    """

    def __init__(self, base_url: str, *, timeout: float = 10.0, headers: Optional[Dict[str, str]] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = dict(headers or {})

    def url_for(self, event: Event) -> str:
        return f"{self.base_url}/results/{quote(event.key, safe='')}"

    def publish(self, run: RunResult) -> None:
        req_headers = {"Content-Type": "application/json"}
        req_headers.update(self.headers)
        req = urllib.request.Request(
            self.url_for(run.event),
            data=json.dumps(run.to_dict()).encode("utf-8"),
            headers=req_headers,
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                response.read()
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else ""
            raise ReportError(f"publish failed: {e.code} {e.reason}. {error_body}") from e
        except urllib.error.URLError as e:
            raise ReportError(f"Network error: {e.reason}") from e
