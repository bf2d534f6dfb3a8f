# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


class TriggerCIError(Exception):
    """Base class for every error raised by triggerci."""


class MalformedTriggerError(TriggerCIError):
    """The incoming trigger lacks a kind/branch or names an unsupported event."""


class ConfigurationError(TriggerCIError):
    """Invalid trigger rules or job graph. Fatal at load time."""


class ActionResolutionError(TriggerCIError):
    """A `uses:` reference names no registered action, or its inputs are invalid."""


@dataclass
class StepExecutionError(TriggerCIError):
    """
    A step exited non-zero.

    Recorded on the JobResult as Failed; never propagated past the executor.
    """
    job: str
    step: str
    index: int
    exit_code: int
    cmd: str = ""

    def __str__(self) -> str:
        return f"[{self.job}] step {self.index} '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


@dataclass
class JobTimeoutError(TriggerCIError):
    """A job ran past its timeout. Recorded as TimedOut."""
    job: str
    timeout_s: float
    step: str | None = None

    def __str__(self) -> str:
        where = f" during step '{self.step}'" if self.step else ""
        return f"[{self.job}] timed out after {self.timeout_s:g}s{where}"


@dataclass
class EnvironmentProvisionError(TriggerCIError):
    """The execution backend could not provide an environment for a job."""
    backend: str
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.backend}: {self.message}"]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)
