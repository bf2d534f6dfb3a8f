from .dsl import job, sh, uses, trigger, matrix, wf, JobBuilder, build
from .config import load_workflow
from .events import normalize
from .gate import admit
from .pipeline import Pipeline, exit_code
from .reporter import report
from .model import Event, EventKind, Job, JobResult, JobStatus, RunResult, RunStatus, Step, TriggerRule, Workflow

__all__ = [
    "job", "sh", "uses", "trigger", "matrix", "wf", "JobBuilder", "build",
    "load_workflow", "normalize", "admit", "Pipeline", "exit_code", "report",
    "Event", "EventKind", "Job", "JobResult", "JobStatus", "RunResult", "RunStatus", "Step", "TriggerRule", "Workflow",
]
