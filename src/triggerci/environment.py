# environment.py
"""
Execution environments.

The executor only talks to the `Environment` capability:

    provision(job) -> EnvironmentHandle
    execute(handle, command, env=..., timeout=..., cancel=...) -> ExecResult
    release(handle)

Every job gets a freshly provisioned handle and `provisioned()` guarantees the
release on every exit path. Two backends ship here: a local temporary
workspace and a throwaway Docker container.
"""

from __future__ import annotations

import os
import shutil
import signal
import subprocess
import tempfile
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional, Protocol, Union

from .errors import EnvironmentProvisionError
from .model import Job

# how often a running step checks for cancellation
POLL_INTERVAL_S = 0.2

# keep only the tail of a step's output
MAX_OUTPUT_CHARS = 4000


@dataclass(frozen=True)
class EnvironmentHandle:
    id: str
    job_name: str
    workdir: str
    meta: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ExecResult:
    exit_code: int
    output: str = ""
    timed_out: bool = False
    cancelled: bool = False


class Environment(Protocol):
    name: str

    def provision(self, job: Job) -> EnvironmentHandle: ...

    def execute(
        self,
        handle: EnvironmentHandle,
        command: str,
        *,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> ExecResult: ...

    def release(self, handle: EnvironmentHandle) -> None: ...


@contextmanager
def provisioned(environment: Environment, job: Job) -> Iterator[EnvironmentHandle]:
    """Scoped acquisition: the handle is released even on failure or timeout."""
    handle = environment.provision(job)
    try:
        yield handle
    finally:
        environment.release(handle)


# ----------------------------------------------------------------------
# Process primitive shared by the backends
# ----------------------------------------------------------------------

def _kill(proc: subprocess.Popen) -> None:
    try:
        if os.name == "posix":
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except ProcessLookupError:
        pass


def _tail(text: str | None) -> str:
    return (text or "")[-MAX_OUTPUT_CHARS:]


def run_process(
    cmd: Union[str, List[str]],
    *,
    shell: bool,
    cwd: str | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
    cancel: threading.Event | None = None,
) -> ExecResult:
    """
    Run one process to completion, killing it on timeout or cancellation.

    stdout and stderr are merged; only the tail is kept.
    """
    proc = subprocess.Popen(
        cmd,
        shell=shell,
        cwd=cwd,
        env=dict(env) if env is not None else None,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        start_new_session=(os.name == "posix"),
    )
    deadline = time.monotonic() + timeout if timeout is not None else None

    while True:
        wait = POLL_INTERVAL_S
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                _kill(proc)
                out, _ = proc.communicate()
                return ExecResult(exit_code=proc.returncode, output=_tail(out), timed_out=True)
            wait = min(wait, remaining)

        try:
            out, _ = proc.communicate(timeout=wait)
            return ExecResult(exit_code=proc.returncode, output=_tail(out))
        except subprocess.TimeoutExpired:
            if cancel is not None and cancel.is_set():
                _kill(proc)
                out, _ = proc.communicate()
                return ExecResult(exit_code=proc.returncode, output=_tail(out), cancelled=True)


# ----------------------------------------------------------------------
# Local backend
# ----------------------------------------------------------------------

class LocalEnvironment:
    """
    Runs steps with the host shell inside a fresh temporary workspace.

    The workspace is created per job and deleted on release.
    """

    name = "local"

    def __init__(self, base_dir: str | Path | None = None, inherit_env: bool = True):
        self.base_dir = Path(base_dir) if base_dir is not None else None
        self.inherit_env = inherit_env

    def provision(self, job: Job) -> EnvironmentHandle:
        try:
            if self.base_dir is not None:
                self.base_dir.mkdir(parents=True, exist_ok=True)
            workdir = tempfile.mkdtemp(
                prefix=f"triggerci-{job.name}-",
                dir=str(self.base_dir) if self.base_dir is not None else None,
            )
        except OSError as e:
            raise EnvironmentProvisionError(
                backend=self.name,
                message="could not create job workspace",
                details={"job": job.name, "error": str(e)},
            ) from e
        return EnvironmentHandle(id=Path(workdir).name, job_name=job.name, workdir=workdir)

    def execute(
        self,
        handle: EnvironmentHandle,
        command: str,
        *,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> ExecResult:
        full_env = os.environ.copy() if self.inherit_env else {"PATH": os.environ.get("PATH", "")}
        full_env.update(env or {})
        return run_process(command, shell=True, cwd=handle.workdir, env=full_env, timeout=timeout, cancel=cancel)

    def release(self, handle: EnvironmentHandle) -> None:
        shutil.rmtree(handle.workdir, ignore_errors=True)


# ----------------------------------------------------------------------
# Docker backend
# ----------------------------------------------------------------------

class DockerEnvironment:
    """
    Runs each job in its own throwaway container.

    provision: `docker run -d` a long-lived container from `image`
    execute:   `docker exec` each step inside it
    release:   `docker rm -f`
    """

    name = "docker"
    workdir = "/workspace"

    def __init__(self, image: str, *, docker: str = "docker", volumes: Optional[List[str]] = None):
        self.image = image
        self.docker = docker
        self.volumes = list(volumes or [])

    def _check_docker_available(self) -> None:
        try:
            subprocess.run([self.docker, "--version"], capture_output=True, check=True)
        except (subprocess.CalledProcessError, FileNotFoundError) as e:
            raise EnvironmentProvisionError(
                backend=self.name,
                message="Docker is not available",
                details={"hint": "Install Docker and ensure the daemon is running."},
            ) from e

    def provision(self, job: Job) -> EnvironmentHandle:
        self._check_docker_available()

        container_name = f"triggerci-{job.name}-{uuid.uuid4().hex[:8]}"
        cmd = [self.docker, "run", "-d", "--rm", "--name", container_name, "-w", self.workdir]
        for vol in self.volumes:
            cmd.extend(["-v", vol])
        cmd.extend([self.image, "sleep", "infinity"])

        proc = subprocess.run(cmd, capture_output=True, text=True)
        if proc.returncode != 0:
            raise EnvironmentProvisionError(
                backend=self.name,
                message=f"could not start container from {self.image}",
                details={"job": job.name, "exit_code": proc.returncode, "stderr": proc.stderr.strip()[-500:]},
            )
        return EnvironmentHandle(
            id=proc.stdout.strip(),
            job_name=job.name,
            workdir=self.workdir,
            meta={"container": container_name, "image": self.image},
        )

    def execute(
        self,
        handle: EnvironmentHandle,
        command: str,
        *,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> ExecResult:
        cmd = [self.docker, "exec", "-w", handle.workdir]
        for key, value in (env or {}).items():
            cmd.extend(["-e", f"{key}={value}"])
        cmd.extend([handle.id, "sh", "-c", command])
        return run_process(cmd, shell=False, timeout=timeout, cancel=cancel)

    def release(self, handle: EnvironmentHandle) -> None:
        subprocess.run([self.docker, "rm", "-f", handle.id], capture_output=True)
