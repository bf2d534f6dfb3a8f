from __future__ import annotations
import os


def _flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.environ.get("TRIGGERCI_DATABASE_URL", "sqlite+aiosqlite:///./triggerci.db")
WORKFLOW_PATH = os.environ.get("TRIGGERCI_WORKFLOW", "triggerci.yml")
MAX_WORKERS = int(os.environ["TRIGGERCI_MAX_WORKERS"]) if os.environ.get("TRIGGERCI_MAX_WORKERS") else None
BACKEND = os.environ.get("TRIGGERCI_BACKEND", "local")
DOCKER_IMAGE = os.environ.get("TRIGGERCI_DOCKER_IMAGE", "ubuntu:latest")
REPOSITORY = os.environ.get("TRIGGERCI_REPOSITORY") or None
CANCEL_SUPERSEDED = _flag("TRIGGERCI_CANCEL_SUPERSEDED")
