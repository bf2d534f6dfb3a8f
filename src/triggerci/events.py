# events.py
# Turns raw trigger payloads (canonical dicts or GitHub-style webhooks) into Event records.

from __future__ import annotations

import subprocess
from typing import Any, Dict, Mapping, Optional

from .errors import MalformedTriggerError
from .model import Event, EventKind


PULL_REQUEST_ACTIONS: Dict[str, EventKind] = {
    "opened": EventKind.PULL_REQUEST_OPENED,
    "reopened": EventKind.PULL_REQUEST_REOPENED,
    "synchronize": EventKind.PULL_REQUEST_SYNCHRONIZED,
    "synchronized": EventKind.PULL_REQUEST_SYNCHRONIZED,
    "ready_for_review": EventKind.PULL_REQUEST_READY_FOR_REVIEW,
}

# Accepted spellings of an event kind in the canonical trigger format.
KIND_ALIASES: Dict[str, EventKind] = {
    **{k.value: k for k in EventKind},
    **{k.name.lower(): k for k in EventKind},
    "pullrequestopened": EventKind.PULL_REQUEST_OPENED,
    "pullrequestreopened": EventKind.PULL_REQUEST_REOPENED,
    "pullrequestsynchronized": EventKind.PULL_REQUEST_SYNCHRONIZED,
    "pullrequestreadyforreview": EventKind.PULL_REQUEST_READY_FOR_REVIEW,
}


def parse_kind(value: Any) -> EventKind:
    """Resolve an event kind from any accepted spelling."""
    if isinstance(value, EventKind):
        return value
    if not isinstance(value, str) or not value.strip():
        raise MalformedTriggerError(f"event kind must be a non-empty string, got {value!r}")
    key = value.strip().lower()
    kind = KIND_ALIASES.get(key) or KIND_ALIASES.get(key.replace("_", "").replace("-", ""))
    if kind is None:
        raise MalformedTriggerError(f"unsupported event kind: {value!r}")
    return kind


def _branch_from_ref(ref: str) -> str:
    for prefix in ("refs/heads/", "refs/tags/"):
        if ref.startswith(prefix):
            return ref[len(prefix):]
    return ref


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for k in keys:
        if raw.get(k) is not None:
            return raw[k]
    return None


def _require_branch(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise MalformedTriggerError("trigger has no branch")
    return _branch_from_ref(value.strip())


def _normalize_canonical(raw: Mapping[str, Any]) -> Event:
    kind_raw = _first(raw, "eventKind", "event_kind", "kind")
    if kind_raw is None:
        raise MalformedTriggerError("trigger has no event kind")
    kind = parse_kind(kind_raw)
    branch = _require_branch(_first(raw, "branchName", "branch_name", "branch"))

    draft = bool(_first(raw, "draftFlag", "draft_flag", "is_draft", "draft") or False)
    pr_number = _first(raw, "prNumber", "pr_number")

    return Event(
        kind=kind,
        branch=branch,
        is_draft=draft if kind.is_pull_request else False,
        sha=_first(raw, "sha"),
        delivery_id=_first(raw, "deliveryId", "delivery_id"),
        repository=_first(raw, "repository"),
        pr_number=int(pr_number) if pr_number is not None else None,
    )


def _repository_name(raw: Mapping[str, Any]) -> Optional[str]:
    repo = raw.get("repository")
    if isinstance(repo, Mapping):
        return repo.get("full_name") or repo.get("name")
    if isinstance(repo, str):
        return repo
    return None


def _normalize_push(raw: Mapping[str, Any], delivery_id: str | None) -> Event:
    return Event(
        kind=EventKind.PUSH,
        branch=_require_branch(raw.get("ref")),
        is_draft=False,
        sha=raw.get("after"),
        delivery_id=delivery_id,
        repository=_repository_name(raw),
    )


def _normalize_pull_request(raw: Mapping[str, Any], delivery_id: str | None) -> Event:
    action = raw.get("action")
    if not action:
        raise MalformedTriggerError("pull_request trigger has no action")
    kind = PULL_REQUEST_ACTIONS.get(str(action))
    if kind is None:
        raise MalformedTriggerError(f"unsupported pull_request action: {action!r}")

    pr = raw.get("pull_request")
    if not isinstance(pr, Mapping):
        raise MalformedTriggerError("pull_request trigger has no pull_request object")

    # Trigger branch filters apply to the PR's base branch.
    base = pr.get("base") or {}
    head = pr.get("head") or {}
    number = pr.get("number", raw.get("number"))

    return Event(
        kind=kind,
        branch=_require_branch(base.get("ref") if isinstance(base, Mapping) else None),
        is_draft=bool(pr.get("draft", False)),
        sha=head.get("sha") if isinstance(head, Mapping) else None,
        delivery_id=delivery_id,
        repository=_repository_name(raw),
        pr_number=int(number) if number is not None else None,
    )


def normalize(
    raw: Mapping[str, Any],
    event_name: str | None = None,
    *,
    delivery_id: str | None = None,
) -> Event:
    """
    Convert a raw trigger into an Event.

    Two shapes are accepted:
      - canonical: {"eventKind": ..., "branchName": ..., "draftFlag": ...}
      - webhook:   event_name ("push" | "pull_request") + the webhook body

    Raises:
        MalformedTriggerError: if kind or branch cannot be determined.
    """
    if not isinstance(raw, Mapping):
        raise MalformedTriggerError(f"trigger payload must be an object, got {type(raw).__name__}")

    if event_name is None:
        # GitHub-style payloads without the header still announce themselves
        if "pull_request" in raw and "action" in raw:
            event_name = "pull_request"
        elif "ref" in raw and not any(k in raw for k in ("eventKind", "event_kind", "kind")):
            event_name = "push"

    if event_name is None:
        return _normalize_canonical(raw)

    name = event_name.strip().lower()
    if name == "push":
        return _normalize_push(raw, delivery_id)
    if name == "pull_request":
        return _normalize_pull_request(raw, delivery_id)
    raise MalformedTriggerError(f"unsupported event name: {event_name!r}")


def event_from_git(kind: EventKind = EventKind.PUSH) -> Event:
    """Build an Event describing the local checkout (current branch + HEAD)."""
    from .git_facts.git import current_branch, head_sha, remote_url

    try:
        repository = remote_url("origin")
    except (subprocess.CalledProcessError, FileNotFoundError):
        repository = None

    branch = current_branch()
    if not branch:
        raise MalformedTriggerError("HEAD is detached; pass an explicit event instead")

    return Event(kind=kind, branch=branch, sha=head_sha(), repository=repository)
