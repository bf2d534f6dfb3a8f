# actions.py
from __future__ import annotations

import shlex
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from .errors import ActionResolutionError
from .model import Event, Step


@dataclass(frozen=True)
class ActionContext:
    """What an action may know about the run it is part of."""
    repository: str | None = None
    event: Event | None = None

    @property
    def ref(self) -> str | None:
        return self.event.sha if self.event is not None else None


# An action turns its `with:` inputs into one shell command.
ActionFn = Callable[[Mapping[str, Any], ActionContext], str]


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _split_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [v for v in value.replace(",", " ").split() if v]
    return [str(v) for v in value]


def checkout(params: Mapping[str, Any], ctx: ActionContext) -> str:
    repository = params.get("repository") or ctx.repository
    if not repository:
        raise ActionResolutionError("checkout: no repository to clone (set with.repository)")

    cmd = f"git clone --quiet {shlex.quote(str(repository))} ."
    ref = params.get("ref") or ctx.ref
    if ref:
        cmd += f" && git checkout --quiet {shlex.quote(str(ref))}"
    return cmd


def rust_toolchain(params: Mapping[str, Any], ctx: ActionContext) -> str:
    toolchain = params.get("toolchain")
    components = _split_list(params.get("components"))

    if toolchain:
        parts = ["rustup", "toolchain", "install", str(toolchain), "--profile", str(params.get("profile", "minimal"))]
        for c in components:
            parts += ["--component", c]
        cmd = shlex.join(parts)
        if _truthy(params.get("override", False)):
            cmd += " && " + shlex.join(["rustup", "override", "set", str(toolchain)])
        return cmd

    if components:
        return shlex.join(["rustup", "component", "add", *components])

    raise ActionResolutionError("toolchain: set with.toolchain or with.components")


def cargo(params: Mapping[str, Any], ctx: ActionContext) -> str:
    command = params.get("command")
    if not command:
        raise ActionResolutionError("cargo: with.command is required")
    parts = ["cargo"]
    if params.get("toolchain"):
        parts.append(f"+{params['toolchain']}")
    parts.append(str(command))
    cmd = shlex.join(parts)
    args = params.get("args")
    if args:
        # args is already a shell fragment
        cmd += f" {args}"
    return cmd


class ActionRegistry:
    """Maps reusable action names (`owner/name`, version ignored) to command builders."""

    def __init__(self, actions: Optional[Dict[str, ActionFn]] = None):
        self._actions: Dict[str, ActionFn] = dict(actions or {})

    @staticmethod
    def _key(ref: str) -> str:
        return ref.split("@", 1)[0].strip().lower()

    def register(self, name: str, fn: ActionFn) -> None:
        self._actions[self._key(name)] = fn

    def __contains__(self, ref: str) -> bool:
        return self._key(ref) in self._actions

    def resolve(self, step: Step, ctx: ActionContext) -> str:
        """
        Turn a step into the shell command to execute.

        Raises:
            ActionResolutionError: unknown action or invalid inputs.
        """
        if step.run is not None:
            return step.run

        fn = self._actions.get(self._key(step.uses or ""))
        if fn is None:
            raise ActionResolutionError(
                f"unknown action {step.uses!r}. Known actions: {sorted(self._actions)}"
            )
        return fn(step.with_, ctx)


def default_registry() -> ActionRegistry:
    return ActionRegistry(
        {
            "actions/checkout": checkout,
            "actions-rs/toolchain": rust_toolchain,
            "actions-rs/cargo": cargo,
        }
    )
