import pytest

from triggerci.actions import ActionContext, ActionRegistry, default_registry
from triggerci.dsl import sh, uses
from triggerci.errors import ActionResolutionError
from triggerci.model import Event, EventKind


CTX = ActionContext(repository="https://example.com/acme/ipa.git", event=Event(kind=EventKind.PUSH, branch="main", sha="abc123"))


def test_inline_step_resolves_to_its_command():
    assert default_registry().resolve(sh("Build", "cargo build"), CTX) == "cargo build"


def test_checkout_clones_and_checks_out_event_sha():
    cmd = default_registry().resolve(uses("actions/checkout@v2"), CTX)
    assert cmd == "git clone --quiet https://example.com/acme/ipa.git . && git checkout --quiet abc123"


def test_checkout_without_repository():
    with pytest.raises(ActionResolutionError):
        default_registry().resolve(uses("actions/checkout@v2"), ActionContext())


def test_toolchain_components_only():
    step = uses("actions-rs/toolchain@v1", components="clippy", override=False)
    assert default_registry().resolve(step, CTX) == "rustup component add clippy"


def test_toolchain_install_with_override():
    step = uses("actions-rs/toolchain@v1", toolchain="stable", components="clippy,rustfmt", override=True)
    cmd = default_registry().resolve(step, CTX)
    assert cmd.startswith("rustup toolchain install stable --profile minimal --component clippy --component rustfmt")
    assert cmd.endswith("&& rustup override set stable")


def test_cargo_passes_args_through():
    step = uses("actions-rs/cargo@v1", command="clippy", args="--all-targets -- -D warnings")
    assert default_registry().resolve(step, CTX) == "cargo clippy --all-targets -- -D warnings"


def test_cargo_requires_command():
    with pytest.raises(ActionResolutionError):
        default_registry().resolve(uses("actions-rs/cargo@v1"), CTX)


def test_unknown_action():
    with pytest.raises(ActionResolutionError, match="unknown action"):
        default_registry().resolve(uses("someone/else@v3"), CTX)


def test_register_custom_action():
    registry = ActionRegistry()
    registry.register("acme/echo@v1", lambda params, ctx: f"echo {params['text']}")
    assert "acme/echo@v9" in registry
    assert registry.resolve(uses("ACME/echo@v1", text="hi"), CTX) == "echo hi"
