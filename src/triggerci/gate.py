# gate.py
from __future__ import annotations

from fnmatch import fnmatchcase
from typing import Iterable, Optional

from .model import Event, TriggerRule


def _branch_matches(branch: str, patterns: frozenset[str]) -> bool:
    # empty set = any branch; exact names are patterns matching themselves
    if not patterns:
        return True
    return any(fnmatchcase(branch, p) for p in patterns)


def rule_matches(event: Event, rule: TriggerRule) -> bool:
    return event.kind in rule.match_kinds and _branch_matches(event.branch, rule.match_branches)


def matching_rule(event: Event, rules: Iterable[TriggerRule]) -> Optional[TriggerRule]:
    """Return the first rule admitting `event`, or None."""
    for rule in rules:
        if rule_matches(event, rule):
            return rule
    return None


def admit(event: Event, rules: Iterable[TriggerRule]) -> bool:
    """
    Decide whether a run starts for `event`.

    Admission is an OR across rules: any matching rule triggers the run.
    """
    return matching_rule(event, rules) is not None
