# conditions.py
"""
Per-job run conditions.

A condition is written as a small boolean expression over the Event:

    not_draft
    draft == false
    github.event.pull_request.draft == false && github.ref_name != 'wip'
    !(event == 'push') || branch == 'main'

Operands are event fields (see FIELDS), quoted strings, true/false/null and
numbers. Operators: == != && || ! and parentheses. Parsing happens once at
load time; the resulting GateCondition is a pure predicate.
"""

from __future__ import annotations

import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import ConfigurationError
from .model import Event, GateCondition


Getter = Callable[[Event], Any]


def _event_name(event: Event) -> str:
    return "pull_request" if event.kind.is_pull_request else "push"


def _action(event: Event) -> Optional[str]:
    if not event.kind.is_pull_request:
        return None
    return event.kind.value.split(".", 1)[1]


FIELDS: Dict[str, Getter] = {
    "draft": lambda e: e.is_draft,
    "is_draft": lambda e: e.is_draft,
    "isdraft": lambda e: e.is_draft,
    "event.draft": lambda e: e.is_draft,
    "github.event.pull_request.draft": lambda e: e.is_draft,
    "branch": lambda e: e.branch,
    "github.ref_name": lambda e: e.branch,
    "github.base_ref": lambda e: e.branch if e.kind.is_pull_request else "",
    "github.ref": lambda e: f"refs/heads/{e.branch}",
    "event": _event_name,
    "github.event_name": _event_name,
    "kind": lambda e: e.kind.value,
    "event.kind": lambda e: e.kind.value,
    "action": _action,
    "github.event.action": _action,
}

# Shorthands accepted as the whole condition.
SHORTHANDS: Dict[str, Callable[[], GateCondition]] = {
    "": GateCondition.always,
    "always": GateCondition.always,
    "always()": GateCondition.always,
    "success()": GateCondition.always,
    "not_draft": GateCondition.not_draft,
    "not draft": GateCondition.not_draft,
    "!draft": GateCondition.not_draft,
}

_TOKEN_RE = re.compile(
    r"""
    \s*(?:
        (?P<op>==|!=|&&|\|\||!|\(|\))
      | (?P<str>'[^']*'|"[^"]*")
      | (?P<num>-?\d+(?:\.\d+)?)
      | (?P<ident>[A-Za-z_][A-Za-z0-9_.\-]*(?:\(\))?)
    )
    """,
    re.VERBOSE,
)


def _tokenize(text: str) -> List[Tuple[str, str]]:
    tokens: List[Tuple[str, str]] = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m or m.end() == pos:
            raise ConfigurationError(f"bad condition {text!r}: unexpected input at column {pos + 1}")
        kind = m.lastgroup
        tokens.append((kind, m.group(kind)))
        pos = m.end()
    return tokens


def _loose_eq(a: Any, b: Any) -> bool:
    # string comparison is case-insensitive, as in hosted CI expressions
    if isinstance(a, str) and isinstance(b, str):
        return a.lower() == b.lower()
    if a is None or b is None:
        return (a is None and b is None) or not (a or b)
    return a == b


class _Parser:
    """Recursive-descent parser producing a predicate closure."""

    def __init__(self, source: str):
        self.source = source
        self.tokens = _tokenize(source)
        self.pos = 0

    def _peek(self) -> Tuple[str, str] | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _take(self) -> Tuple[str, str]:
        tok = self._peek()
        if tok is None:
            raise ConfigurationError(f"bad condition {self.source!r}: unexpected end")
        self.pos += 1
        return tok

    def _accept(self, op: str) -> bool:
        tok = self._peek()
        if tok == ("op", op):
            self.pos += 1
            return True
        return False

    def parse(self) -> Getter:
        fn = self._or()
        if self._peek() is not None:
            raise ConfigurationError(f"bad condition {self.source!r}: trailing {self._peek()[1]!r}")
        return fn

    def _or(self) -> Getter:
        left = self._and()
        while self._accept("||"):
            right = self._and()
            left = (lambda l, r: lambda e: bool(l(e)) or bool(r(e)))(left, right)
        return left

    def _and(self) -> Getter:
        left = self._unary()
        while self._accept("&&"):
            right = self._unary()
            left = (lambda l, r: lambda e: bool(l(e)) and bool(r(e)))(left, right)
        return left

    def _unary(self) -> Getter:
        if self._accept("!"):
            inner = self._unary()
            return lambda e: not inner(e)
        return self._comparison()

    def _comparison(self) -> Getter:
        left = self._operand()
        if self._accept("=="):
            right = self._operand()
            return lambda e: _loose_eq(left(e), right(e))
        if self._accept("!="):
            right = self._operand()
            return lambda e: not _loose_eq(left(e), right(e))
        return left

    def _operand(self) -> Getter:
        if self._accept("("):
            inner = self._or()
            if not self._accept(")"):
                raise ConfigurationError(f"bad condition {self.source!r}: missing ')'")
            return inner

        kind, text = self._take()
        if kind == "str":
            value = text[1:-1]
            return lambda e: value
        if kind == "num":
            num = float(text) if "." in text else int(text)
            return lambda e: num
        if kind == "ident":
            lowered = text.lower()
            if lowered == "true":
                return lambda e: True
            if lowered == "false":
                return lambda e: False
            if lowered == "null":
                return lambda e: None
            if lowered in ("always()", "success()"):
                return lambda e: True
            getter = FIELDS.get(lowered)
            if getter is None:
                raise ConfigurationError(
                    f"bad condition {self.source!r}: unknown field {text!r}. "
                    f"Known fields: {sorted(FIELDS)}"
                )
            return getter
        raise ConfigurationError(f"bad condition {self.source!r}: unexpected {text!r}")


def _strip_expression_wrapper(text: str) -> str:
    text = text.strip()
    if text.startswith("${{") and text.endswith("}}"):
        return text[3:-2].strip()
    return text


def parse_condition(source: str | None) -> GateCondition:
    """
    Parse a condition expression into a GateCondition.

    None / empty means "always run".

    Raises:
        ConfigurationError: on syntax errors or unknown fields.
    """
    if source is None:
        return GateCondition.always()
    if not isinstance(source, str):
        raise ConfigurationError(f"condition must be a string, got {type(source).__name__}")

    text = _strip_expression_wrapper(source)
    shorthand = SHORTHANDS.get(text.lower())
    if shorthand is not None:
        return shorthand()

    predicate = _Parser(text).parse()
    return GateCondition(text, lambda event: bool(predicate(event)))
