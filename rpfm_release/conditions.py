"""Predicate tree used to gate stage execution.

Conditions are small immutable nodes. Each node evaluates itself against a
run context and reports the context fields it reads, so adding a new kind of
check means adding a node class, not editing the evaluator.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, FrozenSet, Iterable, List, Optional, Tuple

from .errors import ConfigurationError

if TYPE_CHECKING:  # pragma: no cover
    from .models import RunContext


class Condition:
    def evaluate(self, context: "RunContext") -> bool:  # pragma: no cover - interface
        raise NotImplementedError

    def fields(self) -> FrozenSet[str]:
        return frozenset()


def _as_text(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return "" if value is None else str(value)


@dataclass(frozen=True)
class Always(Condition):
    def evaluate(self, context: "RunContext") -> bool:
        return True


@dataclass(frozen=True)
class Never(Condition):
    def evaluate(self, context: "RunContext") -> bool:
        return False


@dataclass(frozen=True)
class StartsWith(Condition):
    field: str
    prefix: str

    def evaluate(self, context: "RunContext") -> bool:
        return _as_text(context.lookup(self.field)).lower().startswith(self.prefix.lower())

    def fields(self) -> FrozenSet[str]:
        return frozenset({self.field})


@dataclass(frozen=True)
class EndsWith(Condition):
    field: str
    suffix: str

    def evaluate(self, context: "RunContext") -> bool:
        return _as_text(context.lookup(self.field)).lower().endswith(self.suffix.lower())

    def fields(self) -> FrozenSet[str]:
        return frozenset({self.field})


@dataclass(frozen=True)
class Equals(Condition):
    field: str
    value: str

    def evaluate(self, context: "RunContext") -> bool:
        return _as_text(context.lookup(self.field)) == self.value

    def fields(self) -> FrozenSet[str]:
        return frozenset({self.field})


@dataclass(frozen=True)
class IsTrue(Condition):
    field: str

    def evaluate(self, context: "RunContext") -> bool:
        value = context.lookup(self.field)
        if isinstance(value, str):
            return value.strip().lower() not in {"", "0", "false"}
        return bool(value)

    def fields(self) -> FrozenSet[str]:
        return frozenset({self.field})


@dataclass(frozen=True)
class Not(Condition):
    operand: Condition

    def evaluate(self, context: "RunContext") -> bool:
        return not self.operand.evaluate(context)

    def fields(self) -> FrozenSet[str]:
        return self.operand.fields()


@dataclass(frozen=True)
class All(Condition):
    operands: Tuple[Condition, ...]

    def evaluate(self, context: "RunContext") -> bool:
        # Every operand is evaluated so unknown fields surface even after a False.
        results = [operand.evaluate(context) for operand in self.operands]
        return all(results)

    def fields(self) -> FrozenSet[str]:
        return frozenset().union(*(operand.fields() for operand in self.operands))


@dataclass(frozen=True)
class AnyOf(Condition):
    operands: Tuple[Condition, ...]

    def evaluate(self, context: "RunContext") -> bool:
        results = [operand.evaluate(context) for operand in self.operands]
        return any(results)

    def fields(self) -> FrozenSet[str]:
        return frozenset().union(*(operand.fields() for operand in self.operands))


def evaluate(condition: Optional[Condition], context: "RunContext") -> bool:
    """Evaluate ``condition`` against ``context``; ``None`` means always run."""

    if condition is None:
        return True
    return condition.evaluate(context)


def check_fields(condition: Condition, dimensions: Iterable[str]) -> None:
    """Raise ConfigurationError if ``condition`` reads a field no run can supply."""

    from .models import CONTEXT_FIELDS

    known = set(CONTEXT_FIELDS) | {f"matrix.{name}" for name in dimensions}
    unknown = sorted(condition.fields() - known)
    if unknown:
        raise ConfigurationError(f"Condition references unknown context field(s): {', '.join(unknown)}.")


_REFERENCE_ALIASES = {
    "matrix.os": "os",
    "runner.os": "os",
    "matrix.toolchain": "toolchain_version",
    "matrix.version": "toolchain_version",
    "github.event_name": "trigger",
    "github.ref": "ref",
    "github.ref_name": "branch",
    "steps.cache.outputs.cache-hit": "cache_hit",
    "cache.hit": "cache_hit",
}

_TOKEN_RE = re.compile(
    r"\s*(?:(?P<op>&&|\|\||==|!=|!|\(|\)|,)|'(?P<str>[^']*)'|(?P<name>[A-Za-z_][A-Za-z0-9_.\-]*))"
)


def _tokenize(expression: str) -> List[Tuple[str, str]]:
    tokens: List[Tuple[str, str]] = []
    position = 0
    text = expression.rstrip()
    while position < len(text):
        match = _TOKEN_RE.match(text, position)
        if not match or match.end() == position:
            raise ConfigurationError(f"Unexpected character at offset {position} in condition '{expression}'.")
        position = match.end()
        if match.group("op") is not None:
            tokens.append(("op", match.group("op")))
        elif match.group("str") is not None:
            tokens.append(("str", match.group("str")))
        else:
            tokens.append(("name", match.group("name")))
    return tokens


class _Parser:
    def __init__(self, expression: str) -> None:
        self.expression = expression
        self.tokens = _tokenize(expression)
        self.index = 0

    def parse(self) -> Condition:
        if not self.tokens:
            raise ConfigurationError("Condition expression is empty.")
        node = self._or()
        if self.index != len(self.tokens):
            raise self._error(f"unexpected token '{self.tokens[self.index][1]}'")
        return node

    def _error(self, message: str) -> ConfigurationError:
        return ConfigurationError(f"Invalid condition '{self.expression}': {message}.")

    def _peek(self) -> Optional[Tuple[str, str]]:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def _take(self, kind: str, value: Optional[str] = None) -> str:
        token = self._peek()
        if token is None or token[0] != kind or (value is not None and token[1] != value):
            expected = value or kind
            found = token[1] if token else "end of expression"
            raise self._error(f"expected {expected}, found '{found}'")
        self.index += 1
        return token[1]

    def _or(self) -> Condition:
        operands = [self._and()]
        while self._peek() == ("op", "||"):
            self.index += 1
            operands.append(self._and())
        return operands[0] if len(operands) == 1 else AnyOf(tuple(operands))

    def _and(self) -> Condition:
        operands = [self._unary()]
        while self._peek() == ("op", "&&"):
            self.index += 1
            operands.append(self._unary())
        return operands[0] if len(operands) == 1 else All(tuple(operands))

    def _unary(self) -> Condition:
        if self._peek() == ("op", "!"):
            self.index += 1
            return Not(self._unary())
        return self._primary()

    def _primary(self) -> Condition:
        token = self._peek()
        if token == ("op", "("):
            self.index += 1
            node = self._or()
            self._take("op", ")")
            return node
        if token is None or token[0] != "name":
            raise self._error(f"unexpected '{token[1] if token else 'end of expression'}'")
        name = self._take("name")
        lowered = name.lower()
        if lowered == "true":
            return Always()
        if lowered == "false":
            return Never()
        if lowered in ("startswith", "endswith") and self._peek() == ("op", "("):
            self.index += 1
            field = _resolve_reference(self._take("name"))
            self._take("op", ",")
            literal = self._take("str")
            self._take("op", ")")
            return StartsWith(field, literal) if lowered == "startswith" else EndsWith(field, literal)
        field = _resolve_reference(name)
        if self._peek() in (("op", "=="), ("op", "!=")):
            operator = self._take("op")
            literal = self._literal()
            node: Condition = Equals(field, literal)
            return Not(node) if operator == "!=" else node
        return IsTrue(field)

    def _literal(self) -> str:
        token = self._peek()
        if token is not None and token[0] == "str":
            self.index += 1
            return token[1]
        if token is not None and token[0] == "name" and token[1].lower() in ("true", "false"):
            self.index += 1
            return token[1].lower()
        raise self._error("expected a quoted literal or true/false")


def _resolve_reference(name: str) -> str:
    if name in _REFERENCE_ALIASES:
        return _REFERENCE_ALIASES[name]
    if name.startswith("matrix.") and len(name) > len("matrix."):
        return name
    raise ConfigurationError(f"Unknown context reference '{name}' in condition.")


def parse_condition(expression: Optional[str]) -> Condition:
    """Parse a workflow ``if:`` expression into a condition tree."""

    if expression is None or not expression.strip():
        return Always()
    text = expression.strip()
    if text.startswith("${{") and text.endswith("}}"):
        text = text[3:-2].strip()
    return _Parser(text).parse()


__all__ = [
    "All",
    "Always",
    "AnyOf",
    "Condition",
    "EndsWith",
    "Equals",
    "IsTrue",
    "Never",
    "Not",
    "StartsWith",
    "check_fields",
    "evaluate",
    "parse_condition",
]
