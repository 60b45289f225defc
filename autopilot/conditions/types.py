"""
Condition tree domain model.

A condition is either a leaf (an external probe identified by its kind and
parameters) or a logical node combining an ordered list of children.

Wire format (job files):
    {"type": "variable", "condition": {"variable": "MODE", "target": "on"}}
    {"type": "logical",  "condition": {"operator": "OR", "conditions": [...]}}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, Union

from autopilot.errors import InvalidJobError


# ============================================================
# Operators
# ============================================================

class LogicalOperator(str, Enum):
    AND = "AND"
    OR = "OR"
    NOR = "NOR"

    @classmethod
    def parse(cls, value: Any) -> "LogicalOperator":
        """Case-insensitive lookup; raises InvalidJobError on unknown names."""
        try:
            return cls(str(value).upper())
        except ValueError:
            raise InvalidJobError(f"Unknown logical operator: {value!r}") from None

    def combine(self, results: Iterable[bool]) -> bool:
        """
        Fold child results.

        AND over nothing is true, OR over nothing is false, NOR is not-OR.
        """
        if self is LogicalOperator.AND:
            return all(results)
        if self is LogicalOperator.OR:
            return any(results)
        return not any(results)


# ============================================================
# Leaf kinds
# ============================================================

class LeafKind(str, Enum):
    """Closed set of leaf probes a job file may reference."""

    COMMAND = "command"
    VARIABLE = "variable"
    BLUETOOTH = "bluetooth"
    WIFI = "wifi"
    POWER = "power"
    RESOURCE = "resource"
    INTERNET = "internet"
    PROCESS = "process"
    DISK_SPACE = "diskspace"
    FILE = "file"
    EXTERNAL_DEVICE = "externaldevice"
    SCREEN = "screen"
    FAIL = "fail"


LOGICAL_TYPE = "logical"


# ============================================================
# Nodes
# ============================================================

@dataclass(frozen=True, slots=True)
class Leaf:
    kind: LeafKind
    params: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Logical:
    operator: LogicalOperator
    children: tuple["Condition", ...] = ()


Condition = Union[Leaf, Logical]


def all_of(nodes: Iterable[Condition]) -> Logical:
    """Implicit root of a job: AND over its declared conditions."""
    return Logical(LogicalOperator.AND, tuple(nodes))


# ============================================================
# (De)serialization
# ============================================================

def parse_condition(data: Any) -> Condition:
    """
    Build a condition node from its serialized form.

    Raises:
        InvalidJobError: unknown type, unknown operator or malformed payload.
    """
    if not isinstance(data, Mapping):
        raise InvalidJobError(f"Condition must be an object, got {type(data).__name__}")

    kind = str(data.get("type", "")).lower()
    payload = data.get("condition")

    if kind == LOGICAL_TYPE:
        if not isinstance(payload, Mapping):
            raise InvalidJobError("Logical condition requires an object payload")
        unknown = set(payload) - {"operator", "conditions"}
        if unknown:
            raise InvalidJobError(f"Unknown logical condition fields: {sorted(unknown)}")
        children = payload.get("conditions") or []
        if not isinstance(children, list):
            raise InvalidJobError("Logical 'conditions' must be a list")
        return Logical(
            operator=LogicalOperator.parse(payload.get("operator")),
            children=tuple(parse_condition(child) for child in children),
        )

    try:
        leaf_kind = LeafKind(kind)
    except ValueError:
        raise InvalidJobError(f"Unknown condition type: {data.get('type')!r}") from None

    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise InvalidJobError(f"Condition '{kind}' requires an object payload")

    return Leaf(kind=leaf_kind, params=dict(payload))


def dump_condition(node: Condition) -> dict[str, Any]:
    """Inverse of parse_condition."""
    if isinstance(node, Logical):
        return {
            "type": LOGICAL_TYPE,
            "condition": {
                "operator": node.operator.value,
                "conditions": [dump_condition(c) for c in node.children],
            },
        }
    return {"type": node.kind.value, "condition": dict(node.params)}


def describe(node: Condition) -> str:
    """Compact one-line rendering, e.g. AND(variable, NOR(file))."""
    if isinstance(node, Logical):
        inner = ", ".join(describe(c) for c in node.children)
        return f"{node.operator.value}({inner})"
    return node.kind.value
