"""
Condition tree evaluation.

Leaves are delegated to a LeafResolver; logical nodes fold their children.
Nothing is cached: every evaluation queries the probes again.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Optional

from loguru import logger

from autopilot.conditions.types import Condition, Leaf, LeafKind, Logical


LeafProbe = Callable[[Mapping[str, Any]], bool]


class LeafResolver:
    """
    Registry of probes keyed by leaf kind.

    resolve() is total: a missing probe, a raising probe or a non-boolean
    answer all count as false.
    """

    def __init__(self, probes: Optional[Mapping[LeafKind, LeafProbe]] = None):
        self._probes: dict[LeafKind, LeafProbe] = dict(probes or {})

    def register(self, kind: LeafKind, probe: LeafProbe) -> None:
        self._probes[LeafKind(kind)] = probe

    def unregister(self, kind: LeafKind) -> None:
        self._probes.pop(LeafKind(kind), None)

    def supports(self, kind: LeafKind) -> bool:
        return LeafKind(kind) in self._probes

    @property
    def kinds(self) -> list[LeafKind]:
        return sorted(self._probes, key=lambda k: k.value)

    def resolve(self, leaf: Leaf) -> bool:
        probe = self._probes.get(leaf.kind)
        if probe is None:
            logger.warning("No probe registered for condition '{}', treating as false", leaf.kind.value)
            return False

        try:
            result = probe(leaf.params)
        except Exception as e:
            logger.warning("Condition '{}' failed, treating as false | err={}", leaf.kind.value, e)
            return False

        if not isinstance(result, bool):
            logger.warning(
                "Condition '{}' returned {!r} instead of a bool, treating as false",
                leaf.kind.value,
                result,
            )
            return False

        return result


def evaluate(node: Condition, resolver: LeafResolver) -> bool:
    """Evaluate a condition tree against live probe results."""
    if isinstance(node, Logical):
        return node.operator.combine(evaluate(child, resolver) for child in node.children)
    return resolver.resolve(node)
