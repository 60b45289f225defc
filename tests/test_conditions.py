from __future__ import annotations

import itertools
from pathlib import Path

import pytest

from autopilot.conditions.evaluator import LeafResolver, evaluate
from autopilot.conditions.probes import default_resolver
from autopilot.conditions.types import (
    Leaf,
    LeafKind,
    Logical,
    LogicalOperator,
    all_of,
    describe,
    dump_condition,
    parse_condition,
)
from autopilot.errors import InvalidJobError


def _const_resolver() -> LeafResolver:
    return LeafResolver({LeafKind.VARIABLE: lambda params: params["value"]})


def _leaf(value: object) -> Leaf:
    return Leaf(LeafKind.VARIABLE, {"value": value})


def test_empty_combinators_follow_identities() -> None:
    resolver = _const_resolver()
    assert evaluate(Logical(LogicalOperator.AND, ()), resolver) is True
    assert evaluate(Logical(LogicalOperator.OR, ()), resolver) is False
    assert evaluate(Logical(LogicalOperator.NOR, ()), resolver) is True


def test_nor_is_negated_or_for_every_non_empty_combination() -> None:
    resolver = _const_resolver()
    for size in (1, 2, 3):
        for values in itertools.product([True, False], repeat=size):
            children = tuple(_leaf(v) for v in values)
            nor = evaluate(Logical(LogicalOperator.NOR, children), resolver)
            or_ = evaluate(Logical(LogicalOperator.OR, children), resolver)
            assert nor is (not or_)


def test_and_or_semantics_on_nested_tree() -> None:
    resolver = _const_resolver()
    tree = Logical(
        LogicalOperator.AND,
        (
            _leaf(True),
            Logical(LogicalOperator.OR, (_leaf(False), _leaf(True))),
            Logical(LogicalOperator.NOR, (_leaf(False),)),
        ),
    )
    assert evaluate(tree, resolver) is True

    tree = Logical(LogicalOperator.AND, (_leaf(True), _leaf(False)))
    assert evaluate(tree, resolver) is False


def test_implicit_root_is_and_over_declared_conditions() -> None:
    resolver = _const_resolver()
    assert evaluate(all_of([]), resolver) is True
    assert evaluate(all_of([_leaf(True), _leaf(True)]), resolver) is True
    assert evaluate(all_of([_leaf(True), _leaf(False)]), resolver) is False


def test_leaf_failures_are_absorbed_as_false() -> None:
    def boom(params):
        raise RuntimeError("probe exploded")

    resolver = LeafResolver({LeafKind.COMMAND: boom, LeafKind.VARIABLE: lambda p: "yes"})

    assert evaluate(Leaf(LeafKind.COMMAND, {}), resolver) is False
    assert evaluate(Leaf(LeafKind.VARIABLE, {}), resolver) is False
    assert evaluate(Leaf(LeafKind.WIFI, {"ssid": "home"}), resolver) is False
    # NOR over a failing leaf sees false, not an exception
    assert evaluate(Logical(LogicalOperator.NOR, (Leaf(LeafKind.COMMAND, {}),)), resolver) is True


def test_leaves_are_queried_on_every_evaluation() -> None:
    calls = []

    def probe(params):
        calls.append(1)
        return len(calls) > 1

    resolver = LeafResolver({LeafKind.VARIABLE: probe})
    leaf = Leaf(LeafKind.VARIABLE, {})

    assert evaluate(leaf, resolver) is False
    assert evaluate(leaf, resolver) is True
    assert len(calls) == 2


def test_parse_nested_condition_with_lowercase_operator() -> None:
    node = parse_condition(
        {
            "type": "logical",
            "condition": {
                "operator": "nor",
                "conditions": [
                    {"type": "variable", "condition": {"variable": "A", "target": "1"}},
                    {"type": "fail"},
                ],
            },
        }
    )
    assert isinstance(node, Logical)
    assert node.operator is LogicalOperator.NOR
    assert node.children[0] == Leaf(LeafKind.VARIABLE, {"variable": "A", "target": "1"})
    assert node.children[1] == Leaf(LeafKind.FAIL, {})
    assert describe(node) == "NOR(variable, fail)"


def test_dump_condition_restores_wire_form() -> None:
    raw = {
        "type": "logical",
        "condition": {
            "operator": "OR",
            "conditions": [{"type": "file", "condition": {"path": "/tmp/x", "check_type": "exists"}}],
        },
    }
    assert dump_condition(parse_condition(raw)) == raw


@pytest.mark.parametrize(
    "raw, message",
    [
        ({"type": "telepathy", "condition": {}}, "Unknown condition type"),
        ({"type": "logical", "condition": {"operator": "XOR", "conditions": []}}, "Unknown logical operator"),
        ({"type": "logical", "condition": {"operator": "AND", "extra": 1}}, "Unknown logical condition fields"),
        ({"type": "variable", "condition": "A=1"}, "requires an object payload"),
        ("variable", "must be an object"),
    ],
)
def test_parse_condition_rejects_malformed_input(raw: object, message: str) -> None:
    with pytest.raises(InvalidJobError, match=message):
        parse_condition(raw)


def test_variable_probe(monkeypatch: pytest.MonkeyPatch) -> None:
    resolver = default_resolver()
    leaf = Leaf(LeafKind.VARIABLE, {"variable": "AUTOPILOT_TEST_MODE", "target": "on"})

    monkeypatch.delenv("AUTOPILOT_TEST_MODE", raising=False)
    assert evaluate(leaf, resolver) is False

    monkeypatch.setenv("AUTOPILOT_TEST_MODE", "on")
    assert evaluate(leaf, resolver) is True


def test_file_probe(tmp_path: Path) -> None:
    resolver = default_resolver()
    target = tmp_path / "flag.txt"

    exists = Leaf(LeafKind.FILE, {"path": str(target), "check_type": "exists"})
    recent = Leaf(LeafKind.FILE, {"path": str(target), "check_type": "modified_recently", "time_threshold": 60})
    sized = Leaf(LeafKind.FILE, {"path": str(target), "check_type": "size_changed", "size_threshold": 4})

    assert evaluate(exists, resolver) is False
    assert evaluate(recent, resolver) is False

    target.write_text("abc", encoding="utf-8")
    assert evaluate(exists, resolver) is True
    assert evaluate(recent, resolver) is True
    assert evaluate(sized, resolver) is False

    target.write_text("abcdef", encoding="utf-8")
    assert evaluate(sized, resolver) is True


def test_command_probe_exit_code_and_output() -> None:
    resolver = default_resolver()

    assert evaluate(Leaf(LeafKind.COMMAND, {"command": "exit 0"}), resolver) is True
    assert evaluate(Leaf(LeafKind.COMMAND, {"command": "exit 3"}), resolver) is False

    matching = {"command": "echo hello", "check_exit_code": False, "target_output": "hello"}
    other = {"command": "echo bye", "check_exit_code": False, "target_output": "hello"}
    assert evaluate(Leaf(LeafKind.COMMAND, matching), resolver) is True
    assert evaluate(Leaf(LeafKind.COMMAND, other), resolver) is False


def test_fail_probe_and_bad_parameters_are_false() -> None:
    resolver = default_resolver()
    assert evaluate(Leaf(LeafKind.FAIL, {}), resolver) is False
    assert evaluate(Leaf(LeafKind.VARIABLE, {"variable": "A", "unexpected": 1}), resolver) is False


def test_registered_probe_extends_resolver() -> None:
    resolver = default_resolver()
    leaf = Leaf(LeafKind.POWER, {"charging": True})
    assert evaluate(leaf, resolver) is False

    resolver.register(LeafKind.POWER, lambda params: params["charging"])
    assert resolver.supports(LeafKind.POWER)
    assert evaluate(leaf, resolver) is True
