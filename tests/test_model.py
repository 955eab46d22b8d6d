"""Tests for attributes and entity identity."""

from __future__ import annotations

import pytest

from taskrouter.errors import BadValueError
from taskrouter.model import (
    Agent,
    AgentState,
    Attribute,
    AttributeGroup,
    AttributeType,
    Queue,
    Route,
    RouterObjectId,
    Rule,
    Task,
)


class TestAttributes:
    def test_type_inference(self) -> None:
        assert Attribute.of("vip", True).type is AttributeType.BOOLEAN
        assert Attribute.of("age", 3).type is AttributeType.DOUBLE
        assert Attribute.of("age", 3).value == 3.0
        assert Attribute.of("lang", "en").type is AttributeType.STRING

    def test_unsupported_value(self) -> None:
        with pytest.raises(BadValueError):
            Attribute.of("nested", {"a": 1})

    def test_multi_valued(self) -> None:
        group = AttributeGroup.from_dict({"lang": ["en", "de"], "age": 30})
        assert [a.value for a in group.get("lang")] == ["en", "de"]
        assert group.keys() == {"lang", "age"}
        assert len(group) == 2
        assert "lang" in group
        assert group.get("missing") == []

    def test_to_dict(self) -> None:
        data = {"lang": ["en", "de"], "age": 30.0, "vip": False}
        assert AttributeGroup.from_dict(data).to_dict() == data

    def test_none_is_empty(self) -> None:
        assert len(AttributeGroup.from_dict(None)) == 0
        assert len(AttributeGroup.from_dict({})) == 0

    @pytest.mark.parametrize(
        "data",
        [{"lang": []}, {"lang": ["en", 1]}, {"": "x"}, ["lang"], [], ""],
    )
    def test_rejected(self, data: object) -> None:
        with pytest.raises(BadValueError):
            AttributeGroup.from_dict(data)  # type: ignore[arg-type]


class TestIdentity:
    def test_equal_by_router_and_ref(self) -> None:
        assert Queue(ref="q", router_ref="r1") == Queue(ref="q", router_ref="r1", predicate="a==b")
        assert Queue(ref="q", router_ref="r1") != Queue(ref="q", router_ref="r2")

    def test_type_is_part_of_identity(self) -> None:
        assert Queue(ref="x", router_ref="r1") != Agent(ref="x", router_ref="r1")

    def test_hash_follows_identity(self) -> None:
        agents = {Agent(ref="a", router_ref="r1"), Agent(ref="a", router_ref="r1", address="x")}
        assert len(agents) == 1

    def test_object_id(self) -> None:
        task = Task(ref="t", router_ref="r1")
        assert task.object_id == RouterObjectId("t", "r1")
        assert str(task) == "r1:t"


class TestRoutes:
    def test_negative_timeout_rejected(self) -> None:
        with pytest.raises(BadValueError):
            Route(queue_ref="q", timeout=-1)

    def test_queue_required(self) -> None:
        with pytest.raises(BadValueError):
            Route.from_dict({"timeout": 5})

    def test_rule_from_dict(self) -> None:
        rule = Rule.from_dict(
            {"tag": "en", "predicate": "lang==en", "routes": [{"queue_ref": "q1", "timeout": 10}]}
        )
        assert rule.routes == [Route("q1", 10.0)]
        assert rule.to_dict()["routes"] == [{"queue_ref": "q1", "timeout": 10.0}]


def test_only_busy_blocks_delete() -> None:
    assert [s for s in AgentState if not s.is_delete_allowed] == [AgentState.BUSY]
