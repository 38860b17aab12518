"""
Tests for domain routing and field mapping helpers.
"""

import pytest

from discubot.exceptions import RoutingError
from discubot.models.flow import FlowOutput
from discubot.models.task import DetectedTask
from discubot.services.domain_routing import route_task_to_outputs, validate_flow_outputs
from discubot.utils.field_mapping import (
    calculate_similarity,
    generate_default_mapping,
    transform_value,
)


def output(name, domains=None, default=False):
    return FlowOutput(name=name, domain_filter=domains or [], is_default=default)


@pytest.fixture
def outputs():
    return [
        output("General", default=True),
        output("Design board", ["design"]),
        output("Engineering", ["frontend", "backend"]),
        output("UI guild", ["design", "frontend"]),
    ]


class TestRouteTaskToOutputs:
    """Tests for route_task_to_outputs."""

    def test_no_domain_goes_to_default(self, outputs):
        routed = route_task_to_outputs(DetectedTask(title="t"), outputs)
        assert [o.name for o in routed] == ["General"]

    def test_domain_reaches_every_matching_output(self, outputs):
        routed = route_task_to_outputs(DetectedTask(title="t", domain="design"), outputs)
        assert [o.name for o in routed] == ["Design board", "UI guild"]

    def test_unknown_domain_falls_back_to_default(self, outputs):
        routed = route_task_to_outputs(DetectedTask(title="t", domain="marketing"), outputs)
        assert [o.name for o in routed] == ["General"]

    def test_domain_match_is_exact(self, outputs):
        routed = route_task_to_outputs(DetectedTask(title="t", domain="Design"), outputs)
        assert [o.name for o in routed] == ["General"]

    def test_missing_default_raises(self):
        with pytest.raises(RoutingError):
            route_task_to_outputs(DetectedTask(title="t", domain="design"), [output("Design", ["design"])])


class TestValidateFlowOutputs:
    """Tests for the one-default invariant check."""

    def test_valid(self, outputs):
        assert validate_flow_outputs(outputs).valid

    def test_empty(self):
        result = validate_flow_outputs([])
        assert not result.valid
        assert "at least one output" in result.errors[0]

    def test_no_default(self):
        assert not validate_flow_outputs([output("A")]).valid

    def test_several_defaults_warn(self):
        result = validate_flow_outputs([output("A", default=True), output("B", default=True)])
        assert result.valid
        assert result.warnings


class TestFieldMapping:
    """Tests for Notion property mapping suggestions."""

    def test_similarity(self):
        assert calculate_similarity("Priority", "priority") == 1.0
        assert calculate_similarity("type", "Task Type") == 0.8
        assert calculate_similarity("abc", "xyz") == 0.0

    def test_default_mapping_from_schema(self):
        schema = {
            "properties": {
                "Name": {"type": "title"},
                "Priority": {"type": "select", "select": {"options": [{"name": "P1 High"}, {"name": "Low"}]}},
                "Assignee": {"type": "people"},
                "Tags": {"type": "multi_select", "multi_select": {"options": []}},
            }
        }
        mapping = generate_default_mapping(schema)
        assert mapping["priority"]["notionProperty"] == "Priority"
        assert mapping["priority"]["valueMap"]["low"] == "Low"
        assert mapping["assignee"] == {"notionProperty": "Assignee", "propertyType": "people", "valueMap": {}}
        assert mapping["tags"]["propertyType"] == "multi_select"

    def test_transform_value(self):
        assert transform_value("high", value_map={"high": "P1"}) == "P1"
        assert transform_value("urgent", [{"name": "Urgent!"}]) == "Urgent!"
        assert transform_value("odd") == "odd"
        assert transform_value(None) is None
