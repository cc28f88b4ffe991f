import pytest
import yaml

from analyzer.schema import (
    CanonicalScreen,
    CapturedEvent,
    ParameterDef,
    ParameterType,
    TemplateStep,
    WorkflowTemplate,
    new_id,
)
from conftest import make_event


def test_new_id_format():
    identifier = new_id("tmpl")
    assert identifier.startswith("tmpl_")
    assert len(identifier) == len("tmpl_") + 8


def test_screen_is_assigned_once():
    event = make_event()
    event.assign_screen("scr_a")
    event.assign_screen("scr_a")

    with pytest.raises(ValueError):
        event.assign_screen("scr_b")
    assert event.screen_id == "scr_a"

    event.release_screen()
    event.assign_screen("scr_b")
    assert event.screen_id == "scr_b"


def test_captured_event_from_capture_payload():
    event = CapturedEvent.from_dict(
        {
            "timestamp": 1700000000000,
            "eventType": "input",
            "url": "https://app.example.com/search",
            "screenshotPath": "shots/1.png",
            "inputValue": "ipad",
            "inputName": "q",
            "inputLabel": "Search",
        }
    )

    assert event.event_type == "input"
    assert event.field_name == "Search"
    assert event.screen_id is None
    assert event.to_dict()["inputValue"] == "ipad"


def test_describe_action_prefers_summary_then_text():
    assert make_event(action_summary="Clicked Buy").describe_action() == "Clicked Buy"
    assert make_event(target_text="x" * 120).describe_action() == "x" * 100
    assert make_event().describe_action() == "User action"


def test_canonical_screen_deduplicates_patterns():
    screen = CanonicalScreen(id="scr_1", label="Home", description="", url_patterns=["/a", "/b", "/a"])
    assert screen.url_patterns == ["/a", "/b"]


@pytest.mark.parametrize(
    "value, expected",
    [
        ("string", ParameterType.STRING),
        ("NUMBER", ParameterType.NUMBER),
        ("boolean", ParameterType.BOOLEAN),
        ("currency", ParameterType.STRING),
        (None, ParameterType.STRING),
    ],
)
def test_parameter_type_parse(value, expected):
    assert ParameterType.parse(value) == expected


def test_parameter_observed_values_accumulate():
    param = ParameterDef(description="Search term")
    param.observe("ipad")
    param.observe("kindle")

    assert param.to_dict() == {
        "type": "string",
        "description": "Search term",
        "required": True,
        "observedValues": ["ipad", "kindle"],
    }


def test_template_markdown_has_yaml_frontmatter():
    template = WorkflowTemplate(
        id="tmpl_1",
        name="Search Products",
        description="Search the catalog",
        inputs={"search_query": ParameterDef(description="Term")},
        steps=[
            TemplateStep(
                step_number=1,
                screen_pattern="Search",
                action_template="Enter {search_query}",
                uses_inputs=["search_query"],
            )
        ],
    )

    markdown = template.to_markdown()
    _, frontmatter, body = markdown.split("---\n", 2)

    meta = yaml.safe_load(frontmatter)
    assert meta["id"] == "tmpl_1"
    assert meta["inputs"]["search_query"]["type"] == "string"
    assert "### 1. Enter {search_query}" in body
    assert "`{search_query}`" in body


def test_undeclared_references_report_first_step():
    template = WorkflowTemplate(
        id="tmpl_1",
        name="Order",
        description="",
        steps=[
            TemplateStep(step_number=1, screen_pattern="A", action_template="a", uses_inputs=["qty"]),
            TemplateStep(
                step_number=2,
                screen_pattern="B",
                action_template="b",
                uses_inputs=["qty"],
                extracts={"order_id": {"from": "page_content"}},
            ),
        ],
    )

    assert template.undeclared_references() == ({"qty": 1}, {"order_id": 2})
