import pytest

from analyzer.schema import DetectedInstance, ParameterType
from analyzer.template_synthesizer import TemplateSynthesizer
from conftest import FakeLLMClient, events_on_screens


def search_instance():
    events, screens = events_on_screens(["Search", "Results", "Product"])
    events[0].event_type = "input"
    events[0].input_value = "iPad"
    events[0].input_name = "q"
    events[0].input_type = "text"
    events[0].action_summary = "Typed iPad into search"
    events[1].action_summary = None
    events[1].target_text = "iPad Pro 11-inch (4th generation) with M2 chip and Liquid Retina display"
    events[2].action_summary = None
    instance = DetectedInstance(
        goal="Search for iPad",
        start_event_index=0,
        end_event_index=2,
        succeeded=True,
        events=events,
    )
    return instance, screens


SEARCH_RESPONSE = {
    "template": {
        "name": "Search and Open Product",
        "description": "Search for a product and open its page",
        "inputs": {
            "search_query": {"type": "string", "description": "Search term", "required": True},
            "quantity": {"type": "number", "description": "Items", "required": False, "default": 1},
        },
        "outputs": {
            "product_name": {"type": "string", "description": "Product opened"},
        },
        "steps": [
            {
                "stepNumber": 3,
                "screenPattern": "Search",
                "actionTemplate": "Enter {search_query} in the search box",
                "usesInputs": ["search_query"],
                "extracts": {},
            },
            {
                "stepNumber": 7,
                "screenPattern": "Results",
                "actionTemplate": "Click the first product in the results",
                "usesInputs": [],
                "extracts": {"product_name": {"from": "clicked_text"}},
            },
        ],
    },
    "instanceValues": {
        "inputs": {"search_query": "iPad"},
        "outputs": {"product_name": "iPad Pro 11-inch"},
    },
}


def test_synthesize_builds_template_and_instance():
    instance, screens = search_instance()
    llm = FakeLLMClient(SEARCH_RESPONSE)

    result = TemplateSynthesizer(llm, "gpt-test").synthesize(instance, screens, "session-1")
    template, inst = result.template, result.instance

    assert template.id.startswith("tmpl_")
    assert template.name == "Search and Open Product"
    assert [s.step_number for s in template.steps] == [1, 2]
    assert template.steps[1].extracts == {"product_name": {"from": "clicked_text"}}

    query = template.inputs["search_query"]
    assert query.param_type == ParameterType.STRING
    assert query.required
    assert query.observed_values == ["iPad"]
    quantity = template.inputs["quantity"]
    assert quantity.param_type == ParameterType.NUMBER
    assert quantity.default == 1
    assert quantity.observed_values == []
    product = template.outputs["product_name"]
    assert not product.required
    assert product.observed_values == ["iPad Pro 11-inch"]

    assert inst.id.startswith("inst_")
    assert inst.template_id == template.id
    assert inst.session_id == "session-1"
    assert inst.parameter_values == {"search_query": "iPad"}
    assert inst.extracted_values == {"product_name": "iPad Pro 11-inch"}


def test_snapshots_follow_raw_events_not_template_steps():
    instance, screens = search_instance()
    llm = FakeLLMClient(SEARCH_RESPONSE)

    result = TemplateSynthesizer(llm, "gpt-test").synthesize(instance, screens, "session-1")
    snapshots = result.instance.step_snapshots

    assert len(result.template.steps) == 2
    assert [s.step_number for s in snapshots] == [1, 2, 3]
    assert [s.screen_label for s in snapshots] == ["Search", "Results", "Product"]
    assert snapshots[0].action == "Typed iPad into search"
    assert snapshots[1].action == instance.events[1].target_text[:100]
    assert snapshots[2].action == "User action"
    assert snapshots[0].screenshot_path == "shots/0.png"


def test_prompt_carries_goal_and_event_details():
    instance, screens = search_instance()
    llm = FakeLLMClient(SEARCH_RESPONSE)

    TemplateSynthesizer(llm, "gpt-test").synthesize(instance, screens, "session-1")

    call = llm.calls_for("synthesize")[0]
    assert 'Goal of this workflow: "Search for iPad"' in call.prompt
    assert '"typedText": "iPad"' in call.prompt
    assert '"inputFieldName": "q"' in call.prompt
    assert '"screenType": "Results"' in call.prompt


def test_undeclared_references_are_declared_as_optional_strings():
    instance, screens = search_instance()
    response = {
        "template": {
            "name": "Order Item",
            "description": "Order an item",
            "inputs": {},
            "outputs": {},
            "steps": [
                {
                    "stepNumber": 1,
                    "screenPattern": "Product",
                    "actionTemplate": "Set quantity to {quantity}",
                    "usesInputs": ["quantity"],
                    "extracts": {"order_id": {"from": "page_content"}},
                }
            ],
        },
        "instanceValues": {"inputs": {"quantity": 2}, "outputs": {}},
    }
    llm = FakeLLMClient(response)

    template = TemplateSynthesizer(llm, "gpt-test").synthesize(instance, screens, "s").template

    quantity = template.inputs["quantity"]
    assert quantity.param_type == ParameterType.STRING
    assert not quantity.required
    assert quantity.observed_values == [2]
    assert template.outputs["order_id"].observed_values == []
    assert template.undeclared_references() == ({}, {})


def test_unknown_extract_source_defaults_to_page_content():
    instance, screens = search_instance()
    response = {
        "template": {
            "name": "Read Price",
            "description": "Read a price",
            "inputs": {},
            "outputs": {"price": {"type": "currency", "description": "Price"}},
            "steps": [
                {
                    "stepNumber": 1,
                    "screenPattern": "Product",
                    "actionTemplate": "Read the price label",
                    "extracts": {"price": {"from": "screenshot"}},
                }
            ],
        },
    }
    llm = FakeLLMClient(response)

    template = TemplateSynthesizer(llm, "gpt-test").synthesize(instance, screens, "s").template

    assert template.steps[0].extracts == {"price": {"from": "page_content"}}
    assert template.steps[0].uses_inputs == []
    assert template.outputs["price"].param_type == ParameterType.STRING


@pytest.mark.parametrize(
    "response",
    [
        RuntimeError("rate limited"),
        "not json at all",
        {"instanceValues": {}},
        {"template": {"name": "No steps", "description": ""}},
        {"template": {"name": "Bad step", "steps": [{"stepNumber": 1}]}},
        {"template": {"name": "", "steps": []}},
    ],
)
def test_fallback_template_is_literal(response):
    instance, screens = search_instance()
    llm = FakeLLMClient(response)

    result = TemplateSynthesizer(llm, "gpt-test").synthesize(instance, screens, "session-9")
    template, inst = result.template, result.instance

    assert template.name == "Search for iPad"
    assert template.description == "Workflow: Search for iPad"
    assert template.inputs == {}
    assert template.outputs == {}
    assert [s.action_template for s in template.steps] == [
        "Typed iPad into search",
        instance.events[1].target_text[:50],
        "Action",
    ]
    assert [s.screen_pattern for s in template.steps] == ["Search", "Results", "Product"]
    assert inst.template_id == template.id
    assert inst.session_id == "session-9"
    assert inst.parameter_values == {}
    assert inst.extracted_values == {}
    assert len(inst.step_snapshots) == 3
    assert inst.step_snapshots[2].action == "Action"


def test_synthesize_all_runs_one_call_per_instance_in_order():
    first, screens = search_instance()
    second = DetectedInstance(
        goal="Open product",
        start_event_index=2,
        end_event_index=2,
        succeeded=True,
        events=first.events[2:],
    )
    llm = FakeLLMClient(SEARCH_RESPONSE, RuntimeError("boom"))

    results = TemplateSynthesizer(llm, "gpt-test").synthesize_all([first, second], screens, "s")

    assert [r.template.name for r in results] == ["Search and Open Product", "Open product"]
    assert len(llm.calls_for("synthesize")) == 2
    assert "Open product" in llm.calls[1].prompt
