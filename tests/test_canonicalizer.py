import pytest

from analyzer.screen_canonicalizer import (
    ScreenCanonicalizer,
    UrlGroup,
    extract_url_pattern,
    group_by_url_pattern,
)
from conftest import FakeLLMClient, make_event

BASE = "https://shop.example.com"


def shopping_events():
    return [
        make_event(f"{BASE}/home", screenshot_path="shots/0.png", action_summary="Open home"),
        make_event(f"{BASE}/dp/B09V3KXJPB", screenshot_path="shots/1.png", target_text="iPad Pro"),
        make_event(f"{BASE}/dp/B08N5WRWNW", screenshot_path="shots/2.png", target_text="Kindle"),
        make_event(f"{BASE}/cart", screenshot_path="shots/3.png"),
        make_event(f"{BASE}/dp/B09V3KXJPB?ref=cart", screenshot_path="shots/4.png"),
    ]


@pytest.mark.parametrize(
    "url, pattern",
    [
        ("https://amazon.com/dp/B09V3KXJPB", "/dp/*"),
        ("https://app.example.com/orders/12345/edit", "/orders/*/edit"),
        ("https://app.example.com/orders/123e4567-e89b-12d3-a456-426614174000", "/orders/*"),
        ("https://app.example.com/search?q=ipad", "/search"),
        ("https://app.example.com/", "/"),
        ("https://other.example.org/cart", "/cart"),
        ("not a url", "not a url"),
    ],
)
def test_extract_url_pattern(url, pattern):
    assert extract_url_pattern(url) == pattern


def test_grouping_keeps_first_seen_order():
    groups = group_by_url_pattern(shopping_events())
    assert list(groups) == ["/home", "/dp/*", "/cart"]
    assert len(groups["/dp/*"]) == 3


def test_group_summary_limits_samples():
    events = [
        make_event(f"{BASE}/dp/A1B2C3D4E5", action_summary="First"),
        make_event(f"{BASE}/dp/A1B2C3D4E5", target_text="x" * 80),
        make_event(f"{BASE}/dp/Z9Y8X7W6V5"),
        make_event(f"{BASE}/dp/Q1Q1Q1Q1Q1", action_summary="Fourth"),
    ]

    summary = UrlGroup(group_id=2, url_pattern="/dp/*", events=events).to_summary()

    assert summary["groupId"] == 2
    assert summary["eventCount"] == 4
    assert summary["sampleUrls"] == [f"{BASE}/dp/A1B2C3D4E5", f"{BASE}/dp/Z9Y8X7W6V5"]
    assert summary["sampleActions"] == ["First", "x" * 50, ""]


def test_canonicalize_labels_clusters_and_maps_every_event():
    llm = FakeLLMClient(
        {
            "screenTypes": [
                {"groupIds": [1], "canonicalLabel": "Product Detail Page", "description": "One product"},
                {"groupIds": [0], "canonicalLabel": "Home", "description": "Landing page"},
            ]
        }
    )
    events = shopping_events()

    result = ScreenCanonicalizer(llm, "gpt-test").canonicalize(events)

    labels = [s.label for s in result.screens]
    assert labels == ["Product Detail Page", "Home", "/cart"]
    product = result.screens[0]
    assert product.url_patterns == ["/dp/*"]
    assert product.example_screenshot_path == "shots/1.png"
    assert result.screens[2].description == "Screen at /cart"
    assert not result.used_fallback

    assert events[1].screen_id == events[2].screen_id == events[4].screen_id == product.id
    assert result.event_screen_mappings == {i: e.screen_id for i, e in enumerate(events)}
    assert len(llm.calls_for("canonicalize")) == 1


def test_canonicalize_merges_groups_into_one_screen():
    llm = FakeLLMClient(
        '```json\n{"screenTypes": [{"groupIds": [0, 2, 2], "canonicalLabel": "Overview", '
        '"description": "Navigation pages"}, {"groupIds": [1], "canonicalLabel": "Product"}]}\n```'
    )
    events = shopping_events()

    result = ScreenCanonicalizer(llm, "gpt-test").canonicalize(events)

    overview = result.screens[0]
    assert overview.label == "Overview"
    assert overview.url_patterns == ["/home", "/cart"]
    assert overview.example_screenshot_path == "shots/0.png"
    assert events[0].screen_id == events[3].screen_id == overview.id
    assert len(result.screens) == 2


def test_canonicalize_ignores_unknown_and_duplicate_group_ids():
    llm = FakeLLMClient(
        {
            "screenTypes": [
                {"groupIds": [0, 7], "canonicalLabel": "Home"},
                {"groupIds": [0], "canonicalLabel": "Home again"},
                {"groupIds": [1, 2], "canonicalLabel": "Shopping"},
            ]
        }
    )

    result = ScreenCanonicalizer(llm, "gpt-test").canonicalize(shopping_events())

    assert [s.label for s in result.screens] == ["Home", "Shopping"]


@pytest.mark.parametrize(
    "response",
    [
        RuntimeError("timeout"),
        "",
        "Sorry, I cannot help with that.",
        {"screens": []},
        {"screenTypes": [{"groupIds": ["zero"], "canonicalLabel": "Home"}]},
        {"screenTypes": [{"groupIds": [0], "canonicalLabel": "   "}]},
    ],
)
def test_canonicalize_fallback_uses_ordinal_labels(response):
    llm = FakeLLMClient(response)
    events = shopping_events()

    result = ScreenCanonicalizer(llm, "gpt-test").canonicalize(events)

    assert result.used_fallback
    assert [s.label for s in result.screens] == ["Screen 1", "Screen 2", "Screen 3"]
    assert [s.description for s in result.screens] == [
        "Screen at /home",
        "Screen at /dp/*",
        "Screen at /cart",
    ]
    assert all(e.screen_id for e in events)


def test_grouping_does_not_depend_on_collaborator_output():
    labelled = FakeLLMClient({"screenTypes": [{"groupIds": [0, 1, 2], "canonicalLabel": "Shop"}]})
    failing = FakeLLMClient(RuntimeError("down"))

    first = shopping_events()
    second = shopping_events()
    ScreenCanonicalizer(labelled, "gpt-test").canonicalize(first)
    ScreenCanonicalizer(failing, "gpt-test").canonicalize(second)

    def partition(events):
        return sorted(
            sorted(i for i, e in enumerate(events) if extract_url_pattern(e.url) == pattern)
            for pattern in {extract_url_pattern(e.url) for e in events}
        )

    assert partition(first) == partition(second) == [[0], [1, 2, 4], [3]]
    # Events sharing a URL pattern always share a screen
    for events in (first, second):
        assert events[1].screen_id == events[2].screen_id == events[4].screen_id


def test_canonicalize_empty_input_makes_no_call(llm):
    result = ScreenCanonicalizer(llm, "gpt-test").canonicalize([])
    assert result.screens == []
    assert result.event_screen_mappings == {}
    assert llm.calls == []
