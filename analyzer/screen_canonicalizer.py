"""Screen canonicalization: cluster events by URL shape and label each cluster."""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from prompts.analyzer_prompts import SCREEN_CANONICALIZATION_PROMPT
from utils.tracking import PHASE_CANONICALIZE

from .errors import CollaboratorError
from .json_utils import decode_json_response, require
from .schema import CanonicalScreen, CapturedEvent, new_id

if TYPE_CHECKING:
    from utils.llm import LLMClient
    from utils.logger import WorkflowLogger

_module_logger = logging.getLogger(__name__)

# Path segments that look like identifiers rather than routes
_LONG_TOKEN = re.compile(r"^[A-Za-z0-9]{8,}$")
_UUID = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
_NUMERIC = re.compile(r"^\d+$")

SAMPLE_LIMIT = 3


def extract_url_pattern(url: str) -> str:
    """Reduce a URL to the shape of its path.

    Identifier-like segments (8+ char alphanumeric tokens, UUIDs, numbers)
    become ``*``; host and query are ignored.

    >>> extract_url_pattern("https://amazon.com/dp/B09V3KXJPB")
    '/dp/*'
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return url
    if not parsed.scheme or not parsed.netloc:
        return url

    parts = [p for p in parsed.path.split("/") if p]
    pattern_parts = [
        "*" if (_LONG_TOKEN.match(p) or _UUID.match(p) or _NUMERIC.match(p)) else p
        for p in parts
    ]
    return "/" + "/".join(pattern_parts)


def group_by_url_pattern(events: list[CapturedEvent]) -> dict[str, list[CapturedEvent]]:
    """Group events by URL pattern, in order of first appearance."""
    groups: dict[str, list[CapturedEvent]] = {}
    for event in events:
        groups.setdefault(extract_url_pattern(event.url), []).append(event)
    return groups


@dataclass
class UrlGroup:
    """Events sharing one URL pattern, summarized for the collaborator."""

    group_id: int
    url_pattern: str
    events: list[CapturedEvent]

    def to_summary(self) -> dict[str, Any]:
        sample_urls = list(dict.fromkeys(e.url for e in self.events[:SAMPLE_LIMIT]))
        return {
            "groupId": self.group_id,
            "urlPattern": self.url_pattern,
            "sampleUrls": sample_urls,
            "eventCount": len(self.events),
            "sampleActions": [
                e.describe_action(max_length=50, default="") for e in self.events[:SAMPLE_LIMIT]
            ],
        }


@dataclass
class ScreenCluster:
    """One entry of the collaborator's canonicalization response."""

    group_ids: list[int]
    label: str
    description: str


@dataclass
class CanonicalizeResult:
    """Canonical screens plus the event index → screen id mapping."""

    screens: list[CanonicalScreen] = field(default_factory=list)
    event_screen_mappings: dict[int, str] = field(default_factory=dict)
    used_fallback: bool = False


def parse_canonicalization_response(response_text: str) -> list[ScreenCluster]:
    """Decode and validate ``{"screenTypes": [...]}``.

    Raises:
        CollaboratorError: If the payload is missing or malformed.
    """
    stage = PHASE_CANONICALIZE
    data = decode_json_response(response_text, stage)
    screen_types = require(data, "screenTypes", list, stage)

    clusters = []
    for item in screen_types:
        group_ids = require(item, "groupIds", list, stage)
        label = require(item, "canonicalLabel", str, stage)
        description = item.get("description") or ""
        if not isinstance(description, str):
            raise CollaboratorError(stage, "Field 'description' must be a string")
        if any(isinstance(g, bool) or not isinstance(g, int) for g in group_ids):
            raise CollaboratorError(stage, f"Non-integer group id in {group_ids!r}")
        if not label.strip():
            raise CollaboratorError(stage, "Empty canonical label")
        clusters.append(ScreenCluster(group_ids=group_ids, label=label.strip(), description=description))
    return clusters


class ScreenCanonicalizer:
    """Assigns every captured event to a canonical screen.

    Grouping by URL pattern is deterministic; only labels and the merging of
    groups into one screen depend on the collaborator. Any collaborator
    failure degrades to one generically labelled screen per URL pattern.
    """

    def __init__(
        self,
        llm_client: "LLMClient",
        model: str,
        max_tokens: int = 4096,
        logger: "WorkflowLogger | None" = None,
    ):
        """Initialize the canonicalizer.

        Args:
            llm_client: Collaborator used to label URL groups.
            model: Model name for the canonicalization call.
            max_tokens: Maximum tokens for the response.
            logger: Optional WorkflowLogger for styled output.
        """
        self.llm_client = llm_client
        self.model = model
        self.max_tokens = max_tokens
        self.logger = logger

    def canonicalize(self, events: list[CapturedEvent]) -> CanonicalizeResult:
        """Build canonical screens and bind every event to one of them.

        Sets ``screen_id`` on each event as a side effect, replacing any
        binding the event already carried.
        """
        if not events:
            return CanonicalizeResult()

        groups = [
            UrlGroup(group_id=idx, url_pattern=pattern, events=evts)
            for idx, (pattern, evts) in enumerate(group_by_url_pattern(events).items())
        ]

        try:
            clusters = self._request_clusters(groups)
        except Exception as e:
            _module_logger.warning("Screen canonicalization fell back: %s", e)
            if self.logger:
                self.logger.fallback("Canonicalizer", str(e))
            screens, group_to_screen = self._fallback_screens(groups)
            used_fallback = True
        else:
            screens, group_to_screen = self._build_screens(groups, clusters)
            used_fallback = False

        pattern_to_screen = {g.url_pattern: group_to_screen[g.group_id] for g in groups}
        mappings: dict[int, str] = {}
        for idx, event in enumerate(events):
            screen_id = pattern_to_screen[extract_url_pattern(event.url)]
            # Ids from an earlier run name screens that are not part of this result
            event.release_screen()
            event.assign_screen(screen_id)
            mappings[idx] = screen_id

        if self.logger:
            self.logger.info(
                f"Created {len(screens)} canonical screens from {len(groups)} URL patterns"
            )
        return CanonicalizeResult(
            screens=screens,
            event_screen_mappings=mappings,
            used_fallback=used_fallback,
        )

    def _request_clusters(self, groups: list[UrlGroup]) -> list[ScreenCluster]:
        summaries = [g.to_summary() for g in groups]
        prompt = SCREEN_CANONICALIZATION_PROMPT.format(
            groups_json=json.dumps(summaries, indent=2),
        )
        response_text = self.llm_client.generate(
            model=self.model,
            prompt=prompt,
            max_tokens=self.max_tokens,
            phase=PHASE_CANONICALIZE,
        )
        return parse_canonicalization_response(response_text)

    def _build_screens(
        self,
        groups: list[UrlGroup],
        clusters: list[ScreenCluster],
    ) -> tuple[list[CanonicalScreen], dict[int, str]]:
        """Turn collaborator clusters into screens; unclustered groups stand alone."""
        by_id = {g.group_id: g for g in groups}
        group_to_screen: dict[int, str] = {}
        screens: list[CanonicalScreen] = []

        for cluster in clusters:
            # A group claimed by an earlier cluster keeps its first assignment
            members = [
                by_id[g] for g in dict.fromkeys(cluster.group_ids)
                if g in by_id and g not in group_to_screen
            ]
            if not members:
                continue
            screen = self._make_screen(members, cluster.label, cluster.description)
            screens.append(screen)
            for group in members:
                group_to_screen[group.group_id] = screen.id

        for group in groups:
            if group.group_id not in group_to_screen:
                screen = self._make_screen(
                    [group],
                    label=group.url_pattern,
                    description=f"Screen at {group.url_pattern}",
                )
                screens.append(screen)
                group_to_screen[group.group_id] = screen.id

        return screens, group_to_screen

    def _fallback_screens(
        self,
        groups: list[UrlGroup],
    ) -> tuple[list[CanonicalScreen], dict[int, str]]:
        """One screen per URL pattern with ordinal labels."""
        screens = []
        group_to_screen = {}
        for ordinal, group in enumerate(groups, start=1):
            screen = self._make_screen(
                [group],
                label=f"Screen {ordinal}",
                description=f"Screen at {group.url_pattern}",
            )
            screens.append(screen)
            group_to_screen[group.group_id] = screen.id
        return screens, group_to_screen

    @staticmethod
    def _make_screen(members: list[UrlGroup], label: str, description: str) -> CanonicalScreen:
        example = next(
            (e.screenshot_path for g in members for e in g.events if e.screenshot_path),
            "",
        )
        return CanonicalScreen(
            id=new_id("scr"),
            label=label,
            description=description,
            url_patterns=[g.url_pattern for g in members],
            example_screenshot_path=example,
        )
