"""Pipeline stage vocabularies and the next-action stage advancer.

Every pipeline flavour has its own ordered list of stages.  When a user saves
a new "next action" description for a pipeline item, the text is classified
against an ordered rule table (``StageRule``) into an *implied* stage.  The
item moves forward to that stage if, and only if, it is later than the
current one:

- an unknown current stage is returned unchanged
- text with no matching rule leaves the stage unchanged
- the stage never moves backwards and never past the implied stage

Rule tables are plain data so they can be stored, edited through the API and
rebuilt with ``Progression.with_rules``.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Iterable

_WS_RE = re.compile(r"\s+")


def _normalize(text: str | None) -> str:
    return _WS_RE.sub(" ", (text or "").strip()).casefold()


@dataclass(frozen=True)
class StageRule:
    """Keywords that, when found in a next action, imply ``stages[implied_stage_index]``."""

    keywords: tuple[str, ...]
    implied_stage_index: int

    def matches(self, normalized_text: str) -> bool:
        for keyword in self.keywords:
            kw = _normalize(keyword)
            if kw and re.search(rf"(?<!\w){re.escape(kw)}(?!\w)", normalized_text):
                return True
        return False


@dataclass(frozen=True)
class Progression:
    name: str
    stages: tuple[str, ...]
    rules: tuple[StageRule, ...] = ()

    def index(self, stage: str | None) -> int | None:
        try:
            return self.stages.index(stage)  # type: ignore[arg-type]
        except ValueError:
            return None

    def with_rules(self, rules: Iterable[StageRule]) -> Progression:
        return replace(self, rules=tuple(rules))


def classify_next_action(progression: Progression, text: str | None) -> int | None:
    """Return the stage index implied by *text*, or None.

    The first rule (in table order) with a matching keyword wins.  Rules that
    point outside the progression are ignored.
    """
    normalized = _normalize(text)
    if not normalized:
        return None
    for rule in progression.rules:
        if not 0 <= rule.implied_stage_index < len(progression.stages):
            continue
        if rule.matches(normalized):
            return rule.implied_stage_index
    return None


def advance_stage(progression: Progression, current_stage: str, text: str | None) -> str:
    """Move *current_stage* forward to the stage implied by *text*, if later."""
    current_idx = progression.index(current_stage)
    if current_idx is None:
        return current_stage
    implied_idx = classify_next_action(progression, text)
    if implied_idx is None or implied_idx <= current_idx:
        return current_stage
    return progression.stages[implied_idx]


# ---------------------------------------------------------------------------
# Vocabularies
# ---------------------------------------------------------------------------

RELATIONSHIP = "relationship"
CTO_CLUB = "cto_club"
CTO_OUTREACH = "cto_outreach"

RELATIONSHIP_STAGES = (
    "Initial Outreach",
    "Forming the Relationship",
    "Maintaining the Relationship",
)

CTO_CLUB_STAGES = (
    "Identified",
    "Warm Lead",
    "Active Discussion",
    "Partnership Pending",
    "Strategic Partner",
)

CTO_OUTREACH_STATUSES = (
    "not started",
    "in progress",
    "awaiting response",
    "ready for next step",
)

# Rules are ordered latest stage first so the furthest implied stage wins.
_RELATIONSHIP_RULES = (
    StageRule((
        "schedule dinner", "dinner", "follow up call", "follow-up call",
        "send valuable insight", "valuable insight",
        "ask if they need any help/introduction", "need any help", "introduction",
    ), 2),
    StageRule((
        "second catch-up email", "second catch-up", "schedule small 1:1 call", "1:1",
        "schedule coffee meetup", "coffee", "meetup",
        "share something via email", "share something",
    ), 1),
    StageRule((
        "connect on linkedin", "send thank you note", "thank you",
        "send first catch-up email", "first catch-up",
    ), 0),
)

_CTO_CLUB_RULES = (
    StageRule(("complete onboarding", "onboarding", "welcome pack", "signed", "kickoff"), 4),
    StageRule(("membership proposal", "proposal", "terms", "agreement", "contract"), 3),
    StageRule(("intro call", "club visit", "meeting", "call", "visit", "demo"), 2),
    StageRule(("initial outreach", "outreach", "intro email", "introduction",
               "follow-up email", "follow up email", "reach out"), 1),
)

_CTO_OUTREACH_RULES = (
    StageRule(("schedule cto club visit", "present membership proposal",
               "follow up on proposal", "complete onboarding"), 3),
    StageRule(("schedule intro call", "send cto club information"), 2),
    StageRule(("initial outreach email", "follow-up email"), 1),
)

DEFAULT_PROGRESSIONS: dict[str, Progression] = {
    RELATIONSHIP: Progression(RELATIONSHIP, RELATIONSHIP_STAGES, _RELATIONSHIP_RULES),
    CTO_CLUB: Progression(CTO_CLUB, CTO_CLUB_STAGES, _CTO_CLUB_RULES),
    CTO_OUTREACH: Progression(CTO_OUTREACH, CTO_OUTREACH_STATUSES, _CTO_OUTREACH_RULES),
}


def get_progression(name: str) -> Progression:
    """Look up a built-in progression by name. Raises ValueError if unknown."""
    try:
        return DEFAULT_PROGRESSIONS[name]
    except KeyError:
        raise ValueError(f"Unknown pipeline: {name!r}") from None


def get_updated_relationship_stage(current_stage: str, next_action_text: str | None) -> str:
    return advance_stage(DEFAULT_PROGRESSIONS[RELATIONSHIP], current_stage, next_action_text)


def get_updated_cto_stage(current_stage: str, next_action_text: str | None) -> str:
    return advance_stage(DEFAULT_PROGRESSIONS[CTO_CLUB], current_stage, next_action_text)


def get_updated_cto_status(current_status: str, next_action_text: str | None) -> str:
    return advance_stage(DEFAULT_PROGRESSIONS[CTO_OUTREACH], current_status, next_action_text)
