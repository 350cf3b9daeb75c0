"""Map loosely-typed module keys to canonical module labels."""

import re
from typing import Optional, Tuple

from .models import ModuleLabel

# Checked in order; more specific keywords first
KEYWORD_LABELS: Tuple[Tuple[str, ModuleLabel], ...] = (
    ("qnquestion", ModuleLabel.QUIZ_NEST),
    ("pvpquestion", ModuleLabel.EVENT_DUEL),
    ("quiznest", ModuleLabel.QUIZ_NEST),
    ("eventduel", ModuleLabel.EVENT_DUEL),
    ("pvp", ModuleLabel.EVENT_DUEL),
    ("tapmatch", ModuleLabel.TAP_MATCH),
    ("eventreg", ModuleLabel.EVENT_REG),
    ("checkin", ModuleLabel.CHECK_IN),
    ("walkin", ModuleLabel.CHECK_IN),
    ("digipass", ModuleLabel.DIGI_PASS),
    ("votecast", ModuleLabel.VOTE_CAST),
    ("poll", ModuleLabel.VOTE_CAST),
    ("survey", ModuleLabel.SURVEY_GURU),
    ("eventwheel", ModuleLabel.EVENT_WHEEL),
    ("spinwheel", ModuleLabel.EVENT_WHEEL),
    ("mosaic", ModuleLabel.MOSAIC_WALL),
    ("wall", ModuleLabel.MOSAIC_WALL),
    ("displaymedia", ModuleLabel.MOSAIC_WALL),
    ("stageq", ModuleLabel.STAGE_Q),
    ("question", ModuleLabel.STAGE_Q),
    ("visitor", ModuleLabel.STAGE_Q),
    ("auth", ModuleLabel.AUTH),
    ("login", ModuleLabel.AUTH),
    ("user", ModuleLabel.USER),
)


def normalize_key(key: str) -> str:
    return re.sub(r"[^a-z0-9]", "", key.lower())


def classify_module(key: Optional[str]) -> ModuleLabel:
    """
    Classify a free-form module key.

    >>> classify_module("registration-eventreg")
    <ModuleLabel.EVENT_REG: 'EventReg'>
    >>> classify_module("globalconfig")
    <ModuleLabel.OTHER: 'Other'>
    """
    if not key:
        return ModuleLabel.OTHER

    normalized = normalize_key(key)
    for label in ModuleLabel:
        if normalize_key(label.value) == normalized:
            return label

    for keyword, label in KEYWORD_LABELS:
        if keyword in normalized:
            return label
    return ModuleLabel.OTHER
