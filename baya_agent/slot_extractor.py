"""Regex slot extraction for buyer attributes.

Pattern tables are data: each slot maps to an ordered tuple of compiled
patterns, and the first capture found in the text blob wins. The current
message is placed ahead of prior turns so fresh answers take precedence.
"""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Mapping, Optional, Pattern, Tuple

SLOT_NAMES: Tuple[str, ...] = ("name", "location", "room", "style", "budget")

# Words that look like a bare capitalized name but are greetings or fillers.
NAME_STOPWORDS = {
    "hi", "hello", "hey", "thanks", "thank", "yes", "no", "ok", "okay", "sure",
    "great", "cool", "nice", "maybe", "please", "bold", "minimal", "abstract",
    "colorful", "portrait", "judaica", "ai", "bedroom", "office", "kitchen",
    "study", "hall", "dining", "living", "looking", "interested", "just", "here",
    "from", "new", "good", "fine", "modern", "minimalist", "contemporary",
    "classic", "vintage", "landscape", "colourful", "sounds", "perfect", "yeah",
    "yep", "nope", "wow", "love", "lovely", "beautiful", "amazing", "awesome",
    "anything", "whatever", "both", "none", "thx", "room",
}

# An explicit self-introduction may replace a known name; a bare capitalized
# line only fills a name that is still missing.
INTRO_NAME_RE = re.compile(r"(?i:\bmy name is|\bi['\u2019]m|\bi am|\bcall me|\bthis is)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)")
BARE_NAME_RE = re.compile(r"^\s*([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)\s*[.!]?\s*$", re.MULTILINE)

NAME_PATTERNS: Tuple[Pattern[str], ...] = (INTRO_NAME_RE, BARE_NAME_RE)

LOCATION_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(
        r"(?i:\bfrom)\s+([A-Z][\w'\-]*(?:\s+[A-Z][\w'\-]*)*?)"
        r"(?=\s+(?i:and|but|looking|for|with|who|in|my)\b|\s*[,.;!?\n]|\s*$)"
    ),
)

ROOM_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"\b(living room|bedroom|office|dining|hall|kitchen|study)\b", re.IGNORECASE),
)

STYLE_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"\b(minimal|bold|colorful|abstract|portrait|judaica|ai)\b", re.IGNORECASE),
)

BUDGET_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"(?:[$\u20aa\u20ac\u00a3]|\busd\s*)\s*(\d[\d,]*(?:\.\d+)?)", re.IGNORECASE),
    re.compile(r"\b(\d[\d,]*(?:\.\d+)?)\s*(?:usd|dollars|nis|shekels?|eur|euros?)\b", re.IGNORECASE),
)

SLOT_PATTERNS: Dict[str, Tuple[Pattern[str], ...]] = {
    "name": NAME_PATTERNS,
    "location": LOCATION_PATTERNS,
    "room": ROOM_PATTERNS,
    "style": STYLE_PATTERNS,
    "budget": BUDGET_PATTERNS,
}

# Vocabulary slots are reported lowercased; free-text slots keep their casing.
LOWERCASE_SLOTS = {"room", "style"}


def build_history_blob(history: Iterable[Mapping[str, object]], roles: Tuple[str, ...] = ("user",)) -> str:
    """Join prior turns of the given roles into one newline-separated blob."""
    lines: List[str] = []
    for entry in history:
        if str(entry.get("role", "")) not in roles:
            continue
        content = str(entry.get("content", "") or "").strip()
        if content:
            lines.append(content)
    return "\n".join(lines)


def _first_capture(patterns: Iterable[Pattern[str]], text: str, slot: str) -> Optional[str]:
    for pattern in patterns:
        for match in pattern.finditer(text):
            value = match.group(1).strip()
            if slot == "name" and _is_stopword_name(value):
                continue
            if value:
                return value
    return None


def _is_stopword_name(value: str) -> bool:
    return any(word.lower() in NAME_STOPWORDS for word in value.split())


def extract_slots(message: str, history_blob: str = "") -> Dict[str, str]:
    """Purpose: Derive optional buyer attributes from free text.
    Inputs/Outputs: Inputs are the current message and a blob of prior turns; output
        is a dict holding only the slots that were found (name, location, room,
        style, budget).
    Side Effects / State: None; pure function.
    Dependencies: Uses SLOT_PATTERNS in table order.
    Failure Modes: None; absent slots are simply missing from the result.
    If Removed: The agent cannot tailor questions or search seeds to the buyer.
    Testing Notes: "Hi, I'm Dana, from Tel Aviv, ... living room, budget $500"
        -> name Dana, location Tel Aviv, room living room, style bold, budget 500.
    """
    # Search the current message ahead of history so the newest answer wins.
    blob = "\n".join(part for part in (message or "", history_blob or "") if part)
    slots: Dict[str, str] = {}
    for slot in SLOT_NAMES:
        value = _first_capture(SLOT_PATTERNS[slot], blob, slot)
        if value is None:
            continue
        slots[slot] = value.lower() if slot in LOWERCASE_SLOTS else value
    return slots


def introduced_name(message: str) -> Optional[str]:
    """Name from an explicit self-introduction in the message ("I'm Dana"), if any."""
    return _first_capture((INTRO_NAME_RE,), message or "", "name")


def merge_slots(
    current: Mapping[str, Optional[str]],
    found: Mapping[str, str],
    introduced: Optional[str] = None,
) -> Dict[str, Optional[str]]:
    """Purpose: Overlay newly found slot values onto the known ones.
    Inputs/Outputs: Inputs are the known slots, the extracted slots, and the name
        from an explicit self-introduction in the current message; output is the
        merged slot dict.
    Side Effects / State: None.
    Dependencies: Uses SLOT_NAMES.
    Failure Modes: None; missing finds keep old values.
    If Removed: Slots cannot accumulate across turns.
    Testing Notes: A known name survives a bare "Modern" reply but yields to
        an explicit "I'm Ruth".
    """
    # Newest wins for room, style, and budget; a known name only yields to an introduction.
    merged: Dict[str, Optional[str]] = {slot: current.get(slot) for slot in SLOT_NAMES}
    for slot, value in found.items():
        if not value:
            continue
        if slot == "name" and merged.get("name"):
            value = introduced or merged["name"]
        merged[slot] = value
    return merged


def missing_slots(slots: Mapping[str, Optional[str]], required: Tuple[str, ...] = ("room", "style", "budget")) -> List[str]:
    """Required slots still unknown, in asking order."""
    return [slot for slot in required if not slots.get(slot)]
