import json
import math
import re
import unicodedata
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional


def normalize_text(text: str) -> str:
    """Purpose: Normalize free-form text for case-insensitive matching.
    Inputs/Outputs: Input is a raw string; output is a lowercase string with
        compatibility forms folded and whitespace collapsed.
    Side Effects / State: None; pure function.
    Dependencies: Uses unicodedata and regex; called by catalog search and coupon checks.
    Failure Modes: Returns an empty string when input is falsy.
    If Removed: Search scoring becomes sensitive to case and stray whitespace.
    Testing Notes: "  Living\tROOM " should become "living room".
    """
    # Fold compatibility characters, lowercase, and collapse whitespace.
    if not text:
        return ""
    folded = unicodedata.normalize("NFKC", str(text)).lower()
    return re.sub(r"\s+", " ", folded).strip()


def tokenize(text: str) -> List[str]:
    """Split normalized text on whitespace."""
    normalized = normalize_text(text)
    return normalized.split(" ") if normalized else []


def round_half_up(value: float) -> int:
    """Purpose: Round a price to the nearest integer with halves rounded up.
    Inputs/Outputs: Input is a number; output is an int.
    Side Effects / State: None.
    Dependencies: Uses decimal to avoid float half-even surprises.
    Failure Modes: Non-numeric input raises decimal.InvalidOperation.
    If Removed: Displayed prices drift by one on .5 boundaries.
    Testing Notes: 2.5 -> 3, 475.0 -> 475.
    """
    # Go through str() so binary float noise does not leak into the rounding.
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_number(value: Any) -> float:
    """Purpose: Coerce catalog price values ("1,200", "$450", 300) to a usable float.
    Inputs/Outputs: Input is any JSON value; output is a finite, non-negative float.
    Side Effects / State: None.
    Dependencies: Uses math.isfinite.
    Failure Modes: Unparseable, negative, non-finite, or float-overflowing values
        become 0.0.
    If Removed: One bad price field can abort catalog loading.
    Testing Notes: NaN, Infinity, -5, and a 400-digit integer all give 0.0.
    """
    # Anything that cannot be shown as a real price counts as unpriced.
    if isinstance(value, bool):
        return 0.0
    try:
        if isinstance(value, (int, float)):
            number = float(value)
        else:
            cleaned = re.sub(r"[^0-9.\-]", "", str(value or ""))
            number = float(cleaned) if cleaned else 0.0
    except (ValueError, OverflowError):
        return 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


def safe_json_loads(text: Any) -> Optional[Dict[str, Any]]:
    """Purpose: Parse a JSON object from a request body safely.
    Inputs/Outputs: Input is raw text or bytes; output is a dict or None if parsing fails.
    Side Effects / State: None; pure function.
    Dependencies: Uses json.loads; called by the chat endpoint.
    Failure Modes: Returns None on decode errors or when the top level is not an object.
    If Removed: Malformed bodies crash the chat handler instead of getting a fallback reply.
    Testing Notes: Validate empty body -> {}, valid object parses, garbage returns None.
    """
    # An empty body is treated as an empty object.
    if isinstance(text, (bytes, bytearray)):
        try:
            text = text.decode("utf-8-sig")
        except UnicodeDecodeError:
            return None
    if not text or not str(text).strip():
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None
