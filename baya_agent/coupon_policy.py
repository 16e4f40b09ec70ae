from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional

MILD_PRICE_RE = re.compile(r"(price|expensive|discount|coupon|deal|sale)", re.IGNORECASE)
STRONG_PRICE_RE = re.compile(
    r"(too expensive|budget|limit|competitor|if.*price|if.*cost)",
    re.IGNORECASE,
)
# Assistant turns that already quoted a percent-off figure.
PERCENT_RE = re.compile(r"\d+\s*%")
OFFER_WORD_RE = re.compile(r"(discount|off)", re.IGNORECASE)


@dataclass(frozen=True)
class CouponDecision:
    """Discount tier chosen for a turn; `code` is None when no coupon applies."""
    code: Optional[str] = None
    percent: int = 0

    @property
    def applies(self) -> bool:
        return self.percent > 0


NO_COUPON = CouponDecision()
MILD_COUPON = CouponDecision(code="5OFF", percent=5)
STRONG_COUPON = CouponDecision(code="10OFF", percent=10)

COUPONS: Dict[str, CouponDecision] = {
    MILD_COUPON.code: MILD_COUPON,
    STRONG_COUPON.code: STRONG_COUPON,
}


def decide_coupon(message: str) -> CouponDecision:
    """Purpose: Map the latest buyer message to a discount tier.
    Inputs/Outputs: Input is message text; output is NO/MILD/STRONG CouponDecision.
    Side Effects / State: None; the decision is per message.
    Dependencies: Uses STRONG_PRICE_RE before MILD_PRICE_RE.
    Failure Modes: Keyword heuristic; unrelated uses of "sale" still trigger 5%.
    If Removed: Price-sensitive buyers never get an offer.
    Testing Notes: "this feels too expensive" -> 10OFF; "any discount?" -> 5OFF.
    """
    # The strong tier wins when both keyword sets match.
    text = str(message or "")
    if STRONG_PRICE_RE.search(text):
        return STRONG_COUPON
    if MILD_PRICE_RE.search(text):
        return MILD_COUPON
    return NO_COUPON


def coupon_from_code(code: Optional[str]) -> CouponDecision:
    """Look up a coupon code; unknown or empty codes give no discount."""
    if not code:
        return NO_COUPON
    return COUPONS.get(str(code).strip().upper(), NO_COUPON)


def is_offer_text(text: str) -> bool:
    """True when an assistant message already carries a percent-off offer."""
    return bool(PERCENT_RE.search(text or "")) and bool(OFFER_WORD_RE.search(text or ""))


def has_prior_offer(history: Iterable[Mapping[str, object]]) -> bool:
    """Purpose: Check whether an earlier assistant turn already offered a discount.
    Inputs/Outputs: Input is role/content history; output is True if an offer was made.
    Side Effects / State: None.
    Dependencies: Uses is_offer_text on assistant turns only.
    Failure Modes: User turns mentioning "10% off" are ignored.
    If Removed: The same coupon is re-offered every turn.
    Testing Notes: An assistant line "I've applied a 5% discount" -> True.
    """
    # Only assistant turns count as offers.
    for entry in history:
        if str(entry.get("role", "")) != "assistant":
            continue
        if is_offer_text(str(entry.get("content", "") or "")):
            return True
    return False


def decide_turn_coupon(
    message: str,
    history: Iterable[Mapping[str, object]],
    current: CouponDecision = NO_COUPON,
) -> CouponDecision:
    """Purpose: Pick the coupon that prices this turn, given what was offered before.
    Inputs/Outputs: Inputs are the message, prior history, and the session's coupon;
        output is the CouponDecision to apply.
    Side Effects / State: None.
    Dependencies: Uses decide_coupon and has_prior_offer.
    Failure Modes: A replayed history with an offer but no session coupon yields
        NO_COUPON, since the earlier tier is unknown.
    If Removed: Offers repeat every turn and prices flip back to full price.
    Testing Notes: current=5OFF plus "over my budget" escalates to 10OFF; current=10OFF
        stays 10OFF; history offer without current suppresses.
    """
    # An offered coupon sticks and can only escalate from the mild to the strong tier.
    fresh = decide_coupon(message)
    if current.applies:
        if current == MILD_COUPON and fresh == STRONG_COUPON:
            return STRONG_COUPON
        return current
    if has_prior_offer(history):
        return NO_COUPON
    return fresh
