"""Reply strategies for the sales chat.

Two interchangeable composers share one input contract (ReplyInputs):

    TemplateComposer:
        Deterministic. A decision table over {name known, missing slots,
        recommended, story told, new coupon, interest} picks a ReplyStage and
        the stage is rendered from fixed text. Every non-question reply ends
        with exactly one call-to-action sentence.
    ModelComposer:
        Renders the system prompt with slot state, candidate items, and the
        active discount, sends it with trailing history to the completion API,
        and substitutes one fixed filler sentence on any API failure.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .coupon_policy import NO_COUPON, CouponDecision, is_offer_text
from .models import NormalizedItem
from .openai_client import OpenAIClient, OpenAIClientError
from .prompt_loader import load_prompt, render_prompt
from .slot_extractor import missing_slots

logger = logging.getLogger("baya.agent")

ASK_NAME = "ask_name"
ASK_ROOM = "ask_room"
ASK_STYLE = "ask_style"
ASK_BUDGET = "ask_budget"
RECOMMEND = "recommend"
STORY = "story"
FOLLOW_UP = "follow_up"
MODEL = "model"
FALLBACK = "fallback"

FALLBACK_REPLY = "Sorry, something went wrong on my side. Could you tell me again what kind of artwork you are looking for?"
MODEL_FALLBACK_REPLY = "Sorry, I didn't quite catch that. Could you tell me a little more about the piece you have in mind?"

ASK_NAME_REPLY = "Hi, I'm Maya from BAYA Gallery. Before we start, may I have your name?"
ASK_ROOM_REPLY = (
    "To help me curate the perfect piece, could you tell me which room you're styling? "
    "For example: living room, bedroom, office, kitchen, or study."
)
ASK_STYLE_REPLY = (
    "What style of art speaks to you: minimal, bold, colorful, abstract, portrait, Judaica, or AI-inspired?"
)
ASK_BUDGET_REPLY = "Do you have a comfortable budget range in mind, for example $300 or $1,000?"
NO_RESULTS_REPLY = "I'm sorry, I couldn't find suitable artworks at this time."
NO_RESULTS_CTA = "Could you tell me a little more about what you have in mind?"
SHIPPING_LINE = "Prices include free fast shipping to the US and a certificate of authenticity."
STORY_REPLY = (
    "By the way, after the tragic events of October 7, our gallery had to pause operations for nearly two years. "
    "Today, every artwork purchased not only supports Israeli artists but also contributes to a donation we make "
    "to IDF soldiers. It's art with both beauty and purpose."
)
FOLLOW_UP_REPLY = "Is there anything else I can help you with regarding these pieces?"
CALL_TO_ACTION = "Would you like me to reserve one of these pieces for you today?"

INTEREST_RE = re.compile(
    r"\b(love|like|beautiful|gorgeous|stunning|interested|tell me more|story|about (?:the|your) gallery|who are you|artists?)\b",
    re.IGNORECASE,
)
RECOMMENDED_RE = re.compile(r"(here are some curated|refined pick|recommended artworks|curated recommendations)", re.IGNORECASE)
STORY_RE = re.compile(r"(october 7|7 october|\bidf\b|soldiers|donation)", re.IGNORECASE)

SLOT_QUESTIONS: Dict[str, Tuple[str, str]] = {
    "room": (ASK_ROOM, ASK_ROOM_REPLY),
    "style": (ASK_STYLE, ASK_STYLE_REPLY),
    "budget": (ASK_BUDGET, ASK_BUDGET_REPLY),
}


@dataclass
class ReplyInputs:
    """Everything a composer needs for one turn."""
    message: str
    slots: Mapping[str, Optional[str]]
    items: List[NormalizedItem] = field(default_factory=list)
    coupon: CouponDecision = NO_COUPON
    coupon_is_new: bool = False
    name_is_new: bool = False
    history: List[Dict[str, str]] = field(default_factory=list)
    recommended: bool = False
    story_told: bool = False

    @property
    def interest(self) -> bool:
        return bool(INTEREST_RE.search(self.message or ""))


@dataclass
class ComposedReply:
    text: str
    stage: str


@dataclass(frozen=True)
class ReplyRule:
    """One row of the decision table: the first rule whose predicate holds wins."""
    stage: str
    applies: Callable[[ReplyInputs], bool]


def _missing_first(inputs: ReplyInputs) -> Optional[str]:
    missing = missing_slots(inputs.slots)
    return missing[0] if missing else None


DECISION_TABLE: Tuple[ReplyRule, ...] = (
    ReplyRule(ASK_NAME, lambda i: not i.slots.get("name")),
    ReplyRule(ASK_ROOM, lambda i: _missing_first(i) == "room"),
    ReplyRule(ASK_STYLE, lambda i: _missing_first(i) == "style"),
    ReplyRule(ASK_BUDGET, lambda i: _missing_first(i) == "budget"),
    ReplyRule(RECOMMEND, lambda i: not i.recommended or i.coupon_is_new),
    ReplyRule(STORY, lambda i: not i.story_told and i.interest),
    ReplyRule(FOLLOW_UP, lambda i: True),
)


def plan_reply(inputs: ReplyInputs, table: Sequence[ReplyRule] = DECISION_TABLE) -> str:
    """Purpose: Pick the reply stage for this turn from the decision table.
    Inputs/Outputs: Input is ReplyInputs; output is a stage name.
    Side Effects / State: None.
    Dependencies: Uses DECISION_TABLE rows in order.
    Failure Modes: None; the last row always applies.
    If Removed: TemplateComposer cannot decide what to say.
    Testing Notes: Drive each row in isolation by toggling one fact at a time.
    """
    # First matching row wins.
    for rule in table:
        if rule.applies(inputs):
            return rule.stage
    return FOLLOW_UP


def scan_history_flags(history: Iterable[Mapping[str, object]]) -> Dict[str, bool]:
    """Purpose: Derive conversation flags from prior assistant turns.
    Inputs/Outputs: Input is role/content history; output has recommended,
        story_told, and discount_offered booleans.
    Side Effects / State: None.
    Dependencies: Uses RECOMMENDED_RE, STORY_RE, and is_offer_text.
    Failure Modes: Phrase heuristics; a paraphrased model reply may not register.
    If Removed: A client replaying history without a session id would hear the
        same recommendations and story again.
    Testing Notes: A reply from render_selling_reply sets recommended=True.
    """
    # Only assistant turns carry these flags.
    flags = {"recommended": False, "story_told": False, "discount_offered": False}
    for entry in history:
        if str(entry.get("role", "")) != "assistant":
            continue
        text = str(entry.get("content", "") or "")
        if RECOMMENDED_RE.search(text):
            flags["recommended"] = True
        if STORY_RE.search(text):
            flags["story_told"] = True
        if is_offer_text(text):
            flags["discount_offered"] = True
    return flags


def format_price(value: float) -> str:
    if float(value).is_integer():
        return f"${int(value):,}"
    return f"${value:,.2f}"


def render_item_line(index: int, item: NormalizedItem) -> str:
    """One numbered line: title, artist, optional spec, price, and buy link."""
    if item.discount_percent:
        price_info = f"{format_price(item.price_final)} (instead of {format_price(item.price_original)})"
    else:
        price_info = format_price(item.price_original)
    spec = f" {item.short_spec.rstrip('.')}." if item.short_spec else ""
    return f'{index}. "{item.title}" by {item.artist}.{spec} Price: {price_info}. Buy: {item.checkout_url}'


def render_selling_reply(items: Sequence[NormalizedItem], coupon: CouponDecision) -> str:
    """Purpose: Render the item presentation block without the closing call to action.
    Inputs/Outputs: Inputs are priced items and the coupon; output is text.
    Side Effects / State: None.
    Dependencies: Uses render_item_line and SHIPPING_LINE.
    Failure Modes: No items renders the apology line.
    If Removed: The template strategy cannot present artworks.
    Testing Notes: With 10OFF the text contains "instead of" and "10% discount".
    """
    # Header, numbered lines, shipping note, then the courtesy discount if any.
    if not items:
        return NO_RESULTS_REPLY
    lines = ["Here are some curated recommendations for you:"]
    lines.extend(render_item_line(index, item) for index, item in enumerate(items, start=1))
    closing = SHIPPING_LINE
    if coupon.applies:
        closing += f" As a courtesy, I've applied a {coupon.percent}% discount above (code {coupon.code})."
    return "\n".join(lines) + "\n\n" + closing


def _greeting(name: Optional[str]) -> str:
    return f"Lovely to meet you, {name}! " if name else ""


class TemplateComposer:
    """Local, deterministic reply assembly driven by DECISION_TABLE."""

    async def compose(self, inputs: ReplyInputs) -> ComposedReply:
        stage = plan_reply(inputs)
        return ComposedReply(text=self.render(stage, inputs), stage=stage)

    def render(self, stage: str, inputs: ReplyInputs) -> str:
        """Purpose: Turn a planned stage into reply text.
        Inputs/Outputs: Inputs are the stage and ReplyInputs; output is the reply.
        Side Effects / State: None.
        Dependencies: Uses the fixed reply texts and render_selling_reply.
        Failure Modes: Unknown stages render the follow-up reply.
        If Removed: Planned stages have no wording.
        Testing Notes: Non-question stages end with CALL_TO_ACTION exactly once.
        """
        # Questions stand alone; every other stage closes with one call to action.
        name = inputs.slots.get("name")
        if stage == ASK_NAME:
            return ASK_NAME_REPLY
        for slot, (slot_stage, question) in SLOT_QUESTIONS.items():
            if stage == slot_stage:
                greet = _greeting(name) if inputs.name_is_new else ""
                return greet + question
        if stage == RECOMMEND:
            if not inputs.items:
                return f"{NO_RESULTS_REPLY} {NO_RESULTS_CTA}"
            parts = [render_selling_reply(inputs.items, inputs.coupon)]
            if not inputs.story_told and inputs.interest:
                parts.append(STORY_REPLY)
            parts.append(CALL_TO_ACTION)
            return "\n\n".join(parts)
        if stage == STORY:
            return f"{STORY_REPLY}\n\n{CALL_TO_ACTION}"
        return f"{FOLLOW_UP_REPLY} {CALL_TO_ACTION}"


class ModelComposer:
    """Delegates wording to the completion API with a slot-aware system prompt."""

    def __init__(self, client: OpenAIClient, prompts_dir: Path, history_limit: int = 8) -> None:
        """Purpose: Bind the API client and load the system prompt template.
        Inputs/Outputs: Inputs are the client, prompt directory, and history window.
        Side Effects / State: Reads system_prompt.txt once.
        Dependencies: Uses load_prompt.
        Failure Modes: A missing prompt file raises OSError at startup.
        If Removed: REPLY_STRATEGY=model has no implementation.
        Testing Notes: Build with a MockTransport-backed client and inspect the payload.
        """
        self._client = client
        self._template = load_prompt(prompts_dir / "system_prompt.txt")
        self._history_limit = history_limit

    def build_system_prompt(self, inputs: ReplyInputs) -> str:
        slots = inputs.slots
        missing = missing_slots(slots, required=("name", "room", "style", "budget"))
        item_lines = [
            f'- "{item.title}" by {item.artist} | {item.short_spec or "n/a"} | '
            f"{format_price(item.price_final)} | {item.checkout_url}"
            for item in inputs.items
        ]
        discount = f"{inputs.coupon.percent}% (code {inputs.coupon.code})" if inputs.coupon.applies else "none"
        return render_prompt(
            self._template,
            {
                "name": slots.get("name") or "unknown",
                "location": slots.get("location") or "unknown",
                "room": slots.get("room") or "unknown",
                "style": slots.get("style") or "unknown",
                "budget": slots.get("budget") or "unknown",
                "missing": ", ".join(missing) or "nothing",
                "items": "\n".join(item_lines) or "- (no matching artworks right now)",
                "discount": discount,
            },
        )

    def build_messages(self, inputs: ReplyInputs) -> List[Dict[str, str]]:
        """System instruction, then the trailing history window, then the new user message."""
        messages = [{"role": "system", "content": self.build_system_prompt(inputs)}]
        window = inputs.history[-self._history_limit:] if self._history_limit > 0 else []
        for entry in window:
            role = entry.get("role")
            if role in ("user", "assistant") and entry.get("content"):
                messages.append({"role": role, "content": str(entry["content"])})
        messages.append({"role": "user", "content": inputs.message})
        return messages

    async def compose(self, inputs: ReplyInputs) -> ComposedReply:
        """Purpose: Ask the completion API for the reply, with a fixed fallback.
        Inputs/Outputs: Input is ReplyInputs; output is a ComposedReply.
        Side Effects / State: One outbound API call; no retry.
        Dependencies: Uses build_messages and OpenAIClient.chat_completion.
        Failure Modes: OpenAIClientError is logged and replaced by MODEL_FALLBACK_REPLY.
        If Removed: The model strategy cannot answer.
        Testing Notes: A 500 from the transport yields the fallback with stage "fallback".
        """
        # Single attempt; every API-side failure maps to the filler sentence.
        try:
            text = await self._client.chat_completion(self.build_messages(inputs))
        except OpenAIClientError as exc:
            logger.warning("model_reply_failed status=%s error=%s", exc.status_code, exc)
            return ComposedReply(text=MODEL_FALLBACK_REPLY, stage=FALLBACK)
        return ComposedReply(text=text, stage=MODEL)
