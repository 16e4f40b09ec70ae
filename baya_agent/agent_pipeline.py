"""BAYA sales chat pipeline orchestration.

Role:
    Runs one chat turn end to end: slot extraction, catalog retrieval, coupon
    decision, reply composition, and session bookkeeping. It owns the
    ChatContext contract passed between StepRunner steps.

Pipeline data contract (core fields passed across steps):
    - session: the SessionState for the caller's session id.
    - history: client-supplied history if any, else the session's own turns.
    - slots / name_is_new: merged buyer attributes after extraction.
    - seed / records / items: search seed, raw matches, and priced items.
    - coupon / coupon_is_new: discount applied to this turn's items.
    - reply / stage: composed reply text and the stage that produced it.

Step contracts:
    extract_slots:
        Reads message + user history; merges found slots into the session.
    retrieve:
        Builds the seed from style, room, and message; searches the catalog.
    coupon:
        Decides the turn's coupon and prices the retrieved records.
    compose:
        Calls the configured composer (template or model).
    finalize:
        Appends both turns to the session and records recommendation flags.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Union

from .catalog import ArtworkRecord, normalize_item, search_artworks
from .config import Settings
from .coupon_policy import NO_COUPON, CouponDecision, decide_turn_coupon
from .models import NormalizedItem
from .reply_composer import (
    ComposedReply,
    ModelComposer,
    ReplyInputs,
    TemplateComposer,
    scan_history_flags,
)
from .session_store import SessionState, SessionStore
from .slot_extractor import build_history_blob, extract_slots, introduced_name, merge_slots
from .step_runner import Step, StepRunner

logger = logging.getLogger("baya.agent")

Composer = Union[TemplateComposer, ModelComposer]


@dataclass
class ChatContext:
    """Mutable context passed through each pipeline step."""
    session: SessionState
    message: str
    history: List[Dict[str, str]]
    buyer_name: Optional[str] = None
    slots: Dict[str, Optional[str]] = field(default_factory=dict)
    name_is_new: bool = False
    seed: str = ""
    records: List[ArtworkRecord] = field(default_factory=list)
    items: List[NormalizedItem] = field(default_factory=list)
    coupon: CouponDecision = NO_COUPON
    coupon_is_new: bool = False
    recommended: bool = False
    story_told: bool = False
    reply: str = ""
    stage: str = ""

    @property
    def session_id(self) -> str:
        return self.session.session_id


class SalesAgent:
    def __init__(
        self,
        catalog: Sequence[ArtworkRecord],
        sessions: SessionStore,
        composer: Composer,
        settings: Settings,
    ) -> None:
        """Purpose: Initialize the chat pipeline runner and its collaborators.
        Inputs/Outputs: Inputs are the loaded catalog, session store, reply composer,
            and settings; no return value.
        Side Effects / State: Builds the StepRunner with the ordered steps.
        Dependencies: Uses StepRunner/Step and the step methods on this class.
        Failure Modes: None at init; runtime errors occur within step functions.
        If Removed: The chat endpoint has no pipeline to run.
        Testing Notes: Construct with an in-memory catalog and TemplateComposer.
        """
        # The catalog is shared read-only across requests.
        self._catalog = tuple(catalog)
        self._sessions = sessions
        self._composer = composer
        self._settings = settings
        self._runner = StepRunner(
            steps=[
                Step("extract_slots", self._step_extract_slots),
                Step("retrieve", self._step_retrieve),
                Step("coupon", self._step_coupon),
                Step("compose", self._step_compose),
                Step("finalize", self._step_finalize, always_run=True),
            ]
        )

    @property
    def catalog(self) -> Sequence[ArtworkRecord]:
        return self._catalog

    async def handle_message(
        self,
        session_id: Optional[str],
        message: str,
        history: Optional[List[Dict[str, str]]] = None,
        buyer_name: Optional[str] = None,
    ) -> ChatContext:
        """Purpose: Run the full pipeline for one buyer message.
        Inputs/Outputs: Inputs are session id, message, optional client history and
            buyer name; output is the populated ChatContext.
        Side Effects / State: Mutates the session (slots, coupon, flags, history).
        Dependencies: Uses SessionStore.get_or_create and StepRunner.run.
        Failure Modes: External API failures are absorbed by the composer; other
            exceptions propagate to the caller.
        If Removed: /api/chat cannot answer.
        Testing Notes: Two turns on one session id should accumulate slots.
        """
        # Prefer the client's history; fall back to what the session remembers.
        session = self._sessions.get_or_create(session_id)
        context = ChatContext(
            session=session,
            message=(message or "").strip(),
            history=list(history) if history else list(session.history),
            buyer_name=(buyer_name or "").strip() or None,
        )
        logger.info("session=%s message=%s", context.session_id, context.message)
        await self._runner.run(context)
        return context

    def _step_extract_slots(self, context: ChatContext) -> None:
        # Client-provided buyer name seeds the slot; only a self-introduction replaces it.
        session = context.session
        had_name = bool(session.name)
        if context.buyer_name and not session.name:
            session.name = context.buyer_name
        found = extract_slots(context.message, build_history_blob(context.history))
        context.slots = merge_slots(session.slots(), found, introduced_name(context.message))
        session.apply_slots(context.slots)
        context.name_is_new = bool(context.slots.get("name")) and not had_name
        logger.debug("session=%s slots=%s", context.session_id, context.slots)

    def _step_retrieve(self, context: ChatContext) -> None:
        """Purpose: Search the catalog with a seed built from slots and the message.
        Inputs/Outputs: Input is ChatContext; sets seed and records.
        Side Effects / State: None beyond the context.
        Dependencies: Uses search_artworks with SEARCH_LIMIT.
        Failure Modes: Empty catalog leaves records empty.
        If Removed: No items are ever recommended.
        Testing Notes: A style slot of "bold" should pull bold-tagged records first.
        """
        # Known taste first, then the raw message.
        parts = [context.slots.get("style"), context.slots.get("room"), context.message]
        context.seed = " ".join(part for part in parts if part)
        context.records = search_artworks(context.seed, self._catalog, self._settings.search_limit)
        logger.info(
            "session=%s step=retrieve seed=%s matches=%s",
            context.session_id,
            context.seed,
            [record.id for record in context.records],
        )

    def _step_coupon(self, context: ChatContext) -> None:
        # The session's coupon sticks; history offers are honored for stateless clients.
        session = context.session
        previous = session.coupon
        context.coupon = decide_turn_coupon(context.message, context.history, current=previous)
        context.coupon_is_new = context.coupon.applies and context.coupon != previous
        if context.coupon.applies:
            session.coupon = context.coupon
        context.items = [
            normalize_item(
                record,
                context.coupon,
                self._settings.base_product_url,
                self._settings.checkout_query,
            )
            for record in context.records
        ]
        if context.coupon_is_new:
            logger.info("session=%s step=coupon code=%s", context.session_id, context.coupon.code)

    async def _step_compose(self, context: ChatContext) -> None:
        # Flags come from both the session and any replayed assistant turns.
        flags = scan_history_flags(context.history)
        context.recommended = context.session.recommended or flags["recommended"]
        context.story_told = context.session.story_told or flags["story_told"]
        inputs = ReplyInputs(
            message=context.message,
            slots=context.slots,
            items=context.items,
            coupon=context.coupon,
            coupon_is_new=context.coupon_is_new,
            name_is_new=context.name_is_new,
            history=context.history,
            recommended=context.recommended,
            story_told=context.story_told,
        )
        composed: ComposedReply = await self._composer.compose(inputs)
        context.reply = composed.text
        context.stage = composed.stage
        logger.info("session=%s step=compose stage=%s", context.session_id, context.stage)

    def _step_finalize(self, context: ChatContext) -> None:
        """Purpose: Record this turn in the session for the next one.
        Inputs/Outputs: Input is ChatContext; no return value.
        Side Effects / State: Appends user/assistant turns (bounded) and sets
            recommended/story_told flags from the reply text.
        Dependencies: Uses scan_history_flags and SessionState.add_turn.
        Failure Modes: None.
        If Removed: The template strategy repeats itself every turn.
        Testing Notes: After a recommendation reply, session.recommended is True.
        """
        # Keep twice the prompt window so both roles fit in it.
        session = context.session
        max_entries = self._settings.history_limit * 2
        if context.message:
            session.add_turn("user", context.message, max_entries)
        if context.reply:
            session.add_turn("assistant", context.reply, max_entries)
        reply_flags = scan_history_flags([{"role": "assistant", "content": context.reply}])
        session.recommended = session.recommended or context.recommended or reply_flags["recommended"]
        session.story_told = session.story_told or context.story_told or reply_flags["story_told"]
        logger.info("session=%s reply=%s", context.session_id, context.reply)
