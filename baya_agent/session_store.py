from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .coupon_policy import NO_COUPON, CouponDecision
from .slot_extractor import SLOT_NAMES

logger = logging.getLogger("baya.sessions")

DEFAULT_SESSION_ID = "default"


@dataclass
class SessionState:
    """Accumulated slot values, flags, and trailing history for one chat session."""
    session_id: str
    name: Optional[str] = None
    location: Optional[str] = None
    room: Optional[str] = None
    style: Optional[str] = None
    budget: Optional[str] = None
    history: List[Dict[str, str]] = field(default_factory=list)
    coupon: CouponDecision = NO_COUPON
    recommended: bool = False
    story_told: bool = False
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def slots(self) -> Dict[str, Optional[str]]:
        """Return the current slot values keyed by slot name."""
        return {slot: getattr(self, slot) for slot in SLOT_NAMES}

    def apply_slots(self, slots: Dict[str, Optional[str]]) -> None:
        for slot in SLOT_NAMES:
            value = slots.get(slot)
            if value:
                setattr(self, slot, value)

    def add_turn(self, role: str, content: str, max_entries: int) -> None:
        """Append a turn and keep only the trailing `max_entries` entries."""
        self.history.append({"role": role, "content": content})
        if max_entries > 0 and len(self.history) > max_entries:
            del self.history[: len(self.history) - max_entries]


class SessionStore:
    """In-memory session map with sliding expiry and a size cap."""

    def __init__(
        self,
        ttl_sec: Optional[int] = 3600,
        max_sessions: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Purpose: Initialize an empty, process-lifetime session map.
        Inputs/Outputs: Inputs are the idle TTL, the session cap, and a clock; no return.
        Side Effects / State: Allocates the in-memory map only; nothing touches disk.
        Dependencies: Uses SessionState.
        Failure Modes: None; ttl_sec/max_sessions of None or <= 0 disable that limit.
        If Removed: Buyer details are forgotten between turns.
        Testing Notes: Inject a fake clock to exercise expiry deterministically.
        """
        # Keep limits and the clock; sessions are created lazily on first reference.
        self._ttl_sec = ttl_sec
        self._max_sessions = max_sessions
        self._clock = clock
        self._sessions: Dict[str, SessionState] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def get_or_create(self, session_id: Optional[str]) -> SessionState:
        """Purpose: Fetch a live session or create it on first reference.
        Inputs/Outputs: Input is a session id (None/blank means the default id);
            output is the SessionState, touched to now.
        Side Effects / State: Expires idle sessions and enforces the cap.
        Dependencies: Uses _expire and _prune.
        Failure Modes: None.
        If Removed: The chat pipeline has nowhere to accumulate slots.
        Testing Notes: Same id twice returns the same object; an expired id returns
            a fresh one.
        """
        # Expire first so a stale session is recreated instead of revived.
        now = self._clock()
        self._expire(now)
        key = (session_id or "").strip() or DEFAULT_SESSION_ID
        state = self._sessions.get(key)
        if state is None:
            state = SessionState(session_id=key, created_at=now, updated_at=now)
            self._sessions[key] = state
            logger.debug("session=%s created total=%d", key, len(self._sessions))
            self._prune(keep=key)
        else:
            state.updated_at = now
        return state

    def get(self, session_id: str) -> Optional[SessionState]:
        return self._sessions.get(session_id)

    def drop(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def _expire(self, now: float) -> int:
        # Sliding TTL: sessions idle longer than ttl_sec are removed.
        if not self._ttl_sec or self._ttl_sec <= 0:
            return 0
        expired = [key for key, state in self._sessions.items() if now - state.updated_at > self._ttl_sec]
        for key in expired:
            self._sessions.pop(key, None)
        if expired:
            logger.info("sessions_expired count=%d remaining=%d", len(expired), len(self._sessions))
        return len(expired)

    def _prune(self, keep: Optional[str] = None) -> bool:
        """Purpose: Enforce max_sessions by dropping least recently touched sessions.
        Inputs/Outputs: Optional id that must survive; returns True if any were removed.
        Side Effects / State: Mutates the session map.
        Dependencies: Uses updated_at ordering.
        Failure Modes: None; no-op when max_sessions is unset or not exceeded.
        If Removed: The map grows without bound under many distinct ids.
        Testing Notes: Set max_sessions=2, create three ids, and expect the oldest gone.
        """
        # Remove the oldest sessions beyond the cap, never the one just created.
        if not self._max_sessions or self._max_sessions <= 0:
            return False
        if len(self._sessions) <= self._max_sessions:
            return False
        ordered = sorted(
            self._sessions.values(),
            key=lambda s: (s.session_id == keep, s.updated_at),
            reverse=True,
        )
        keep_ids = {state.session_id for state in ordered[: self._max_sessions]}
        removed = [key for key in list(self._sessions) if key not in keep_ids]
        for key in removed:
            self._sessions.pop(key, None)
        if removed:
            logger.info("sessions_pruned count=%d remaining=%d", len(removed), len(self._sessions))
        return bool(removed)
