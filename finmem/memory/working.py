"""
Working Memory Store.

Per-session volatile key/value map bounded by a word budget. Entries keep
insertion order, which is also the eviction order: when a write would push
the session over budget the oldest entries are evicted until it fits. An
entry that alone exceeds the budget is still stored after everything else
is evicted.

Sessions expire after a period of inactivity; sweep_expired() reclaims
them and is safe to run alongside normal traffic.
"""

import copy
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

import structlog

from finmem.core.exceptions import SessionNotFoundError
from finmem.core.locks import KeyedLocks
from finmem.memory.rules import check_admission
from finmem.memory.types import SESSION_TIMEOUT_SECONDS, WORKING_BUDGET, MemoryTier
from finmem.memory.word_counter import count_words, percentage_used
from finmem.models.schemas import Session, WorkingEntry, utc_now
from finmem.monitoring.metrics import (
    ACTIVE_SESSIONS,
    record_eviction,
    record_rejection,
    track_memory_operation,
)

logger = structlog.get_logger(__name__)


@dataclass
class SessionState:
    session: Session
    entries: "OrderedDict[str, WorkingEntry]" = field(default_factory=OrderedDict)

    @property
    def word_count(self) -> int:
        return sum(entry.word_count for entry in self.entries.values())


class WorkingMemoryStore:
    """
    Session registry plus the working-memory map of each session.

    Usage:
        store = WorkingMemoryStore()
        await store.create_session("s1", "u1")
        await store.set("s1", "renda_mensal", 8000)
        await store.get_all("s1")
    """

    def __init__(
        self,
        budget: int = WORKING_BUDGET,
        session_timeout_seconds: float = SESSION_TIMEOUT_SECONDS,
    ) -> None:
        self.budget = budget
        self.session_timeout_seconds = session_timeout_seconds
        self._sessions: dict[str, SessionState] = {}
        self._locks = KeyedLocks("working")

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    async def create_session(
        self,
        session_id: str,
        user_id: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Session:
        """Create a session, or refresh it if it already exists."""
        async with self._locks.hold(session_id):
            state = self._sessions.get(session_id)
            if state is not None:
                state.session.last_activity = utc_now()
                if metadata:
                    state.session.metadata.update(metadata)
                return state.session

            session = Session(session_id=session_id, user_id=user_id, metadata=dict(metadata or {}))
            self._sessions[session_id] = SessionState(session=session)
            ACTIVE_SESSIONS.set(len(self._sessions))
            logger.info("session_created", session_id=session_id, user_id=user_id)
            return session

    def get_session(self, session_id: str) -> Optional[Session]:
        state = self._sessions.get(session_id)
        return state.session if state else None

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    async def end_session(self, session_id: str) -> bool:
        """Destroy a session and its whole map."""
        async with self._locks.hold(session_id):
            state = self._sessions.pop(session_id, None)
        ACTIVE_SESSIONS.set(len(self._sessions))
        if state is None:
            return False
        logger.info(
            "session_ended",
            session_id=session_id,
            entries=len(state.entries),
            words=state.word_count,
        )
        return True

    async def touch(self, session_id: str) -> None:
        async with self._locks.hold(session_id):
            state = self._require(session_id)
            state.session.last_activity = utc_now()

    def _require(self, session_id: str) -> SessionState:
        state = self._sessions.get(session_id)
        if state is None:
            raise SessionNotFoundError(session_id)
        return state

    # -------------------------------------------------------------------------
    # Entries
    # -------------------------------------------------------------------------

    async def set(self, session_id: str, key: str, value: Any) -> bool:
        """
        Store a value, evicting the oldest entries if the budget requires it.

        Returns:
            False when the admission rules decline the value.

        Raises:
            SessionNotFoundError: If the session does not exist.
        """
        if not isinstance(key, str) or not key.strip():
            return False

        decision = check_admission(value, MemoryTier.WORKING, key=key)
        if not decision.allowed:
            record_rejection(MemoryTier.WORKING.value, decision.reason or "rule")
            logger.info(
                "working_memory_write_rejected",
                session_id=session_id,
                key=key,
                reason=decision.reason,
                kind=decision.kind,
            )
            return False

        with track_memory_operation(MemoryTier.WORKING.value, "set"):
            async with self._locks.hold(session_id):
                state = self._require(session_id)
                words = count_words(value)

                # Overwrites release the old value and move the key to the newest slot
                state.entries.pop(key, None)
                current = state.word_count

                evicted = []
                while state.entries and current + words > self.budget:
                    old_key, old_entry = state.entries.popitem(last=False)
                    current -= old_entry.word_count
                    evicted.append(old_key)

                if words > self.budget:
                    logger.warning(
                        "working_memory_entry_exceeds_budget",
                        session_id=session_id,
                        key=key,
                        words=words,
                        budget=self.budget,
                    )

                state.entries[key] = WorkingEntry(key=key, value=copy.deepcopy(value), word_count=words)
                state.session.last_activity = utc_now()

        if evicted:
            record_eviction(MemoryTier.WORKING.value, len(evicted))
            logger.info(
                "working_memory_evicted",
                session_id=session_id,
                evicted_keys=evicted,
                words=current + words,
                budget=self.budget,
            )
        return True

    async def get(self, session_id: str, key: str, default: Any = None) -> Any:
        state = self._sessions.get(session_id)
        if state is None or key not in state.entries:
            return default
        return copy.deepcopy(state.entries[key].value)

    async def get_all(self, session_id: str) -> dict[str, Any]:
        """Snapshot of the session's map, oldest entry first."""
        state = self._sessions.get(session_id)
        if state is None:
            return {}
        return {key: copy.deepcopy(entry.value) for key, entry in state.entries.items()}

    async def delete(self, session_id: str, key: str) -> bool:
        async with self._locks.hold(session_id):
            state = self._require(session_id)
            removed = state.entries.pop(key, None) is not None
            state.session.last_activity = utc_now()
        return removed

    async def clear(self, session_id: str) -> int:
        async with self._locks.hold(session_id):
            state = self._require(session_id)
            removed = len(state.entries)
            state.entries.clear()
            state.session.last_activity = utc_now()
        logger.info("working_memory_cleared", session_id=session_id, entries=removed)
        return removed

    def word_count(self, session_id: str) -> int:
        state = self._sessions.get(session_id)
        return state.word_count if state else 0

    # -------------------------------------------------------------------------
    # Expiry
    # -------------------------------------------------------------------------

    async def sweep_expired(self) -> list[str]:
        """Reclaim sessions idle for longer than the timeout."""
        cutoff = utc_now() - timedelta(seconds=self.session_timeout_seconds)
        candidates = [
            session_id
            for session_id, state in list(self._sessions.items())
            if state.session.last_activity < cutoff
        ]

        reclaimed = []
        for session_id in candidates:
            async with self._locks.hold(session_id):
                state = self._sessions.get(session_id)
                # A write may have renewed the session since the scan
                if state is None or state.session.last_activity >= cutoff:
                    continue
                del self._sessions[session_id]
                reclaimed.append(session_id)

        ACTIVE_SESSIONS.set(len(self._sessions))
        if reclaimed:
            logger.info("sessions_expired", count=len(reclaimed), session_ids=reclaimed)
        return reclaimed

    def stats(self) -> dict[str, Any]:
        words = [state.word_count for state in self._sessions.values()]
        total = sum(words)
        return {
            "active_sessions": len(self._sessions),
            "total_words": total,
            "avg_words_per_session": round(total / len(words), 1) if words else 0.0,
            "max_usage_percent": max((percentage_used(w, self.budget) for w in words), default=0.0),
        }
