"""
Per-claim editing sessions.

A session ties one claim's draft values, section organizer, assessment
worksheet, fee bill, report layout and debounce scheduler together. Open
sessions live in a module-level registry guarded by a lock; sessions left
idle longer than the configured timeout are flushed and closed the next
time any session is opened.
"""

import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from .forms.assessment import AssessmentWorksheet
from .forms.autosave import SaveScheduler
from .forms.fee_bill import FeeBillWorksheet
from .forms.sections import SectionOrganizer
from .forms.values import FieldValueStore, missing_required
from .reports.assembler import ReportLayout, ReportSource
from .storage.claim_store import ClaimStore
from .utils.config import AutosaveConfig
from .utils.logging import log_context

logger = logging.getLogger(__name__)


class ClaimSession:
    """
    Everything one user needs to edit one claim.

    ``lock`` serializes every read and write of the session's state: request
    handlers hold it for the whole request and the scheduler holds it while
    a debounced save runs.
    """

    def __init__(
        self,
        store: ClaimStore,
        claim_id: str,
        autosave: Optional[AutosaveConfig] = None,
        timer_factory=threading.Timer,
    ):
        autosave = autosave or AutosaveConfig()
        claim = store.get_claim(claim_id)

        self.store = store
        self.claim_id = claim_id
        self.claim_number = claim.claim_number
        self.lock = threading.RLock()
        self.opened_at = datetime.utcnow()
        self.last_used = time.monotonic()
        self.scheduler = SaveScheduler(
            default_delay=autosave.standard_delay,
            timer_factory=timer_factory,
            guard=self.lock,
            on_error=self._save_failed,
        )
        self.values = FieldValueStore(store, claim, self.scheduler, autosave.standard_delay)
        self.organizer = SectionOrganizer(claim, self.values, self.scheduler, autosave.standard_delay)
        self.worksheet = AssessmentWorksheet(claim, self.values, self.scheduler, autosave.assessment_delay)
        self.fee_bill = FeeBillWorksheet(claim, self.values, self.scheduler, autosave.assessment_delay)
        self.layout = ReportLayout(ReportSource.from_claim(claim))
        self.closed = False

        logger.info(f"Opened editing session for claim {claim.claim_number} ({claim_id})")

    def _save_failed(self, key: str, error: Exception) -> None:
        self.values.notify("error", f"Autosave failed: {str(error)}")

    def touch(self) -> None:
        self.last_used = time.monotonic()

    def idle_for(self, now: Optional[float] = None) -> float:
        return (time.monotonic() if now is None else now) - self.last_used

    def flush(self) -> None:
        """Run every pending debounced save now."""
        with self.lock:
            self.scheduler.flush()

    def report_source(self) -> ReportSource:
        """
        Flush pending saves and read the claim back from the store.

        Reports are always built from persisted data, never from the draft.
        """
        with self.lock:
            self.flush()
            source = ReportSource.from_claim(self.store.get_claim(self.claim_id))
            self.layout.refresh(source)
            return source

    def close(self) -> None:
        """Flush pending saves, then stop every timer."""
        with self.lock:
            if self.closed:
                return
            try:
                self.flush()
            finally:
                self.scheduler.dispose()
                self.closed = True
        logger.info(f"Closed editing session for claim {self.claim_number}")

    def sections_payload(self) -> List[Dict[str, Any]]:
        payload = []
        for section in self.organizer.ordered():
            data = section.to_dict()
            data["is_open"] = self.organizer.open_state.get(section.id, True)
            data["fields"] = [
                dict(d.to_dict(), label=self.values.label_for(d.name))
                for d in self.organizer.fields_for(section.id)
            ]
            data["images"] = self.values.images_for(section.id)
            payload.append(data)
        return payload

    def to_dict(self) -> Dict[str, Any]:
        """Draft snapshot for API responses; drains queued notices."""
        values = self.values
        descriptors = [
            d for section in self.organizer.ordered() for d in self.organizer.fields_for(section.id)
        ]
        return {
            "claim_id": self.claim_id,
            "claim_number": self.claim_number,
            "version": values.version,
            "values": values.serialized_values(),
            "pending": sorted(values.pending),
            "hidden_fields": sorted(values.hidden_fields),
            "field_labels": dict(values.label_overrides),
            "sections": self.sections_payload(),
            "missing_required": [d.name for d in missing_required(values.values, descriptors)],
            "notices": [n.to_dict() for n in values.drain_notices()],
        }


sessions: Dict[str, ClaimSession] = {}
sessions_lock = threading.Lock()


def evict_idle_sessions(max_idle: float, now: Optional[float] = None) -> List[str]:
    """
    Close sessions unused for longer than max_idle seconds.

    Returns:
        Claim ids of the closed sessions
    """
    with sessions_lock:
        stale = [
            (claim_id, session) for claim_id, session in sessions.items()
            if session.closed or session.idle_for(now) > max_idle
        ]
        for claim_id, _ in stale:
            del sessions[claim_id]

    evicted = []
    for claim_id, session in stale:
        if session.closed:
            continue
        try:
            session.close()
        except Exception as e:
            logger.error(f"Closing idle session for claim {claim_id} failed: {str(e)}")
        evicted.append(claim_id)
    if evicted:
        logger.info(f"Closed {len(evicted)} idle editing sessions")
    return evicted


def open_session(store: ClaimStore, claim_id: str, autosave: Optional[AutosaveConfig] = None) -> ClaimSession:
    """Return the open session for a claim, creating it on first use."""
    autosave = autosave or AutosaveConfig()
    evict_idle_sessions(autosave.session_idle_timeout)

    with sessions_lock:
        session = sessions.get(claim_id)
        if session is not None and not session.closed:
            session.touch()
            return session
    with log_context(claim_id=claim_id):
        session = ClaimSession(store, claim_id, autosave)
    with sessions_lock:
        # Another request may have opened it meanwhile
        existing = sessions.get(claim_id)
        if existing is not None and not existing.closed:
            session.scheduler.dispose()
            existing.touch()
            return existing
        sessions[claim_id] = session
    return session


@contextmanager
def editing(store: ClaimStore, claim_id: str, autosave: Optional[AutosaveConfig] = None) -> Iterator[ClaimSession]:
    """
    Hold a claim's session lock for the duration of a with-block.

    A session closed between lookup and locking is replaced by a fresh one.
    """
    while True:
        session = open_session(store, claim_id, autosave)
        with session.lock:
            if session.closed:
                continue
            session.touch()
            with log_context(claim_id=claim_id):
                yield session
            session.touch()
            return


def get_session(claim_id: str) -> Optional[ClaimSession]:
    with sessions_lock:
        session = sessions.get(claim_id)
    return session if session is not None and not session.closed else None


def close_session(claim_id: str) -> bool:
    """Close and forget a session; False if none was open."""
    with sessions_lock:
        session = sessions.pop(claim_id, None)
    if session is None:
        return False
    session.close()
    return True


def close_all_sessions() -> None:
    with sessions_lock:
        open_sessions = list(sessions.values())
        sessions.clear()
    for session in open_sessions:
        session.close()
