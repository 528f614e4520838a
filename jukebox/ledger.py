from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from enum import Enum

from .storage import JsonStore

log = logging.getLogger(__name__)

LEDGER_KEY = "vote_ledger"


class RequestState(Enum):
    SUBMITTED = "submitted"
    RESOLVING = "resolving"
    POSTED = "posted"
    QUEUEING = "queueing"
    APPROVED = "approved"
    DECLINED = "declined"
    FAILED = "failed"

    @property
    def resolved(self) -> bool:
        return self in (RequestState.APPROVED, RequestState.DECLINED, RequestState.FAILED)


@dataclass
class TrackRequest:
    track_uri: str
    requester_id: str
    requester_name: str
    submitted_at: float
    state: RequestState = RequestState.SUBMITTED
    message_id: str | None = None
    track_title: str = ""
    vote_text: str = ""
    voter_name: str | None = None
    resolved_at: float | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["state"] = self.state.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> TrackRequest:
        data = dict(data)
        data["state"] = RequestState(data.get("state", RequestState.POSTED.value))
        return cls(**data)


class VoteLedger:
    """Maps vote-message ids to their requests and resolves each one once.

    ``claim`` is the only way out of POSTED. It never awaits, so on a single
    event loop two votes for the same message cannot both see POSTED.
    """

    def __init__(self, store: JsonStore | None = None, max_resolved: int = 500) -> None:
        self._store = store
        self.max_resolved = max_resolved
        self._requests: dict[str, TrackRequest] = {}

    def load(self) -> int:
        """Restore persisted requests; approvals cut off by a restart become FAILED."""
        if self._store is None:
            return 0
        raw = self._store.get(LEDGER_KEY) or {}
        for message_id, data in raw.items():
            try:
                request = TrackRequest.from_dict(data)
            except (TypeError, ValueError) as exc:
                log.warning("Skipping unreadable ledger entry %s: %s", message_id, exc)
                continue
            if request.state is RequestState.QUEUEING:
                request.state = RequestState.FAILED
                request.error = "interrupted while queueing"
                log.warning("Request %s for %s was interrupted while queueing",
                            message_id, request.track_uri)
            self._requests[str(message_id)] = request
        self._save()
        return len(self._requests)

    def register(self, message_id: str, request: TrackRequest) -> None:
        request.message_id = str(message_id)
        request.state = RequestState.POSTED
        self._requests[str(message_id)] = request
        self._save()

    def get(self, message_id: str) -> TrackRequest | None:
        return self._requests.get(str(message_id))

    def claim(self, message_id: str, target: RequestState) -> TrackRequest | None:
        """Move a POSTED request to *target*. Returns None if it was not POSTED."""
        if target not in (RequestState.QUEUEING, RequestState.DECLINED):
            raise ValueError(f"cannot claim a request as {target.name}")
        request = self._requests.get(str(message_id))
        if request is None or request.state is not RequestState.POSTED:
            return None
        request.state = target
        self._save()
        return request

    def finish(
        self,
        message_id: str,
        state: RequestState,
        *,
        now: float,
        voter_name: str | None = None,
        error: str | None = None,
    ) -> TrackRequest:
        """Record the final outcome of a claimed request."""
        if not state.resolved:
            raise ValueError(f"{state.name} is not a final state")
        request = self._requests[str(message_id)]
        if request.state.resolved and request.state is not state:
            raise ValueError(f"request {message_id} already {request.state.name}")
        request.state = state
        request.resolved_at = now
        request.voter_name = voter_name
        request.error = error
        self._prune()
        self._save()
        return request

    def posted(self) -> list[TrackRequest]:
        return [r for r in self._requests.values() if r.state is RequestState.POSTED]

    def all(self) -> list[TrackRequest]:
        return list(self._requests.values())

    def _prune(self) -> None:
        resolved = [k for k, r in self._requests.items() if r.state.resolved]
        excess = len(resolved) - self.max_resolved
        for key in resolved[:max(0, excess)]:
            del self._requests[key]

    def _save(self) -> None:
        if self._store is None:
            return
        self._store.set(LEDGER_KEY, {k: r.to_dict() for k, r in self._requests.items()})
