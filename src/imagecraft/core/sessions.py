"""Processing session bookkeeping for the two-stage processor.

A session follows one prompt-to-image call. While the call runs, the session
is a mutable ``SessionDraft`` owned by a ``SessionStore``. When the call
ends, the store seals the draft into an immutable ``ProcessingSession``
snapshot. Sealing happens exactly once; any later mutation of the draft
raises ``SessionSealedError``.

The store is injected into the processor rather than kept as module state,
and its lifecycle is explicit:

    store = SessionStore()
    draft = store.create("a lighthouse in a storm")
    stage = draft.record_stage("Structured Prompt Generation", kind="prompt")
    draft.complete_stage(stage, "structured text")
    session = store.seal(draft.session_id, success=True)
    store.evict_older_than(3600)
"""

import copy
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Literal

from imagecraft.core.errors import SessionSealedError
from imagecraft.core.models import StageRecord

logger = logging.getLogger(__name__)

StageKind = Literal["prompt", "image"]


@dataclass(frozen=True)
class ProcessingSession:
    """Immutable snapshot of a processing session."""

    session_id: str
    original_prompt: str
    stages: tuple[StageRecord, ...]
    total_processing_time: float
    prompt_enhancement_time: float
    image_generation_time: float
    applied_optimizations: tuple[str, ...]
    fallback_used: bool
    created_at: float
    sealed_at: float | None = None
    timed_out: bool = False
    success: bool = False

    @property
    def is_sealed(self) -> bool:
        return self.sealed_at is not None


@dataclass
class SessionDraft:
    """Mutable session state while a call is in flight."""

    session_id: str
    original_prompt: str
    created_at: float = field(default_factory=time.time)
    stages: list[StageRecord] = field(default_factory=list)
    prompt_enhancement_time: float = 0.0
    image_generation_time: float = 0.0
    applied_optimizations: list[str] = field(default_factory=list)
    fallback_used: bool = False
    timed_out: bool = False
    sealed: bool = False
    _stage_kinds: dict[int, StageKind] = field(default_factory=dict, repr=False)

    def _ensure_open(self) -> None:
        if self.sealed:
            raise SessionSealedError(f"Session {self.session_id} is sealed and can no longer change")

    def record_stage(self, name: str, kind: StageKind) -> StageRecord:
        self._ensure_open()
        stage = StageRecord(name=name)
        self.stages.append(stage)
        self._stage_kinds[id(stage)] = kind
        return stage

    def complete_stage(self, stage: StageRecord, output: str) -> None:
        self._ensure_open()
        stage.complete(output)
        self._add_time(stage)

    def fail_stage(self, stage: StageRecord, error: str) -> None:
        self._ensure_open()
        stage.fail(error)
        self._add_time(stage)

    def _add_time(self, stage: StageRecord) -> None:
        if self._stage_kinds.get(id(stage)) == "prompt":
            self.prompt_enhancement_time += stage.duration
        else:
            self.image_generation_time += stage.duration

    def record_optimization(self, reason: str) -> None:
        self._ensure_open()
        self.applied_optimizations.append(reason)

    def record_fallback(self) -> None:
        self._ensure_open()
        self.fallback_used = True

    def record_timeout(self) -> None:
        self._ensure_open()
        self.timed_out = True

    def snapshot(self, sealed_at: float | None, total_processing_time: float, success: bool) -> ProcessingSession:
        return ProcessingSession(
            session_id=self.session_id,
            original_prompt=self.original_prompt,
            stages=tuple(copy.copy(stage) for stage in self.stages),
            total_processing_time=total_processing_time,
            prompt_enhancement_time=self.prompt_enhancement_time,
            image_generation_time=self.image_generation_time,
            applied_optimizations=tuple(self.applied_optimizations),
            fallback_used=self.fallback_used,
            created_at=self.created_at,
            sealed_at=sealed_at,
            timed_out=self.timed_out,
            success=success,
        )


@dataclass(frozen=True)
class SessionStatistics:
    active_sessions: int
    total_sessions: int
    average_processing_time: float
    success_rate: float
    fallback_rate: float
    average_prompt_time: float
    average_image_time: float
    timeout_count: int


class SessionStore:
    """Owns processing sessions from creation to eviction.

    Attributes
    ----------
    id_prefix : str
        Prefix of generated session ids
    """

    def __init__(self, id_prefix: str = "2stage") -> None:
        self.id_prefix = id_prefix
        self._drafts: dict[str, SessionDraft] = {}
        self._sealed: dict[str, ProcessingSession] = {}

    def _new_id(self) -> str:
        return f"{self.id_prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"

    def create(self, original_prompt: str) -> SessionDraft:
        draft = SessionDraft(session_id=self._new_id(), original_prompt=original_prompt)
        self._drafts[draft.session_id] = draft
        logger.debug(f"Created session {draft.session_id}")
        return draft

    def seal(
        self,
        session_id: str,
        *,
        success: bool,
        total_processing_time: float | None = None,
    ) -> ProcessingSession:
        """Freeze a draft into its final snapshot.

        Parameters
        ----------
        session_id : str
            Id of an open session
        success : bool
            Whether the call produced an image
        total_processing_time : float | None
            Measured wall-clock time; defaults to the time since creation

        Raises
        ------
        SessionSealedError
            If the session was already sealed
        KeyError
            If no such session exists
        """
        if session_id in self._sealed:
            raise SessionSealedError(f"Session {session_id} is already sealed")
        draft = self._drafts.pop(session_id)
        now = time.time()
        if total_processing_time is None:
            total_processing_time = now - draft.created_at
        draft.sealed = True
        session = draft.snapshot(sealed_at=now, total_processing_time=total_processing_time, success=success)
        self._sealed[session_id] = session
        return session

    def get(self, session_id: str) -> ProcessingSession | None:
        """Return the sealed session, or a live snapshot of an open one."""
        if session_id in self._sealed:
            return self._sealed[session_id]
        draft = self._drafts.get(session_id)
        if draft is None:
            return None
        return draft.snapshot(
            sealed_at=None,
            total_processing_time=time.time() - draft.created_at,
            success=False,
        )

    def evict_older_than(self, max_age: float) -> int:
        """Drop sealed sessions sealed more than ``max_age`` seconds ago."""
        cutoff = time.time() - max_age
        expired = [sid for sid, session in self._sealed.items() if (session.sealed_at or 0) < cutoff]
        for sid in expired:
            del self._sealed[sid]
        if expired:
            logger.info(f"Evicted {len(expired)} expired sessions")
        return len(expired)

    def statistics(self) -> SessionStatistics:
        sealed = list(self._sealed.values())
        count = len(sealed)

        def mean(values: list[float]) -> float:
            return sum(values) / len(values) if values else 0.0

        return SessionStatistics(
            active_sessions=len(self._drafts),
            total_sessions=count + len(self._drafts),
            average_processing_time=mean([s.total_processing_time for s in sealed]),
            success_rate=sum(1 for s in sealed if s.success) / count if count else 0.0,
            fallback_rate=sum(1 for s in sealed if s.fallback_used) / count if count else 0.0,
            average_prompt_time=mean([s.prompt_enhancement_time for s in sealed]),
            average_image_time=mean([s.image_generation_time for s in sealed]),
            timeout_count=sum(1 for s in sealed if s.timed_out),
        )
