"""Live session watcher.

Polls every registered adapter, tracks one session per (agent, project) and turns
liveness changes into session_start / session_end records. When a session ends it
is sealed: intervention signals are derived and a SessionSummary is written.

State per (agent, project):

    absent --active--> active        session_start, notify agent_online + session_start
    active --same id-> active        accumulate
    active --new id--> active        seal old, notify session_end, session_start for new id
    active --gone----> absent        seal, notify session_end + agent_offline
"""

from __future__ import annotations

import asyncio
import dataclasses
import uuid
from dataclasses import dataclass, field
from typing import Callable, Literal, Optional

from .adapters import AdapterRegistry
from .adapters.base import GlobalSessionInfo, SessionAdapter
from .config import SlagentConfig
from .events import (
    AdapterEvent,
    FileEditEvent,
    SessionEndEvent,
    SessionStartEvent,
    SessionSummary,
    UserInterventionEvent,
    dedupe_paths,
    derive_outcome,
    now_ms,
)
from .logging_config import setup_logger
from .signals import SignalEnricher
from .store import Store

logger = setup_logger("slagent.watcher_core", "watch.log")

MANUAL_EDIT_GRACE_MS = 5_000
NO_ACTIVITY_LOOKBACK_MS = 60_000

WatcherEventType = Literal["agent_online", "agent_offline", "session_start", "session_end"]
SessionKey = tuple[str, str]


@dataclass
class TrackedSession:
    agent: str
    session_id: str
    project: str
    start_time: int
    session_path: Optional[str] = None
    event_count: int = 0
    prompt: str = ""
    files: list[str] = field(default_factory=list)
    active: bool = True
    # Stored events that predate this incarnation of the session id
    log_offset: int = 0
    # Last routed event was a session_end
    ended: bool = False


@dataclass(frozen=True)
class WatcherEvent:
    type: WatcherEventType
    agent: str
    session_id: Optional[str] = None
    session_path: Optional[str] = None
    project: Optional[str] = None


@dataclass(frozen=True)
class SessionStatus:
    agent: str
    session_id: str
    project: str
    event_count: int
    live: bool


@dataclass(frozen=True)
class WatcherStatus:
    running: bool
    sessions: list[SessionStatus]
    total_events: int


WatcherListener = Callable[[WatcherEvent], None]


class LiveWatcher:
    """Multi-agent, multi-project session tracker."""

    def __init__(
        self,
        store: Store,
        registry: AdapterRegistry,
        config: Optional[SlagentConfig] = None,
        *,
        enricher_factory: Optional[Callable[[str], SignalEnricher]] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.registry = registry
        self.config = config or SlagentConfig()
        self.clock = clock
        self._enricher_factory = enricher_factory or self._default_enricher

        self.running = False
        self._stop_event: Optional[asyncio.Event] = None
        self.sessions: dict[SessionKey, TrackedSession] = {}
        self._listeners: list[WatcherListener] = []
        self._enrichers: dict[str, SignalEnricher] = {}

        # Per-adapter wall-clock start (ms) of the last tick that completed for it.
        backfill_ms = int(self.config.startup_backfill_seconds * 1000)
        self._since: dict[str, int] = {a.name: self.clock() - backfill_ms for a in registry.all()}
        self._backfill_ms = backfill_ms

    # ------------------------------------------------------------------
    # Listeners / status
    # ------------------------------------------------------------------

    def on(self, listener: WatcherListener) -> None:
        self._listeners.append(listener)

    def _emit(self, event: WatcherEvent) -> None:
        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Watcher listener failed on {event.type}: {e}", exc_info=True)

    def get_status(self) -> WatcherStatus:
        sessions = [
            SessionStatus(
                agent=s.agent,
                session_id=s.session_id,
                project=s.project,
                event_count=s.event_count,
                live=s.active,
            )
            for s in self.sessions.values()
        ]
        return WatcherStatus(
            running=self.running,
            sessions=sessions,
            total_events=sum(s.event_count for s in sessions),
        )

    def _default_enricher(self, project: str) -> SignalEnricher:
        return SignalEnricher(
            project,
            commit_window=self.config.commit_window,
            long_pause_seconds=self.config.long_pause_seconds,
        )

    def _enricher(self, project: str) -> SignalEnricher:
        enricher = self._enrichers.get(project)
        if enricher is None:
            enricher = self._enricher_factory(project)
            self._enrichers[project] = enricher
        return enricher

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Run ticks every poll interval until stop() is called."""
        if self.running:
            return
        self.running = True
        self._stop_event = asyncio.Event()
        interval = max(0.1, float(self.config.poll_interval_seconds))
        logger.info(
            f"Watcher started: agents={', '.join(self.registry.names()) or 'none'}, "
            f"poll={interval}s, backfill={self._backfill_ms // 1000}s"
        )

        while self.running:
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Error in watch loop: {e}", exc_info=True)
            if not self.running:
                break
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Watcher stopped")

    def stop(self) -> None:
        """Request the loop to exit; an in-flight tick completes first."""
        self.running = False
        if self._stop_event is not None:
            self._stop_event.set()

    async def tick(self) -> None:
        """One poll pass over every adapter, concurrently."""
        adapters = self.registry.all()
        await asyncio.gather(*(self._tick_adapter(a) for a in adapters))

    async def _tick_adapter(self, adapter: SessionAdapter) -> None:
        started = self.clock()
        since = self._since.get(adapter.name, started - self._backfill_ms)
        try:
            polled = await adapter.poll_all(since)
            active = await adapter.get_all_active_sessions()
            await self._apply_transitions(adapter, active)
            for item in polled:
                self._route_event(adapter, item.project, item.event)
        except Exception as e:
            logger.error(f"[{adapter.name}] tick failed: {e}", exc_info=True)
            return
        self._since[adapter.name] = started

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _apply_transitions(self, adapter: SessionAdapter, active: list[GlobalSessionInfo]) -> None:
        active_keys: set[SessionKey] = set()
        for info in active:
            key = (adapter.name, info.project)
            active_keys.add(key)
            existing = self.sessions.get(key)

            if existing is None:
                self._begin_session(adapter.name, info.project, info.session_id, info.session_path, online=True)
                continue

            existing.active = True
            if existing.session_id != info.session_id:
                old_id = existing.session_id
                old_path = existing.session_path
                await self.seal_session(key)
                self._emit(
                    WatcherEvent(
                        type="session_end",
                        agent=adapter.name,
                        session_id=old_id,
                        session_path=old_path,
                        project=info.project,
                    )
                )
                self._begin_session(adapter.name, info.project, info.session_id, info.session_path, online=False)
            elif info.session_path and not existing.session_path:
                existing.session_path = info.session_path

        for key in [k for k in self.sessions if k[0] == adapter.name and k not in active_keys]:
            session = self.sessions[key]
            await self.seal_session(key)
            self._emit(
                WatcherEvent(
                    type="session_end",
                    agent=adapter.name,
                    session_id=session.session_id,
                    session_path=session.session_path,
                    project=session.project,
                )
            )
            self._emit(WatcherEvent(type="agent_offline", agent=adapter.name, project=session.project))

    def _begin_session(
        self,
        agent: str,
        project: str,
        session_id: str,
        session_path: Optional[str],
        *,
        online: bool,
        start_time: Optional[int] = None,
    ) -> TrackedSession:
        ts = start_time if start_time is not None else self.clock()
        session = TrackedSession(
            agent=agent,
            session_id=session_id,
            project=project,
            start_time=ts,
            session_path=session_path,
            log_offset=len(self.store.get_session_events(session_id)),
        )
        self.sessions[(agent, project)] = session
        self.store.append_event(SessionStartEvent(session_id=session_id, agent=agent, timestamp=ts))
        logger.info(f"[{agent}] session {session_id} started in {project}")

        if online:
            self._emit(WatcherEvent(type="agent_online", agent=agent, project=project))
        self._emit(
            WatcherEvent(
                type="session_start",
                agent=agent,
                session_id=session_id,
                session_path=session_path,
                project=project,
            )
        )
        return session

    def _route_event(self, adapter: SessionAdapter, project: str, event: AdapterEvent) -> None:
        key = (adapter.name, project)
        session = self.sessions.get(key)
        if session is None:
            # Activity for a project nobody reported as active yet.
            session_id = event.session_id or str(uuid.uuid4())
            session = self._begin_session(
                adapter.name, project, session_id, None, online=True, start_time=event.timestamp
            )

        if isinstance(event, SessionStartEvent) and event.prompt and not session.prompt:
            session.prompt = event.prompt
        if isinstance(event, FileEditEvent):
            session.files.append(event.path)

        if event.session_id != session.session_id:
            event = dataclasses.replace(event, session_id=session.session_id)
        self.store.append_event(event)
        session.event_count += 1
        session.ended = isinstance(event, SessionEndEvent)

    # ------------------------------------------------------------------
    # Sealing
    # ------------------------------------------------------------------

    def _manual_edit_cutoff(self, events: list[AdapterEvent]) -> int:
        activity = [
            e.timestamp
            for e in events
            if not isinstance(e, (SessionStartEvent, SessionEndEvent, UserInterventionEvent))
        ]
        if not activity:
            return self.clock() - NO_ACTIVITY_LOOKBACK_MS
        return max(activity) + MANUAL_EDIT_GRACE_MS

    async def seal_session(self, key: SessionKey) -> Optional[SessionSummary]:
        """Finish a tracked session and persist its summary. Unknown keys are a no-op."""
        session = self.sessions.pop(key, None)
        if session is None:
            return None
        session.active = False

        ended_at = self.clock()
        events = self.store.get_session_events(session.session_id)[session.log_offset :]
        if not session.ended:
            end = SessionEndEvent(session_id=session.session_id, timestamp=ended_at)
            self.store.append_event(end)
            events.append(end)

        derived: list[UserInterventionEvent] = []
        try:
            enricher = self._enricher(session.project)
            derived.extend(
                await enricher.check_git_signals(session.session_id, since=session.start_time)
            )
            derived.extend(
                enricher.detect_manual_edits(
                    session.files, self._manual_edit_cutoff(events), session_id=session.session_id
                )
            )
            derived.extend(enricher.detect_timing_signals(events))
        except Exception as e:
            logger.warning(f"Signal enrichment failed for {session.session_id}: {e}", exc_info=True)

        for signal in derived:
            if signal.session_id != session.session_id:
                signal = dataclasses.replace(signal, session_id=session.session_id)
            self.store.append_event(signal)
            events.append(signal)

        prompt = session.prompt
        if not prompt:
            prompt = next(
                (e.prompt for e in events if isinstance(e, SessionStartEvent) and e.prompt), ""
            )

        summary = SessionSummary(
            id=session.session_id,
            agent=session.agent,
            prompt=prompt or "",
            project_cwd=session.project,
            started_at=session.start_time,
            ended_at=ended_at,
            outcome=derive_outcome(events),
            files_changed=dedupe_paths(session.files),
            interventions=sum(1 for e in events if isinstance(e, UserInterventionEvent)),
            analyzed=False,
        )
        self.store.save_session_summary(summary)
        logger.info(
            f"[{session.agent}] session {session.session_id} sealed: outcome={summary.outcome}, "
            f"files={len(summary.files_changed)}, interventions={summary.interventions}"
        )
        return summary

    async def seal_all(self) -> list[SessionSummary]:
        """Seal every tracked session (used on shutdown)."""
        summaries = []
        for key in list(self.sessions):
            summary = await self.seal_session(key)
            if summary is not None:
                summaries.append(summary)
        return summaries
