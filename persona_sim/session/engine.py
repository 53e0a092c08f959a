from __future__ import annotations

import asyncio
import copy
import dataclasses
import logging
import time
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from ..analytics import PersonaAnalytics, state_insights, synthesize
from ..classify import PHASE_BY_INTERACTION, classify_interaction, detect_learning_moments, detect_triggers
from ..errors import NotFound, UpstreamUnavailable, ValidationFailure
from ..memory.model import (
    PersonaMemory,
    SessionSummary,
    add_session_memory,
    create_initial_memory,
    record_key_moment,
    trim_key_moments,
    update_technical_understanding,
)
from ..state.model import (
    PersonaState,
    apply_trigger,
    create_initial_state,
    increment_interaction,
    request_escalation,
    resolve_issue,
    set_conversation_phase,
)
from ..state.mood import clamp_level
from ..store.base import interaction_key, memory_key, session_key
from .locks import KeyedLocks
from .models import (
    ConversationContext,
    InteractionResult,
    LearningMoment,
    PersonaInteraction,
    PersonaSession,
    ResponseMetrics,
    decode_interaction,
    decode_memory,
    decode_session,
    encode_interaction,
    encode_memory,
    encode_session,
)

if TYPE_CHECKING:
    from ..config import Settings
    from ..personas.catalog import PersonaCatalog, PersonaProfile
    from ..personas.selector import PersonaSelector, SelectionHints
    from ..services.responder import ResponseGenerator
    from ..store.base import KeyValueStore

logger = logging.getLogger("persona_sim")


def _local_now() -> datetime:
    return datetime.now().astimezone()


def _without_session(memory: PersonaMemory, session_id: str) -> PersonaMemory:
    """Memory as it stood before ``session_id`` was folded in."""
    if not any(summary.session_id == session_id for summary in memory.session_history):
        return memory
    return dataclasses.replace(
        memory,
        session_history=[s for s in memory.session_history if s.session_id != session_id],
    )


class PersonaSessionEngine:
    """Runs persona sessions against a shared store.

    Turns for one session are serialized by a per-session lock; folds into a
    persona+user memory record take a second lock on the memory key, always
    after the session lock. The in-process cache only mirrors committed
    session records.
    """

    def __init__(
        self,
        settings: "Settings",
        store: "KeyValueStore",
        selector: "PersonaSelector",
        responder: "ResponseGenerator",
        *,
        catalog: "PersonaCatalog",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.selector = selector
        self.responder = responder
        self.catalog = catalog
        self._clock = clock or _local_now
        self._cache: dict[str, PersonaSession] = {}
        self._active_ids: set[str] = set()
        self._session_locks = KeyedLocks()
        self._memory_locks = KeyedLocks()
        self._started = False

    async def start(self) -> None:
        if self._started:
            return
        await self.store.start()
        await self.responder.start()
        self._started = True
        logger.info(
            "Persona session engine started (store=%s, cache=%s)",
            getattr(self.store, "backend_name", type(self.store).__name__),
            "on" if self.settings.session_cache_enabled else "off",
        )

    async def close(self) -> None:
        try:
            await self.responder.close()
        finally:
            await self.store.close()
            self._cache.clear()
            self._active_ids.clear()
            self._started = False
            logger.info("Persona session engine closed")

    async def __aenter__(self) -> "PersonaSessionEngine":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _store_get(self, key: str) -> bytes | None:
        try:
            return await self.store.get(key)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Store read failed for %s: %s", key, exc)
            raise UpstreamUnavailable(f"Store read failed for {key}") from exc

    async def _store_set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        try:
            await self.store.set(key, value, ttl_seconds)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Store write failed for %s: %s", key, exc)
            raise UpstreamUnavailable(f"Store write failed for {key}") from exc

    async def _load_session(self, session_id: str) -> PersonaSession | None:
        if self.settings.session_cache_enabled:
            cached = self._cache.get(session_id)
            if cached is not None:
                return cached
        raw = await self._store_get(session_key(session_id))
        if raw is None:
            return None
        return decode_session(raw)

    async def _load_memory(self, persona_id: str, user_id: str) -> PersonaMemory | None:
        raw = await self._store_get(memory_key(persona_id, user_id))
        if raw is None:
            return None
        return decode_memory(raw)

    async def _save_session(self, session: PersonaSession) -> None:
        await self._store_set(session_key(session.session_id), encode_session(session), self.settings.session_ttl_seconds)

    async def _save_memory(self, memory: PersonaMemory) -> None:
        await self._store_set(
            memory_key(memory.persona_id, memory.user_id),
            encode_memory(memory),
            self.settings.memory_ttl_seconds,
        )

    async def _restore_memory(self, snapshot: PersonaMemory) -> None:
        try:
            await self._save_memory(snapshot)
        except UpstreamUnavailable:
            # The commit error is what the caller sees; a replayed turn or
            # end is deduplicated by the memory model.
            logger.error(
                "Could not roll back memory %s after a failed commit",
                memory_key(snapshot.persona_id, snapshot.user_id),
            )

    def _commit_to_cache(self, session: PersonaSession) -> None:
        if self.settings.session_cache_enabled:
            self._cache[session.session_id] = session

    def _persona_for(self, session: PersonaSession) -> "PersonaProfile":
        persona = self.catalog.get(session.persona_id)
        if persona is None:
            raise NotFound(f"Persona {session.persona_id!r} is not in the catalog")
        return persona

    def _apply_contextual_modifications(
        self,
        state: PersonaState,
        persona: "PersonaProfile",
        context: ConversationContext,
        memory: PersonaMemory,
        now: datetime,
    ) -> PersonaState:
        business = context.business_context
        factors = dataclasses.replace(
            state.contextual_factors,
            urgency=business.priority,
            business_impact=business.business_impact,
            has_deadline=bool(business.deadline_constraints),
        )
        modifiers = state.behavioral_modifiers
        frustration = state.frustration_level
        trust = state.trust_level

        if business.priority == "critical":
            frustration += 2

        if memory.total_interactions > 5:
            trust += 1
            modifiers = dataclasses.replace(modifiers, has_received_good_service=True)

        hour = now.hour
        if hour < self.settings.business_hours_start or hour > self.settings.business_hours_end:
            factors = dataclasses.replace(
                factors,
                time_of_day="morning" if hour < self.settings.business_hours_start else "evening",
            )
            if persona.time_sensitive:
                frustration += 1

        return dataclasses.replace(
            state,
            contextual_factors=factors,
            behavioral_modifiers=modifiers,
            frustration_level=clamp_level(frustration),
            trust_level=clamp_level(trust),
        )

    async def start_session(
        self,
        session_id: str,
        user_id: str,
        context: ConversationContext,
        hints: "SelectionHints | None" = None,
    ) -> PersonaSession:
        session_id = str(session_id or "").strip()
        user_id = str(user_id or "").strip()
        if not session_id or not user_id:
            raise ValidationFailure("session_id and user_id must be non-empty")
        context.validate()

        async with self._session_locks.hold(session_id):
            if session_id in self._active_ids:
                raise ValidationFailure(f"Session {session_id!r} is already active")

            selection = await self.selector.select_persona(context, hints)
            if selection is None:
                raise NotFound(f"No persona matches ticket type {context.ticket_type!r}")
            persona = selection.selected_persona
            now = self._clock()

            async with self._memory_locks.hold(memory_key(persona.id, user_id)):
                memory = await self._load_memory(persona.id, user_id)
                if memory is None:
                    memory = create_initial_memory(persona.id, user_id, now)
                    await self._save_memory(memory)

            state = create_initial_state(session_id, persona, now)
            state = self._apply_contextual_modifications(state, persona, context, memory, now)
            session = PersonaSession(
                session_id=session_id,
                persona_id=persona.id,
                user_id=user_id,
                state=state,
                memory=memory,
                context=context,
                start_time=now,
                last_activity=now,
            )
            await self._save_session(session)
            self._commit_to_cache(session)
            self._active_ids.add(session_id)

        logger.info(
            "Session %s started: persona=%s user=%s mood=%s (%s)",
            session_id,
            persona.id,
            user_id,
            state.current_mood,
            "; ".join(selection.rationale[:2]),
        )
        return copy.deepcopy(session)

    def _validate_message(self, user_message: str) -> str:
        message = str(user_message or "").strip()
        if not message:
            raise ValidationFailure("user_message must be non-empty")
        if len(message) > self.settings.max_message_chars:
            raise ValidationFailure(f"user_message exceeds {self.settings.max_message_chars} characters")
        return message

    async def _generate(self, session: PersonaSession, message: str, state: PersonaState) -> str:
        try:
            response = await asyncio.wait_for(
                self.responder.generate(session, message, state),
                timeout=self.settings.response_timeout_seconds,
            )
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError as exc:
            logger.warning("Response generation timed out for session %s", session.session_id)
            raise UpstreamUnavailable(
                f"Response generator did not answer within {self.settings.response_timeout_seconds}s"
            ) from exc
        except UpstreamUnavailable:
            raise
        except Exception as exc:
            logger.error("Response generation failed for session %s: %s", session.session_id, exc)
            raise UpstreamUnavailable("Response generator failed") from exc
        return str(response or "").strip()

    def _fold_learning_moments(
        self,
        memory: PersonaMemory,
        moments: list[LearningMoment],
        *,
        session_id: str,
        turn: int,
        message: str,
        now: datetime,
    ) -> PersonaMemory:
        for moment in moments:
            if moment.kind == "concept_learned":
                memory = update_technical_understanding(memory, moment.area, "basic", True, now)
        if moments:
            memory = record_key_moment(
                memory,
                "learning",
                f"Learning progress in {moments[0].area}",
                "medium",
                message,
                session_id=session_id,
                turn=turn,
                now=now,
            )
            memory = trim_key_moments(memory, self.settings.key_moment_limit)
        return memory

    @staticmethod
    def _response_metrics(
        state: PersonaState,
        mood_shift: int,
        response: str,
        moments: list[LearningMoment],
        elapsed_ms: int,
    ) -> ResponseMetrics:
        satisfaction = state_insights(state).overall_satisfaction
        return ResponseMetrics(
            response_time_ms=elapsed_ms,
            appropriateness=int(max(0, min(100, round(satisfaction * 10)))),
            consistency=max(50, 90 - 10 * max(0, mood_shift - 1)),
            naturalness=88 if response else 0,
            learning_value=80 if moments else 50,
        )

    async def process_interaction(
        self,
        session_id: str,
        user_message: str,
        user_action: str | None = None,
    ) -> InteractionResult:
        message = self._validate_message(user_message)

        async with self._session_locks.hold(session_id):
            current = await self._load_session(session_id)
            if current is None:
                raise NotFound(f"Session {session_id!r} not found")
            if not current.is_active:
                raise ValidationFailure(f"Session {session_id!r} has already ended")
            persona = self._persona_for(current)

            working = copy.deepcopy(current)
            now = self._clock()
            start_mood = working.state.current_mood

            state = increment_interaction(working.state, now)
            turn = state.interaction_count
            triggers = detect_triggers(message, persona.triggers)
            moments = [
                LearningMoment(kind=m.kind, description=m.description, impact=m.impact, area=m.area)
                for m in detect_learning_moments(message, working.context.ticket_type)
            ]
            for trigger in triggers:
                state = apply_trigger(
                    state,
                    trigger.direction,
                    trigger=trigger.phrase,
                    source_message=message,
                    user_action=user_action,
                    now=now,
                )

            interaction_type = classify_interaction(message, turn)
            if interaction_type == "escalation":
                state = request_escalation(state, now)
            else:
                state = set_conversation_phase(state, PHASE_BY_INTERACTION[interaction_type], now)

            working.state = state
            working.last_activity = now

            started = time.perf_counter()
            response = await self._generate(working, message, state)
            elapsed_ms = int((time.perf_counter() - started) * 1000)

            mood_change = None
            if triggers:
                mood_change = {
                    "from": start_mood,
                    "to": state.current_mood,
                    "trigger": ", ".join(t.phrase for t in triggers),
                }
            interaction = PersonaInteraction(
                session_id=session_id,
                turn=turn,
                timestamp=now,
                user_message=message,
                persona_response=response,
                interaction_type=interaction_type,
                learning_moments=moments,
                mood_change=mood_change,
                response_metrics=self._response_metrics(
                    state,
                    sum(change.intensity for change in state.mood_history[len(current.state.mood_history):]),
                    response,
                    moments,
                    elapsed_ms,
                ),
                user_action=user_action,
            )

            # The memory lock stays held until the session record is written so
            # a failed commit can put the previous memory back.
            async with self._memory_locks.hold(memory_key(working.persona_id, working.user_id)):
                latest = await self._load_memory(working.persona_id, working.user_id)
                memory = self._fold_learning_moments(
                    latest if latest is not None else working.memory,
                    moments,
                    session_id=session_id,
                    turn=turn,
                    message=message,
                    now=now,
                )
                memory_written = bool(moments) or latest is None
                if memory_written:
                    await self._save_memory(memory)
                working.memory = memory

                try:
                    if self.settings.record_interactions:
                        await self._store_set(
                            interaction_key(session_id, turn),
                            encode_interaction(interaction),
                            self.settings.session_ttl_seconds,
                        )
                    await self._save_session(working)
                except UpstreamUnavailable:
                    if memory_written and latest is not None:
                        await self._restore_memory(latest)
                    raise

            self._commit_to_cache(working)

        logger.debug(
            "Session %s turn %s: type=%s mood=%s->%s triggers=%s",
            session_id,
            turn,
            interaction_type,
            start_mood,
            state.current_mood,
            len(triggers),
        )
        return InteractionResult(
            response=response,
            state=copy.deepcopy(state),
            insights=state_insights(state),
            learning_moments=list(moments),
            interaction=interaction,
        )

    @staticmethod
    def _session_summary(session: PersonaSession, memory: PersonaMemory) -> SessionSummary:
        state = session.state
        achievements: list[str] = []
        for moment in memory.key_moments:
            if moment.session_id == session.session_id and moment.description not in achievements:
                achievements.append(moment.description)
        return SessionSummary(
            session_id=session.session_id,
            ended_at=session.last_activity,
            issue_type=session.context.ticket_type,
            resolution=state.issue_resolved,
            duration_seconds=max(0, int((session.last_activity - session.start_time).total_seconds())),
            satisfaction_level=state.satisfaction_level,
            interaction_count=state.interaction_count,
            final_mood=state.current_mood,
            escalated=state.escalation_requested,
            learning_achievements=achievements,
        )

    async def end_session(self, session_id: str, resolved: bool) -> PersonaAnalytics:
        async with self._session_locks.hold(session_id):
            current = await self._load_session(session_id)
            if current is None:
                raise NotFound(f"Session {session_id!r} not found")
            if not current.is_active:
                raise ValidationFailure(f"Session {session_id!r} has already ended")

            working = copy.deepcopy(current)
            now = self._clock()
            working.state = resolve_issue(working.state, bool(resolved), now)
            working.last_activity = now
            working.is_active = False

            async with self._memory_locks.hold(memory_key(working.persona_id, working.user_id)):
                latest = await self._load_memory(working.persona_id, working.user_id)
                memory = latest if latest is not None else working.memory
                analytics = synthesize(working, _without_session(memory, session_id))
                memory = add_session_memory(memory, self._session_summary(working, memory), now)
                await self._save_memory(memory)
                working.memory = memory

                try:
                    await self._save_session(working)
                except UpstreamUnavailable:
                    if latest is not None:
                        await self._restore_memory(latest)
                    raise

            self._cache.pop(session_id, None)
            self._active_ids.discard(session_id)

        logger.info(
            "Session %s ended: resolution=%s performance=%.2f",
            session_id,
            working.state.issue_resolved,
            analytics.overall_performance,
        )
        return analytics

    async def get_session(self, session_id: str) -> PersonaSession | None:
        session = await self._load_session(session_id)
        return copy.deepcopy(session) if session is not None else None

    async def get_persona_memory(self, persona_id: str, user_id: str) -> PersonaMemory | None:
        return await self._load_memory(persona_id, user_id)

    async def get_session_analytics(self, session_id: str) -> PersonaAnalytics | None:
        session = await self._load_session(session_id)
        if session is None:
            return None
        memory = await self._load_memory(session.persona_id, session.user_id)
        return synthesize(session, memory)

    async def get_interaction(self, session_id: str, turn: int) -> PersonaInteraction | None:
        raw = await self._store_get(interaction_key(session_id, int(turn)))
        if raw is None:
            return None
        return decode_interaction(raw)

    def status_snapshot(self) -> dict[str, Any]:
        return {
            "started": self._started,
            "store_backend": getattr(self.store, "backend_name", type(self.store).__name__),
            "responder": type(self.responder).__name__,
            "cache_enabled": self.settings.session_cache_enabled,
            "active_sessions": len(self._active_ids),
            "cached_sessions": len(self._cache),
            "session_locks": len(self._session_locks),
            "memory_locks": len(self._memory_locks),
            "personas": len(self.catalog),
        }
