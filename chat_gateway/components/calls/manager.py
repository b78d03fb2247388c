"""
Call Session Manager.

Owns every call session and its state machine: ring, accept/reject,
connect, end. Ring timeouts and the delayed offer kick-off are asyncio
tasks stored per call ID; every transition out of the state a timer guards
cancels it, and a timer that fires re-validates the session before acting.

All mutations of the session map happen synchronously between awaits, so
two handlers never observe a half-applied transition.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from shared.config.logging import audit_call_event, get_logger
from chat_gateway.components.calls.session import CallSession, CallStatus, generate_call_id
from chat_gateway.components.core.constants import WSConstants
from chat_gateway.components.core.errors import (
    InvalidCallRequest,
    RecipientUnreachable,
    StaleSession,
)
from chat_gateway.components.events.types import OutboundEvent

if TYPE_CHECKING:
    from chat_gateway.components.connection.registry import ConnectionRecord, ConnectionRegistry
    from chat_gateway.components.metrics.collector import MetricsCollector
    from chat_gateway.core.connection.broadcaster import ConnectionBroadcaster

logger = get_logger(__name__)

NO_ANSWER = "No answer"

StaleConnectionCallback = Callable[["ConnectionRecord"], Awaitable[None]]


class CallSessionManager:
    """
    Call lifecycle owner.

    Usage:
        calls = CallSessionManager(registry, broadcaster)
        session = await calls.initiate(caller_record, "bob", is_video=False)
        await calls.accept("bob", caller_record.user_id, session.call_id)
    """

    def __init__(
        self,
        registry: "ConnectionRegistry",
        broadcaster: "ConnectionBroadcaster",
        metrics: "MetricsCollector | None" = None,
        ring_timeout: float = WSConstants.CALL_RING_TIMEOUT,
        offer_delay: float = WSConstants.CALL_OFFER_DELAY,
        stale_after: float = WSConstants.CALL_STALE_AFTER,
        clock: Callable[[], float] = time.time,
        on_stale_connection: StaleConnectionCallback | None = None,
    ) -> None:
        """
        Args:
            registry: Source of truth for reachability.
            broadcaster: Delivers call events.
            metrics: Optional collector for call counters.
            ring_timeout: Seconds a call may ring unanswered.
            offer_delay: Seconds between accept and start-webrtc-offer.
            stale_after: Age in seconds after which the sweep drops a session.
            clock: Time source, Unix seconds.
            on_stale_connection: Awaited with a registry record whose socket
                turned out to be closed, so the owner can run its full
                disconnect cleanup.
        """
        self._registry = registry
        self._broadcaster = broadcaster
        self._metrics = metrics
        self._ring_timeout = ring_timeout
        self._offer_delay = offer_delay
        self._stale_after = stale_after
        self._clock = clock
        self._on_stale_connection = on_stale_connection

        self._sessions: dict[str, CallSession] = {}
        self._ring_timers: dict[str, asyncio.Task] = {}
        self._offer_timers: dict[str, asyncio.Task] = {}

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, call_id: str) -> CallSession | None:
        return self._sessions.get(call_id)

    def sessions_for(self, user_id: str) -> list[CallSession]:
        return [s for s in self._sessions.values() if s.involves(user_id)]

    def find_between(self, user_a: str, user_b: str) -> CallSession | None:
        """The most recent session between two users, in either direction."""
        matches = [
            s for s in self._sessions.values()
            if s.involves(user_a) and s.involves(user_b)
        ]
        if not matches:
            return None
        return max(matches, key=lambda s: s.started_at)

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    def set_stale_connection_callback(self, callback: StaleConnectionCallback | None) -> None:
        self._on_stale_connection = callback

    # =========================================================================
    # Initiate
    # =========================================================================

    async def initiate(
        self,
        caller: "ConnectionRecord",
        callee_id: str | None,
        is_video: bool,
        call_id: str | None = None,
    ) -> CallSession | None:
        """
        Start ringing ``callee_id``.

        On failure no session is created and only the caller is told:
        ``call-failed`` for a missing target, a self-call or a duplicate
        call ID; ``call-user-offline`` when the callee is not registered or
        its socket is no longer open.

        Returns:
            The new session, or None on failure.
        """
        try:
            session = await self._open_session(caller, callee_id, is_video, call_id)
        except InvalidCallRequest as e:
            self._count("failed")
            await self._broadcaster.send(
                caller.handle,
                OutboundEvent.CALL_FAILED,
                {"reason": e.reason, "message": e.message, "callId": call_id},
            )
            return None
        except RecipientUnreachable as e:
            self._count("offline")
            await self._broadcaster.send(
                caller.handle,
                OutboundEvent.CALL_USER_OFFLINE,
                {"targetId": e.target_id, "reason": e.reason},
            )
            return None

        await self._broadcaster.send_to_user(
            session.callee_id,
            OutboundEvent.INCOMING_CALL,
            {
                "from": session.caller_id,
                "fromName": caller.display_name,
                "isVideo": session.is_video,
                "callId": session.call_id,
            },
        )
        await self._broadcaster.send(
            caller.handle,
            OutboundEvent.CALL_SENT,
            {"to": session.callee_id, "callId": session.call_id, "isVideo": session.is_video},
        )
        return session

    async def _open_session(
        self,
        caller: "ConnectionRecord",
        callee_id: str | None,
        is_video: bool,
        call_id: str | None,
    ) -> CallSession:
        if not callee_id:
            raise InvalidCallRequest("Missing call target", reason="missing_target")
        if callee_id == caller.user_id:
            raise InvalidCallRequest("Cannot call yourself", reason="self_call")

        callee = self._registry.lookup(callee_id)
        if callee is None:
            raise RecipientUnreachable(callee_id, reason="offline")
        if not callee.is_open:
            logger.info("Callee socket closed, cleaning stale registry entry", callee_id=callee_id)
            if self._on_stale_connection is not None:
                await self._on_stale_connection(callee)
            raise RecipientUnreachable(callee_id, reason="connection_lost")

        # No await between the duplicate check and the insert
        if call_id and call_id in self._sessions:
            raise InvalidCallRequest("Duplicate call ID", reason="duplicate_call_id", call_id=call_id)

        now = self._clock()
        session = CallSession(
            call_id=call_id or generate_call_id(caller.user_id, callee_id, now),
            caller_id=caller.user_id,
            callee_id=callee_id,
            is_video=bool(is_video),
            started_at=now,
        )
        self._sessions[session.call_id] = session
        self._ring_timers[session.call_id] = asyncio.create_task(
            self._ring_timer(session.call_id),
            name=f"call_ring_timeout:{session.call_id}",
        )
        self._count("initiated")
        audit_call_event(
            "INITIATED", session.call_id, session.caller_id, session.callee_id,
            is_video=session.is_video,
        )
        return session

    async def _ring_timer(self, call_id: str) -> None:
        await asyncio.sleep(self._ring_timeout)
        self._ring_timers.pop(call_id, None)

        session = self._sessions.get(call_id)
        if session is None or session.status is not CallStatus.RINGING:
            return

        self._finish(session, reason="timeout")
        self._count("ring_timeouts")
        await self._broadcaster.send_to_user(
            session.caller_id,
            OutboundEvent.CALL_FAILED,
            {"reason": NO_ANSWER, "message": f"{session.callee_id} did not answer", "callId": call_id},
        )
        await self._broadcaster.send_to_user(
            session.callee_id,
            OutboundEvent.CALL_ENDED,
            {"from": session.caller_id, "callId": call_id, "reason": "timeout"},
        )

    # =========================================================================
    # Accept / Reject
    # =========================================================================

    async def accept(
        self,
        callee_id: str,
        caller_id: str,
        call_id: str | None,
        is_video: bool = False,
    ) -> CallSession | None:
        """
        Accept a ringing call.

        For an unknown call ID (timed out, rejected) ``call-accepted`` is
        still relayed to the caller, but no session is created and no offer
        kick-off follows.

        Returns:
            The accepted session, or None.
        """
        try:
            session = self._require(call_id, action="accept")
        except StaleSession:
            await self._broadcaster.send_to_user(
                caller_id,
                OutboundEvent.CALL_ACCEPTED,
                {"from": callee_id, "callId": call_id, "isVideo": bool(is_video)},
            )
            return None

        if session.callee_id != callee_id or session.caller_id != caller_id:
            await self._refuse_non_participant(callee_id, session.call_id, action="accept")
            return None

        if session.status is not CallStatus.RINGING:
            logger.debug("Ignoring accept for call that is not ringing", call_id=call_id, status=session.status.value)
            return None

        self._cancel_timer(self._ring_timers, session.call_id)
        session.transition(CallStatus.ACCEPTED, self._clock())
        self._count("accepted")
        audit_call_event("ACCEPTED", session.call_id, session.caller_id, session.callee_id)

        await self._broadcaster.send_to_user(
            session.caller_id,
            OutboundEvent.CALL_ACCEPTED,
            {"from": session.callee_id, "callId": session.call_id, "isVideo": session.is_video},
        )

        if self._sessions.get(session.call_id) is session and session.status is CallStatus.ACCEPTED:
            self._offer_timers[session.call_id] = asyncio.create_task(
                self._offer_timer(session.call_id),
                name=f"call_offer_kickoff:{session.call_id}",
            )
        return session

    async def _offer_timer(self, call_id: str) -> None:
        await asyncio.sleep(self._offer_delay)
        self._offer_timers.pop(call_id, None)

        session = self._sessions.get(call_id)
        if session is None or session.status is not CallStatus.ACCEPTED:
            return

        await self._broadcaster.send_to_user(
            session.caller_id,
            OutboundEvent.START_WEBRTC_OFFER,
            {"from": session.callee_id, "callId": call_id, "isVideo": session.is_video},
        )

    async def reject(
        self,
        callee_id: str,
        caller_id: str,
        call_id: str | None,
        reason: str | None = None,
    ) -> CallSession | None:
        """
        Reject a call. The session is destroyed if present; the rejection is
        relayed to the caller either way. A tracked call the sender is not
        part of is refused with ``call-failed``.

        Returns:
            The destroyed session, or None.
        """
        session = self._sessions.get(call_id) if call_id else None
        if session is not None and not session.involves(callee_id):
            await self._refuse_non_participant(callee_id, session.call_id, action="reject")
            return None
        if session is not None:
            self._finish(session, reason=reason or "rejected")
            self._count("rejected")

        await self._broadcaster.send_to_user(
            caller_id,
            OutboundEvent.CALL_REJECTED,
            {"from": callee_id, "callId": call_id, "reason": reason or "rejected"},
        )
        return session

    # =========================================================================
    # Connect / End
    # =========================================================================

    def mark_connected(self, call_id: str | None) -> bool:
        """
        Record that the media connection came up (the answer was relayed).

        Returns:
            True if the session moved to ``connected``.
        """
        session = self._sessions.get(call_id) if call_id else None
        if session is None:
            return False
        if session.status is CallStatus.RINGING:
            # An answer can outrun accept-call; the ring timer must not fire
            self._cancel_timer(self._ring_timers, session.call_id)
            session.transition(CallStatus.ACCEPTED, self._clock())
        if session.status is not CallStatus.ACCEPTED:
            return False

        self._cancel_timer(self._offer_timers, session.call_id)
        session.transition(CallStatus.CONNECTED, self._clock())
        self._count("connected")
        audit_call_event("CONNECTED", session.call_id, session.caller_id, session.callee_id)
        return True

    async def end_call(
        self,
        from_id: str,
        to_id: str,
        call_id: str | None = None,
    ) -> CallSession | None:
        """
        End a call on behalf of ``from_id`` and tell ``to_id``.

        The session is looked up by ID, or by participant pair when no ID is
        given. ``call-ended`` is relayed even if no session is tracked;
        ``duration`` (ms since connect) is included when known. A tracked
        call the sender is not part of is refused with ``call-failed``.

        Returns:
            The ended session, or None.
        """
        payload: dict[str, Any] = {"from": from_id, "callId": call_id}
        if call_id:
            session = self._sessions.get(call_id)
        else:
            session = self.find_between(from_id, to_id)

        if session is not None and not session.involves(from_id):
            await self._refuse_non_participant(from_id, session.call_id, action="end")
            return None

        if session is not None:
            now = self._clock()
            duration = session.duration_ms(now)
            self._finish(session, reason="hangup", at=now)
            payload["callId"] = session.call_id
            if duration is not None:
                payload["duration"] = duration

        await self._broadcaster.send_to_user(to_id, OutboundEvent.CALL_ENDED, payload)
        return session

    async def handle_disconnect(self, user_id: str) -> int:
        """
        End every session involving ``user_id`` with reason ``disconnect``.

        All sessions are removed before any event is sent, so each
        counterpart receives exactly one ``call-ended``.

        Returns:
            Number of sessions ended.
        """
        sessions = self.sessions_for(user_id)
        if not sessions:
            return 0

        now = self._clock()
        endings = []
        for session in sessions:
            duration = session.duration_ms(now)
            self._finish(session, reason="disconnect", at=now)
            payload: dict[str, Any] = {
                "from": user_id,
                "callId": session.call_id,
                "reason": "disconnect",
            }
            if duration is not None:
                payload["duration"] = duration
            endings.append((session.counterpart(user_id), payload))

        for counterpart, payload in endings:
            await self._broadcaster.send_to_user(counterpart, OutboundEvent.CALL_ENDED, payload)

        logger.info("Ended calls on disconnect", user_id=user_id, count=len(endings))
        return len(endings)

    # =========================================================================
    # Sweep / Shutdown
    # =========================================================================

    def sweep_stale(self, now: float | None = None) -> int:
        """
        Drop sessions older than ``stale_after`` regardless of status.

        Backstop for sessions that missed their terminal transition; nobody
        is notified.

        Returns:
            Number of sessions removed.
        """
        now = self._clock() if now is None else now
        stale = [s for s in self._sessions.values() if now - s.started_at > self._stale_after]
        for session in stale:
            self._finish(session, reason="stale", at=now)
        if stale:
            self._count("swept", len(stale))
            logger.warning("Swept stale call sessions", count=len(stale))
        return len(stale)

    async def shutdown(self) -> None:
        """Cancel every timer and forget every session."""
        timers = list(self._ring_timers.values()) + list(self._offer_timers.values())
        self._ring_timers.clear()
        self._offer_timers.clear()
        for task in timers:
            task.cancel()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)
        self._sessions.clear()

    # =========================================================================
    # Internals
    # =========================================================================

    def _require(self, call_id: str | None, **log_context: Any) -> CallSession:
        """
        Raises:
            StaleSession: If ``call_id`` is not tracked.
        """
        session = self._sessions.get(call_id) if call_id else None
        if session is None:
            raise StaleSession(call_id, **log_context)
        return session

    async def _refuse_non_participant(self, sender_id: str, call_id: str, **log_context: Any) -> None:
        """Answer ``sender_id`` with ``call-failed`` for a call it is not part of."""
        error = InvalidCallRequest(
            "Not a participant of this call",
            reason="not_participant",
            call_id=call_id,
            sender_id=sender_id,
            **log_context,
        )
        self._count("failed")
        await self._broadcaster.send_to_user(
            sender_id,
            OutboundEvent.CALL_FAILED,
            {"reason": error.reason, "message": error.message, "callId": call_id},
        )

    def _finish(self, session: CallSession, reason: str, at: float | None = None) -> None:
        """Remove ``session`` from tracking and cancel its timers."""
        self._sessions.pop(session.call_id, None)
        self._cancel_timer(self._ring_timers, session.call_id)
        self._cancel_timer(self._offer_timers, session.call_id)
        if session.status is not CallStatus.ENDED:
            session.transition(CallStatus.ENDED, self._clock() if at is None else at)
        self._count("ended")
        audit_call_event(
            "ENDED", session.call_id, session.caller_id, session.callee_id,
            reason=reason,
        )

    @staticmethod
    def _cancel_timer(timers: dict[str, asyncio.Task], call_id: str) -> None:
        task = timers.pop(call_id, None)
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    def _count(self, name: str, count: int = 1) -> None:
        if self._metrics is not None:
            self._metrics.increment("calls", name, count)

    def get_stats(self) -> dict[str, int]:
        by_status = {status.value: 0 for status in CallStatus if status is not CallStatus.ENDED}
        for session in self._sessions.values():
            by_status[session.status.value] += 1
        return {
            "active_calls": len(self._sessions),
            "ring_timers": len(self._ring_timers),
            "offer_timers": len(self._offer_timers),
            **{f"calls_{status}": count for status, count in by_status.items()},
        }
