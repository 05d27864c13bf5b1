from __future__ import annotations
import asyncio
import itertools
from typing import Callable, List, Optional

from shared.envelope import InboundEvent, MalformedMessage, ProtocolWarning, create_hello
from shared.log import get_logger, log_session_event
from shared.message_types import BROADCAST_EVENTS, EventTag
from shared.utils import is_ws_url, token_preview

from . import transitions
from .errors import ChannelError, JoinError, SessionStateError
from .join_client import JoinClient
from .state import ActivityLog, MatchContext, MembershipState, Session, Severity
from .ws_client import ChannelHandle, ChannelTransport, Connector

logger = get_logger(__name__)

StateListener = Callable[[Session], None]
BroadcastHook = Callable[[InboundEvent], None]


class MatchSession:
    """
    Match membership for one simulated mobile.

    Owns the Session record, at most one channel handle, and writes every
    observable change to the shared activity log. Inbound traffic only ever
    updates state; the only outbound actions are connecting after a join and
    sending the hello once the channel opens.
    """

    def __init__(
        self,
        client_id: str,
        entity_id: str,
        display_name: str,
        join_client: JoinClient,
        *,
        label: Optional[str] = None,
        activity: Optional[ActivityLog] = None,
        connector: Optional[Connector] = None,
        open_timeout: Optional[float] = None,
        ping_interval: Optional[float] = 15,
        ping_timeout: Optional[float] = 45,
    ) -> None:
        self.record = Session(client_id=client_id, entity_id=entity_id, display_name=display_name)
        self.label = label or client_id
        self.join_client = join_client
        self.activity = activity if activity is not None else ActivityLog()
        self.broadcast: Optional[BroadcastHook] = None
        self.transport = ChannelTransport(
            self._on_open,
            self._on_message,
            self._on_close,
            self._on_error,
            connector=connector,
            open_timeout=open_timeout,
            ping_interval=ping_interval,
            ping_timeout=ping_timeout,
            name=self.label,
        )
        self._handle: Optional[ChannelHandle] = None
        self._listeners: List[StateListener] = []
        self._attempts = itertools.count(1)
        self._current_attempt = 0
        self._changed = asyncio.Event()

    def __repr__(self) -> str:
        return f"<MatchSession {self.label} {self.record.membership.value}/{self.record.channel.value}>"

    @property
    def client_id(self) -> str:
        return self.record.client_id

    @property
    def entity_id(self) -> str:
        return self.record.entity_id

    @property
    def handle(self) -> Optional[ChannelHandle]:
        return self._handle

    def subscribe(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def _set(self, new: Session) -> None:
        if new == self.record:
            return
        old, self.record = self.record, new
        if old.membership is not new.membership or old.channel is not new.channel:
            log_session_event(
                logger, "debug",
                f"{old.membership.value}/{old.channel.value} -> {new.membership.value}/{new.channel.value}",
                session=new,
            )
        self._changed.set()
        for listener in list(self._listeners):
            listener(new)

    def _log(self, message: str, severity: Severity = Severity.INFO) -> None:
        self.activity.add(self.label, message, severity)

    async def wait_until(self, predicate: Callable[[Session], bool], timeout: Optional[float] = None) -> bool:
        """Wait until predicate(record) holds. False if timeout expires first."""
        async def _wait() -> None:
            while not predicate(self.record):
                self._changed.clear()
                await self._changed.wait()

        try:
            await asyncio.wait_for(_wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    # ========================================
    #           OBSERVER COMMANDS
    # ========================================

    def rename(self, display_name: str) -> None:
        updated = transitions.rename(self.record, display_name)
        if updated is None:
            raise SessionStateError(f"{self.label}: cannot rename while {self.record.membership.value}")
        self._set(updated)

    async def start_join(self) -> bool:
        """
        Join the match with this mobile's plane. Returns True once joined.

        Ignored (returns False, no request sent) while already joining or joined.
        """
        if not transitions.can_start_join(self.record):
            log_session_event(logger, "debug", f"start_join ignored while {self.record.membership.value}", session=self.record)
            return False

        attempt = self._current_attempt = next(self._attempts)
        self._set(transitions.begin_join(self.record))
        rec = self.record

        try:
            grant = await self.join_client.join(rec.entity_id, rec.client_id, rec.display_name)
        except JoinError as e:
            if self._is_stale(attempt):
                logger.info(f"{self.label}: dropping stale join failure: {e.reason}")
                return False
            self._set(transitions.join_failed(self.record, e.reason))
            log_session_event(logger, "warning", f"Join failed ({e.kind}): {e.reason}", session=self.record)
            self._log(f"Join failed: {e.reason}", Severity.ERROR)
            return False

        if self._is_stale(attempt):
            logger.info(f"{self.label}: dropping join result that arrived after a reset")
            self._log("Join response arrived after reset; discarded")
            return False

        context = MatchContext(match_id=grant.match_id, channel_target=grant.channel_target)
        self._set(transitions.join_succeeded(self.record, grant.auth_token, context))
        self._log(
            f"{self.record.display_name} joined match successfully! Token: {token_preview(grant.auth_token)}",
            Severity.SUCCESS,
        )

        if grant.channel_target and not is_ws_url(grant.channel_target):
            reason = f"Unusable channel target {grant.channel_target!r}"
            self._set(transitions.channel_failed(self.record, reason))
            self._log(reason, Severity.ERROR)
        elif grant.channel_target:
            self._handle = await self.transport.connect(grant.channel_target)
        else:
            log_session_event(logger, "warning", "Join response has no wsUrl; staying joined without a channel", session=self.record)
            self._log("No channel target in join response; joined without live updates", Severity.WARNING)
        return True

    def _is_stale(self, attempt: int) -> bool:
        return attempt != self._current_attempt or self.record.membership is not MembershipState.JOINING

    async def aclose(self) -> None:
        await self.transport.close(self._handle)

    # ========================================
    #           EVENT FOLDING
    # ========================================

    def apply_event(self, event: InboundEvent) -> Session:
        before = self.record
        after = transitions.apply_inbound_event(before, event)
        if (after.membership is MembershipState.CHANNEL_AUTHENTICATED
                and before.membership is not MembershipState.CHANNEL_AUTHENTICATED
                and self._handle is not None):
            self.transport.mark_authenticated(self._handle)
        self._set(after)
        self._describe(event, before, after)
        return after

    def apply_broadcast(self, event: InboundEvent) -> Session:
        before = self.record
        after = transitions.apply_broadcast_event(before, event)
        self._set(after)
        if after != before:
            self._log(f"Plane {event.plane_id} powered on; ready to join again", Severity.SUCCESS)
        return after

    def _describe(self, event: InboundEvent, before: Session, after: Session) -> None:
        tag = event.known_tag
        changed = after != before
        own = event.plane_id == before.entity_id

        if tag is EventTag.SYSTEM_ACK:
            if changed:
                self._log("Channel authenticated", Severity.SUCCESS)
            else:
                logger.info(f"{self.label}: ack ignored while {before.membership.value}")
        elif tag is EventTag.MATCH_UPDATE:
            logger.debug(f"{self.label}: match update")
        elif tag is EventTag.MATCH_CREATED:
            self._log("New match created; membership reset")
        elif tag is EventTag.PLANE_HIT:
            self._log(f"Plane {event.plane_id} hit" if event.plane_id else "Plane hit")
        elif tag is EventTag.PLANE_KICKED or tag is EventTag.PLANE_DISQUALIFIED:
            verb = "Kicked" if tag is EventTag.PLANE_KICKED else "Disqualified"
            if own:
                self._log(f"{verb} from match: {after.last_reason}", Severity.ERROR)
            else:
                self._log(f"Plane {event.plane_id} {verb.lower()} ({event.reason})")
        elif tag is EventTag.PLANE_POWERON:
            if changed:
                self._log(f"Plane {event.plane_id} powered on; ready to join again", Severity.SUCCESS)
        elif tag is EventTag.MATCH_END:
            if changed:
                self._log("Match ended")

    # ========================================
    #           CHANNEL CALLBACKS
    # ========================================

    async def _on_open(self, handle: ChannelHandle) -> None:
        if handle is not self._handle:
            return
        opened = transitions.channel_opened(self.record)
        if opened is self.record:
            logger.info(f"{self.label}: channel opened while {self.record.membership.value}; no hello sent")
            return
        self._set(opened)
        rec = self.record
        hello = create_hello(rec.match_context.match_id, rec.client_id, rec.auth_token)
        try:
            await self.transport.send(handle, hello)
        except ChannelError as e:
            self._set(transitions.channel_failed(self.record, str(e)))
            self._log(f"Handshake failed: {e}", Severity.ERROR)
            return
        self._log("Channel open; hello sent")

    async def _on_message(self, handle: ChannelHandle, event: InboundEvent) -> None:
        if handle is not self._handle:
            return
        tag = event.known_tag
        if tag is None:
            warning = ProtocolWarning(event.tag)
            log_session_event(logger, "info", str(warning), session=self.record, tag=event.tag)
            return
        if tag in BROADCAST_EVENTS and self.broadcast is not None:
            self.broadcast(event)
            return
        self.apply_event(event)

    async def _on_close(self, handle: ChannelHandle) -> None:
        if handle is not self._handle:
            return
        self._set(transitions.channel_closed(self.record))
        self._log("Channel closed")

    async def _on_error(self, handle: ChannelHandle, error: Exception) -> None:
        if handle is not self._handle:
            return
        if isinstance(error, MalformedMessage):
            log_session_event(logger, "warning", f"Discarded malformed frame: {error.detail}", session=self.record)
            return
        self._set(transitions.channel_failed(self.record, str(error)))
        log_session_event(logger, "warning", f"Channel error: {error}", session=self.record)
        self._log(f"Channel error: {error}", Severity.ERROR)
