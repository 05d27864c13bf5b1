"""
Pure membership/channel transitions for one simulated mobile.

Every function takes a Session and returns the next Session; none of them
perform I/O. MatchSession applies them and carries out the two side effects
(connect after join, handshake after open).
"""

from __future__ import annotations
from dataclasses import replace
from typing import Optional

from shared.envelope import InboundEvent
from shared.message_types import EventTag

from .state import (
    ChannelState,
    JOINABLE_STATES,
    MatchContext,
    MembershipState,
    Session,
)


def _quiesced(channel: ChannelState) -> ChannelState:
    # A not-joined session may only hold a closed or never-opened channel
    return ChannelState.CLOSED if channel.is_live else channel


def _reset(session: Session, membership: MembershipState, **changes) -> Session:
    return replace(
        session,
        membership=membership,
        channel=_quiesced(session.channel),
        auth_token=None,
        match_context=None,
        **changes,
    )


def can_start_join(session: Session) -> bool:
    return session.membership in JOINABLE_STATES


def begin_join(session: Session) -> Session:
    if not can_start_join(session):
        return session
    return _reset(session, MembershipState.JOINING, last_reason=None, last_error=None)


def join_succeeded(session: Session, auth_token: str, context: MatchContext) -> Session:
    if session.membership is not MembershipState.JOINING:
        return session
    return replace(
        session,
        membership=MembershipState.JOINED,
        auth_token=auth_token,
        match_context=context,
        channel=ChannelState.CONNECTING if context.channel_target else ChannelState.DISCONNECTED,
    )


def join_failed(session: Session, reason: str) -> Session:
    if session.membership is not MembershipState.JOINING:
        return session
    return _reset(session, MembershipState.NOT_JOINED, last_error=reason)


def rename(session: Session, display_name: str) -> Optional[Session]:
    """New record with the name changed, or None while joining/joined."""
    if not can_start_join(session):
        return None
    return replace(session, display_name=display_name)


# ========================================
#           CHANNEL LIFECYCLE
# ========================================

def channel_opened(session: Session) -> Session:
    if session.membership is not MembershipState.JOINED:
        return session
    return replace(session, membership=MembershipState.CHANNEL_LIVE, channel=ChannelState.OPEN)


def channel_authenticated(session: Session) -> Session:
    if session.membership is not MembershipState.CHANNEL_LIVE:
        return session
    return replace(
        session,
        membership=MembershipState.CHANNEL_AUTHENTICATED,
        channel=ChannelState.AUTHENTICATED,
    )


def _drop_live_substate(membership: MembershipState) -> MembershipState:
    if membership in (MembershipState.CHANNEL_LIVE, MembershipState.CHANNEL_AUTHENTICATED):
        return MembershipState.JOINED
    return membership


def channel_closed(session: Session) -> Session:
    channel = ChannelState.CLOSED if session.channel.is_live else session.channel
    return replace(session, membership=_drop_live_substate(session.membership), channel=channel)


def channel_failed(session: Session, reason: str) -> Session:
    """Connect or handshake failure: channel rolls back, membership keeps the join."""
    return replace(
        session,
        membership=_drop_live_substate(session.membership),
        channel=ChannelState.DISCONNECTED,
        last_error=reason,
    )


# ========================================
#           INBOUND EVENTS
# ========================================

def apply_broadcast_event(session: Session, event: InboundEvent) -> Session:
    """
    Fold an event that may concern any session. Only plane:poweron is a
    broadcast: it re-arms the join for the session owning that plane,
    whatever state it is in.
    """
    if event.known_tag is EventTag.PLANE_POWERON and event.plane_id == session.entity_id:
        return _reset(session, MembershipState.NOT_JOINED)
    return session


def apply_inbound_event(session: Session, event: InboundEvent) -> Session:
    tag = event.known_tag

    if tag is EventTag.SYSTEM_ACK:
        return channel_authenticated(session)
    elif tag is EventTag.MATCH_UPDATE:
        return replace(session, last_match_update=dict(event.payload))
    elif tag is EventTag.MATCH_CREATED:
        return _reset(session, MembershipState.NOT_JOINED)
    elif tag is EventTag.PLANE_HIT:
        return session
    elif tag is EventTag.PLANE_KICKED or tag is EventTag.PLANE_DISQUALIFIED:
        # planeId is compared with the entity only, never with client id or token
        if event.plane_id != session.entity_id:
            return session
        membership = MembershipState.KICKED if tag is EventTag.PLANE_KICKED else MembershipState.DISQUALIFIED
        return _reset(session, membership, last_reason=event.reason)
    elif tag is EventTag.PLANE_POWERON:
        return apply_broadcast_event(session, event)
    elif tag is EventTag.MATCH_END:
        if not session.is_joined:
            return session
        # Server closes the socket; credential stays for display until the next join
        return replace(
            session,
            membership=MembershipState.MATCH_ENDED,
            channel=_quiesced(session.channel),
        )
    else:
        return session


def is_consistent(session: Session) -> bool:
    """Check the invariants that must hold between every transition."""
    if (session.auth_token is None) != (session.match_context is None):
        return False
    if session.channel.is_live and not session.is_joined:
        return False
    if session.membership is MembershipState.CHANNEL_LIVE and session.channel is not ChannelState.OPEN:
        return False
    if (session.membership is MembershipState.CHANNEL_AUTHENTICATED
            and session.channel is not ChannelState.AUTHENTICATED):
        return False
    return True
