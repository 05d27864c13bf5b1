from __future__ import annotations


class JoinError(Exception):
    """Join request did not produce a match membership."""

    kind = "join"

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class JoinRejected(JoinError):
    """Server answered with a non-success status; reason is its 'error' text verbatim."""

    kind = "rejected"

    def __init__(self, reason: str, status_code: int) -> None:
        super().__init__(reason)
        self.status_code = status_code


class JoinTransportError(JoinError):
    """Network-level failure or an unusable response body."""

    kind = "transport"


class ChannelError(Exception):
    """Channel connect failed, or a send was attempted on a channel that is not open."""
    pass


class SessionStateError(Exception):
    """Command not allowed in the session's current membership state."""
    pass


class DebugQueryError(Exception):
    """A read-only debug query against the server failed."""
    pass


class ConfigError(Exception):
    """Simulator configuration file is missing or invalid."""
    pass
