from __future__ import annotations
from typing import Optional
from urllib.parse import urlsplit

# ========================================
#           INPUT VALIDATION HELPERS
# ========================================
"""
Small helpers shared by the join client, the channel transport and the CLI.
"""

_WS_SCHEMES = {"ws", "wss"}
_HTTP_SCHEMES = {"http", "https"}


def is_ws_url(s: Optional[str]) -> bool:
    """
    True if s looks like a usable WebSocket target ('ws://host[:port]/...' or 'wss://...').
    """
    if not isinstance(s, str) or not s:
        return False
    try:
        parts = urlsplit(s)
        _ = parts.port  # raises ValueError on a bad port
    except ValueError:
        return False
    return parts.scheme in _WS_SCHEMES and bool(parts.hostname)


def is_http_url(s: Optional[str]) -> bool:
    """
    True if s is an absolute http(s) URL with a host.
    """
    if not isinstance(s, str) or not s:
        return False
    try:
        parts = urlsplit(s)
        _ = parts.port
    except ValueError:
        return False
    return parts.scheme in _HTTP_SCHEMES and bool(parts.hostname)


# ========================================
#           DISPLAY HELPERS
# ========================================

def token_preview(token: Optional[str], length: int = 8) -> str:
    """
    Shorten a credential for logs and tables: 'tok12345...'.
    """
    if not token:
        return "-"
    return f"{token[:length]}..."
