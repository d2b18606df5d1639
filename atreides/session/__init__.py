"""Per-session state storage."""

from atreides.session.store import SessionStore

__all__ = ["SessionStore"]
