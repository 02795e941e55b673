"""Session management module."""

from droidgram.session.manager import Session, SessionManager

__all__ = ["Session", "SessionManager"]
