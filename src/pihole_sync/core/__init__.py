"""Pi-hole API client and session handling shared by all sync transports."""

from .client import PiholeClient
from .session import Session, SessionManager

__all__ = ["PiholeClient", "Session", "SessionManager"]
