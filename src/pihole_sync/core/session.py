"""Scoped Pi-hole API sessions.

Pi-hole limits the number of concurrent API sessions per instance, so a
session is opened at the start of each operation against an instance and
logged out at the end of it, on every exit path.  Use
``SessionManager.open()`` rather than pairing ``acquire``/``release`` by
hand::

    with manager.open(instance) as session:
        blob = session.client.get_teleporter(session.sid)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from ..config_schema import InstanceConfig
from ..errors import PiholeSyncError
from .client import DEFAULT_TIMEOUT, PiholeClient

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """An authenticated session on one instance.

    Attributes:
        instance: The instance the session belongs to.
        client: HTTP client for that instance.
        sid: Session id sent with every authenticated request.
        validity: Seconds the session stays valid without activity.
        acquired_at: Monotonic timestamp of the login.
        released: True once ``SessionManager.release`` has run.
    """

    instance: InstanceConfig
    client: PiholeClient
    sid: str
    validity: int = 0
    acquired_at: float = field(default_factory=time.monotonic)
    released: bool = False

    @property
    def label(self) -> str:
        return self.instance.label


class SessionManager:
    """Acquire and release sessions for any configured instance.

    Args:
        timeout: ``(connect, read)`` timeout in seconds for API calls.
    """

    def __init__(
        self, timeout: tuple[float, float] = DEFAULT_TIMEOUT
    ) -> None:
        self.timeout = timeout
        self._clients: dict[str, PiholeClient] = {}

    def client_for(self, instance: InstanceConfig) -> PiholeClient:
        """Return the (cached) HTTP client for *instance*."""
        client = self._clients.get(instance.label)
        if client is None:
            client = PiholeClient(instance, timeout=self.timeout)
            self._clients[instance.label] = client
        return client

    def acquire(self, instance: InstanceConfig) -> Session:
        """Log in to *instance* with its app password.

        Raises:
            AuthError: Password rejected.
            TransportError: Instance unreachable or answered non-2xx.
        """
        client = self.client_for(instance)
        logger.debug("[%s] Authenticating", instance.label)
        sid, validity = client.login(instance.api_key)
        logger.debug(
            "[%s] Session acquired (valid for %ss)",
            instance.label,
            validity,
        )
        return Session(
            instance=instance, client=client, sid=sid, validity=validity
        )

    def release(self, session: Session) -> None:
        """Log out of *session*.  Idempotent; never raises.

        A session that cannot be logged out simply expires on the
        instance, so failures are only logged.
        """
        if session.released:
            return
        session.released = True
        try:
            session.client.logout(session.sid)
        except PiholeSyncError as exc:
            logger.warning(
                "[%s] Failed to log out: %s", session.label, exc
            )
        except Exception:
            logger.exception(
                "[%s] Unexpected error while logging out", session.label
            )
        else:
            logger.debug("[%s] Logged out", session.label)

    @contextmanager
    def open(self, instance: InstanceConfig) -> Iterator[Session]:
        """Context manager: acquire on entry, release on every exit path."""
        session = self.acquire(instance)
        try:
            yield session
        finally:
            self.release(session)
