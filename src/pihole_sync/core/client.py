import json
import threading
import warnings
from typing import Any
from urllib.parse import quote

import requests
from urllib3.exceptions import InsecureRequestWarning

from .. import __version__
from ..config_schema import InstanceConfig
from ..errors import AuthError, TransportError

SID_HEADER = "sid"
DEFAULT_TIMEOUT = (10.0, 60.0)
# gravity rebuilds stream output for minutes on large blocklists
GRAVITY_READ_TIMEOUT = 600.0


def _error_detail(response: requests.Response) -> str:
    """Extract Pi-hole's ``{"error": {"key", "message", "hint"}}`` detail."""
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200] or response.reason or ""
    error = payload.get("error") if isinstance(payload, dict) else None
    if not isinstance(error, dict):
        return str(payload)[:200]
    detail = error.get("message") or error.get("key") or ""
    if error.get("hint"):
        detail = f"{detail} ({error['hint']})"
    return detail


class PiholeClient:
    """HTTP client for the Pi-hole v6 REST API of one instance.

    The client holds no session token: every authenticated call takes the
    ``sid`` of a ``Session`` owned by the caller.
    """

    def __init__(
        self,
        instance: InstanceConfig,
        timeout: tuple[float, float] = DEFAULT_TIMEOUT,
    ):
        self.instance = instance
        self.timeout = timeout
        self.base_url = instance.base_url
        self._thread_local = threading.local()

    @property
    def label(self) -> str:
        return self.instance.label

    @property
    def session(self) -> requests.Session:
        """HTTP connection pool for the current thread."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.verify = self.instance.verify_tls
        session.headers["User-Agent"] = f"pihole-sync/{__version__}"
        if not self.instance.verify_tls:
            warnings.filterwarnings(
                "ignore", category=InsecureRequestWarning
            )
        return session

    def _request(
        self,
        method: str,
        endpoint: str,
        operation: str,
        sid: str | None = None,
        **kwargs: Any,
    ) -> requests.Response:
        """
        Send one request to the instance API.

        Raises:
            AuthError: On HTTP 401.
            TransportError: On network errors, timeouts and other non-2xx.
        """
        url = f"{self.base_url}{endpoint}"
        headers = kwargs.pop("headers", {})
        if sid is not None:
            headers[SID_HEADER] = sid
        kwargs.setdefault("timeout", self.timeout)

        try:
            response = self.session.request(
                method, url, headers=headers, **kwargs
            )
        except requests.Timeout as exc:
            raise TransportError(
                self.label, operation, f"timed out ({exc})"
            ) from exc
        except requests.RequestException as exc:
            raise TransportError(self.label, operation, str(exc)) from exc

        if response.status_code == 401:
            raise AuthError(
                self.label,
                operation,
                f"unauthorized: {_error_detail(response)}",
                status_code=401,
            )
        if not response.ok:
            raise TransportError(
                self.label,
                operation,
                f"HTTP {response.status_code}: {_error_detail(response)}",
                status_code=response.status_code,
            )
        return response

    def _json(self, response: requests.Response, operation: str) -> dict[str, Any]:
        """Decode a response body that must be a JSON object.

        Raises:
            TransportError: If the body is not JSON or not an object.
        """
        try:
            payload = response.json()
        except ValueError as exc:
            raise TransportError(
                self.label, operation, "response is not valid JSON"
            ) from exc
        if not isinstance(payload, dict):
            raise TransportError(
                self.label,
                operation,
                f"expected a JSON object, got {type(payload).__name__}",
            )
        return payload

    def _json_items(
        self, response: requests.Response, operation: str, field: str
    ) -> list[dict[str, Any]]:
        """Return ``payload[field]`` as a list of objects."""
        items = self._json(response, operation).get(field) or []
        if not isinstance(items, list) or not all(
            isinstance(item, dict) for item in items
        ):
            raise TransportError(
                self.label, operation, f"'{field}' is not a list of objects"
            )
        return items

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def login(self, password: str) -> tuple[str, int]:
        """
        Exchange an app password for a session.

        Returns:
            Tuple of (sid, validity in seconds).

        Raises:
            AuthError: If the password is rejected or no sid is returned.
        """
        response = self._request(
            "POST", "/auth", "login", json={"password": password}
        )
        session = self._json(response, "login").get("session") or {}
        if not isinstance(session, dict):
            raise TransportError(
                self.label, "login", "'session' is not an object"
            )
        sid = session.get("sid")
        if not session.get("valid") or not sid:
            raise AuthError(
                self.label,
                "login",
                "no session id received; the app password is probably invalid",
            )
        return sid, int(session.get("validity") or 0)

    def logout(self, sid: str) -> None:
        """Delete the session on the instance."""
        self._request("DELETE", "/auth", "logout", sid=sid)

    def probe(self, timeout: float | None = None) -> None:
        """Hit the unauthenticated login-info endpoint; raises when down.

        Args:
            timeout: Upper bound in seconds for both the connect and the
                read timeout of this request.
        """
        connect, read = self.timeout
        if timeout is not None:
            connect, read = min(connect, timeout), min(read, timeout)
        self._request("GET", "/info/login", "probe", timeout=(connect, read))

    # ------------------------------------------------------------------
    # Teleporter
    # ------------------------------------------------------------------

    def get_teleporter(self, sid: str) -> bytes:
        """Download a Teleporter backup archive."""
        response = self._request(
            "GET", "/teleporter", "teleporter export", sid=sid
        )
        return response.content

    def post_teleporter(
        self,
        sid: str,
        blob: bytes,
        import_options: dict[str, Any] | None = None,
    ) -> list[str]:
        """
        Upload a Teleporter backup archive.

        Args:
            sid: Session id.
            blob: ZIP archive as exported by ``get_teleporter``.
            import_options: Optional ``import`` selection
                (config, dhcp_leases, gravity tables).

        Returns:
            Names of the files the instance processed.
        """
        files: dict[str, Any] = {
            "file": ("pihole_backup.zip", blob, "application/zip"),
        }
        if import_options is not None:
            files["import"] = (None, json.dumps(import_options))
        response = self._request(
            "POST",
            "/teleporter",
            "teleporter import",
            sid=sid,
            files=files,
            data={"resourceName": "pihole_backup.zip"},
        )
        files_processed = self._json(response, "teleporter import").get("files")
        if not isinstance(files_processed, list):
            return []
        return [str(name) for name in files_processed]

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------

    def get_config(self, sid: str) -> dict[str, Any]:
        """Return the nested ``config`` object of ``GET /config``."""
        payload = self._json(
            self._request("GET", "/config", "config fetch", sid=sid),
            "config fetch",
        )
        config = payload.get("config")
        if not isinstance(config, dict):
            raise TransportError(
                self.label, "config fetch", "response has no 'config' object"
            )
        return config

    def patch_config(self, sid: str, config: dict[str, Any]) -> None:
        """Apply a (partial) nested config tree."""
        self._request(
            "PATCH",
            "/config",
            "config push",
            sid=sid,
            json={"config": config},
        )

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    def get_groups(self, sid: str) -> list[dict[str, Any]]:
        return self._json_items(
            self._request("GET", "/groups", "groups fetch", sid=sid),
            "groups fetch",
            "groups",
        )

    def add_group(self, sid: str, group: dict[str, Any]) -> None:
        self._request(
            "POST",
            "/groups",
            "group create",
            sid=sid,
            json={
                "name": group["name"],
                "comment": group.get("comment"),
                "enabled": group.get("enabled", True),
            },
        )

    def update_group(
        self, sid: str, name: str, group: dict[str, Any]
    ) -> None:
        self._request(
            "PUT",
            f"/groups/{quote(name, safe='')}",
            "group update",
            sid=sid,
            json={
                "name": group["name"],
                "comment": group.get("comment"),
                "enabled": group.get("enabled", True),
            },
        )

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------

    def get_lists(self, sid: str) -> list[dict[str, Any]]:
        return self._json_items(
            self._request("GET", "/lists", "lists fetch", sid=sid),
            "lists fetch",
            "lists",
        )

    def add_list(self, sid: str, entry: dict[str, Any]) -> None:
        self._request(
            "POST",
            "/lists",
            "list create",
            sid=sid,
            params={"type": entry["type"]},
            json={
                "address": entry["address"],
                "comment": entry.get("comment"),
                "groups": entry.get("groups", [0]),
                "enabled": entry.get("enabled", True),
            },
        )

    def update_list(self, sid: str, entry: dict[str, Any]) -> None:
        self._request(
            "PUT",
            f"/lists/{quote(entry['address'], safe='')}",
            "list update",
            sid=sid,
            params={"type": entry["type"]},
            json={
                "comment": entry.get("comment"),
                "groups": entry.get("groups", [0]),
                "enabled": entry.get("enabled", True),
            },
        )

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def trigger_gravity(self, sid: str) -> None:
        """Rebuild the gravity database (blocking until FTL is done)."""
        self._request(
            "POST",
            "/action/gravity",
            "gravity update",
            sid=sid,
            timeout=(self.timeout[0], GRAVITY_READ_TIMEOUT),
        )
