"""Shared pytest fixtures for pihole-sync tests."""

import copy
import io
import zipfile
from itertools import count

import pytest

from pihole_sync.config_schema import (
    ApiSyncOptions,
    AppConfig,
    ConfigSyncOptions,
    InstanceConfig,
    SyncMode,
    SyncSettings,
)
from pihole_sync.core.session import SessionManager
from pihole_sync.errors import AuthError, TransportError
from pihole_sync.sync.filter import flatten_config


def make_backup(content: bytes = b"[dns]\nupstreams = []\n") -> bytes:
    """Build a small but valid Teleporter-like ZIP archive."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        info = zipfile.ZipInfo("etc/pihole/pihole.toml", (2024, 1, 1, 0, 0, 0))
        zf.writestr(info, content)
    return buf.getvalue()


MAIN_CONFIG = {
    "dns": {
        "upstreams": ["1.1.1.1", "9.9.9.9"],
        "hosts": ["192.168.1.10 nas.lan"],
        "queryLogging": True,
    },
    "dhcp": {"active": False, "start": "192.168.1.100"},
    "webserver": {"port": "80o,443os", "api": {"pwhash": "xyz"}},
}


class FakePihole:
    """In-memory stand-in for ``PiholeClient``.

    Records every call in ``calls`` as ``(method, args)`` tuples.
    """

    _sids = count(1)

    def __init__(
        self,
        instance,
        config=None,
        groups=None,
        lists=None,
        backup=None,
        login_error=None,
        export_error=None,
        probe_results=None,
        reject_keys=(),
        logout_error=None,
    ):
        self.instance = instance
        self.config = copy.deepcopy(config) if config is not None else {}
        self.groups = copy.deepcopy(groups) if groups is not None else [
            {"id": 0, "name": "Default", "comment": None, "enabled": True}
        ]
        self.lists = copy.deepcopy(lists) if lists is not None else []
        self.backup = make_backup() if backup is None else backup
        self.login_error = login_error
        self.export_error = export_error
        self.probe_results = list(probe_results or [])
        self.reject_keys = set(reject_keys)
        self.logout_error = logout_error
        self.calls = []
        self.active_sids = set()
        self.imported = []
        self.patches = []
        self.gravity_runs = 0

    @property
    def label(self):
        return self.instance.label

    def _record(self, method, *args):
        self.calls.append((method, args))

    def methods(self):
        return [name for name, _ in self.calls]

    # auth -----------------------------------------------------------------

    def login(self, password):
        self._record("login", password)
        if self.login_error is not None:
            raise self.login_error
        sid = f"sid-{next(self._sids)}"
        self.active_sids.add(sid)
        return sid, 300

    def logout(self, sid):
        self._record("logout", sid)
        if self.logout_error is not None:
            raise self.logout_error
        self.active_sids.discard(sid)

    def probe(self, timeout=None):
        self._record("probe", timeout)
        if self.probe_results:
            outcome = self.probe_results.pop(0)
            if isinstance(outcome, Exception):
                raise outcome

    # teleporter -----------------------------------------------------------

    def get_teleporter(self, sid):
        self._record("get_teleporter", sid)
        if self.export_error is not None:
            raise self.export_error
        return self.backup

    def post_teleporter(self, sid, blob, import_options=None):
        self._record("post_teleporter", sid, import_options)
        self.imported.append(blob)
        return ["etc/pihole/pihole.toml", "etc/pihole/gravity.db"]

    # config ---------------------------------------------------------------

    def get_config(self, sid):
        self._record("get_config", sid)
        return copy.deepcopy(self.config)

    def patch_config(self, sid, config):
        self._record("patch_config", sid, config)
        paths = set(flatten_config(config))
        if paths & self.reject_keys:
            raise TransportError(
                self.label,
                "config push",
                "HTTP 400: Invalid value",
                status_code=400,
            )
        self.patches.append(copy.deepcopy(config))

    # groups / lists -------------------------------------------------------

    def get_groups(self, sid):
        self._record("get_groups", sid)
        return copy.deepcopy(self.groups)

    def add_group(self, sid, group):
        self._record("add_group", sid, group["name"])
        next_id = max((g["id"] for g in self.groups), default=0) + 1
        self.groups.append(
            {
                "id": next_id,
                "name": group["name"],
                "comment": group.get("comment"),
                "enabled": group.get("enabled", True),
            }
        )

    def update_group(self, sid, name, group):
        self._record("update_group", sid, name)
        for existing in self.groups:
            if existing["name"] == name:
                existing.update(
                    comment=group.get("comment"),
                    enabled=group.get("enabled", True),
                )

    def get_lists(self, sid):
        self._record("get_lists", sid)
        return copy.deepcopy(self.lists)

    def add_list(self, sid, entry):
        self._record("add_list", sid, entry["address"])
        self.lists.append(copy.deepcopy(entry))

    def update_list(self, sid, entry):
        self._record("update_list", sid, entry["address"])
        for existing in self.lists:
            if (existing["address"], existing["type"]) == (
                entry["address"],
                entry["type"],
            ):
                existing.update(copy.deepcopy(entry))

    def trigger_gravity(self, sid):
        self._record("trigger_gravity", sid)
        self.gravity_runs += 1


class FakeSessionManager(SessionManager):
    """SessionManager whose clients are ``FakePihole`` objects."""

    def __init__(self, fakes):
        super().__init__()
        self.fakes = {fake.label: fake for fake in fakes}

    def client_for(self, instance):
        return self.fakes[instance.label]


@pytest.fixture
def make_instance():
    """Factory for ``InstanceConfig`` objects."""

    def _make(host, port=80, **kwargs):
        kwargs.setdefault("api_key", f"pw-{host}")
        return InstanceConfig(host=host, port=port, **kwargs)

    return _make


@pytest.fixture
def main_instance(make_instance):
    return make_instance("10.0.0.2")


@pytest.fixture
def teleporter_secondary(make_instance):
    return make_instance("10.0.0.3")


@pytest.fixture
def api_secondary(make_instance):
    return make_instance(
        "10.0.0.4",
        sync_mode=SyncMode.API,
        api_sync_options=ApiSyncOptions(
            sync_config=ConfigSyncOptions(filter_keys=["dns.upstreams"]),
        ),
    )


@pytest.fixture
def app_config(tmp_path, main_instance):
    """Factory for ``AppConfig`` with the cache under ``tmp_path``."""

    def _make(secondaries, **sync_kwargs):
        sync_kwargs.setdefault("cache_location", str(tmp_path / "cache"))
        return AppConfig(
            sync=SyncSettings(**sync_kwargs),
            main=main_instance,
            secondary=list(secondaries),
        )

    return _make


@pytest.fixture
def fake_pihole():
    """Factory for ``FakePihole`` objects."""
    return FakePihole


@pytest.fixture
def fake_sessions():
    """Factory: ``fake_sessions(*fakes)`` -> ``FakeSessionManager``."""

    def _make(*fakes):
        return FakeSessionManager(fakes)

    return _make


@pytest.fixture
def backup_blob():
    return make_backup()


@pytest.fixture
def main_config():
    return copy.deepcopy(MAIN_CONFIG)


@pytest.fixture
def auth_error():
    def _make(label):
        return AuthError(label, "login", "unauthorized: password incorrect", 401)

    return _make
