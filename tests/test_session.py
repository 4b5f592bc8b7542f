import logging

import pytest

from pihole_sync.core.client import PiholeClient
from pihole_sync.core.session import SessionManager
from pihole_sync.errors import AuthError, TransportError


@pytest.fixture
def instance(make_instance):
    return make_instance("10.0.0.3")


def test_acquire_logs_in_with_app_password(instance, fake_pihole, fake_sessions):
    fake = fake_pihole(instance)
    manager = fake_sessions(fake)

    session = manager.acquire(instance)

    assert session.sid in fake.active_sids
    assert session.validity == 300
    assert session.label == "10.0.0.3:80"
    assert fake.calls[0] == ("login", ("pw-10.0.0.3",))


def test_acquire_propagates_auth_error(instance, fake_pihole, fake_sessions, auth_error):
    manager = fake_sessions(
        fake_pihole(instance, login_error=auth_error(instance.label))
    )

    with pytest.raises(AuthError):
        manager.acquire(instance)


def test_release_is_idempotent(instance, fake_pihole, fake_sessions):
    fake = fake_pihole(instance)
    manager = fake_sessions(fake)
    session = manager.acquire(instance)

    manager.release(session)
    manager.release(session)

    assert fake.methods().count("logout") == 1
    assert session.released
    assert not fake.active_sids


def test_release_never_raises(instance, fake_pihole, fake_sessions, caplog):
    fake = fake_pihole(
        instance,
        logout_error=TransportError(instance.label, "logout", "refused"),
    )
    manager = fake_sessions(fake)
    session = manager.acquire(instance)

    with caplog.at_level(logging.WARNING):
        manager.release(session)

    assert session.released
    assert "Failed to log out" in caplog.text


def test_release_swallows_unexpected_errors(instance, fake_pihole, fake_sessions):
    fake = fake_pihole(instance, logout_error=RuntimeError("boom"))
    manager = fake_sessions(fake)

    manager.release(manager.acquire(instance))

    assert fake.methods() == ["login", "logout"]


def test_open_releases_on_exception(instance, fake_pihole, fake_sessions):
    fake = fake_pihole(instance)
    manager = fake_sessions(fake)

    with pytest.raises(ValueError):
        with manager.open(instance) as session:
            assert session.sid in fake.active_sids
            raise ValueError("transport blew up")

    assert fake.methods() == ["login", "logout"]
    assert not fake.active_sids


def test_open_releases_on_success(instance, fake_pihole, fake_sessions):
    fake = fake_pihole(instance)
    manager = fake_sessions(fake)

    with manager.open(instance) as session:
        pass

    assert session.released
    assert not fake.active_sids


def test_client_for_caches_per_instance(make_instance):
    manager = SessionManager(timeout=(5.0, 30.0))
    first = make_instance("10.0.0.3")
    second = make_instance("10.0.0.3", port=8080)

    client = manager.client_for(first)

    assert isinstance(client, PiholeClient)
    assert client.timeout == (5.0, 30.0)
    assert manager.client_for(first) is client
    assert manager.client_for(second) is not client
