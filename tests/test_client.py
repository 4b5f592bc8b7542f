from unittest.mock import Mock, patch

import pytest
import requests

from pihole_sync.core.client import (
    DEFAULT_TIMEOUT,
    GRAVITY_READ_TIMEOUT,
    SID_HEADER,
    PiholeClient,
)
from pihole_sync.errors import AuthError, TransportError


def _response(status=200, payload=None, content=b""):
    response = Mock()
    response.status_code = status
    response.ok = 200 <= status < 300
    response.content = content
    response.reason = "Reason"
    response.text = ""
    if payload is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def instance(make_instance):
    return make_instance("pi.lan", port=443, scheme="https")


@pytest.fixture
def client(instance):
    return PiholeClient(instance)


def test_base_url_construction(client):
    assert client.base_url == "https://pi.lan:443/api"


def test_schema_alias_accepted(make_instance):
    instance = make_instance("pi.lan", port=8080, schema="https")
    assert PiholeClient(instance).base_url == "https://pi.lan:8080/api"


def test_session_does_not_verify_tls_by_default(client):
    assert client.session.verify is False
    assert client.session.headers["User-Agent"].startswith("pihole-sync/")


def test_session_verifies_tls_when_enabled(make_instance):
    client = PiholeClient(make_instance("pi.lan", verify_tls=True))
    assert client.session.verify is True


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


@patch("pihole_sync.core.client.requests.Session.request")
def test_login_returns_sid_and_validity(mock_request, client):
    mock_request.return_value = _response(
        payload={"session": {"valid": True, "sid": "abc", "validity": 300}}
    )

    assert client.login("secret") == ("abc", 300)

    method, url = mock_request.call_args[0]
    assert method == "POST"
    assert url == "https://pi.lan:443/api/auth"
    assert mock_request.call_args[1]["json"] == {"password": "secret"}
    assert mock_request.call_args[1]["timeout"] == DEFAULT_TIMEOUT
    assert SID_HEADER not in mock_request.call_args[1]["headers"]


@patch("pihole_sync.core.client.requests.Session.request")
def test_login_invalid_session_raises_auth_error(mock_request, client):
    mock_request.return_value = _response(
        payload={"session": {"valid": False, "sid": None, "validity": -1}}
    )

    with pytest.raises(AuthError) as exc_info:
        client.login("wrong")

    assert exc_info.value.instance == "pi.lan:443"
    assert exc_info.value.operation == "login"


@patch("pihole_sync.core.client.requests.Session.request")
def test_http_401_raises_auth_error(mock_request, client):
    mock_request.return_value = _response(
        status=401,
        payload={
            "error": {
                "key": "unauthorized",
                "message": "Unauthorized",
                "hint": None,
            }
        },
    )

    with pytest.raises(AuthError) as exc_info:
        client.login("wrong")

    assert exc_info.value.status_code == 401
    assert "Unauthorized" in str(exc_info.value)


@patch("pihole_sync.core.client.requests.Session.request")
def test_logout_sends_sid_header(mock_request, client):
    mock_request.return_value = _response(status=204)

    client.logout("abc")

    method, url = mock_request.call_args[0]
    assert method == "DELETE"
    assert url.endswith("/api/auth")
    assert mock_request.call_args[1]["headers"][SID_HEADER] == "abc"


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


@patch("pihole_sync.core.client.requests.Session.request")
def test_timeout_raises_transport_error(mock_request, client):
    mock_request.side_effect = requests.Timeout("read timed out")

    with pytest.raises(TransportError) as exc_info:
        client.get_config("abc")

    assert "timed out" in str(exc_info.value)
    assert exc_info.value.status_code is None


@patch("pihole_sync.core.client.requests.Session.request")
def test_connection_error_raises_transport_error(mock_request, client):
    mock_request.side_effect = requests.ConnectionError("refused")

    with pytest.raises(TransportError) as exc_info:
        client.probe()

    assert exc_info.value.operation == "probe"


@patch("pihole_sync.core.client.requests.Session.request")
def test_non_2xx_carries_status_and_hint(mock_request, client):
    mock_request.return_value = _response(
        status=400,
        payload={
            "error": {
                "key": "bad_request",
                "message": "Invalid value",
                "hint": "dns.upstreams",
            }
        },
    )

    with pytest.raises(TransportError) as exc_info:
        client.patch_config("abc", {"dns": {"upstreams": ["x"]}})

    assert exc_info.value.status_code == 400
    assert "Invalid value (dns.upstreams)" in str(exc_info.value)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@patch("pihole_sync.core.client.requests.Session.request")
def test_get_teleporter_returns_bytes(mock_request, client):
    mock_request.return_value = _response(content=b"PK\x03\x04data")

    assert client.get_teleporter("abc") == b"PK\x03\x04data"
    assert mock_request.call_args[0] == ("GET", "https://pi.lan:443/api/teleporter")


@patch("pihole_sync.core.client.requests.Session.request")
def test_post_teleporter_sends_multipart_with_import_options(mock_request, client):
    mock_request.return_value = _response(
        payload={"files": ["etc/pihole/pihole.toml"]}
    )

    files = client.post_teleporter("abc", b"zip", {"config": True})

    assert files == ["etc/pihole/pihole.toml"]
    kwargs = mock_request.call_args[1]
    assert kwargs["files"]["file"][1] == b"zip"
    assert kwargs["files"]["import"] == (None, '{"config": true}')
    assert kwargs["data"] == {"resourceName": "pihole_backup.zip"}


@patch("pihole_sync.core.client.requests.Session.request")
def test_post_teleporter_without_import_options(mock_request, client):
    mock_request.return_value = _response(payload={"files": []})

    client.post_teleporter("abc", b"zip")

    assert "import" not in mock_request.call_args[1]["files"]


@patch("pihole_sync.core.client.requests.Session.request")
def test_get_config_unwraps_config_key(mock_request, client):
    mock_request.return_value = _response(
        payload={"config": {"dns": {"upstreams": []}}, "took": 0.001}
    )

    assert client.get_config("abc") == {"dns": {"upstreams": []}}


@patch("pihole_sync.core.client.requests.Session.request")
def test_get_config_without_config_key_raises(mock_request, client):
    mock_request.return_value = _response(payload={"took": 0.001})

    with pytest.raises(TransportError):
        client.get_config("abc")


@patch("pihole_sync.core.client.requests.Session.request")
def test_patch_config_wraps_tree(mock_request, client):
    mock_request.return_value = _response(payload={"config": {}})

    client.patch_config("abc", {"dns": {"queryLogging": False}})

    assert mock_request.call_args[0][0] == "PATCH"
    assert mock_request.call_args[1]["json"] == {
        "config": {"dns": {"queryLogging": False}}
    }


@patch("pihole_sync.core.client.requests.Session.request")
def test_update_group_quotes_name(mock_request, client):
    mock_request.return_value = _response(payload={"groups": []})

    client.update_group(
        "abc", "kids devices", {"name": "kids devices", "enabled": False}
    )

    assert mock_request.call_args[0][1].endswith("/api/groups/kids%20devices")
    assert mock_request.call_args[1]["json"]["enabled"] is False


@patch("pihole_sync.core.client.requests.Session.request")
def test_add_list_passes_type_parameter(mock_request, client):
    mock_request.return_value = _response(payload={"lists": []})

    client.add_list(
        "abc",
        {"address": "https://example.com/hosts", "type": "block", "groups": [0]},
    )

    kwargs = mock_request.call_args[1]
    assert kwargs["params"] == {"type": "block"}
    assert kwargs["json"]["address"] == "https://example.com/hosts"


@patch("pihole_sync.core.client.requests.Session.request")
def test_update_list_quotes_address(mock_request, client):
    mock_request.return_value = _response(payload={"lists": []})

    client.update_list(
        "abc",
        {"address": "https://example.com/a b", "type": "allow", "groups": [1]},
    )

    url = mock_request.call_args[0][1]
    assert url.endswith("/api/lists/https%3A%2F%2Fexample.com%2Fa%20b")
    assert mock_request.call_args[1]["params"] == {"type": "allow"}


@patch("pihole_sync.core.client.requests.Session.request")
def test_trigger_gravity_uses_long_read_timeout(mock_request, client):
    mock_request.return_value = _response(status=200)

    client.trigger_gravity("abc")

    assert mock_request.call_args[1]["timeout"] == (
        DEFAULT_TIMEOUT[0],
        GRAVITY_READ_TIMEOUT,
    )


# ---------------------------------------------------------------------------
# Response shape checks
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "call",
    [
        lambda c: c.login("secret"),
        lambda c: c.post_teleporter("abc", b"zip"),
        lambda c: c.get_config("abc"),
        lambda c: c.get_groups("abc"),
        lambda c: c.get_lists("abc"),
    ],
    ids=["login", "teleporter import", "config", "groups", "lists"],
)
@patch("pihole_sync.core.client.requests.Session.request")
def test_non_object_body_raises_transport_error(mock_request, client, call):
    mock_request.return_value = _response(payload=["not", "an", "object"])

    with pytest.raises(TransportError, match="expected a JSON object, got list"):
        call(client)


@patch("pihole_sync.core.client.requests.Session.request")
def test_login_session_not_an_object(mock_request, client):
    mock_request.return_value = _response(payload={"session": "abc"})

    with pytest.raises(TransportError, match="'session' is not an object"):
        client.login("secret")


@pytest.mark.parametrize("groups", ["Default", [1, 2], {"id": 0}])
@patch("pihole_sync.core.client.requests.Session.request")
def test_groups_must_be_list_of_objects(mock_request, client, groups):
    mock_request.return_value = _response(payload={"groups": groups})

    with pytest.raises(TransportError, match="'groups' is not a list of objects"):
        client.get_groups("abc")


@patch("pihole_sync.core.client.requests.Session.request")
def test_missing_lists_key_means_no_lists(mock_request, client):
    mock_request.return_value = _response(payload={"took": 0.001})

    assert client.get_lists("abc") == []


@patch("pihole_sync.core.client.requests.Session.request")
def test_post_teleporter_ignores_malformed_file_list(mock_request, client):
    mock_request.return_value = _response(payload={"files": "etc/pihole"})

    assert client.post_teleporter("abc", b"zip") == []


# ---------------------------------------------------------------------------
# Probe
# ---------------------------------------------------------------------------


@patch("pihole_sync.core.client.requests.Session.request")
def test_probe_uses_client_timeout_by_default(mock_request, client):
    mock_request.return_value = _response(payload={"totp": False})

    client.probe()

    assert mock_request.call_args[0][1].endswith("/api/info/login")
    assert mock_request.call_args[1]["timeout"] == DEFAULT_TIMEOUT


@patch("pihole_sync.core.client.requests.Session.request")
def test_probe_timeout_caps_connect_and_read(mock_request, client):
    mock_request.return_value = _response(payload={"totp": False})

    client.probe(timeout=2.5)

    assert mock_request.call_args[1]["timeout"] == (2.5, 2.5)
