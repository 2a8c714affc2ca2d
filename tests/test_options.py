from pyshs.config import VERSION
from pyshs.options import FileServer


def test_auth_disabled_by_default():
    assert FileServer().auth_enabled() is False


def test_auth_enabled_by_password():
    password = "password"
    assert FileServer(user="admin", password=password).auth_enabled() is True


def test_auth_enabled_by_client_certificates():
    assert FileServer(ca_cert="/tmp/ca.crt").auth_enabled() is True


def test_server_header_carries_version():
    server = FileServer()
    header = server.server_header()
    assert header.startswith(f"pyshs/{VERSION} (")
    assert header.endswith(")")


def test_server_header_uses_configured_version():
    assert FileServer(version="v9").server_header().startswith("pyshs/v9 (")


def test_shared_links_are_per_instance():
    first, second = FileServer(), FileServer()
    assert first.shared_links is not second.shared_links
    assert len(first.shared_links) == 0


def test_default_whitelist_allows_everyone():
    assert FileServer().whitelist.is_allowed("203.0.113.9")