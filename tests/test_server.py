import datetime
import io
import json
import ssl

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID
from werkzeug.test import Client

from pyshs import ca
from pyshs.options import FileServer
from pyshs.server import build_app, drop_privileges, ssl_context, start_banner
from pyshs.whitelist import new_ip_whitelist


def _make_cert():
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "test")])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=1))
        .not_valid_after(now + datetime.timedelta(hours=1))
        .sign(key, hashes.SHA256())
    )
    return key, cert


def _write_pair(tmp_path):
    key, cert = _make_cert()
    cert_path = tmp_path / "server.crt"
    key_path = tmp_path / "server.key"
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    return key, cert, cert_path, key_path


@pytest.fixture
def webroot(tmp_path):
    root = tmp_path / "root"
    root.mkdir()
    (root / "a.txt").write_bytes(b"hello")
    return root


def _server(root, **kwargs):
    return FileServer(webroot=str(root), upload_folder=str(root), ip="127.0.0.1", **kwargs)


def test_get_file_with_server_header(webroot):
    server = _server(webroot)
    client = Client(build_app(server))
    response = client.get("/a.txt")
    assert response.status_code == 200
    assert response.get_data() == b"hello"
    assert response.headers["Server"] == server.server_header()


def test_post_root_logs_only(webroot):
    client = Client(build_app(_server(webroot)))
    response = client.post("/")
    assert response.get_data() == b"ok\n"


def test_put_stores_file(webroot):
    client = Client(build_app(_server(webroot)))
    response = client.put("/b.txt", data=b"PUT TEST CONFIRMED")
    assert response.status_code == 200
    assert (webroot / "b.txt").read_bytes() == b"PUT TEST CONFIRMED"


def test_multipart_upload_redirects(webroot):
    client = Client(build_app(_server(webroot)))
    response = client.post(
        "/upload", data={"files": (io.BytesIO(b"POST TEST CONFIRMED"), "up.txt")}
    )
    assert response.status_code == 303
    assert (webroot / "up.txt").read_bytes() == b"POST TEST CONFIRMED"


def test_basic_auth_required(webroot):
    password = "password"
    server = _server(webroot, user="user", password=password)
    client = Client(build_app(server))
    assert client.get("/").status_code == 401
    assert client.get("/", auth=("user", password)).status_code == 200


def test_whitelist_denies_other_address(webroot):
    server = _server(webroot)
    server.whitelist = new_ip_whitelist("10.0.0.0/8", True, "")
    client = Client(build_app(server))
    assert client.get("/a.txt").status_code == 403


def test_whitelist_allows_listed_address(webroot):
    server = _server(webroot)
    server.whitelist = new_ip_whitelist("127.0.0.1", True, "")
    client = Client(build_app(server))
    assert client.get("/a.txt").get_data() == b"hello"


def test_query_semicolons_are_separators(webroot):
    client = Client(build_app(_server(webroot)))
    response = client.get("/?json;x=1")
    names = [item["name"] for item in json.loads(response.get_data())]
    assert "a.txt" in names


def test_banner_plain_http(webroot):
    server = _server(webroot, port=8000)
    lines = start_banner(server)
    assert lines[0] == "Serving on 127.0.0.1:8000"
    assert lines[-1] == f"Serving HTTP from {webroot}"


def test_banner_all_interfaces(webroot):
    server = FileServer(webroot=str(webroot), ip="0.0.0.0", port=8000)
    lines = start_banner(server)
    assert all(line.startswith("Serving on interface ") for line in lines[:-1])
    assert len(lines) >= 2


def test_banner_self_signed_shows_fingerprints(webroot):
    server = _server(webroot, ssl=True, self_signed=True)
    server.fingerprint256 = "AA BB"
    server.fingerprint1 = "CC DD"
    lines = start_banner(server)
    assert "Be sure to check the fingerprint of certificate" in lines
    assert "SHA-256 Fingerprint: AA BB" in lines
    assert "SHA-1   Fingerprint: CC DD" in lines


def test_ssl_context_none_without_ssl(webroot):
    assert ssl_context(_server(webroot)) is None


def test_ssl_context_requires_certificate(webroot):
    server = _server(webroot, ssl=True)
    with pytest.raises(ValueError):
        ssl_context(server)


def test_ssl_context_from_key_pair(webroot, tmp_path):
    _, cert, cert_path, key_path = _write_pair(tmp_path)
    server = _server(webroot, ssl=True, my_cert=str(cert_path), my_key=str(key_path))
    context = ssl_context(server)
    assert context.minimum_version == ssl.TLSVersion.TLSv1_2
    expected = ca.fingerprints(cert.public_bytes(serialization.Encoding.DER))
    assert (server.fingerprint256, server.fingerprint1) == tuple(expected)


def test_ssl_context_from_p12(webroot, tmp_path):
    key, cert = _make_cert()
    p12_path = tmp_path / "server.p12"
    p12_path.write_bytes(
        pkcs12.serialize_key_and_certificates(
            b"test", key, cert, None, serialization.NoEncryption()
        )
    )
    server = _server(webroot, ssl=True, my_p12=str(p12_path), p12_no_pass=True)
    context = ssl_context(server)
    assert context.minimum_version == ssl.TLSVersion.TLSv1_2
    expected = ca.fingerprints(cert.public_bytes(serialization.Encoding.DER))
    assert (server.fingerprint256, server.fingerprint1) == tuple(expected)


def test_ssl_context_client_certificates(webroot, tmp_path):
    _, _, cert_path, key_path = _write_pair(tmp_path)
    server = _server(
        webroot,
        ssl=True,
        my_cert=str(cert_path),
        my_key=str(key_path),
        ca_cert=str(cert_path),
    )
    context = ssl_context(server)
    assert context.verify_mode == ssl.CERT_REQUIRED


def test_drop_privileges_unknown_user(webroot):
    server = _server(webroot, drop_user="no-such-user-pyshs-test")
    with pytest.raises(LookupError):
        drop_privileges(server)