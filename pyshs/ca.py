"""Self-signed certificate creation and certificate fingerprints."""

from __future__ import annotations

import base64
import binascii
import hashlib
import ipaddress
import re
import ssl
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import NamedTuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

_KEY_SIZE = 4096
_VALID_YEARS = 10

_PEM_BLOCK = re.compile(
    rb"-----BEGIN ([^\r\n-]+)-----\r?\n(.*?)-----END \1-----", re.DOTALL
)


class TLSSetup(NamedTuple):
    """A ready server TLS context with its certificate and fingerprints."""

    context: ssl.SSLContext
    certificate: x509.Certificate
    sha256: str
    sha1: str


def _spaced_hex(digest: bytes) -> str:
    return "".join(f"{byte:02X} " for byte in digest)


def fingerprints(cert: bytes) -> tuple[str, str]:
    """Return the SHA-256 and SHA-1 fingerprints of raw certificate bytes.

    Both are upper-case hex with a space after every byte.
    """
    # SHA-1 is only used as a display fingerprint, not for security.
    return (
        _spaced_hex(hashlib.sha256(cert).digest()),
        _spaced_hex(hashlib.sha1(cert).digest()),
    )


def _decode_pem(data: bytes) -> bytes:
    match = _PEM_BLOCK.search(data)
    if match is None:
        raise ValueError("failed to decode PEM block from cert")
    body = b"".join(match.group(2).split())
    try:
        return base64.b64decode(body, validate=True)
    except binascii.Error as exc:
        raise ValueError("failed to decode PEM block from cert") from exc


def parse_and_sum(path: str | Path) -> tuple[str, str]:
    """Read a PEM certificate file and return its SHA-256 and SHA-1 fingerprints."""
    data = Path(path).read_bytes()
    der = _decode_pem(data)
    x509.load_der_x509_certificate(der)
    return fingerprints(der)


def _subject() -> x509.Name:
    return x509.Name(
        [
            x509.NameAttribute(NameOID.COUNTRY_NAME, "DE"),
            x509.NameAttribute(NameOID.STATE_OR_PROVINCE_NAME, "BW"),
            x509.NameAttribute(NameOID.LOCALITY_NAME, "Althengstett"),
            x509.NameAttribute(NameOID.STREET_ADDRESS, "Gopher-Street"),
            x509.NameAttribute(NameOID.POSTAL_CODE, "75382"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "hesec.de"),
            x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, "hesec.de"),
            x509.NameAttribute(NameOID.COMMON_NAME, "goshs - SimpleHTTPServer"),
        ]
    )


def _add_years(moment: datetime, years: int) -> datetime:
    try:
        return moment.replace(year=moment.year + years)
    except ValueError:
        # 29 February in a non-leap target year rolls over to 1 March
        return moment.replace(year=moment.year + years, day=28) + timedelta(days=1)


def _key_usage(*, key_cert_sign: bool) -> x509.KeyUsage:
    return x509.KeyUsage(
        digital_signature=True,
        content_commitment=False,
        key_encipherment=False,
        data_encipherment=False,
        key_agreement=False,
        key_cert_sign=key_cert_sign,
        crl_sign=False,
        encipher_only=False,
        decipher_only=False,
    )


_EXT_KEY_USAGE = x509.ExtendedKeyUsage(
    [ExtendedKeyUsageOID.CLIENT_AUTH, ExtendedKeyUsageOID.SERVER_AUTH]
)


def setup() -> TLSSetup:
    """Create a CA and a server certificate signed by it; return a server TLS context."""
    name = _subject()
    now = datetime.now(timezone.utc)
    not_after = _add_years(now, _VALID_YEARS)

    ca_key = rsa.generate_private_key(public_exponent=65537, key_size=_KEY_SIZE)
    ca_cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(ca_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(_key_usage(key_cert_sign=True), critical=True)
        .add_extension(_EXT_KEY_USAGE, critical=False)
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(ca_key.public_key()),
            critical=False,
        )
        .sign(ca_key, hashes.SHA256())
    )

    server_key = rsa.generate_private_key(public_exponent=65537, key_size=_KEY_SIZE)
    server_cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(ca_cert.subject)
        .public_key(server_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(not_after)
        .add_extension(
            x509.SubjectAlternativeName(
                [
                    x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
                    x509.IPAddress(ipaddress.ip_address("::1")),
                ]
            ),
            critical=False,
        )
        .add_extension(x509.SubjectKeyIdentifier(bytes([1, 2, 3, 4, 6])), critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()),
            critical=False,
        )
        .add_extension(_key_usage(key_cert_sign=False), critical=True)
        .add_extension(_EXT_KEY_USAGE, critical=False)
        .sign(ca_key, hashes.SHA256())
    )

    cert_pem = server_cert.public_bytes(serialization.Encoding.PEM)
    key_pem = server_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.TraditionalOpenSSL,
        serialization.NoEncryption(),
    )

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    with tempfile.TemporaryDirectory() as workdir:
        cert_file = Path(workdir, "server.crt")
        key_file = Path(workdir, "server.key")
        cert_file.write_bytes(cert_pem)
        key_file.write_bytes(key_pem)
        key_file.chmod(0o600)
        context.load_cert_chain(str(cert_file), str(key_file))

    sha256, sha1 = fingerprints(server_cert.public_bytes(serialization.Encoding.DER))
    return TLSSetup(context=context, certificate=server_cert, sha256=sha256, sha1=sha1)