"""Assembling, securing and running the web file server."""

from __future__ import annotations

import getpass
import logging
import os
import socket
import ssl
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12
from werkzeug.serving import make_server

from pyshs import ca
from pyshs.clipboard import Clipboard
from pyshs.handler import FileServerApp
from pyshs.middleware import (
    CustomMux,
    WSGIApp,
    basic_auth_middleware,
    ip_whitelist_middleware,
    server_header_middleware,
)
from pyshs.options import FileServer

log = logging.getLogger(__name__)

CLEANUP_INTERVAL = 60.0


def _allow_query_semicolons(app: WSGIApp) -> WSGIApp:
    """Treat ';' in query strings as a parameter separator, like '&'."""

    def wrapped(environ: dict, start_response: Callable[..., Any]) -> Iterable[bytes]:
        query = environ.get("QUERY_STRING", "")
        if ";" in query:
            environ = {**environ, "QUERY_STRING": query.replace(";", "&")}
        return app(environ, start_response)

    return wrapped


def build_app(server: FileServer) -> WSGIApp:
    """Build the WSGI application with auth, whitelist and header middleware."""
    mux = CustomMux()

    if server.user or server.password:
        if not server.ssl:
            log.warning(
                "You are using basic auth without SSL. Your credentials will be "
                "transferred in cleartext. Consider using -s, too."
            )
        log.info(
            "Using basic auth with user '%s' and password '%s'", server.user, server.password
        )
        mux.use(
            lambda app: basic_auth_middleware(
                app, server.user, server.password, server.shared_links
            )
        )

    mux.use(lambda app: ip_whitelist_middleware(app, server.whitelist))
    header = server.server_header()
    mux.use(lambda app: server_header_middleware(app, header))

    files = FileServerApp(server)
    mux.handle("POST", "/upload", files)
    mux.handle("POST", "/", files)
    mux.handle("PUT", "/", files)
    mux.handle(None, "/", files)

    return _allow_query_semicolons(mux)


def _interface_addresses() -> dict[str, str]:
    addresses = {"lo": "127.0.0.1"}
    try:
        host = socket.gethostname()
        _, _, ips = socket.gethostbyname_ex(host)
    except OSError:
        return addresses
    for index, ip in enumerate(ips):
        if ip not in addresses.values():
            addresses[f"{host}-{index}"] = ip
    return addresses


def start_banner(server: FileServer) -> list[str]:
    """Log and return the lines announcing where and how the server listens."""
    lines: list[str] = []
    warnings: set[int] = set()

    if server.ip == "0.0.0.0":
        for name, address in _interface_addresses().items():
            lines.append(f"Serving on interface {name} bound to {address}:{server.port}")
    else:
        lines.append(f"Serving on {server.ip}:{server.port}")

    protocol = "HTTPS" if server.ssl else "HTTP"
    if server.ssl:
        if server.self_signed:
            lines.append(
                f"Serving {protocol} from {server.webroot} "
                "with ssl enabled and self-signed certificate"
            )
            warnings.add(len(lines))
            lines.append("Be sure to check the fingerprint of certificate")
        else:
            lines.append(
                f"Serving {protocol} from {server.webroot} with ssl enabled "
                f"server key: {server.my_key}, server cert: {server.my_cert}, "
                f"server p12: {server.my_p12}"
            )
            lines.append(
                "You provided a certificate and might want to check the fingerprint nonetheless"
            )
        lines.append(f"SHA-256 Fingerprint: {server.fingerprint256}")
        lines.append(f"SHA-1   Fingerprint: {server.fingerprint1}")
    else:
        lines.append(f"Serving {protocol} from {server.webroot}")

    for index, line in enumerate(lines):
        if index in warnings:
            log.warning("%s", line)
        else:
            log.info("%s", line)
    return lines


def drop_privileges(server: FileServer) -> None:
    """Switch to the configured unprivileged user, if any.

    Raises LookupError for an unknown user and OSError if switching fails.
    Only warns on systems without user switching.
    """
    if os.name != "posix":
        if server.drop_user:
            log.warning("Dropping privileges with --user only works for unix systems, sorry.")
        return

    import pwd

    if os.getuid() == 0 and not server.drop_user:
        log.warning("Running as user root! You should be careful with that!!")
    if not server.drop_user:
        return

    log.info("Dropping privileges to user '%s'", server.drop_user)
    try:
        entry = pwd.getpwnam(server.drop_user)
    except KeyError as exc:
        raise LookupError(f"user not found: {server.drop_user}") from exc
    os.setgroups([])
    os.setgid(entry.pw_gid)
    os.setuid(entry.pw_uid)


def _new_context() -> ssl.SSLContext:
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    return context


def _provided_context(server: FileServer) -> tuple[ssl.SSLContext, str, str]:
    if not (server.my_cert and server.my_key) and not server.my_p12:
        raise ValueError(
            "You need to provide either server.key and server.crt or server.p12 if -s and not -ss"
        )

    context = _new_context()
    if server.my_p12:
        data = Path(server.my_p12).read_bytes()
        unlock: Optional[bytes] = None
        if not server.p12_no_pass:
            unlock = getpass.getpass(f"Enter password for {server.my_p12}: ").encode() or None
        key, cert, _ = pkcs12.load_key_and_certificates(data, unlock)
        if key is None or cert is None:
            raise ValueError("error parsing the p12 file: missing key or certificate")
        with tempfile.TemporaryDirectory() as folder:
            cert_path = Path(folder, "cert.pem")
            key_path = Path(folder, "key.pem")
            cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
            key_path.write_bytes(
                key.private_bytes(
                    serialization.Encoding.PEM,
                    serialization.PrivateFormat.PKCS8,
                    serialization.NoEncryption(),
                )
            )
            context.load_cert_chain(str(cert_path), str(key_path))
        sha256, sha1 = ca.fingerprints(cert.public_bytes(serialization.Encoding.DER))
    else:
        sha256, sha1 = ca.parse_and_sum(server.my_cert)
        context.load_cert_chain(server.my_cert, server.my_key)
    return context, sha256, sha1


def ssl_context(server: FileServer) -> Optional[ssl.SSLContext]:
    """Return the TLS context for the server, or None without SSL.

    Records the certificate fingerprints on the server. Raises ValueError
    when neither a key pair nor a p12 file is given for a provided
    certificate, and OSError or ssl.SSLError when they cannot be loaded.
    """
    if not server.ssl:
        return None

    if server.self_signed:
        context, sha256, sha1 = ca.setup()
    else:
        context, sha256, sha1 = _provided_context(server)

    if server.ca_cert:
        log.info("Using certificate auth with ca certificate: %s", server.ca_cert)
        context.load_verify_locations(cafile=server.ca_cert)
        context.verify_mode = ssl.CERT_REQUIRED

    server.fingerprint256 = sha256
    server.fingerprint1 = sha1
    return context


def _notify(server: FileServer, message: str, event: str) -> None:
    if server.webhook is None:
        return
    try:
        server.webhook(message, event)
    except Exception as exc:  # a failing webhook must not stop the server
        log.error("error sending webhook message: %s", exc)


def _cleanup_shares(server: FileServer, stop: threading.Event) -> None:
    while not stop.wait(CLEANUP_INTERVAL):
        for token in server.shared_links.remove_expired(datetime.now().astimezone()):
            log.debug("Expired shared link removed: %s", token)


def start(server: FileServer) -> None:
    """Serve the web interface until interrupted."""
    if not server.no_clipboard:
        server.clipboard = Clipboard()
    if server.silent:
        log.info("Serving in silent mode - no dir listing available at HTTP Listener")

    context = ssl_context(server)
    app = build_app(server)
    httpd = make_server(server.ip, server.port, app, threaded=True, ssl_context=context)

    stop = threading.Event()
    cleaner = threading.Thread(target=_cleanup_shares, args=(server, stop), daemon=True)
    cleaner.start()
    try:
        start_banner(server)
        drop_privileges(server)
        host, port = httpd.server_address[:2]
        _notify(server, f"[CORE] pyshs started on {host}:{port}", "started")
        httpd.serve_forever()
    finally:
        stop.set()
        httpd.server_close()