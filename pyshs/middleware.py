"""WSGI middleware for auth, headers and address filtering, and a small router."""

from __future__ import annotations

import base64
import binascii
import ipaddress
import logging
import posixpath
import threading
from dataclasses import dataclass
from typing import Any, Callable, Container, Iterable, Mapping, Optional
from urllib.parse import parse_qsl

from werkzeug.datastructures import EnvironHeaders

from pyshs.acl import check_password_hash
from pyshs.whitelist import Whitelist

log = logging.getLogger(__name__)

WSGIApp = Callable[[dict, Callable[..., Any]], Iterable[bytes]]
Middleware = Callable[[WSGIApp], WSGIApp]

_REALM = 'Basic realm="Restricted"'


def _plain_response(
    start_response: Callable[..., Any],
    status: str,
    message: str,
    extra: Iterable[tuple[str, str]] = (),
) -> list[bytes]:
    body = (message + "\n").encode()
    headers = [
        ("Content-Type", "text/plain; charset=utf-8"),
        ("X-Content-Type-Options", "nosniff"),
        ("Content-Length", str(len(body))),
        *extra,
    ]
    start_response(status, headers)
    return [body]


def _with_header(start_response: Callable[..., Any], name: str, value: str) -> Callable[..., Any]:
    """Wrap start_response so the header is added unless the app set it."""

    def wrapped(status: str, headers: list[tuple[str, str]], exc_info: Any = None) -> Any:
        if not any(key.lower() == name.lower() for key, _ in headers):
            headers = [*headers, (name, value)]
        return start_response(status, headers, exc_info)

    return wrapped


def _query_value(environ: dict, name: str) -> str:
    for key, value in parse_qsl(environ.get("QUERY_STRING", ""), keep_blank_values=True):
        if key == name:
            return value
    return ""


def _header(headers: Mapping[str, str], name: str) -> str:
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return ""


def _split_host(address: str) -> Optional[str]:
    if address.startswith("["):
        end = address.find("]")
        if end < 0 or not address[end + 1 :].startswith(":"):
            return None
        return address[1:end]
    index = address.rfind(":")
    if index < 0:
        return None
    host = address[:index]
    if ":" in host:
        return None
    return host


def _is_ip(text: str) -> bool:
    try:
        ipaddress.ip_address(text)
    except ValueError:
        return False
    return True


def _remote_addr(environ: dict) -> str:
    address = environ.get("REMOTE_ADDR", "")
    port = environ.get("REMOTE_PORT", "")
    if not port:
        return address
    if ":" in address:
        return f"[{address}]:{port}"
    return f"{address}:{port}"


def get_client_ip(remote_addr: str, headers: Mapping[str, str], whitelist: Whitelist) -> str:
    """Return the client address, honouring forwarding headers from trusted proxies.

    remote_addr may be "host:port" or a bare address; anything else is
    returned unchanged.
    """
    host = _split_host(remote_addr)
    if host is None:
        if not _is_ip(remote_addr):
            return remote_addr
        host = remote_addr

    if whitelist.is_trusted_proxy(host):
        forwarded = _header(headers, "X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        real_ip = _header(headers, "X-Real-IP")
        if real_ip:
            return real_ip

    return host


def _basic_credentials(value: str) -> Optional[tuple[str, str]]:
    try:
        decoded = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return None
    text = decoded.decode("utf-8", "surrogateescape")
    if ":" not in text:
        return None
    username, _, given = text.partition(":")
    return username, given


def basic_auth_middleware(
    app: WSGIApp, user: str, password: str, shares: Container[str]
) -> WSGIApp:
    """Require HTTP basic auth, except for requests carrying a known share token.

    A password starting with "$2a$" is treated as a bcrypt hash. Accepted
    Authorization values are cached so the hash is checked only once.
    """
    accepted: set[str] = set()
    lock = threading.Lock()

    def verify(value: str) -> bool:
        credentials = _basic_credentials(value)
        if credentials is None:
            return False
        username, given = credentials
        if username != user:
            return False
        if password.startswith("$2a$"):
            return check_password_hash(given, password)
        return given == password

    def middleware(environ: dict, start_response: Callable[..., Any]) -> Iterable[bytes]:
        token = _query_value(environ, "token")
        if token and token in shares:
            return app(environ, start_response)

        respond = _with_header(start_response, "WWW-Authenticate", _REALM)
        auth = environ.get("HTTP_AUTHORIZATION", "")
        if not auth.startswith("Basic "):
            return _plain_response(respond, "401 Unauthorized", "Not authorized")

        value = auth[len("Basic ") :]
        with lock:
            cached = value in accepted
        if cached:
            return app(environ, respond)

        if not verify(value):
            return _plain_response(respond, "401 Unauthorized", "Not authorized")

        with lock:
            accepted.add(value)
        return app(environ, respond)

    return middleware


def server_header_middleware(app: WSGIApp, header: str) -> WSGIApp:
    """Add a Server header to every response that does not set one."""

    def middleware(environ: dict, start_response: Callable[..., Any]) -> Iterable[bytes]:
        return app(environ, _with_header(start_response, "Server", header))

    return middleware


def ip_whitelist_middleware(app: WSGIApp, whitelist: Whitelist) -> WSGIApp:
    """Answer 403 to clients whose address the whitelist does not allow."""

    def middleware(environ: dict, start_response: Callable[..., Any]) -> Iterable[bytes]:
        client_ip = get_client_ip(_remote_addr(environ), EnvironHeaders(environ), whitelist)
        if not whitelist.is_allowed(client_ip):
            log.warning("[WHITELIST] Access denied for IP: %s", client_ip)
            return _plain_response(start_response, "403 Forbidden", "Access Denied")
        return app(environ, start_response)

    return middleware


def _clean_path(path: str) -> str:
    if not path:
        return "/"
    if not path.startswith("/"):
        path = "/" + path
    cleaned = posixpath.normpath(path)
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    if path.endswith("/") and cleaned != "/":
        cleaned += "/"
    return cleaned


@dataclass
class _Route:
    method: Optional[str]
    pattern: str
    handler: WSGIApp

    def matches_path(self, path: str) -> bool:
        if self.pattern.endswith("/"):
            return path.startswith(self.pattern)
        return path == self.pattern

    def matches_method(self, method: str) -> bool:
        if self.method is None or self.method == method:
            return True
        return self.method == "GET" and method == "HEAD"


class CustomMux:
    """Router applying the middleware registered so far to each new route."""

    def __init__(self) -> None:
        self._middleware: list[Middleware] = []
        self._routes: list[_Route] = []

    def use(self, middleware: Middleware) -> None:
        """Register middleware for routes added afterwards; first is outermost."""
        self._middleware.append(middleware)

    def handle(self, method: Optional[str], prefix: str, handler: WSGIApp) -> None:
        """Route a method (None for any) and path to a handler.

        A path ending in '/' matches everything below it, otherwise only itself.
        """
        if not prefix.startswith("/"):
            raise ValueError(f"pattern must start with '/': {prefix!r}")
        method = method.upper() if method else None
        if any(r.method == method and r.pattern == prefix for r in self._routes):
            raise ValueError(f"pattern already registered: {method or ''} {prefix}".strip())
        final = handler
        for middleware in reversed(self._middleware):
            final = middleware(final)
        self._routes.append(_Route(method, prefix, final))

    def __call__(self, environ: dict, start_response: Callable[..., Any]) -> Iterable[bytes]:
        path = environ.get("PATH_INFO") or "/"
        method = environ.get("REQUEST_METHOD", "GET").upper()

        cleaned = _clean_path(path)
        if cleaned != path and method != "CONNECT":
            query = environ.get("QUERY_STRING", "")
            location = cleaned + ("?" + query if query else "")
            return _plain_response(
                start_response,
                "301 Moved Permanently",
                "Moved Permanently",
                [("Location", location)],
            )

        matches = [route for route in self._routes if route.matches_path(path)]
        allowed = [route for route in matches if route.matches_method(method)]
        if not allowed:
            if matches:
                methods = set()
                for route in matches:
                    if route.method:
                        methods.add(route.method)
                        if route.method == "GET":
                            methods.add("HEAD")
                return _plain_response(
                    start_response,
                    "405 Method Not Allowed",
                    "Method Not Allowed",
                    [("Allow", ", ".join(sorted(methods)))],
                )
            return _plain_response(start_response, "404 Not Found", "404 page not found")

        route = max(
            allowed,
            key=lambda r: (len(r.pattern), r.method is not None, r.method == method),
        )
        return route.handler(environ, start_response)