"""The web handler: listings, file delivery, uploads, deletion, shares and clipboard."""

from __future__ import annotations

import html
import json
import logging
import math
import mimetypes
import os
import posixpath
import re
import shutil
import socket
import stat
import tempfile
from datetime import datetime, timedelta
from email.utils import formatdate
from pathlib import Path
from typing import Iterable, Optional
from urllib.parse import quote, unquote, unquote_plus

from werkzeug.utils import redirect
from werkzeug.wrappers import Request, Response
from werkzeug.wsgi import wrap_file

from pyshs.acl import SPECIAL_FILE, AccessConfig, find_special_file
from pyshs.clipboard import Clipboard
from pyshs.listing import Item, back_link, build_items, items_to_json
from pyshs.options import FileServer
from pyshs.sharing import (
    DownloadEntry,
    SharedLink,
    download_limit_display,
    format_time,
    generate_token,
)
from pyshs.updown import bulk_filename, bulk_zip, put_file, save_upload

log = logging.getLogger(__name__)

_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_INTEGER = re.compile(r"[+-]?[0-9]+")
_PATH_SEGMENT_SAFE = "$&+:=@"
_FILEBASED_REALM = 'Basic realm="Filebased Restricted"'
_SPOOL_SIZE = 16 << 20
_DEFAULT_SHARE_SECONDS = 3600


def _now() -> datetime:
    return datetime.now().astimezone()


def _clean(path: str) -> str:
    if not path:
        return "."
    cleaned = posixpath.normpath(path)
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def _join(*parts: str) -> str:
    joined = "/".join(part for part in parts if part)
    return _clean(joined) if joined else ""


def _extension(name: str) -> str:
    index = name.rfind(".")
    return "" if index < 0 else name[index:]


def _mime(name: str) -> str:
    return mimetypes.guess_type(name)[0] or "application/octet-stream"


def _int32_seconds(moment: datetime) -> int:
    seconds = math.floor(moment.timestamp())
    return (seconds + 2**31) % 2**32 - 2**31


def _atoi(text: str) -> int:
    if not _INTEGER.fullmatch(text):
        raise ValueError(f"invalid integer: {text!r}")
    return int(text)


def _plain(message: str, status: int, headers: Iterable[tuple[str, str]] = ()) -> Response:
    response = Response(message + "\n", status=status, mimetype="text/plain")
    response.headers["X-Content-Type-Options"] = "nosniff"
    for name, value in headers:
        response.headers[name] = value
    return response


def _not_found() -> Response:
    return _plain("404 page not found", 404)


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


def _page(title: str, body: str, version: str) -> str:
    return (
        "<!DOCTYPE html>\n<html>\n<head>\n<meta charset=\"utf-8\">\n"
        f"<title>{html.escape(title)}</title>\n</head>\n<body>\n{body}\n"
        f"<footer>pyshs {html.escape(version)}</footer>\n</body>\n</html>\n"
    )


def _href(uri: str) -> str:
    return quote(unquote(uri), safe="/")


class FileServerApp:
    """WSGI application serving a FileServer's webroot."""

    def __init__(
        self,
        server: FileServer,
        static_dir: Optional[str | Path] = None,
        embedded_dir: Optional[str | Path] = None,
    ) -> None:
        self.server = server
        self.static_dir = Path(static_dir) if static_dir is not None else None
        self.embedded_dir = Path(embedded_dir) if embedded_dir is not None else None

    # -- entry points -------------------------------------------------------

    def dispatch(self, request: Request) -> Response:
        """Answer one request: POST /upload, other POSTs, PUT, or everything else."""
        if request.method == "POST":
            if request.path == "/upload":
                return self._upload(request)
            return self._log_only(request)
        if request.method == "PUT":
            return self._put(request)
        return self._handle(request)

    def __call__(self, environ: dict, start_response) -> Iterable[bytes]:
        response = self.dispatch(Request(environ))
        return response(environ, start_response)

    # -- logging and errors -------------------------------------------------

    def _log_request(self, request: Request, status: int) -> None:
        query = request.query_string.decode("latin-1")
        target = request.path + (f"?{query}" if query else "")
        protocol = request.environ.get("SERVER_PROTOCOL", "HTTP/1.1")
        log.info(
            '%s - - "%s %s %s" - %d',
            request.remote_addr or "-",
            request.method,
            target,
            protocol,
            status,
        )
        if self.server.verbose:
            for name, value in request.headers.items():
                log.info("    %s: %s", name, value)

    def _notify(self, message: str, event: str) -> None:
        if self.server.webhook is None:
            return
        try:
            self.server.webhook(message, event)
        except Exception as exc:  # a failing webhook must not break a request
            log.error("error sending webhook message: %s", exc)

    def _error(
        self,
        request: Request,
        message: str,
        status: int,
        headers: Iterable[tuple[str, str]] = (),
    ) -> Response:
        self._log_request(request, status)
        abs_path = _join(self.server.webroot, request.path)
        body = (
            f"<h1>{status}</h1>\n<p>{html.escape(message)}</p>\n"
            f"<p>{html.escape(abs_path)}</p>"
        )
        response = Response(
            _page(f"{status} - {abs_path}", body, self.server.version),
            status=status,
            mimetype="text/html",
        )
        for name, value in headers:
            response.headers[name] = value
        return response

    # -- simple POST and PUT ------------------------------------------------

    def _log_only(self, request: Request) -> Response:
        self._log_request(request, 200)
        return Response(b"ok\n", status=200)

    def _put(self, request: Request) -> Response:
        if self.server.read_only:
            return self._error(request, "Upload not allowed due to 'read only' option", 403)
        try:
            put_file(self.server.upload_folder, request.path, request.stream)
        except OSError as exc:
            log.error("Not able to create file on disk: %s", exc)
            return self._error(request, str(exc), 500)
        self._log_request(request, 200)
        return Response(b"", status=200)

    def _upload(self, request: Request) -> Response:
        if self.server.read_only:
            return self._error(request, "Upload not allowed due to 'read only' option", 403)
        target = "/".join(request.path.split("/")[:-1])
        if not request.mimetype.startswith("multipart/"):
            log.error("reading multipart request: not a multipart request")
            return self._error(request, "request is not a multipart upload", 400)

        for _, storage in request.files.items(multi=True):
            if not storage.filename:
                continue
            try:
                final_path = save_upload(
                    self.server.upload_folder, request.path, storage.filename, storage.stream
                )
            except (OSError, ValueError) as exc:
                log.error("storing uploaded file: %s", exc)
                return self._error(request, str(exc), 500)
            self._notify(f"[WEB] File uploaded: {final_path}", "upload")

        self._log_request(request, 200)
        return redirect(target or "/", code=303)

    # -- GET and friends ----------------------------------------------------

    def _handle(self, request: Request) -> Response:
        early = self._early_break(request)
        if early is not None:
            return early

        as_json = "json" in request.args
        if request.path == "/favicon.ico":
            return Response(b"", status=200)

        upath = _clean(request.path)
        target = self.server.webroot + upath
        try:
            info = os.stat(target)
        except FileNotFoundError:
            return self._error(request, f"open {target}: no such file or directory", 404)
        except PermissionError:
            return self._error(request, f"open {target}: permission denied", 500)
        except OSError as exc:
            log.info("%s", exc)
            return Response(b"", status=200)

        self._log_request(request, 200)
        if stat.S_ISDIR(info.st_mode):
            return self._do_dir(request, target, upath, as_json)
        return self._send_file(request, target, self._find_acl(os.path.dirname(target)))

    def _early_break(self, request: Request) -> Optional[Response]:
        args = request.args
        server = self.server
        if "ws" in args:
            return self._error(request, "websocket connections are not available", 501)
        if "cbDown" in args and not server.no_clipboard:
            return self._clipboard_download(request)
        if "bulk" in args:
            return self._bulk_download(request, args.getlist("file"))
        if "static" in args:
            return self._static(request)
        if "embedded" in args:
            return self._embedded(request)
        if "delete" in args:
            if server.read_only or server.upload_only or server.no_delete:
                return self._error(request, "delete not allowed", 403)
            return self._delete(request)
        if "share" in args:
            return self._create_share(request)
        if "token" in args:
            if request.method == "GET":
                return self._share(request)
            if request.method == "DELETE":
                return self._delete_share(request)
            return Response(b"", status=200)
        return None

    def _find_acl(self, folder: str) -> AccessConfig:
        try:
            return find_special_file(folder or ".")
        except (OSError, ValueError) as exc:
            log.error("error reading file based access config: %s", exc)
            return AccessConfig()

    def _acl_denied(self, request: Request, acl: AccessConfig) -> Optional[Response]:
        if not acl.auth:
            return None
        auth = request.authorization
        ok = (
            auth is not None
            and auth.type == "basic"
            and auth.username is not None
            and auth.password is not None
            and acl.check_auth(auth.username, auth.password)
        )
        if ok:
            return None
        return self._error(
            request, "not authorized", 401, [("WWW-Authenticate", _FILEBASED_REALM)]
        )

    def _do_dir(self, request: Request, target: str, upath: str, as_json: bool) -> Response:
        parent_config = self._find_acl(os.path.dirname(target))
        folder_name = os.path.basename(target)
        if parent_config.is_blocked(f"{folder_name}/"):
            return self._error(request, f"open {target}: no such file or directory", 404)
        return self._process_dir(request, target, upath, as_json, self._find_acl(target))

    def _process_dir(
        self, request: Request, target: str, upath: str, as_json: bool, acl: AccessConfig
    ) -> Response:
        server = self.server
        relpath = upath.lstrip("\\")

        denied = self._acl_denied(request, acl)
        if denied is not None:
            return denied

        try:
            items = build_items(
                target,
                relpath,
                acl,
                read_only=server.read_only,
                no_delete=server.no_delete,
                auth_enabled=server.auth_enabled(),
            )
        except OSError as exc:
            return self._error(request, str(exc), 404)

        if as_json:
            return Response(items_to_json(items), status=200, mimetype="application/json")

        if server.silent:
            body = "<h1>silent mode</h1>\n<p>Directory listing is disabled.</p>"
            return Response(_page("silent mode", body, server.version), mimetype="text/html")

        page = self._render_listing(relpath, items, self._embedded_items())
        return Response(page, mimetype="text/html")

    def _send_file(self, request: Request, path: str, acl: AccessConfig) -> Response:
        server = self.server
        if server.upload_only:
            return self._error(
                request, "Download not allowed due to 'upload only' option", 403
            )

        denied = self._acl_denied(request, acl)
        if denied is not None:
            return denied

        filename = request.path.split("/")[-1]
        if filename == SPECIAL_FILE or acl.is_blocked(filename):
            return self._error(request, f"open {path}: no such file or directory", 404)

        try:
            handle = open(path, "rb")
        except PermissionError as exc:
            return self._error(request, str(exc), 500)
        except OSError as exc:
            log.error("error opening file: %s", exc)
            return self._error(request, f"open {path}: no such file or directory", 404)

        info = os.fstat(handle.fileno())
        name = os.path.basename(path)
        shown_path = _join(server.webroot, request.path)
        body = wrap_file(request.environ, handle)

        if "download" in request.args:
            modified = formatdate(info.st_mtime, localtime=True)
            response = Response(
                body, content_type="application/octet-stream", direct_passthrough=True
            )
            response.headers["Content-Disposition"] = (
                f'attachment; filename="{name}"; modification-date="{modified}"'
            )
            response.content_length = info.st_size
            self._notify(f"[WEB] File downloaded: {shown_path}", "download")
            return response

        response = Response(body, content_type=_mime(name), direct_passthrough=True)
        response.headers["Last-Modified"] = formatdate(info.st_mtime, usegmt=True)
        response.content_length = info.st_size
        self._notify(f"[WEB] File viewed: {shown_path}", "view")
        return response

    # -- assets -------------------------------------------------------------

    def _read_asset(self, base: Optional[Path], request_path: str) -> Optional[bytes]:
        if base is None:
            return None
        relative = _clean("/" + request_path.lstrip("/")).lstrip("/")
        try:
            return (base / relative).read_bytes()
        except OSError:
            return None

    def _static(self, request: Request) -> Response:
        data = self._read_asset(self.static_dir, request.path)
        if data is None:
            log.error("static file: %s cannot be loaded", request.path)
            data = b""
        return Response(data, content_type=_mime(request.path))

    def _embedded(self, request: Request) -> Response:
        data = self._read_asset(self.embedded_dir, request.path)
        if data is None:
            log.error("embedded file: %s cannot be loaded", request.path)
            self._log_request(request, 404)
            return Response(b"", status=404)
        self._log_request(request, 200)
        return Response(data, content_type=_mime(request.path))

    def _embedded_items(self) -> list[Item]:
        base = self.embedded_dir
        if base is None or not base.is_dir():
            return []
        files = sorted(
            (path for path in base.rglob("*") if path.is_file()),
            key=lambda path: path.relative_to(base).parts,
        )
        items = []
        for path in files:
            escaped = quote("embedded/" + path.relative_to(base).as_posix(), safe=_PATH_SEGMENT_SAFE)
            stripped = escaped[len("embedded"):]
            uri = stripped[3:] if stripped.startswith("%2F") else stripped
            items.append(
                Item(
                    name=stripped.replace("%2F", "/"),
                    ext=_extension(path.name).lower(),
                    uri=f"{uri}?embedded",
                )
            )
        return items

    # -- clipboard, bulk, delete --------------------------------------------

    def _clipboard_download(self, request: Request) -> Response:
        clipboard = self.server.clipboard if self.server.clipboard is not None else Clipboard()
        filename = f"{_int32_seconds(_now())}-clipboard.json"
        response = Response(clipboard.download(), content_type="application/octet-stream")
        response.headers["Content-Disposition"] = f'attachment; filename="{filename}"'
        return response

    def _bulk_download(self, request: Request, files: list[str]) -> Response:
        if self.server.upload_only:
            return self._error(
                request, "Bulk download not allowed due to 'upload only' option", 403
            )
        if not files:
            return self._error(
                request,
                "you need to select a file before you can download a zip archive",
                404,
            )

        spool = tempfile.SpooledTemporaryFile(max_size=_SPOOL_SIZE)
        bulk_zip(self.server.webroot, files, spool)
        spool.seek(0)

        response = Response(
            wrap_file(request.environ, spool),
            content_type="application/zip",
            direct_passthrough=True,
        )
        response.headers["Content-Disposition"] = (
            f'attachment; filename="{bulk_filename(_now())}"'
        )
        response.headers["Content-Transfer-Encoding"] = "binary"
        response.headers["Expires"] = "0"
        self._log_request(request, 200)
        return response

    def _delete(self, request: Request) -> Response:
        upath = _clean(request.path)
        if _BAD_ESCAPE.search(upath) or ".." in unquote_plus(upath):
            return Response(b"Cannot delete file", status=500)
        delete_path = _join(self.server.webroot, unquote_plus(upath))
        try:
            if os.path.isdir(delete_path) and not os.path.islink(delete_path):
                shutil.rmtree(delete_path)
            else:
                os.remove(delete_path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            log.warning("error removing %s: %s", delete_path, exc)

        self._notify(f"[WEB] File deleted: {delete_path}", "delete")
        self._log_request(request, 205)
        return Response(b"", status=200)

    # -- shares -------------------------------------------------------------

    def _create_share(self, request: Request) -> Response:
        server = self.server
        if not server.auth_enabled():
            self._log_request(request, 403)
            return _plain("Sharing disabled when auth is disabled", 403)

        upath = _clean(request.path)
        now = _now()

        expires_values = request.args.getlist("expires")
        seconds = _DEFAULT_SHARE_SECONDS
        if expires_values:
            try:
                seconds = _atoi(expires_values[0])
            except ValueError:
                self._log_request(request, 400)
                return _plain("expires needs to be integer in seconds", 400)

        limit_values = request.args.getlist("limit")
        limit = 1
        if limit_values:
            try:
                limit = _atoi(limit_values[0])
            except ValueError:
                self._log_request(request, 400)
                return _plain("limit needs to be integer", 400)

        file_path = _join(server.webroot, upath)
        try:
            info = os.stat(file_path)
        except OSError:
            log.error("cannot get stat information for file: %s", file_path)
            return _plain("cannot get stat information for file", 400)

        token = generate_token()
        addresses = _interface_addresses() if server.ip == "0.0.0.0" else {"0": "0.0.0.0"}
        protocol = "https://" if server.ssl else "http://"
        port = "" if server.port in (80, 443) else f":{server.port}"

        urls = [f"{protocol}{ip}{port}{upath}?token={token}" for ip in addresses.values()]
        link = SharedLink(
            file_path=upath,
            is_dir=stat.S_ISDIR(info.st_mode),
            expires=now + timedelta(seconds=seconds),
            download_limit=limit,
            download_entries=[DownloadEntry(download_url=url) for url in urls],
        )
        server.shared_links.add(token, link)

        self._log_request(request, 200)
        log.debug("A file was shared: %s", urls[0])
        payload = json.dumps({"urls": urls}) + "\n"
        return Response(payload, status=200, mimetype="application/json")

    def _share(self, request: Request) -> Response:
        token = request.args.get("token", "")
        store = self.server.shared_links
        if store.get(token, _now()) is None:
            return _not_found()
        link = store.consume(token)
        if link is None:
            return _not_found()
        if link.is_dir:
            return self._bulk_download(request, [link.file_path])
        return self._send_file(
            request, _join(self.server.webroot, link.file_path), AccessConfig()
        )

    def _delete_share(self, request: Request) -> Response:
        self.server.shared_links.remove(request.args.get("token", ""))
        self._log_request(request, 204)
        return Response(status=204)

    # -- listing page -------------------------------------------------------

    def _render_listing(self, relpath: str, items: list[Item], embedded: list[Item]) -> str:
        server = self.server
        if relpath == "\\":
            relpath = "/"
        abs_path = _join(server.webroot, relpath)
        back = back_link(relpath)
        if server.upload_only:
            items, embedded, abs_path, back = [], [], "", ""

        esc = html.escape
        parts = [f"<h1>{esc(abs_path)}</h1>"]
        if back:
            parts.append(f'<p><a href="{esc(back)}">..</a></p>')

        rows = []
        for item in items:
            href = esc(_href(item.uri))
            actions = [f'<a href="{href}?download">download</a>']
            if not (item.read_only or item.no_delete):
                actions.append(f'<a href="{href}?delete">delete</a>')
            if item.auth_enabled:
                actions.append(f'<a href="{href}?share">share</a>')
            target = f" -&gt; {esc(item.symlink_target)}" if item.is_symlink else ""
            rows.append(
                f'<tr><td><a href="{href}">{esc(item.name)}</a>{target}</td>'
                f"<td>{esc(item.display_size)}</td>"
                f"<td>{esc(item.display_last_modified)}</td>"
                f"<td>{' '.join(actions)}</td></tr>"
            )
        parts.append(
            "<table>\n<tr><th>Name</th><th>Size</th><th>Modified</th><th></th></tr>\n"
            + "\n".join(rows)
            + "\n</table>"
        )

        if not server.read_only:
            parts.append(
                '<form action="/upload" method="post" enctype="multipart/form-data">'
                '<input type="file" name="files" multiple>'
                '<input type="submit" value="Upload"></form>'
            )

        if not server.no_clipboard:
            entries = server.clipboard.entries if server.clipboard is not None else []
            listed = "\n".join(
                f"<li>{esc(entry.time)}: <pre>{esc(entry.content)}</pre></li>"
                for entry in entries
            )
            parts.append(
                f'<h1>Clipboard</h1>\n<ul>\n{listed}\n</ul>\n<a href="/?cbDown">download</a>'
            )

        if server.embedded and embedded:
            listed = "\n".join(
                f'<li><a href="/{esc(item.uri)}">{esc(item.name)}</a></li>' for item in embedded
            )
            parts.append(f"<h1>Embedded</h1>\n<ul>\n{listed}\n</ul>")

        if server.auth_enabled():
            shares = "\n".join(
                f"<tr><td>{esc(link.file_path)}</td>"
                f"<td>{esc(format_time(link.expires))}</td>"
                f"<td>{esc(download_limit_display(link.download_limit))}</td>"
                f"<td>{'<br>'.join(esc(e.download_url) for e in link.download_entries)}</td></tr>"
                for _, link in server.shared_links
            )
            parts.append(
                "<h1>Shared links</h1>\n<table>\n<tr><th>Path</th><th>Expires</th>"
                f"<th>Downloads left</th><th>URLs</th></tr>\n{shares}\n</table>"
            )

        return _page(abs_path or "pyshs", "\n".join(parts), server.version)