"""Settings and shared state of a running file server."""

from __future__ import annotations

import platform
from dataclasses import dataclass, field
from typing import Callable, Optional

from pyshs.clipboard import Clipboard
from pyshs.config import VERSION
from pyshs.sharing import ShareStore
from pyshs.whitelist import Whitelist

MODE_WEB = "web"
MODE_WEBDAV = "webdav"
CHUNK_SIZE = 16 << 24


@dataclass
class FileServer:
    """Everything a server instance needs to serve a directory."""

    ip: str = "0.0.0.0"
    port: int = 8000
    cli: bool = False
    webdav_port: int = 8001
    webroot: str = "."
    upload_folder: str = "."
    ssl: bool = False
    self_signed: bool = False
    lets_encrypt: bool = False
    my_key: str = ""
    my_cert: str = ""
    my_p12: str = ""
    p12_no_pass: bool = False
    user: str = ""
    password: str = ""
    ca_cert: str = ""
    drop_user: str = ""
    version: str = VERSION
    fingerprint256: str = ""
    fingerprint1: str = ""
    upload_only: bool = False
    read_only: bool = False
    no_clipboard: bool = False
    no_delete: bool = False
    silent: bool = False
    embedded: bool = False
    verbose: bool = False
    webhook: Optional[Callable[[str, str], None]] = None
    clipboard: Optional[Clipboard] = None
    whitelist: Whitelist = field(default_factory=Whitelist)
    shared_links: ShareStore = field(default_factory=ShareStore)

    def auth_enabled(self) -> bool:
        """Whether password or client-certificate auth is on (share links need it)."""
        return self.password != "" or self.ca_cert != ""

    def server_header(self) -> str:
        """Value of the Server response header."""
        return (
            f"pyshs/{self.version} "
            f"({platform.system().lower()}; python{platform.python_version()})"
        )