"""Directory listings: the entries shown for a directory and their JSON form."""

from __future__ import annotations

import json
import logging
import os
import posixpath
import stat
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from urllib.parse import quote

from pyshs.acl import SPECIAL_FILE, AccessConfig

log = logging.getLogger(__name__)

# Characters a URL path segment may carry unescaped besides the unreserved ones.
_PATH_SEGMENT_SAFE = "$&+:=@"

_HTML_ESCAPES = str.maketrans(
    {
        "<": "\\u003c",
        ">": "\\u003e",
        "&": "\\u0026",
        "\u2028": "\\u2028",
        "\u2029": "\\u2029",
    }
)


def human_size(size: int) -> str:
    """Format a byte count with decimal (power of 1000) units, e.g. '1.5 MB'."""
    unit = 1000
    if size < unit:
        return f"{size} B"
    divisor, exponent = unit, 0
    remaining = size // unit
    while remaining >= unit:
        divisor *= unit
        exponent += 1
        remaining //= unit
    return f"{size / divisor:.1f} {'kMGTPE'[exponent]}B"


def _extension(name: str) -> str:
    index = name.rfind(".")
    return "" if index < 0 else name[index:]


def _timestamp(moment: datetime) -> str:
    return f"{moment:%a %b} {moment.day:2d} {moment:%H:%M:%S %Y}"


def _join(*parts: str) -> str:
    joined = "/".join(part for part in parts if part)
    if not joined:
        return ""
    cleaned = posixpath.normpath(joined)
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


@dataclass
class Item:
    """One entry of a directory listing."""

    name: str
    uri: str = ""
    qr_code: str = ""
    is_dir: bool = False
    is_symlink: bool = False
    symlink_target: str = ""
    ext: str = ""
    display_size: str = ""
    sort_size: int = 0
    display_last_modified: str = ""
    sort_last_modified: int = 0
    read_only: bool = False
    no_delete: bool = False
    auth_enabled: bool = False

    def to_json(self) -> dict:
        """The fields exposed in JSON listings."""
        return {
            "name": self.name,
            "is_dir": self.is_dir,
            "is_symlink": self.is_symlink,
            "symlink_target": self.symlink_target,
            "extension": self.ext,
            "size_bytes": self.sort_size,
            "last_modified": self.sort_last_modified,
            "ReadOnly": self.read_only,
            "NoDelete": self.no_delete,
            "AuthEnabled": self.auth_enabled,
        }


def _make_item(
    directory: Path,
    entry_name: str,
    info: os.stat_result,
    relpath: str,
    read_only: bool,
    no_delete: bool,
    auth_enabled: bool,
) -> Item:
    item = Item(
        name=entry_name,
        ext=_extension(entry_name).lower(),
        uri=quote(_join(relpath, entry_name), safe=_PATH_SEGMENT_SAFE),
        auth_enabled=auth_enabled,
        display_size=human_size(info.st_size),
        sort_size=info.st_size,
        display_last_modified=_timestamp(datetime.fromtimestamp(info.st_mtime)),
        sort_last_modified=info.st_mtime_ns // 1_000_000,
        read_only=read_only,
        no_delete=no_delete,
    )
    if stat.S_ISDIR(info.st_mode):
        item.name += "/"
        item.is_dir = True
        item.ext = ""
    if stat.S_ISLNK(info.st_mode):
        item.is_symlink = True
        try:
            item.symlink_target = os.readlink(directory / entry_name)
        except OSError as exc:
            log.error("resolving symlink: %s", exc)
    return item


def _remove_item(items: list[Item], name: str) -> None:
    if not items:
        return
    index = 0
    for position, item in enumerate(items):
        if item.name == name:
            index = position
    del items[index]


def build_items(
    directory: str | Path,
    relpath: str,
    acl: AccessConfig,
    read_only: bool = False,
    no_delete: bool = False,
    auth_enabled: bool = False,
) -> list[Item]:
    """List a directory as items sorted by lower-cased name.

    The access file itself and the names the ACL blocks are left out;
    directories carry a trailing '/'. Raises OSError if the directory
    cannot be read.
    """
    folder = Path(directory)
    items: list[Item] = []
    with os.scandir(folder) as entries:
        for entry in entries:
            if entry.name == SPECIAL_FILE:
                log.debug("%s detected and therefore applying", SPECIAL_FILE)
                continue
            info = entry.stat(follow_symlinks=False)
            items.append(
                _make_item(folder, entry.name, info, relpath, read_only, no_delete, auth_enabled)
            )

    for name in acl.block:
        _remove_item(items, name)

    items.sort(key=lambda item: item.name.lower())
    return items


def items_to_json(items: list[Item]) -> bytes:
    """Encode items as a compact JSON array."""
    text = json.dumps(
        [item.to_json() for item in items], separators=(",", ":"), ensure_ascii=False
    )
    return text.translate(_HTML_ESCAPES).encode("utf-8")


def back_link(relpath: str) -> str:
    """Path of the parent directory for the 'back' link; '' at the root."""
    if relpath in ("/", "\\"):
        return ""
    parts = relpath.split("/")
    if len(parts) > 2:
        return "".join("/" + part for part in parts[1:-1])
    return "/"