"""Storing uploaded files and packing downloads into zip archives."""

from __future__ import annotations

import contextlib
import logging
import math
import os
import posixpath
import re
import shutil
import stat
import time
import zipfile
from datetime import datetime
from typing import BinaryIO, Iterable, Iterator
from urllib.parse import unquote_plus

from pyshs.options import CHUNK_SIZE

log = logging.getLogger(__name__)

_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


def _split_target(url_path: str) -> tuple[str, str]:
    parts = url_path.split("/")
    return "/".join(parts[:-1]), parts[-1]


def put_file(upload_folder: str, url_path: str, stream: BinaryIO) -> str:
    """Store a PUT body under the upload folder at the request path; return the path."""
    target, name = _split_target(url_path)
    save_path = f"{upload_folder}{target}/{name}"
    data = stream.read()
    with open(save_path, "wb") as handle:
        handle.write(data)
    return save_path


def save_upload(upload_folder: str, url_path: str, filename: str, stream: BinaryIO) -> str:
    """Store one uploaded file next to the request path; return the final path.

    Only the last component of the file name is used. Data goes to a
    temporary '~' file first, which is renamed once complete and removed
    on failure.
    """
    target, _ = _split_target(url_path)
    clean = filename.split("/")[-1]
    if not clean:
        raise ValueError(f"upload has no usable file name: {filename!r}")
    final_path = f"{upload_folder}{target}/{clean}"
    temp_path = final_path + "~"

    try:
        with open(temp_path, "wb") as dst:
            while chunk := stream.read(CHUNK_SIZE):
                dst.write(chunk)
            dst.flush()
            os.fsync(dst.fileno())
    except BaseException:
        with contextlib.suppress(OSError):
            os.remove(temp_path)
        raise

    os.replace(temp_path, final_path)
    return final_path


def _query_unescape(value: str) -> str:
    if _BAD_ESCAPE.search(value):
        return ""
    return unquote_plus(value)


def _join(*parts: str) -> str:
    joined = "/".join(part for part in parts if part)
    if not joined:
        return ""
    cleaned = posixpath.normpath(joined)
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def _walk(top: str) -> Iterator[tuple[str, os.stat_result]]:
    info = os.lstat(top)
    if not stat.S_ISDIR(info.st_mode):
        yield top, info
        return
    for name in sorted(os.listdir(top)):
        yield from _walk(os.path.join(top, name))


def _dos_time(mtime: float) -> tuple[int, int, int, int, int, int]:
    local = time.localtime(mtime)
    if local.tm_year < 1980:
        return (1980, 1, 1, 0, 0, 0)
    if local.tm_year > 2107:
        return (2107, 12, 31, 23, 59, 58)
    return tuple(local[:6])  # type: ignore[return-value]


def _add(archive: zipfile.ZipFile, path: str, name: str, info: os.stat_result) -> None:
    with open(path, "rb") as source:
        entry = zipfile.ZipInfo(name, date_time=_dos_time(info.st_mtime))
        entry.compress_type = zipfile.ZIP_DEFLATED
        entry.file_size = info.st_size
        with archive.open(entry, "w") as target:
            shutil.copyfileobj(source, target)


def bulk_zip(webroot: str, files: Iterable[str], fileobj: BinaryIO) -> list[str]:
    """Write the selected files and directory trees as a zip archive to fileobj.

    Each selection is URL-encoded relative to the webroot; selections
    containing '..' are skipped. A selection that fails is logged and the
    rest still archived. Returns the archive member names in order.
    """
    selections = [
        cleaned for cleaned in (_query_unescape(value) for value in files) if ".." not in cleaned
    ]
    names: list[str] = []
    with zipfile.ZipFile(fileobj, "w") as archive:
        for selection in selections:
            try:
                for path, info in _walk(_join(webroot, selection)):
                    name = path.replace(webroot, "")[1:]
                    _add(archive, path, name, info)
                    names.append(name)
            except OSError as exc:
                log.error("creating zip file: %s", exc)
    return names


def bulk_filename(now: datetime) -> str:
    """Name offered for a bulk download made at the given moment."""
    seconds = math.floor(now.timestamp())
    wrapped = (seconds + 2**31) % 2**32 - 2**31
    return f"{wrapped}_goshs_download.zip"