import io
import os
import time
import zipfile
from datetime import datetime, timezone

import pytest

from pyshs.updown import bulk_filename, bulk_zip, put_file, save_upload


class _BrokenStream:
    def read(self, size=-1):
        raise OSError("connection reset")


def test_put_file_writes_body(tmp_path):
    data = b"PUT TEST CONFIRMED"
    path = put_file(str(tmp_path), "/x.txt", io.BytesIO(data))
    assert path == f"{tmp_path}/x.txt"
    assert (tmp_path / "x.txt").read_bytes() == data


def test_put_file_into_subdirectory(tmp_path):
    (tmp_path / "sub").mkdir()
    put_file(str(tmp_path), "/sub/y.txt", io.BytesIO(b"abc"))
    assert (tmp_path / "sub" / "y.txt").read_bytes() == b"abc"


def test_put_file_overwrites(tmp_path):
    (tmp_path / "x.txt").write_bytes(b"a much longer old content")
    put_file(str(tmp_path), "/x.txt", io.BytesIO(b"new"))
    assert (tmp_path / "x.txt").read_bytes() == b"new"


def test_put_file_missing_directory(tmp_path):
    with pytest.raises(FileNotFoundError):
        put_file(str(tmp_path), "/missing/y.txt", io.BytesIO(b"abc"))


def test_save_upload_strips_directories(tmp_path):
    data = b"POST TEST CONFIRMED"
    path = save_upload(str(tmp_path), "/upload", "../../evil.txt", io.BytesIO(data))
    assert path == f"{tmp_path}/evil.txt"
    assert (tmp_path / "evil.txt").read_bytes() == data
    assert sorted(os.listdir(tmp_path)) == ["evil.txt"]


def test_save_upload_next_to_request_path(tmp_path):
    (tmp_path / "docs").mkdir()
    save_upload(str(tmp_path), "/docs/upload", "a.txt", io.BytesIO(b"x"))
    assert (tmp_path / "docs" / "a.txt").read_bytes() == b"x"


def test_save_upload_overwrites(tmp_path):
    (tmp_path / "a.txt").write_bytes(b"old old old")
    save_upload(str(tmp_path), "/upload", "a.txt", io.BytesIO(b"new"))
    assert (tmp_path / "a.txt").read_bytes() == b"new"


def test_save_upload_missing_directory(tmp_path):
    with pytest.raises(FileNotFoundError):
        save_upload(str(tmp_path), "/missing/upload", "a.txt", io.BytesIO(b"x"))
    assert os.listdir(tmp_path) == []


def test_save_upload_read_error_removes_temp(tmp_path):
    with pytest.raises(OSError):
        save_upload(str(tmp_path), "/upload", "a.txt", _BrokenStream())
    assert os.listdir(tmp_path) == []


def test_save_upload_empty_name(tmp_path):
    with pytest.raises(ValueError):
        save_upload(str(tmp_path), "/upload", "dir/", io.BytesIO(b"x"))


@pytest.fixture
def webroot(tmp_path):
    (tmp_path / "a.txt").write_bytes(b"alpha")
    (tmp_path / "dir").mkdir()
    (tmp_path / "dir" / "c.txt").write_bytes(b"gamma")
    (tmp_path / "dir" / "b.txt").write_bytes(b"beta")
    return tmp_path


def test_bulk_zip_files_and_directories(webroot):
    buffer = io.BytesIO()
    names = bulk_zip(str(webroot), ["%2Fa.txt", "%2Fdir"], buffer)
    assert names == ["a.txt", "dir/b.txt", "dir/c.txt"]
    with zipfile.ZipFile(io.BytesIO(buffer.getvalue())) as archive:
        assert archive.namelist() == names
        assert archive.read("a.txt") == b"alpha"
        assert archive.read("dir/b.txt") == b"beta"
        assert archive.read("dir/c.txt") == b"gamma"
        assert all(info.compress_type == zipfile.ZIP_DEFLATED for info in archive.infolist())


def test_bulk_zip_skips_traversal(webroot):
    buffer = io.BytesIO()
    names = bulk_zip(str(webroot / "dir"), ["%2F..%2Fa.txt"], buffer)
    assert names == []
    with zipfile.ZipFile(io.BytesIO(buffer.getvalue())) as archive:
        assert archive.namelist() == []


def test_bulk_zip_continues_after_missing(webroot):
    buffer = io.BytesIO()
    names = bulk_zip(str(webroot), ["%2Fnope.txt", "%2Fa.txt"], buffer)
    assert names == ["a.txt"]
    with zipfile.ZipFile(io.BytesIO(buffer.getvalue())) as archive:
        assert archive.read("a.txt") == b"alpha"


def test_bulk_zip_keeps_modification_time(webroot):
    moment = 1_600_000_000
    os.utime(webroot / "a.txt", (moment, moment))
    buffer = io.BytesIO()
    bulk_zip(str(webroot), ["%2Fa.txt"], buffer)
    with zipfile.ZipFile(io.BytesIO(buffer.getvalue())) as archive:
        assert archive.getinfo("a.txt").date_time == tuple(time.localtime(moment)[:6])


def test_bulk_filename_uses_unix_seconds():
    moment = datetime.fromtimestamp(1700000000, tz=timezone.utc)
    assert bulk_filename(moment) == "1700000000_goshs_download.zip"


def test_bulk_filename_wraps_like_int32():
    moment = datetime.fromtimestamp(2**31, tz=timezone.utc)
    assert bulk_filename(moment) == f"{-(2**31)}_goshs_download.zip"