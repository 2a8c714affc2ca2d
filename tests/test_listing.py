import json
import os
from urllib.parse import unquote

import pytest

from pyshs.acl import AccessConfig
from pyshs.listing import Item, back_link, build_items, human_size, items_to_json


@pytest.fixture
def tree(tmp_path):
    (tmp_path / "beta.TXT").write_bytes(b"hello")
    (tmp_path / "Alpha.md").write_bytes(b"")
    (tmp_path / "gamma").mkdir()
    (tmp_path / ".goshs").write_text("{}")
    return tmp_path


def _by_name(items):
    return {item.name: item for item in items}


def test_names_sorted_case_insensitively(tree):
    items = build_items(tree, "/", AccessConfig())
    assert [item.name for item in items] == ["Alpha.md", "beta.TXT", "gamma/"]


def test_special_file_is_hidden(tree):
    names = [item.name for item in build_items(tree, "/", AccessConfig())]
    assert ".goshs" not in names


def test_directory_flags(tree):
    gamma = _by_name(build_items(tree, "/", AccessConfig()))["gamma/"]
    assert gamma.is_dir is True
    assert gamma.ext == ""


def test_extension_is_lowercased(tree):
    beta = _by_name(build_items(tree, "/", AccessConfig()))["beta.TXT"]
    assert beta.ext == ".txt"
    assert beta.is_dir is False


def test_size_fields(tree):
    beta = _by_name(build_items(tree, "/", AccessConfig()))["beta.TXT"]
    assert beta.sort_size == 5
    assert beta.display_size == human_size(5)


def test_blocked_names_removed(tree):
    acl = AccessConfig(block=["beta.TXT", "gamma/"])
    assert [item.name for item in build_items(tree, "/", acl)] == ["Alpha.md"]


def test_uri_is_single_escaped_segment(tmp_path):
    (tmp_path / "a b.txt").write_bytes(b"x")
    item = build_items(tmp_path, "/sub", AccessConfig())[0]
    assert unquote(item.uri) == "/sub/a b.txt"
    assert "/" not in item.uri
    assert " " not in item.uri


def test_flags_propagate(tree):
    items = build_items(tree, "/", AccessConfig(), read_only=True, no_delete=True, auth_enabled=True)
    flags = [(item.read_only, item.no_delete, item.auth_enabled) for item in items]
    assert flags == [(True, True, True)] * 3


def test_flags_default_off(tree):
    items = build_items(tree, "/", AccessConfig())
    flags = [(item.read_only, item.no_delete, item.auth_enabled) for item in items]
    assert flags == [(False, False, False)] * 3


def test_symlink_detected(tmp_path):
    target = tmp_path / "real.txt"
    target.write_bytes(b"data")
    os.symlink(target, tmp_path / "link.txt")
    link = _by_name(build_items(tmp_path, "/", AccessConfig()))["link.txt"]
    assert link.is_symlink is True
    assert link.symlink_target == str(target)


def test_last_modified_in_milliseconds(tmp_path):
    path = tmp_path / "f.bin"
    path.write_bytes(b"")
    mtime_ns = 1_600_000_000_123_000_000
    os.utime(path, ns=(mtime_ns, mtime_ns))
    item = build_items(tmp_path, "/", AccessConfig())[0]
    assert item.sort_last_modified == mtime_ns // 1_000_000
    assert str(os.path.getmtime(path)).startswith("1600000000")


def test_missing_directory_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        build_items(tmp_path / "nope", "/", AccessConfig())


def test_empty_listing_json():
    assert items_to_json([]) == b"[]"


def test_json_round_trip(tree):
    items = build_items(tree, "/", AccessConfig())
    decoded = json.loads(items_to_json(items))
    assert [entry["name"] for entry in decoded] == [item.name for item in items]
    assert [entry["size_bytes"] for entry in decoded] == [item.sort_size for item in items]


def test_json_keys():
    keys = set(Item(name="x").to_json())
    assert keys == {
        "name",
        "is_dir",
        "is_symlink",
        "symlink_target",
        "extension",
        "size_bytes",
        "last_modified",
        "ReadOnly",
        "NoDelete",
        "AuthEnabled",
    }


def test_json_escapes_html():
    encoded = items_to_json([Item(name="<a>&")])
    assert b"<" not in encoded and b"&" not in encoded
    assert json.loads(encoded)[0]["name"] == "<a>&"


@pytest.mark.parametrize("relpath", ["/", "\\"])
def test_back_link_at_root(relpath):
    assert back_link(relpath) == ""


def test_back_link_first_level():
    assert back_link("/docs") == "/"


def test_back_link_nested():
    assert back_link("/docs/img") == "/docs"


def test_human_size_bytes():
    assert human_size(999) == "999 B"


def test_human_size_units():
    assert human_size(1000) == "1.0 kB"
    assert human_size(1_500_000) == "1.5 MB"


@pytest.mark.parametrize("size", [0, 1, 500, 999])
def test_small_sizes_are_plain_bytes(size):
    assert human_size(size) == f"{size} B"