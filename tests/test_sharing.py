import re
from datetime import datetime, timedelta, timezone

from pyshs.sharing import (
    DownloadEntry,
    SharedLink,
    ShareStore,
    download_limit_display,
    format_time,
    generate_token,
)

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _link(limit=1, expires=NOW + timedelta(hours=1)):
    return SharedLink(
        file_path="/a.txt",
        is_dir=False,
        expires=expires,
        download_limit=limit,
        download_entries=[DownloadEntry(download_url="http://localhost/a.txt?token=token")],
    )


def test_generate_token_shape():
    first = generate_token()
    assert len(first) == 22
    assert re.fullmatch(r"[A-Za-z0-9_-]+", first)
    assert first != generate_token() or first != generate_token()


def test_download_limit_display():
    assert download_limit_display(-1) == "disabled"
    assert download_limit_display(3) == "3"


def test_format_time_naive_local():
    assert format_time(datetime(2024, 5, 6, 7, 8, 9)) == "2024-05-06 07:08:09"


def test_add_and_get():
    store = ShareStore()
    link = _link()
    store.add("token", link)
    assert "token" in store
    assert store.get("token", NOW) == link
    assert store.get("unknown", NOW) is None


def test_get_expired_is_none():
    store = ShareStore()
    store.add("token", _link(expires=NOW - timedelta(seconds=1)))
    assert store.get("token", NOW) is None


def test_consume_single_download_removes_link():
    store = ShareStore()
    store.add("token", _link(limit=1))
    consumed = store.consume("token")
    assert consumed.download_limit == 0
    assert "token" not in store
    assert store.consume("token") is None


def test_consume_counts_down():
    store = ShareStore()
    store.add("token", _link(limit=2))
    assert store.consume("token").download_limit == 1
    assert "token" in store
    assert store.consume("token").download_limit == 0
    assert len(store) == 0


def test_consume_unlimited_stays():
    store = ShareStore()
    store.add("token", _link(limit=-1))
    for _ in range(3):
        assert store.consume("token").download_limit == -1
    assert "token" in store


def test_consume_exhausted_link_refused_and_kept():
    store = ShareStore()
    store.add("token", _link(limit=0))
    assert store.consume("token") is None
    assert "token" in store


def test_remove():
    store = ShareStore()
    store.add("token", _link())
    store.remove("token")
    store.remove("token")
    assert len(store) == 0


def test_remove_expired():
    store = ShareStore()
    store.add("old", _link(expires=NOW - timedelta(minutes=1)))
    store.add("new", _link(expires=NOW + timedelta(minutes=1)))
    assert store.remove_expired(NOW) == ["old"]
    assert [token for token, _ in store] == ["new"]