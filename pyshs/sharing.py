"""Temporary share links with expiry and download limits."""

from __future__ import annotations

import secrets
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Iterator


@dataclass
class DownloadEntry:
    """One URL under which a shared file can be fetched."""

    download_url: str
    qr_code: str = ""


@dataclass
class SharedLink:
    """A shared path; a download limit of -1 means unlimited."""

    file_path: str
    is_dir: bool
    expires: datetime
    download_limit: int
    download_entries: list[DownloadEntry] = field(default_factory=list)


def generate_token() -> str:
    """Return a random URL-safe token from 16 random bytes, without padding."""
    return secrets.token_urlsafe(16)


def download_limit_display(limit: int) -> str:
    """Text for a download limit: 'disabled' for -1, else the number."""
    if limit == -1:
        return "disabled"
    return str(limit)


def format_time(moment: datetime) -> str:
    """Format a moment in local time as 'YYYY-MM-DD HH:MM:SS'."""
    return moment.astimezone().strftime("%Y-%m-%d %H:%M:%S")


class ShareStore:
    """Thread-safe mapping of tokens to shared links."""

    def __init__(self) -> None:
        self._links: dict[str, SharedLink] = {}
        self._lock = threading.Lock()

    def __contains__(self, token: object) -> bool:
        with self._lock:
            return token in self._links

    def __len__(self) -> int:
        with self._lock:
            return len(self._links)

    def __iter__(self) -> Iterator[tuple[str, SharedLink]]:
        with self._lock:
            return iter(list(self._links.items()))

    def add(self, token: str, link: SharedLink) -> None:
        """Store a link under a token, replacing any earlier one."""
        with self._lock:
            self._links[token] = link

    def get(self, token: str, now: datetime) -> SharedLink | None:
        """Return the link for a token unless it is unknown or expired at now."""
        with self._lock:
            link = self._links.get(token)
        if link is None or now > link.expires:
            return None
        return link

    def consume(self, token: str) -> SharedLink | None:
        """Use one download of a link and return it with its updated limit.

        Returns None when the token is unknown or no downloads are left.
        A link whose limit reaches zero is removed.
        """
        with self._lock:
            link = self._links.get(token)
            if link is None or not (link.download_limit > 0 or link.download_limit == -1):
                return None
            if link.download_limit > 0:
                link = replace(link, download_limit=link.download_limit - 1)
            if link.download_limit == 0:
                del self._links[token]
            else:
                self._links[token] = link
            return link

    def remove(self, token: str) -> None:
        """Forget a token; unknown tokens are ignored."""
        with self._lock:
            self._links.pop(token, None)

    def remove_expired(self, now: datetime) -> list[str]:
        """Drop links that expired before now and return their tokens."""
        with self._lock:
            expired = [token for token, link in self._links.items() if link.expires < now]
            for token in expired:
                del self._links[token]
        return expired