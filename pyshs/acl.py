"""Per-directory access control read from .goshs files."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import bcrypt

SPECIAL_FILE = ".goshs"


def check_password_hash(password: str, password_hash: str) -> bool:
    """Whether the password matches the bcrypt hash; a malformed hash never matches."""
    try:
        return bcrypt.checkpw(
            password.encode("utf-8", "surrogateescape"),
            password_hash.encode("utf-8", "surrogateescape"),
        )
    except ValueError:
        return False


@dataclass
class AccessConfig:
    """Access rules of one directory: optional basic auth and blocked names."""

    auth: str = ""
    block: list[str] = field(default_factory=list)

    def check_auth(self, username: str, password: str) -> bool:
        """Whether the credentials pass; always true when no auth is configured."""
        if not self.auth:
            return True
        user, _, digest = self.auth.partition(":")
        return username == user and check_password_hash(password, digest)

    def is_blocked(self, name: str) -> bool:
        """Whether a name (directories end in '/') is blocked."""
        return name in self.block


def _from_object(data: Any) -> AccessConfig:
    if data is None:
        return AccessConfig()
    if not isinstance(data, dict):
        raise ValueError(f"cannot unmarshal {type(data).__name__} into access config")
    config = AccessConfig()
    for key, value in data.items():
        if value is None:
            continue
        lowered = key.lower()
        if lowered == "auth":
            if not isinstance(value, str):
                raise ValueError("cannot unmarshal non-string into field auth")
            config.auth = value
        elif lowered == "block":
            if not isinstance(value, list) or not all(
                item is None or isinstance(item, str) for item in value
            ):
                raise ValueError("cannot unmarshal non-string list into field block")
            config.block = ["" if item is None else item for item in value]
    return config


def find_special_file(folder: str | Path) -> AccessConfig:
    """Read the access file of a directory; an empty config if there is none.

    Raises OSError if the directory cannot be listed or the file read,
    and ValueError if the file is not valid.
    """
    if SPECIAL_FILE not in os.listdir(folder):
        return AccessConfig()
    raw = Path(folder, SPECIAL_FILE).read_bytes()
    return _from_object(json.loads(raw))