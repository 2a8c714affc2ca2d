"""Server configuration file loading and checks."""

from __future__ import annotations

import dataclasses
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

VERSION = "v1.1.0"

log = logging.getLogger(__name__)


class InsecureConfigError(Exception):
    """The configuration file is served and writeable by the server."""


@dataclass
class Config:
    """Settings read from a JSON configuration file."""

    interface: str = ""
    port: int = 0
    directory: str = ""
    upload_folder: str = ""
    ssl: bool = False
    self_signed: bool = False
    private_key: str = ""
    certificate: str = ""
    p12: str = ""
    p12_no_pass: bool = False
    letsencrypt: bool = False
    letsencrypt_domain: str = ""
    letsencrypt_email: str = ""
    letsencrypt_http_port: str = ""
    letsencrypt_tls_port: str = ""
    auth_username: str = ""
    auth_password: str = ""
    certificate_auth: str = ""
    webdav: bool = False
    webdav_port: int = 0
    upload_only: bool = False
    read_only: bool = False
    no_clipboard: bool = False
    no_delete: bool = False
    verbose: bool = False
    silent: bool = False
    running_user: str = ""
    cli: bool = False
    embedded: bool = False
    output: str = ""
    webhook_enabled: bool = False
    webhook_url: str = ""
    webhook_provider: str = ""
    webhook_events: list[str] = field(default_factory=list)
    sftp: bool = False
    sftp_port: int = 0
    sftp_keyfile: str = ""
    sftp_host_keyfile: str = ""
    whitelist: str = ""
    trusted_proxies: str = ""


def _kind(f: dataclasses.Field) -> type:
    if f.default_factory is not dataclasses.MISSING:
        return list
    return type(f.default)


def _convert(name: str, kind: type, value: Any) -> Any:
    if kind is bool and isinstance(value, bool):
        return value
    if kind is int and isinstance(value, int) and not isinstance(value, bool):
        return value
    if kind is str and isinstance(value, str):
        return value
    if kind is list and isinstance(value, list):
        if all(item is None or isinstance(item, str) for item in value):
            return ["" if item is None else item for item in value]
    raise ValueError(
        f"cannot unmarshal {type(value).__name__} into field {name} of type {kind.__name__}"
    )


def _from_object(data: Any) -> Config:
    if data is None:
        return Config()
    if not isinstance(data, dict):
        raise ValueError(f"cannot unmarshal {type(data).__name__} into Config")

    fields = {f.name: f for f in dataclasses.fields(Config)}
    folded = {name.lower(): f for name, f in fields.items()}
    values: dict[str, Any] = {}
    for key, value in data.items():
        f = fields.get(key) or folded.get(key.lower())
        if f is None or value is None:
            continue
        values[f.name] = _convert(f.name, _kind(f), value)
    return Config(**values)


def load(path: str | Path) -> Config:
    """Read a JSON configuration file; unknown keys are ignored."""
    raw = Path(path).read_bytes()
    return _from_object(json.loads(raw))


def example() -> str:
    """Return an example configuration with the default values, as JSON."""
    defaults = Config(
        interface="0.0.0.0",
        port=8000,
        directory=".",
        upload_folder=".",
        letsencrypt_http_port="80",
        letsencrypt_tls_port="443",
        webdav_port=8001,
        webhook_provider="discord",
        webhook_events=["all"],
        sftp_port=2022,
    )
    return json.dumps(dataclasses.asdict(defaults), indent=2)


def sanity_checks(webroot: str, config_path: str, auth_password: str) -> None:
    """Refuse a writeable config inside the webroot; warn about plain passwords.

    Raises OSError if the config in the webroot cannot be opened for writing,
    and InsecureConfigError if it can.
    """
    config_dir = os.path.normpath(os.path.dirname(config_path) or ".")
    if webroot == config_dir:
        log.warning(
            "You are hosting your config file in the webroot. This is not recommended."
        )
        descriptor = os.open(config_path, os.O_WRONLY | os.O_APPEND)
        os.close(descriptor)
        raise InsecureConfigError(
            "The config file is accessible via the web server and is writeable "
            "by the user running it. This is a security issue."
        )

    if not auth_password.startswith("$2a$"):
        log.warning(
            "The password in the config file is not hashed. This is not recommended. "
            "Use -H to hash the password."
        )