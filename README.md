# pyshs

`pyshs` is an HTTP file server packaged as a library. It serves a directory
over HTTP or HTTPS as a WSGI application and adds what a bare static server
lacks:

- directory listings as a simple HTML page or as JSON (`?json`)
- viewing files, and downloading them as attachments (`?download`)
- zip archives of several files or whole folders (`?bulk&file=...`)
- uploads with multipart `POST /upload` and with plain `PUT`
- deleting files and folders (`?delete`), unless switched off
- an in-memory clipboard shown on the listing page, exported as JSON (`?cbDown`)
- HTTP basic auth with a plain or a bcrypt-hashed (`$2a$...`) password
- client certificate authentication
- TLS with a self-signed certificate made on start, your own certificate and
  key, or a PKCS#12 bundle
- an IP whitelist, with trusted reverse proxies
- per-directory access rules in a `.goshs` file
- share links limited in time and number of downloads
- read-only, upload-only, no-delete, no-clipboard and silent modes

## Installation

```
pip install .
pip install .[test]   # with pytest, to run the tests
```

## Modules

| Module | Contents |
| --- | --- |
| `pyshs.options` | `FileServer`, the settings and shared state of one server |
| `pyshs.server` | `build_app()`, `ssl_context()`, `start_banner()`, `drop_privileges()`, `start()` |
| `pyshs.handler` | `FileServerApp`, the WSGI application answering requests |
| `pyshs.middleware` | `CustomMux`, `basic_auth_middleware()`, `ip_whitelist_middleware()`, `server_header_middleware()`, `get_client_ip()` |
| `pyshs.listing` | `Item`, `build_items()`, `items_to_json()`, `back_link()`, `human_size()` |
| `pyshs.updown` | `put_file()`, `save_upload()`, `bulk_zip()`, `bulk_filename()` |
| `pyshs.sharing` | `ShareStore`, `SharedLink`, `DownloadEntry`, `generate_token()`, `download_limit_display()`, `format_time()` |
| `pyshs.acl` | `AccessConfig`, `find_special_file()`, `check_password_hash()` |
| `pyshs.whitelist` | `Whitelist`, `new_ip_whitelist()` |
| `pyshs.clipboard` | `Clipboard`, `Entry` |
| `pyshs.ca` | `setup()`, `fingerprints()`, `parse_and_sum()` |
| `pyshs.config` | `Config`, `load()`, `example()`, `sanity_checks()`, `InsecureConfigError` |

## Running a server

Fill a `FileServer` and hand it to `start()`. It creates the clipboard,
sets up TLS when `ssl` is on, logs where it listens (with the certificate
fingerprints), switches to `drop_user` on Unix if one is given, and serves
with a threaded werkzeug server until interrupted. Expired share links are
removed once a minute.

```python
from pyshs.options import FileServer
from pyshs.server import start
from pyshs.whitelist import new_ip_whitelist

password = "password"
server = FileServer(
    ip="127.0.0.1",
    port=8000,
    webroot="/srv/files",
    upload_folder="/srv/files",
    user="admin",
    password=password,
    ssl=True,
    self_signed=True,
    whitelist=new_ip_whitelist("127.0.0.1, 10.0.0.0/8", True, ""),
)
start(server)
```

`build_app(server)` returns the same WSGI application without running it, so
it can be mounted in any WSGI host. It applies, outermost first: basic auth
(only when `user` or `password` is set), the IP whitelist and a `Server`
header of the form `pyshs/v1.1.0 (linux; python3.12.1)`. Semicolons in query
strings are accepted as parameter separators.

The most useful `FileServer` fields:

| Field | Meaning |
| --- | --- |
| `ip`, `port` | listening address; with `0.0.0.0` the banner and share links list the host's addresses |
| `webroot`, `upload_folder` | directory served, and directory uploads are written below |
| `user`, `password` | basic auth; a password starting with `$2a$` is checked as a bcrypt hash |
| `ssl`, `self_signed` | HTTPS, with a certificate generated on start |
| `my_cert`, `my_key`, `my_p12`, `p12_no_pass` | your own certificate and key, or a PKCS#12 file (its password is asked for on the terminal unless `p12_no_pass`) |
| `ca_cert` | CA file; clients must then present a certificate it signed |
| `read_only`, `upload_only`, `no_delete`, `no_clipboard`, `silent` | restricted modes; `silent` hides listings |
| `drop_user` | Unix user to switch to after binding |
| `verbose` | also log every request header |
| `webhook` | a callable `(message, event)` told about `started`, `upload`, `download`, `view` and `delete` |
| `whitelist` | a `Whitelist`; disabled by default |

## Requests

| Request | Effect |
| --- | --- |
| `GET /dir/` | HTML listing; `?json` gives a JSON array instead |
| `GET /file` | the file with a guessed content type; `?download` as an attachment |
| `GET /?bulk&file=%2Fa.txt&file=%2Fdir` | a zip of the selected files and folders; entries containing `..` are skipped |
| `POST /upload` (multipart) | stores each file in `upload_folder`, answers `303` |
| `PUT /name` | stores the body as `upload_folder/name` |
| `POST /anything` | only logged, answers `ok` |
| `GET /path?delete` | removes the file or folder; `403` in read-only, upload-only or no-delete mode |
| `GET /path?share&expires=SECONDS&limit=N` | creates a share link (default one hour, one download; `limit=-1` for unlimited) and returns `{"urls": [...]}`; only when auth is enabled |
| `GET /path?token=TOKEN` | fetches a shared file (a shared folder comes as a zip), without basic auth |
| `DELETE /path?token=TOKEN` | revokes a share link |
| `GET /?cbDown` | the clipboard as a JSON attachment |

## Access rules per directory

A `.goshs` file in a directory is JSON with two optional keys:

```json
{
  "auth": "admin:$2a$12$...bcrypt hash...",
  "block": ["private.txt", "hidden-folder/"]
}
```

Blocked names are left out of the listing and answer `404`; folders are
named with a trailing `/`. `auth` asks for basic auth with that user and
password for the directory and its files. The `.goshs` file itself never
appears in a listing and is never served.

## IP whitelist

```python
from pyshs.whitelist import new_ip_whitelist

wl = new_ip_whitelist("10.0.0.0/8, 192.168.1.5", True, "127.0.0.1")
wl.is_allowed("10.1.2.3")         # True
wl.is_allowed("172.16.0.1")       # False
wl.is_trusted_proxy("127.0.0.1")  # True
```

Addresses without a prefix length count as `/32` (IPv4) or `/128` (IPv6); an
invalid entry raises `ValueError`. An empty network list gives a disabled
whitelist that allows everyone. For requests from a trusted proxy the client
address is taken from `X-Forwarded-For`, then `X-Real-IP`.

## Certificates

```python
from pyshs.ca import parse_and_sum, setup

tls = setup()                             # CA plus a server certificate it signed
tls.context, tls.certificate, tls.sha256, tls.sha1
sha256, sha1 = parse_and_sum("cert.pem")  # fingerprints of a PEM certificate
```

`setup()` generates two 4096-bit RSA keys, which takes a few seconds. The
server certificate is valid for ten years for `127.0.0.1` and `::1`.
Fingerprints are upper-case hex with a space after every byte.

## Configuration files

```python
from pathlib import Path
from pyshs.config import example, load, sanity_checks

Path("config.json").write_text(example())
cfg = load("config.json")
print(cfg.port)  # 8000
```

`load()` reads a JSON file into a `Config`, ignoring unknown keys.
`sanity_checks(webroot, config_path, auth_password)` raises
`InsecureConfigError` when the configuration file sits in the webroot and is
writeable, and logs a warning when the password is not a bcrypt hash.

## Clipboard

```python
from pyshs.clipboard import Clipboard

cb = Clipboard()
cb.add_entry("first")
cb.add_entry("second")
cb.delete_entry(0)    # the rest are renumbered from 0
print(cb.download())  # indented JSON bytes
cb.clear()
```

## What the package does not do

- There is no command-line program; a server is started from Python with
  `pyshs.server.start()`.
- A `Config` is not turned into a `FileServer` for you; copy the fields you
  need. Its Let's Encrypt, WebDAV, SFTP, webhook and output keys are read but
  nothing in the package acts on them.
- There is no WebDAV server, no SFTP server and no Let's Encrypt client.
- There is no live clipboard or web command line over websockets: `?ws`
  answers `501`, and entries are added through the `Clipboard` object.
- Webhooks are only the `webhook` callable; no messages are sent anywhere by
  the package itself.
- Pages are plain generated HTML with no stylesheets or scripts. `?static`
  and `?embedded` serve files only from the `static_dir` and `embedded_dir`
  given to `FileServerApp`, which `build_app()` does not set.
- Listings carry no QR codes.