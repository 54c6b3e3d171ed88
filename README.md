# oddbox

`oddbox` reads, validates, upgrades and writes the TOML configuration of a
local reverse proxy. It also picks the TLS certificate to present for each
host name and creates self-signed certificates when none is available.

## Modules

- `oddbox.model`: types shared by every configuration version: `EnvVar`,
  `LogFormat`, `LogLevel`, `OddBoxConfigVersion` and `ConfigurationError`.
  It also provides `parse_log_level`, which accepts level names in any case.
- `oddbox.legacy`, `oddbox.v1`, `oddbox.v2`: dataclasses for the three
  configuration layouts. Each has a `from_dict` that checks a parsed TOML
  table and fills in the format's defaults. Each also has an `example()`
  sample configuration.
  - `OddBoxV1Config.from_legacy` upgrades a legacy configuration to V1.
  - `OddBoxV2Config.from_v1` upgrades a V1 configuration to V2. A V1 remote
    site without a port gets a backend on port 443 if it uses https and port
    80 otherwise.
  - `RemoteSiteConfig.next_backend(backend_filter, request_count)` picks a V2
    backend round-robin among those that pass a `BackendFilter` (`Http`,
    `Https` or `Any`).
- `oddbox.config`: `parse_config(content)` tries the V2 layout first, then V1,
  then legacy, and returns an `OddBoxConfig`. It raises `ConfigurationError`
  when none of them fits. `OddBoxConfig.try_upgrade_to_latest_version()`
  returns the configuration as V2, together with the version it was read as.
- `oddbox.v2_toml`:
  - `to_toml_string(config)` renders a V2 configuration in a fixed layout that
    `parse_config` reads back.
  - `write_to_disk(config)` first moves the existing file at `config.path` to
    a `.toml.backup` file next to it, then writes the new content.
- `oddbox.wrapper.ConfigWrapper`: a runtime view of a V2 configuration.
  - `remote_sites` and `hosted_processes` map host names to sites. `reload()`
    and `persist()` sync these maps with the configuration lists.
  - `is_valid()` raises `ConfigurationError` in these cases:
    - a global `PORT` variable;
    - duplicate host names or ports;
    - a `PORT` variable that disagrees with a process's port;
    - Let's Encrypt enabled together with TCP tunnel mode or with
      `capture_subdomains`.
  - `busy_ports()`, `find_and_set_unused_port()` and `set_active_port()` do
    the port bookkeeping.
  - `resolve_process_configuration()` substitutes `$root_dir`, `$cfg_dir` and
    `~` in a hosted process's `bin`, `dir` and `args`.
- `oddbox.settings`:
  - `get_settings(config)` returns the global settings as an
    `OddBoxConfigGlobalPart`, with defaults filled in. The admin API port
    defaults to 6789, the HTTP port to 8080, the TLS port to 4343 and the IP
    to `127.0.0.1`.
  - `apply_settings(config, new_settings)` stores a `SaveGlobalConfig`, writes
    the configuration to disk, and returns whether the Let's Encrypt account
    e-mail changed. It rejects an invalid IP address with
    `ConfigurationError`.
- `oddbox.certs`:
  - PEM helpers: `extract_cert_from_pem_str`, `get_certs_from_path`,
    `extract_priv_key_from_pem` and `get_priv_key_from_path`.
  - `generate_cert_if_not_exist` creates a self-signed ECDSA P-256
    certificate and key.
  - `DynamicCertResolver.resolve(server_name)` returns a `CertifiedKey`:
    1. a cached Let's Encrypt certificate, if Let's Encrypt is enabled and one
       is cached;
    2. otherwise a cached self-signed certificate;
    3. otherwise a self-signed certificate loaded from, or created under,
       `<cache_dir>/<host>/cert.pem` and `key.pem`. The default `cache_dir`
       is `.odd_box_cache`.

    Cached certificates with fewer than 30 days left are dropped.

## What it does not do

This package only handles configuration and certificates. It does not:

- run a proxy or an HTTP admin API;
- start or supervise hosted processes;
- obtain certificates from Let's Encrypt. `DynamicCertResolver` only serves
  Let's Encrypt certificates that are added to it with
  `add_lets_encrypt_signed_cert_to_mem_cache`.

## Install

```
pip install .
```

With the test dependencies:

```
pip install .[test]
```

## Example

```python
from oddbox.config import parse_config
from oddbox.v2_toml import to_toml_string
from oddbox.wrapper import ConfigWrapper

with open("odd-box.toml", encoding="utf-8") as fh:
    parsed = parse_config(fh.read())

v2_config, original_version = parsed.try_upgrade_to_latest_version()
wrapper = ConfigWrapper(v2_config)
wrapper.is_valid()  # raises ConfigurationError on conflicts
print(to_toml_string(v2_config))
```

## Tests

```
pytest
```