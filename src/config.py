"""Bootstrap configuration.

Settings are merged from several layers, lowest precedence first:
- dataclass defaults
- YAML config file (--config), keys are field names
- environment variables, upper-cased field names (e.g. CONF_SRC)
- CLI overrides

Source fields accept the {host} placeholder, expanded per run:

    CONF_SRC='git@github.com:acme/conf.git#main:output/{host}.conf'
"""

import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Mapping, Optional

import yaml

from errors import BootstrapError, EXIT_USAGE

WRITE_MODES = ('force', 'backup')
CONF_FORMATS = ('raw', 'json')

_TRUE_VALUES = ('1', 'true', 'yes', 'on')


class ConfigError(BootstrapError):
    """Configuration error."""

    exit_code = EXIT_USAGE


@dataclass
class BootstrapConfig:
    """Settings for one provisioning run."""
    # Primary application config
    conf_src: str = ''
    conf_dest: str = ''
    conf_format: str = 'raw'

    # Compose stack
    compose_src: str = ''
    compose_dest: str = ''
    env_template_src: str = ''
    compose_profiles: str = ''
    project_name: str = ''
    compose_command: str = 'docker compose'
    no_cache: bool = True

    # Profile artifacts
    stunnel_cafile_src: str = ''
    stunnel_cert_src: str = ''
    stunnel_key_src: str = ''
    ddns_go_config_src: str = ''

    # Reachable addresses substituted into artifacts
    external_domain: str = ''
    internal_domain: str = ''
    address_service: str = 'ddns-go'

    # Credentials
    auth_token: str = field(default='', repr=False)
    auth_header: str = field(default='', repr=False)
    ssh_key: str = ''

    # Fetch behaviour
    write_mode: str = 'force'
    insecure: bool = False
    fetch_timeout: int = 60
    fetch_retries: int = 3
    fetch_retry_delay: float = 2.0

    assume_yes: bool = False
    workdir: Path = field(default_factory=Path.cwd)

    def __post_init__(self):
        if isinstance(self.workdir, str):
            self.workdir = Path(self.workdir)
        if self.write_mode not in WRITE_MODES:
            raise ConfigError(
                f"Invalid write_mode '{self.write_mode}'. Expected one of: {', '.join(WRITE_MODES)}"
            )
        if self.conf_format not in CONF_FORMATS:
            raise ConfigError(
                f"Invalid conf_format '{self.conf_format}'. Expected one of: {', '.join(CONF_FORMATS)}"
            )

    @property
    def has_addresses(self) -> bool:
        """True when both reachable addresses are configured."""
        return bool(self.external_domain and self.internal_domain)

    def expand(self, value: str, host: str) -> str:
        """Expand the {host} placeholder in a source or destination value."""
        return value.replace('{host}', host)

    def project_for(self, host: str) -> str:
        """Compose project name; derived from the host when not configured."""
        if self.project_name:
            return self.project_name
        return re.sub(r'[^a-z0-9_-]+', '-', host.lower()).strip('-')


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


def _coerce(name: str, kind, value):
    """Convert a raw YAML/env value to the field's declared type."""
    try:
        if kind is bool:
            return _as_bool(value)
        if kind is int:
            return int(value)
        if kind is float:
            return float(value)
        if kind is Path:
            return Path(os.path.expanduser(str(value)))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {name}: {value!r} ({e})") from e
    return '' if value is None else str(value)


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    with open(path, encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a mapping: {path}")
    return data


def load_config(
    config_file: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    overrides: Optional[dict] = None,
) -> BootstrapConfig:
    """Build a BootstrapConfig from file, environment and CLI layers.

    Args:
        config_file: Optional YAML file with field-name keys
        environ: Environment mapping (default: os.environ)
        overrides: CLI values; None entries are ignored

    Raises:
        ConfigError: On unknown keys or unparseable values
    """
    environ = os.environ if environ is None else environ
    known = {f.name: f.type for f in fields(BootstrapConfig)}
    values: dict = {}

    if config_file:
        file_values = _load_yaml(Path(config_file))
        unknown = sorted(set(file_values) - set(known))
        if unknown:
            raise ConfigError(f"Unknown config keys in {config_file}: {', '.join(unknown)}")
        for name, raw in file_values.items():
            values[name] = _coerce(name, known[name], raw)

    for name, kind in known.items():
        env_value = environ.get(name.upper())
        if env_value is not None and env_value != '':
            values[name] = _coerce(name, kind, env_value)

    for name, raw in (overrides or {}).items():
        if raw is None:
            continue
        if name not in known:
            raise ConfigError(f"Unknown config override: {name}")
        values[name] = _coerce(name, known[name], raw)

    return BootstrapConfig(**values)
