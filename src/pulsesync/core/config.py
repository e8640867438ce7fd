"""
Layered configuration for PulseSync.

Layers, lowest precedence first:
  1) dataclass defaults below
  2) first existing YAML file (./pulsesync.yml, ~/.config/pulsesync/config.yml, /etc/pulsesync/config.yml)
  3) environment, PULSE_<SECTION>__<KEY> (a `.env` found from the cwd is exported first)
  4) CLI overrides

Values are "${VAR}"-expanded, then coerced to the declared field type.
Empty URLs/credentials are valid here; the clients reject them on use.
"""

from __future__ import annotations

import os
import re
import uuid
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import find_dotenv, load_dotenv


class ConfigError(ValueError):
    """Raised when a configuration value is present but unusable."""


@dataclass
class AppSection:
    run_id: Optional[str] = None
    dry_run: bool = False
    concurrency: int = 4


@dataclass
class NetboxSection:
    base_url: str = ""
    token: str = ""          # secret, never log in clear text
    auth_scheme: str = "Token"
    verify_tls: bool = True
    timeout_sec: int = 30
    page_limit: int = 1000
    # kind -> {query param: value or list of values}
    filters: Dict[str, Dict[str, Any]] = field(default_factory=dict)


@dataclass
class ZabbixSection:
    base_url: str = ""
    user: str = ""
    password: str = ""       # secret
    api_path: str = "zabbix/api_jsonrpc.php"
    verify_tls: bool = True
    timeout_sec: int = 30
    batch_size: int = 200
    problem_time_window: int = 3600


@dataclass
class StoreSection:
    url: str = "sqlite:///pulse.db"
    echo: bool = False


@dataclass
class LoggingSection:
    base_dir: str = "logs"
    console_level: str = "INFO"
    file_level: str = "DEBUG"


@dataclass
class AppConfig:
    app: AppSection
    netbox: NetboxSection
    zabbix: ZabbixSection
    store: StoreSection
    logging: LoggingSection

    @property
    def run_id(self) -> str:
        """Identifier of this process run, generated on first access."""
        if not self.app.run_id:
            self.app.run_id = uuid.uuid4().hex[:12]
        return self.app.run_id


_SECTIONS = {
    "app": AppSection,
    "netbox": NetboxSection,
    "zabbix": ZabbixSection,
    "store": StoreSection,
    "logging": LoggingSection,
}

_DEFAULT_FILES: Tuple[str, ...] = (
    "./pulsesync.yml",
    os.path.expanduser("~/.config/pulsesync/config.yml"),
    "/etc/pulsesync/config.yml",
)

# (section, key) -> smallest accepted value
_MINIMUMS = {
    ("app", "concurrency"): 1,
    ("netbox", "page_limit"): 1,
    ("zabbix", "batch_size"): 1,
}

_VAR = re.compile(r"^\$\{([A-Za-z_][A-Za-z0-9_]*)\}$")
_TRUE = {"1", "true", "yes", "y", "on"}


# ---------- Layers ----------

def _merge(base: Dict[str, Any], top: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Nested dicts merge key by key; anything else in `top` replaces `base`."""
    out = dict(base)
    for key, value in (top or {}).items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = value
    return out


def _defaults_layer() -> Dict[str, Any]:
    return {name: asdict(cls()) for name, cls in _SECTIONS.items()}


def _file_layer(files: Tuple[str, ...]) -> Dict[str, Any]:
    path = next((p for p in files if os.path.exists(p)), None)
    if path is None:
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level YAML must be a mapping: {path}")
    return data


def _env_layer(prefix: str) -> Dict[str, Any]:
    """PULSE_NETBOX__TOKEN=x -> {"netbox": {"token": "x"}}"""
    out: Dict[str, Any] = {}
    for name, value in os.environ.items():
        if not name.startswith(prefix):
            continue
        *parents, leaf = name[len(prefix):].lower().split("__")
        node = out
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = value
    return out


def _export_dotenv() -> None:
    path = find_dotenv(usecwd=True)
    if path:
        # variables already set in the environment keep their value
        load_dotenv(path, override=False)


# ---------- Processing ----------

def _expand(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _expand(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand(v) for v in value]
    if isinstance(value, str):
        m = _VAR.match(value)
        if m:
            return os.environ.get(m.group(1), "")
    return value


def _coerce(section: str, key: str, declared: Any, value: Any) -> Any:
    if declared == "bool" and not isinstance(value, bool):
        return str(value).strip().lower() in _TRUE
    if declared == "int" and not isinstance(value, bool):
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigError(f"'{section}.{key}' must be an integer, got {value!r}") from None
    return value


def _build_section(name: str, values: Dict[str, Any]) -> Any:
    cls = _SECTIONS[name]
    known = {f.name: f.type for f in fields(cls)}
    unknown = sorted(set(values) - set(known))
    if unknown:
        raise ConfigError(f"Unknown key(s) in section '{name}': {', '.join(unknown)}")
    kwargs = {key: _coerce(name, key, known[key], value) for key, value in values.items()}
    return cls(**kwargs)


def _check(cfg: AppConfig) -> None:
    bad = [
        f"{section}.{key}"
        for (section, key), minimum in _MINIMUMS.items()
        if getattr(getattr(cfg, section), key) < minimum
    ]
    if not isinstance(cfg.netbox.filters or {}, dict):
        bad.append("netbox.filters")
    if bad:
        raise ConfigError("Invalid configuration values (must be >= 1 / a mapping): " + ", ".join(bad))


# ---------- Public API ----------

def load_config(
    cli_overrides: Optional[Dict[str, Any]] = None,
    files: Tuple[str, ...] = _DEFAULT_FILES,
    env_prefix: str = "PULSE_",
    dotenv: bool = True,
) -> AppConfig:
    """Merge every layer into a typed AppConfig; raises ConfigError on unusable values."""
    if dotenv:
        _export_dotenv()

    merged = _defaults_layer()
    for layer in (_file_layer(files), _env_layer(env_prefix), cli_overrides):
        merged = _merge(merged, layer)
    merged = _expand(merged)

    sections = {}
    for name in _SECTIONS:
        values = merged.get(name) or {}
        if not isinstance(values, dict):
            raise ConfigError(f"Section '{name}' must be a mapping")
        sections[name] = _build_section(name, values)

    cfg = AppConfig(**sections)
    _check(cfg)
    return cfg
