"""Configuration management for the user record service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .models import DEFAULT_AUTH_TYPE, AuthType, parse_auth_type

OVERRIDE_POLICIES = ("ignore", "reject")
DEFAULT_PRINCIPAL = "anonymous"
STORAGE_FILENAME = "users.json"

_ENV_PREFIX = "USERSVC_"


def _default_data_dir() -> Path:
    return (Path(__file__).resolve().parent.parent / "data").resolve(strict=False)


def _parse_bool(value: object, name: str) -> bool:
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value {value!r} for {name}")


def _parse_path(value: object, base_path: Optional[Path]) -> Path:
    raw = Path(str(value)).expanduser()
    if not raw.is_absolute() and base_path is not None:
        raw = base_path / raw
    return raw.resolve(strict=False)


def _parse_tokens(value: object) -> Dict[str, str]:
    """Parse ``token=principal`` pairs from a mapping or comma-separated string."""

    if isinstance(value, Mapping):
        pairs = [(str(k), str(v)) for k, v in value.items()]
    else:
        pairs = []
        for item in str(value).split(","):
            item = item.strip()
            if not item:
                continue
            if "=" not in item:
                raise ValueError("API tokens must be given as token=principal pairs")
            token, principal = item.split("=", 1)
            pairs.append((token, principal))

    tokens: Dict[str, str] = {}
    for token, principal in pairs:
        token, principal = token.strip(), principal.strip()
        if not token or not principal:
            raise ValueError("API tokens and principals must not be empty")
        tokens[token] = principal
    return tokens


@dataclass(frozen=True)
class Settings:
    """Runtime settings for a single deployment of the service."""

    data_dir: Path = field(default_factory=_default_data_dir)
    prefix: str = "default"
    persistent: bool = True
    seed_file: Optional[Path] = None
    override_policy: str = "ignore"
    default_auth_type: AuthType = DEFAULT_AUTH_TYPE
    default_principal: str = DEFAULT_PRINCIPAL
    api_tokens: Dict[str, str] = field(default_factory=dict)
    contacts_file: Optional[Path] = None
    contacts_url: Optional[str] = None
    contacts_timeout: float = 5.0

    def __post_init__(self) -> None:
        if self.override_policy not in OVERRIDE_POLICIES:
            raise ValueError(
                f"override_policy must be one of {', '.join(OVERRIDE_POLICIES)}, got {self.override_policy!r}"
            )
        if not self.prefix.strip() or "/" in self.prefix or self.prefix in {".", ".."}:
            raise ValueError(f"Invalid storage prefix {self.prefix!r}")
        if self.contacts_timeout <= 0:
            raise ValueError("contacts_timeout must be positive")

    @property
    def storage_path(self) -> Path:
        return self.data_dir / self.prefix / STORAGE_FILENAME

    @staticmethod
    def from_dict(data: Mapping[str, Any], base_path: Optional[Path] = None) -> "Settings":
        """Create :class:`Settings` from raw configuration data."""

        unknown = set(data) - {item for item in Settings.__dataclass_fields__}
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        values: Dict[str, Any] = {}
        for key in ("data_dir", "seed_file", "contacts_file"):
            if data.get(key):
                values[key] = _parse_path(data[key], base_path)
        for key in ("prefix", "override_policy", "default_principal"):
            if data.get(key) is not None:
                values[key] = str(data[key]).strip()
        if data.get("contacts_url"):
            values["contacts_url"] = str(data["contacts_url"]).strip()
        if data.get("persistent") is not None:
            values["persistent"] = _parse_bool(data["persistent"], "persistent")
        if data.get("default_auth_type"):
            values["default_auth_type"] = parse_auth_type(data["default_auth_type"])
        if data.get("api_tokens"):
            values["api_tokens"] = _parse_tokens(data["api_tokens"])
        if data.get("contacts_timeout") is not None:
            try:
                values["contacts_timeout"] = float(data["contacts_timeout"])
            except (TypeError, ValueError) as exc:
                raise ValueError(f"Invalid contacts_timeout {data['contacts_timeout']!r}") from exc
        return Settings(**values)


def _env_overrides(env: Mapping[str, str]) -> Dict[str, str]:
    overrides: Dict[str, str] = {}
    for key in Settings.__dataclass_fields__:
        value = env.get(_ENV_PREFIX + key.upper())
        if value is not None and value.strip() != "":
            overrides[key] = value
    return overrides


def resolve_config_path(env_value: Optional[str]) -> Optional[Path]:
    """Resolve the path to the optional YAML configuration file."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    candidate = (Path(__file__).resolve().parent.parent / "config" / "usersvc.yaml").resolve(strict=False)
    return candidate if candidate.exists() else None


def load_settings(path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> Settings:
    """Load settings from an optional YAML file, then apply ``USERSVC_*`` overrides."""

    environ = os.environ if env is None else env
    config_path = path or resolve_config_path(environ.get(_ENV_PREFIX + "CONFIG"))

    raw: Dict[str, Any] = {}
    base_path: Optional[Path] = None
    if config_path is not None:
        with config_path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Configuration file {config_path} must contain a mapping")
        raw.update(loaded)
        base_path = config_path.parent

    # Environment paths are relative to the working directory, not the config file.
    for key, value in _env_overrides(environ).items():
        if key in {"data_dir", "seed_file", "contacts_file"}:
            raw[key] = _parse_path(value, None)
        else:
            raw[key] = value
    return Settings.from_dict(raw, base_path=base_path)


__all__ = [
    "DEFAULT_PRINCIPAL",
    "OVERRIDE_POLICIES",
    "STORAGE_FILENAME",
    "Settings",
    "load_settings",
    "resolve_config_path",
]
