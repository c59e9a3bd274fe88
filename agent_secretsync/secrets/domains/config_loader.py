"""Configuration loader for agent-secretsync."""
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .models import DEFAULT_RELOAD_TIMEOUT, FileSpec, NotifierSpec, SecretSpec
from .preferences import get_preference

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "agent-secretsync" / "config.yml"
DEFAULT_STATE_PATH = Path.home() / ".local" / "state" / "agent-secretsync" / "state.json"
DEFAULT_RETRY_PERIOD = 5.0
SUPPORTED_STORES = ("vault", "gcp")


class ConfigError(Exception):
    """Configuration error exception."""
    pass


@dataclass
class Config:
    """Validated daemon configuration."""
    path: str
    store: Dict[str, Any]
    state_path: str = str(DEFAULT_STATE_PATH)
    retry_period: float = DEFAULT_RETRY_PERIOD
    secrets: Dict[str, SecretSpec] = field(default_factory=dict)
    files: List[FileSpec] = field(default_factory=list)
    notifiers: Dict[str, NotifierSpec] = field(default_factory=dict)


def _get_config_path(explicit: Optional[str] = None) -> str:
    """
    Get config file path.

    Priority order:
    1. Explicit path (``--config``)
    2. User preference (stored in ~/.config/agent-secretsync/preferences.json)
    3. Default location: ~/.config/agent-secretsync/config.yml

    Returns:
        Absolute path to config file

    Raises:
        FileNotFoundError: If config file doesn't exist in any location
    """
    if explicit:
        return str(Path(explicit).expanduser().resolve())

    config_path_pref = get_preference("config_path")
    if config_path_pref:
        config_path = Path(config_path_pref)
        if config_path.exists():
            logger.info(f"Using config from preference: {config_path}")
            return str(config_path)
        logger.warning(f"Config path from preference doesn't exist: {config_path}")

    if DEFAULT_CONFIG_PATH.exists():
        logger.info(f"Using default config location: {DEFAULT_CONFIG_PATH}")
        return str(DEFAULT_CONFIG_PATH)

    raise FileNotFoundError(
        "Configuration file not found. Please set up your config file using one of these methods:\n\n"
        "1. Use the default location:\n"
        f"   mkdir -p {DEFAULT_CONFIG_PATH.parent}\n"
        f"   cp /path/to/your/config.yml {DEFAULT_CONFIG_PATH}\n\n"
        "2. Point to an existing config file:\n"
        "   secretsync config set-path /path/to/your/config.yml\n\n"
        "3. Pass it explicitly:\n"
        "   secretsync run --config /path/to/your/config.yml\n"
    )


def parse_mode(value: Any, where: str) -> int:
    """Parse a permission mode given as an int (YAML octal) or an octal string."""
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise ConfigError(f"Invalid mode for {where}: {value!r}")
    if isinstance(value, int):
        mode = value
    else:
        try:
            mode = int(str(value), 8)
        except ValueError:
            raise ConfigError(f"Invalid mode for {where}: {value!r} (expected octal, e.g. 0640)")
    if mode < 0 or mode > 0o777:
        raise ConfigError(f"Invalid mode for {where}: {oct(mode)} (permission bits only)")
    return mode


def _parse_secrets(raw: Any) -> Dict[str, SecretSpec]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError("'secrets' must be a mapping of secret name to definition")

    secrets = {}
    for name, definition in raw.items():
        if not isinstance(definition, dict):
            raise ConfigError(f"Secret '{name}' must be a mapping")
        if not definition.get("url"):
            raise ConfigError(f"Missing 'url' for secret '{name}'")
        data = definition.get("data") or {}
        if not isinstance(data, dict):
            raise ConfigError(f"'data' for secret '{name}' must be a mapping")
        secrets[str(name)] = SecretSpec(
            name=str(name),
            url=str(definition["url"]),
            method=str(definition.get("method", "GET")).upper(),
            data=data,
        )
    return secrets


def _parse_files(raw: Any) -> List[FileSpec]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ConfigError("'files' must be a list of file definitions")

    files = []
    seen = set()
    for definition in raw:
        if not isinstance(definition, dict) or not definition.get("path"):
            raise ConfigError(f"Every file needs a 'path': {definition!r}")
        path = str(definition["path"])
        if path in seen:
            raise ConfigError(f"File '{path}' defined more than once")
        seen.add(path)

        notify = definition.get("notify") or []
        if isinstance(notify, str):
            notify = [notify]
        files.append(FileSpec(
            path=path,
            template=definition.get("template"),
            template_file=definition.get("template_file"),
            mode=parse_mode(definition.get("mode"), path),
            notify=[str(n) for n in notify],
            priority=int(definition.get("priority", 0)),
        ))
    return files


def _parse_notifiers(raw: Any) -> Dict[str, NotifierSpec]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError("'notifiers' must be a mapping of notifier name to definition")

    notifiers = {}
    for name, definition in raw.items():
        definition = definition or {}
        service = definition.get("service")
        command = definition.get("command")
        if bool(service) == bool(command):
            raise ConfigError(f"Notifier '{name}' needs exactly one of 'service' or 'command'")
        if isinstance(command, str):
            command = command.split()
        timeout = definition.get("timeout", DEFAULT_RELOAD_TIMEOUT)
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ConfigError(f"Notifier '{name}' has invalid timeout: {timeout!r}")
        notifiers[str(name)] = NotifierSpec(
            name=str(name),
            service=service,
            command=[str(c) for c in command] if command else None,
            timeout=float(timeout),
        )
    return notifiers


def parse_config(raw: Any, path: str = "<memory>") -> Config:
    """
    Validate a parsed YAML document and build a Config.

    Raises:
        ConfigError: If any section is missing or invalid
    """
    if not raw:
        raise ConfigError(f"Config file at {path} is empty")
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file at {path} must contain a mapping")

    store = raw.get("store")
    if not isinstance(store, dict) or "type" not in store:
        raise ConfigError(
            f"Missing 'store' section in config at {path}\n"
            f"Required format:\n"
            f"store:\n"
            f"  type: vault\n"
            f"  address: https://vault.example.com:8200"
        )
    if store["type"] not in SUPPORTED_STORES:
        raise ConfigError(
            f"Unsupported store type: {store['type']}\n"
            f"Supported types: {', '.join(SUPPORTED_STORES)}"
        )

    try:
        retry_period = float(raw.get("retry_period", DEFAULT_RETRY_PERIOD))
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid retry_period: {raw.get('retry_period')!r}")
    if retry_period < 0:
        raise ConfigError("retry_period can't be negative")

    config = Config(
        path=path,
        store=store,
        state_path=str(Path(raw.get("state_path", DEFAULT_STATE_PATH)).expanduser()),
        retry_period=retry_period,
        secrets=_parse_secrets(raw.get("secrets")),
        files=_parse_files(raw.get("files")),
        notifiers=_parse_notifiers(raw.get("notifiers")),
    )

    for fc in config.files:
        for name in fc.notify:
            if name not in config.notifiers:
                raise ConfigError(f"File '{fc.path}' notifies unknown notifier '{name}'")

    return config


def load_config(path: Optional[str] = None) -> Config:
    """
    Load and validate configuration from YAML file.

    Args:
        path: Explicit config path, resolved through preferences/defaults if None

    Returns:
        Validated Config

    Raises:
        ConfigError: If config file is missing, unparseable or invalid
        FileNotFoundError: If no config file could be located
    """
    config_path = _get_config_path(path)

    if not os.path.exists(config_path):
        raise ConfigError(f"Configuration file not found at: {config_path}")

    try:
        with open(config_path, 'r') as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML config at {config_path}: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read config file at {config_path}: {e}")

    config = parse_config(raw, config_path)

    logger.info(f"Configuration loaded successfully from {config_path}")
    logger.debug(
        f"Store: {config.store['type']}, {len(config.secrets)} secrets, "
        f"{len(config.files)} files, {len(config.notifiers)} notifiers"
    )
    return config
