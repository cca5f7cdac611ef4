"""
Configuration loading for backup-tool.

Settings are read once at startup from a TOML file and passed explicitly
into every component. Nothing reads process-wide state after that.

Lookup order for the config file:
    --config option > $BACKUP_TOOL_CONFIG > ./config.toml

Secrets may be supplied through the environment instead of the file:
    BACKUP_TOOL_REMOTE_PASSWORD, BACKUP_TOOL_SMTP_PASSWORD
"""

import os
import tomllib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from backup_tool.scheduler import ScheduleError, parse_time_of_day


DEFAULT_CONFIG_FILE = 'config.toml'

ENV_CONFIG_FILE = 'BACKUP_TOOL_CONFIG'
ENV_LOG_DIR = 'BACKUP_TOOL_LOG_DIR'
ENV_REMOTE_PASSWORD = 'BACKUP_TOOL_REMOTE_PASSWORD'
ENV_SMTP_PASSWORD = 'BACKUP_TOOL_SMTP_PASSWORD'

REMOTE_PROTOCOLS = ('ftp', 'sftp', 's3')
DEFAULT_PORTS = {'ftp': 21, 'sftp': 22, 's3': 443}


class ConfigError(Exception):
    """Raised when the configuration cannot be loaded or is invalid."""
    pass


@dataclass(frozen=True)
class SourceSpec:
    """One directory tree to archive, rooted in the archive under prefix."""

    path: str
    prefix: str = ''


@dataclass(frozen=True)
class RunSettings:
    commands: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RemoteSettings:
    """Connection parameters and naming for the remote store."""

    protocol: str = 'ftp'
    host: str = ''
    port: int = 21
    user: str = ''
    password: str = ''
    directory: str = ''
    file_name: str = 'backup'
    suffix_format: str = '%Y-%m-%d'
    tls: bool = False
    private_key: Optional[str] = None
    bucket: Optional[str] = None
    region: str = 'us-east-1'
    endpoint_url: Optional[str] = None


@dataclass(frozen=True)
class NotifySettings:
    error_addresses: Tuple[str, ...] = ()
    success_addresses: Tuple[str, ...] = ()
    smtp_host: str = ''
    smtp_port: int = 587
    smtp_user: str = ''
    smtp_password: str = ''
    smtp_from: str = ''
    smtp_starttls: bool = True


@dataclass(frozen=True)
class ScheduleSettings:
    time: Optional[str] = None
    timezone: Optional[str] = None


@dataclass(frozen=True)
class Settings:
    """Complete, immutable configuration for one process."""

    remote: RemoteSettings
    sources: Tuple[SourceSpec, ...]
    run: RunSettings = field(default_factory=RunSettings)
    notify: NotifySettings = field(default_factory=NotifySettings)
    schedule: ScheduleSettings = field(default_factory=ScheduleSettings)


def resolve_config_path(path: Optional[str] = None) -> str:
    """Return the config file path to use, honouring the environment."""
    return path or os.environ.get(ENV_CONFIG_FILE) or DEFAULT_CONFIG_FILE


def load_settings(path: Optional[str] = None) -> Settings:
    """
    Load and validate settings from a TOML file.

    Args:
        path: Path to the config file (default: resolved from environment)

    Returns:
        Settings instance

    Raises:
        ConfigError: If the file is missing, unreadable or invalid
    """
    config_path = resolve_config_path(path)

    try:
        with open(config_path, 'rb') as f:
            data = tomllib.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {config_path}")
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {config_path}: {e}")
    except OSError as e:
        raise ConfigError(f"Can't read config file {config_path}: {e}")

    return parse_settings(data, environ=os.environ)


def parse_settings(data: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Settings:
    """
    Build Settings from an already decoded TOML document.

    Args:
        data: Decoded TOML mapping
        environ: Environment used for secret overrides (default: none)

    Returns:
        Settings instance

    Raises:
        ConfigError: If required keys are missing or have the wrong type
    """
    environ = environ or {}

    settings = Settings(
        run=_parse_run(_section(data, 'run', required=False)),
        sources=_parse_sources(data.get('src')),
        remote=_parse_remote(_section(data, 'remote'), environ),
        notify=_parse_notify(_section(data, 'notify', required=False), environ),
        schedule=_parse_schedule(_section(data, 'schedule', required=False)),
    )
    return settings


def _section(data: Dict[str, Any], name: str, required: bool = True) -> Dict[str, Any]:
    value = data.get(name)
    if value is None:
        if required:
            raise ConfigError(f"Missing [{name}] section")
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"[{name}] must be a table")
    return value


def _get(section: Dict[str, Any], key: str, kind, default=None, where: str = ''):
    value = section.get(key, default)
    if value is None:
        return None
    # bool is an int subclass, keep them apart
    if kind is int and isinstance(value, bool):
        raise ConfigError(f"{where}.{key} must be an integer")
    if not isinstance(value, kind):
        raise ConfigError(f"{where}.{key} has an invalid type: {type(value).__name__}")
    return value


def _string_list(section: Dict[str, Any], key: str, where: str) -> Tuple[str, ...]:
    values = _get(section, key, list, [], where)
    if not all(isinstance(v, str) for v in values):
        raise ConfigError(f"{where}.{key} must be a list of strings")
    return tuple(values)


def _parse_run(section: Dict[str, Any]) -> RunSettings:
    return RunSettings(commands=_string_list(section, 'commands', 'run'))


def _parse_sources(entries) -> Tuple[SourceSpec, ...]:
    if not entries:
        raise ConfigError("At least one [[src]] entry is required")
    if not isinstance(entries, list):
        raise ConfigError("[[src]] must be an array of tables")

    sources: List[SourceSpec] = []
    for index, entry in enumerate(entries):
        where = f"src[{index}]"
        if not isinstance(entry, dict):
            raise ConfigError(f"{where} must be a table")
        path = _get(entry, 'path', str, None, where)
        if not path:
            raise ConfigError(f"{where}.path is required")
        prefix = _get(entry, 'prefix', str, '', where)
        sources.append(SourceSpec(path=path, prefix=prefix.strip('/')))
    return tuple(sources)


def _parse_remote(section: Dict[str, Any], environ: Dict[str, str]) -> RemoteSettings:
    protocol = _get(section, 'protocol', str, 'ftp', 'remote').lower()
    if protocol not in REMOTE_PROTOCOLS:
        raise ConfigError(
            f"Invalid remote.protocol: {protocol}. Valid options: {list(REMOTE_PROTOCOLS)}"
        )

    host = _get(section, 'host', str, '', 'remote')
    bucket = _get(section, 'bucket', str, None, 'remote')
    if protocol == 's3':
        if not bucket:
            raise ConfigError("remote.bucket is required for s3")
    elif not host:
        raise ConfigError("remote.host is required")

    file_name = _get(section, 'file_name', str, 'backup', 'remote')
    if not file_name:
        raise ConfigError("remote.file_name must not be empty")

    return RemoteSettings(
        protocol=protocol,
        host=host,
        port=_get(section, 'port', int, DEFAULT_PORTS[protocol], 'remote'),
        user=_get(section, 'user', str, '', 'remote'),
        password=environ.get(ENV_REMOTE_PASSWORD) or _get(section, 'password', str, '', 'remote'),
        directory=_get(section, 'directory', str, '', 'remote'),
        file_name=file_name,
        suffix_format=_get(section, 'suffix_format', str, '%Y-%m-%d', 'remote'),
        tls=_get(section, 'tls', bool, False, 'remote'),
        private_key=_get(section, 'private_key', str, None, 'remote'),
        bucket=bucket,
        region=_get(section, 'region', str, 'us-east-1', 'remote'),
        endpoint_url=_get(section, 'endpoint_url', str, None, 'remote'),
    )


def _parse_notify(section: Dict[str, Any], environ: Dict[str, str]) -> NotifySettings:
    settings = NotifySettings(
        error_addresses=_string_list(section, 'error_addresses', 'notify'),
        success_addresses=_string_list(section, 'success_addresses', 'notify'),
        smtp_host=_get(section, 'smtp_host', str, '', 'notify'),
        smtp_port=_get(section, 'smtp_port', int, 587, 'notify'),
        smtp_user=_get(section, 'smtp_user', str, '', 'notify'),
        smtp_password=environ.get(ENV_SMTP_PASSWORD) or _get(section, 'smtp_password', str, '', 'notify'),
        smtp_from=_get(section, 'smtp_from', str, '', 'notify'),
        smtp_starttls=_get(section, 'smtp_starttls', bool, True, 'notify'),
    )

    if (settings.error_addresses or settings.success_addresses) and not (
        settings.smtp_host and settings.smtp_from
    ):
        raise ConfigError("notify.smtp_host and notify.smtp_from are required when recipients are set")

    return settings


def _parse_schedule(section: Dict[str, Any]) -> ScheduleSettings:
    time_of_day = _get(section, 'time', str, None, 'schedule')
    if time_of_day is not None:
        # Reject a bad time at startup rather than when the loop begins
        try:
            parse_time_of_day(time_of_day)
        except ScheduleError as e:
            raise ConfigError(str(e))

    return ScheduleSettings(
        time=time_of_day,
        timezone=_get(section, 'timezone', str, None, 'schedule'),
    )
