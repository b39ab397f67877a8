#!/usr/bin/env python3
"""
Configuration Store Module
Loads defaults, local overrides and secrets once at startup and turns them
into an immutable MonitorSettings value handed to every component
"""

import json
import os
import logging
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from alert_config import RESOURCE_KINDS, DEFAULT_THRESHOLDS

logger = logging.getLogger('resmon.config')

# Config file paths
CONFIG_DIR = Path('/etc/resource-monitor')
CONFIG_FILE = CONFIG_DIR / 'config.json'
SECRETS_FILE_NAME = 'secrets.json'

SUPPORTED_DATABASES = ('sqlite', 'postgresql', 'mysql')

# Default configuration (fallback for every key missing from the config file)
DEFAULT_CONFIG = {
    'monitoring': {
        'check_interval': 60,
        'threshold': DEFAULT_THRESHOLDS['ram'],
        'alert_message_title': '⚠️ HIGH RESOURCE USAGE ALERT',
        'include_top_processes': True,
        'top_processes_count': 3,
        'status_file': None,  # None -> <tmpdir>/resource-monitor-status.tmp
    },
    'cpu': {
        'monitor': True,
        'threshold': DEFAULT_THRESHOLDS['cpu'],
    },
    'disk': {
        'monitor': True,
        'threshold': DEFAULT_THRESHOLDS['disk'],
        'path': '/',
    },
    'swap': {
        'monitor': True,
        'threshold': DEFAULT_THRESHOLDS['swap'],
    },
    'load': {
        'monitor': True,
        'threshold': DEFAULT_THRESHOLDS['load'],
    },
    'network': {
        'monitor': False,
        'threshold': DEFAULT_THRESHOLDS['network'],
        'interface': None,  # None -> all interfaces combined
    },
    'telegram': {
        'bot_token': None,  # Will be in secrets
        'chat_id': None,
        'api_url': 'https://api.telegram.org',
        'timeout': 10,
    },
    'database': {
        'enabled': False,
        'type': 'sqlite',
        'sqlite': {
            'path': '/var/lib/resource-monitor/metrics.db',
        },
        'postgresql': {
            'host': 'localhost',
            'port': 5432,
            'database': 'resource_monitor',
            'user': 'monitor',
            'password': None,  # Will be in secrets
        },
        'mysql': {
            'host': 'localhost',
            'port': 3306,
            'database': 'resource_monitor',
            'user': 'monitor',
            'password': None,  # Will be in secrets
        },
    },
    'prometheus': {
        'enabled': False,
    },
    'alert_format': {
        'enabled': False,
        'width': 50,
        'line_prefix': '│ ',
        'line_suffix': ' │',
        'top_border': '┌' + '─' * 48 + '┐',
        'title_border': '├' + '═' * 48 + '┤',
        'section_border': '├' + '─' * 48 + '┤',
        'bottom_border': '└' + '─' * 48 + '┘',
        'title_align': 'center',
        'include_system_info': True,
        'include_resources': True,
        'include_top_processes': True,
        'include_disk_breakdown': True,
        'date_emoji': '📅',
        'hostname_emoji': '🖥️',
        'ip_emoji': '🌐',
        'uptime_emoji': '⏱️',
        'os_emoji': '💻',
        'kernel_emoji': '🔧',
        'ram_emoji': '🧠',
        'cpu_emoji': '🔥',
        'disk_emoji': '💽',
        'top_processes_emoji': '📊',
        'disk_breakdown_emoji': '📁',
    },
    'logging': {
        'level': 'INFO',
        'path': '/var/log/resource-monitor.log',
        'max_bytes': 10485760,  # 10MB
        'backup_count': 5,
    },
    'ports': {
        'control': 3000,
    },
}


class ConfigError(Exception):
    """Raised when a configuration value cannot be used"""


class ConfigStore:
    """Read-only view over defaults merged with the local config file and secrets"""

    def __init__(self, config_file: Optional[Path] = None, overrides: Optional[dict] = None):
        self.config_file = Path(config_file) if config_file else CONFIG_FILE
        self.secrets_file = self.config_file.parent / SECRETS_FILE_NAME
        self.config = self._deep_copy(DEFAULT_CONFIG)
        self.secrets = {}

        self.load()
        if overrides:
            self._deep_merge(self.config, overrides)

    def load(self):
        """Load configuration from local files"""
        # 1. Local config file (persistent overrides)
        if self.config_file.exists():
            try:
                with open(self.config_file, 'r') as f:
                    local_config = json.load(f)
                    self._deep_merge(self.config, local_config)
                logger.info(f"[Config] Loaded local config from {self.config_file}")
            except (OSError, ValueError) as e:
                logger.error(f"[Config] Failed to load local config: {e}")
        else:
            logger.info(f"[Config] No config file at {self.config_file}, using defaults")

        # 2. Secrets
        if self.secrets_file.exists():
            try:
                with open(self.secrets_file, 'r') as f:
                    self.secrets = json.load(f)
                # Restrict permissions
                try:
                    os.chmod(self.secrets_file, 0o600)
                except OSError:
                    pass
                logger.info(f"[Config] Loaded secrets from {self.secrets_file}")
            except (OSError, ValueError) as e:
                logger.error(f"[Config] Failed to load secrets: {e}")

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation path
        Example: get('cpu.threshold')
        """
        keys = key_path.split('.')
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def get_secret(self, key_name: str) -> Optional[str]:
        """Get secret value"""
        return self.secrets.get(key_name)

    def get_all(self) -> dict:
        """Get entire configuration (for debugging/display)"""
        return self._deep_copy(self.config)

    def _deep_merge(self, base: dict, updates: dict):
        """Deep merge updates into base dictionary"""
        for key, value in updates.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def _deep_copy(self, obj):
        """Deep copy a dictionary"""
        return json.loads(json.dumps(obj))


@dataclass(frozen=True)
class ResourceConfig:
    kind: str
    enabled: bool
    threshold: float


@dataclass(frozen=True)
class MonitorSettings:
    """Immutable configuration value built once at startup"""
    check_interval: int
    resources: Mapping[str, ResourceConfig]
    disk_path: str = '/'
    network_interface: Optional[str] = None
    alert_message_title: str = DEFAULT_CONFIG['monitoring']['alert_message_title']
    include_top_processes: bool = True
    top_processes_count: int = 3
    status_file: str = ''
    telegram: Mapping[str, Any] = field(default_factory=dict)
    database: Mapping[str, Any] = field(default_factory=dict)
    prometheus_enabled: bool = False
    alert_format: Mapping[str, Any] = field(default_factory=dict)
    log_settings: Mapping[str, Any] = field(default_factory=dict)
    control_port: int = 3000

    @property
    def alert_cooldown(self) -> int:
        """Minimum seconds between two successful alerts of the same kind"""
        return self.check_interval * 10

    def is_enabled(self, kind: str) -> bool:
        resource = self.resources.get(kind)
        return bool(resource and resource.enabled)


def default_status_file() -> str:
    return os.path.join(tempfile.gettempdir(), 'resource-monitor-status.tmp')


def _positive_int(value, key_path):
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{key_path} must be an integer, got {value!r}")
    if number <= 0:
        raise ConfigError(f"{key_path} must be positive, got {number}")
    return number


def _threshold(value, key_path):
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{key_path} must be a number, got {value!r}")
    if number < 0:
        raise ConfigError(f"{key_path} must not be negative, got {number}")
    return number


def _build_resources(store: ConfigStore) -> Dict[str, ResourceConfig]:
    resources = {
        # RAM has no enable flag
        'ram': ResourceConfig(
            kind='ram',
            enabled=True,
            threshold=_threshold(store.get('monitoring.threshold'), 'monitoring.threshold'),
        )
    }
    for kind in RESOURCE_KINDS[1:]:
        resources[kind] = ResourceConfig(
            kind=kind,
            enabled=bool(store.get(f'{kind}.monitor', False)),
            threshold=_threshold(store.get(f'{kind}.threshold'), f'{kind}.threshold'),
        )
    return resources


def _build_database(store: ConfigStore) -> Dict[str, Any]:
    db_type = store.get('database.type', 'sqlite')
    database = {
        'enabled': bool(store.get('database.enabled', False)),
        'type': db_type,
    }
    backend = store.get(f'database.{db_type}')
    if isinstance(backend, dict):
        backend = dict(backend)
        if 'password' in backend:
            backend['password'] = store.get_secret('db_password') or backend['password']
        database[db_type] = backend
    return database


def build_settings(store: ConfigStore) -> MonitorSettings:
    """
    Validate the merged configuration and freeze it.

    Raises ConfigError for values the monitoring loop cannot run with.
    Collaborator-level problems (unsupported database type, missing
    Telegram credentials) are left to the collaborator factories, which
    disable the affected subsystem instead.
    """
    telegram = dict(store.get('telegram', {}))
    telegram['bot_token'] = store.get_secret('telegram_bot_token') or telegram.get('bot_token')

    return MonitorSettings(
        check_interval=_positive_int(store.get('monitoring.check_interval'), 'monitoring.check_interval'),
        resources=MappingProxyType(_build_resources(store)),
        disk_path=store.get('disk.path') or '/',
        network_interface=store.get('network.interface'),
        alert_message_title=store.get('monitoring.alert_message_title'),
        include_top_processes=bool(store.get('monitoring.include_top_processes', True)),
        top_processes_count=_positive_int(store.get('monitoring.top_processes_count', 3),
                                          'monitoring.top_processes_count'),
        status_file=store.get('monitoring.status_file') or default_status_file(),
        telegram=MappingProxyType(telegram),
        database=MappingProxyType(_build_database(store)),
        prometheus_enabled=bool(store.get('prometheus.enabled', False)),
        alert_format=MappingProxyType(dict(store.get('alert_format', {}))),
        log_settings=MappingProxyType(dict(store.get('logging', {}))),
        control_port=_positive_int(store.get('ports.control', 3000), 'ports.control'),
    )


def load_settings(config_file: Optional[Path] = None, overrides: Optional[dict] = None) -> MonitorSettings:
    """Load configuration from disk and freeze it"""
    return build_settings(ConfigStore(config_file=config_file, overrides=overrides))
