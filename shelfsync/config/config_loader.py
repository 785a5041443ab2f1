"""
Configuration loader for ShelfSync
"""

import copy
import os
import yaml
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any, Optional, Union

from dotenv import load_dotenv


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path('config/shelfsync.yaml')

DEFAULT_CONFIG: Dict[str, Any] = {
    'database': {
        'url': 'sqlite+aiosqlite:///./data/shelfsync.db',
        'echo': False
    },
    'aims': {
        'base_url': '',
        'cluster': '',
        'username': '',
        'password': '',
        'company_code': '',
        'timeout_seconds': 30,
        'verify_tls': True,
        'batch_size': 500,  # AIMS rejects larger article POSTs
        'token_expiry_buffer_seconds': 300,
        'login_max_retries': 3,
        'login_base_delay_ms': 1000
    },
    'sync_queue': {
        'enabled': True,
        'interval_seconds': 10,
        'settle_delay_ms': 5000,
        'batch_size': 50,
        'base_retry_delay_ms': 1000,
        'max_retry_delay_ms': 60000,
        'default_max_attempts': 5,
        'audit_errors': True
    },
    'api': {
        'host': '0.0.0.0',
        'port': 8080,
        'cors_origins': ['*']
    },
    'logging': {
        'level': 'INFO',
        'console_enabled': True,
        'json_format': False,
        'file_enabled': False,
        'file_path': 'logs/shelfsync.log',
        'file_max_size': 10 * 1024 * 1024,
        'file_backup_count': 5
    }
}

# (environment variable, section, key, cast)
ENV_OVERRIDES = (
    ('DATABASE_URL', 'database', 'url', str),
    ('LOG_LEVEL', 'logging', 'level', str),
    ('AIMS_BASE_URL', 'aims', 'base_url', str),
    ('AIMS_CLUSTER', 'aims', 'cluster', str),
    ('AIMS_USERNAME', 'aims', 'username', str),
    ('AIMS_PASSWORD', 'aims', 'password', str),
    ('AIMS_COMPANY_CODE', 'aims', 'company_code', str),
    ('SYNC_QUEUE_INTERVAL_SECONDS', 'sync_queue', 'interval_seconds', float),
)


def load_config(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Load configuration from defaults, a YAML file and the environment"""

    load_dotenv()

    config = copy.deepcopy(DEFAULT_CONFIG)

    yaml_path = Path(path) if path else DEFAULT_CONFIG_PATH

    if yaml_path.exists():
        try:
            with open(yaml_path, 'r', encoding='utf-8') as f:
                yaml_config = yaml.safe_load(f)
            if yaml_config:
                _deep_update(config, yaml_config)
                logger.info(f"Configuration loaded from {yaml_path}")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load configuration from {yaml_path}: {e}")
            logger.error("Using default configuration")
    elif path:
        logger.error(f"Configuration file {yaml_path} not found!")
    else:
        logger.info(f"No configuration file at {yaml_path}, using defaults")

    for env_name, section, key, cast in ENV_OVERRIDES:
        value = os.getenv(env_name)
        if value:
            config[section][key] = cast(value)

    return config


def _deep_update(base_dict: Dict[str, Any], update_dict: Dict[str, Any]) -> None:
    """Deep update nested dictionary"""
    for key, value in update_dict.items():
        if key in base_dict and isinstance(base_dict[key], dict) and isinstance(value, dict):
            _deep_update(base_dict[key], value)
        else:
            base_dict[key] = value


@dataclass
class SyncQueueSettings:
    """Tuning knobs for the sync queue processor"""
    enabled: bool = True
    interval_seconds: float = 10.0
    settle_delay_ms: int = 5000
    batch_size: int = 50
    base_retry_delay_ms: int = 1000
    max_retry_delay_ms: int = 60000
    default_max_attempts: int = 5
    audit_errors: bool = True

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'SyncQueueSettings':
        section = config.get('sync_queue', {})
        defaults = cls()
        return cls(
            enabled=bool(section.get('enabled', defaults.enabled)),
            interval_seconds=float(section.get('interval_seconds', defaults.interval_seconds)),
            settle_delay_ms=int(section.get('settle_delay_ms', defaults.settle_delay_ms)),
            batch_size=int(section.get('batch_size', defaults.batch_size)),
            base_retry_delay_ms=int(section.get('base_retry_delay_ms', defaults.base_retry_delay_ms)),
            max_retry_delay_ms=int(section.get('max_retry_delay_ms', defaults.max_retry_delay_ms)),
            default_max_attempts=int(section.get('default_max_attempts', defaults.default_max_attempts)),
            audit_errors=bool(section.get('audit_errors', defaults.audit_errors)),
        )
