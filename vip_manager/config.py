# vip_manager/config.py
import yaml
import os
import socket
import logging
from typing import Dict, List, Any, Optional, Tuple

from pydantic import ValidationError

from vip_manager.internal.domain.models import VIPConfig

CONFIG_FILE_NAME = 'vip-manager.yaml'
DEFAULT_CONFIG_PATH = os.path.join('/etc/default', CONFIG_FILE_NAME)

DEFAULT_DCS_ENDPOINTS = {
    'etcd': ['http://127.0.0.1:2379'],
    'consul': ['http://127.0.0.1:8500'],
}

# config key -> environment variable
ENV_VARS = {
    'ip': 'VIP_IP',
    'netmask': 'VIP_NETMASK',
    'interface': 'VIP_INTERFACE',
    'trigger_key': 'VIP_TRIGGER_KEY',
    'trigger_value': 'VIP_TRIGGER_VALUE',
    'dcs_type': 'VIP_DCS_TYPE',
    'dcs_endpoints': 'VIP_DCS_ENDPOINTS',
    'etcd_user': 'VIP_ETCD_USER',
    'etcd_password': 'VIP_ETCD_PASSWORD',
    'consul_token': 'VIP_CONSUL_TOKEN',
    'recheck_interval': 'VIP_RECHECK_INTERVAL',
    'retry_after': 'VIP_RETRY_AFTER',
    'wait_time': 'VIP_WAIT_TIME',
    'arp_probe': 'VIP_ARP_PROBE',
    'status_host': 'VIP_STATUS_HOST',
    'status_port': 'VIP_STATUS_PORT',
    'log_level': 'LOG_LEVEL',
}

REQUIRED_KEYS = ('ip', 'netmask', 'interface', 'trigger_key')

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    pass


class AppConfig:
    """Configuration resolved from, in increasing priority, the YAML file,
    the environment and command-line overrides."""

    def __init__(self, config_path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None):
        self._config_path = config_path or os.getenv('VIP_CONFIG', DEFAULT_CONFIG_PATH)
        self._raw_config: Dict[str, Any] = self._load_config_from_file()
        self._overrides = {k: v for k, v in (overrides or {}).items() if v is not None}

        self._configure_logging()

    def _load_config_from_file(self) -> Dict[str, Any]:
        try:
            with open(self._config_path, 'r') as f:
                config_data = yaml.safe_load(f)
                logger.info(f"Successfully loaded configuration from {self._config_path}")
                # YAML keys may be written with dashes, as on the command line
                return {str(k).replace('-', '_'): v for k, v in (config_data or {}).items()}
        except FileNotFoundError:
            logger.error(f"Configuration file not found at {self._config_path}. Using default values or environment variables where possible.")
            return {}
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML configuration file {self._config_path}: {e}")
            return {}

    def _configure_logging(self):
        log_level_str = str(self.get('log_level', 'INFO')).upper()
        numeric_level = getattr(logging, log_level_str, logging.INFO)
        logging.basicConfig(level=numeric_level,
                            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        logger.debug(f"Logging level set to {log_level_str}")

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value: command line, then environment, then file."""
        if key in self._overrides:
            return self._overrides[key]
        env_var = ENV_VARS.get(key)
        if env_var:
            env_value = os.getenv(env_var)
            if env_value is not None and env_value != '':
                return env_value
        return self._raw_config.get(key, default)

    def _get_number(self, key: str, default: float, cast=float):
        value = self.get(key)
        if value is None:
            return default
        try:
            return cast(value)
        except (TypeError, ValueError):
            logger.warning(f"Invalid value for {key}: {value!r}. Falling back to {default}.")
            return default

    def _get_bool(self, key: str, default: bool) -> bool:
        value = self.get(key)
        if value is None:
            return default
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ('1', 'true', 'yes', 'on')

    # --- VIP Config ---
    def get_vip_config(self) -> VIPConfig:
        missing = [key for key in REQUIRED_KEYS if self.get(key) in (None, '')]
        if missing:
            raise ConfigError(f"Missing required configuration: {', '.join(missing)}")

        try:
            return VIPConfig(
                ip=str(self.get('ip')),
                netmask=self.get('netmask'),
                interface=str(self.get('interface')),
                nodename=self.get_trigger_value(),
                trigger_key=str(self.get('trigger_key')),
            )
        except ValidationError as e:
            raise ConfigError(f"Invalid VIP configuration: {e}") from e

    def get_trigger_value(self) -> str:
        return str(self.get('trigger_value') or socket.gethostname())

    # --- DCS Config ---
    def get_dcs_type(self) -> str:
        return str(self.get('dcs_type', 'etcd')).strip().lower()

    def get_dcs_endpoints(self) -> List[str]:
        endpoints = self.get('dcs_endpoints')
        if isinstance(endpoints, str):
            endpoints = [ep.strip() for ep in endpoints.split(',') if ep.strip()]
        if endpoints:
            return list(endpoints)

        default = DEFAULT_DCS_ENDPOINTS.get(self.get_dcs_type(), DEFAULT_DCS_ENDPOINTS['etcd'])
        logger.warning(f"dcs_endpoints not found in command line, environment or config. Using default: {default}")
        return list(default)

    def get_etcd_credentials(self) -> Tuple[Optional[str], Optional[str]]:
        return self.get('etcd_user'), self.get('etcd_password')

    def get_consul_token(self) -> Optional[str]:
        return self.get('consul_token')

    # --- Timing ---
    def get_recheck_interval(self) -> float:
        return self._get_number('recheck_interval', 10.0)

    def get_retry_after(self) -> float:
        return self._get_number('retry_after', 1.0)

    def get_wait_time(self) -> float:
        return self._get_number('wait_time', 30.0)

    def is_arp_probe_enabled(self) -> bool:
        return self._get_bool('arp_probe', True)

    # --- Status API ---
    def get_status_host(self) -> str:
        return str(self.get('status_host', '127.0.0.1'))

    def get_status_port(self) -> Optional[int]:
        port = self._get_number('status_port', None, cast=int)
        return port or None
