"""
Configuration Manager

Per-service configuration and service discovery.

Usage:
    from core.config_manager import ConfigManager

    config_manager = ConfigManager("ad_campaign_service")
    config = config_manager.get_service_config()
    host, port = config_manager.discover_service(
        service_name="notification_service",
        default_host="localhost",
        default_port=8270,
        env_host_key="NOTIFICATION_SERVICE_HOST",
        env_port_key="NOTIFICATION_SERVICE_PORT",
    )
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from .config import InfraConfig, get_settings

logger = logging.getLogger(__name__)


def _bool(val: str) -> bool:
    return val.lower() == "true"


def _int(val: Optional[str], default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default


class Environment(str, Enum):
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


@dataclass
class ServiceConfig:
    """Runtime settings of a single microservice"""
    service_name: str
    service_port: int = 0
    service_host: str = "0.0.0.0"
    environment: Environment = Environment.DEVELOPMENT
    log_level: str = "INFO"
    debug: bool = False
    nats_enabled: bool = True
    infra: InfraConfig = field(default_factory=InfraConfig.from_env)


class ConfigManager:
    """Service configuration and discovery for one microservice"""

    def __init__(self, service_name: str):
        self.service_name = service_name
        self._env_prefix = service_name.upper()
        self._service_config: Optional[ServiceConfig] = None

    @property
    def environment(self) -> Environment:
        raw = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
        aliases = {"dev": "development", "test": "testing", "prod": "production"}
        try:
            return Environment(aliases.get(raw, raw))
        except ValueError:
            return Environment.DEVELOPMENT

    def get_service_config(self) -> ServiceConfig:
        """Build (once) and return this service's configuration"""
        if self._service_config is None:
            environment = self.environment
            self._service_config = ServiceConfig(
                service_name=self.service_name,
                service_port=_int(
                    os.getenv(f"{self._env_prefix}_PORT") or os.getenv("SERVICE_PORT"), 0
                ),
                service_host=os.getenv(f"{self._env_prefix}_HOST", "0.0.0.0"),
                environment=environment,
                log_level=os.getenv("LOG_LEVEL", "DEBUG" if environment == Environment.DEVELOPMENT else "INFO"),
                debug=_bool(os.getenv("DEBUG", "false")),
                nats_enabled=_bool(os.getenv("NATS_ENABLED", "true")),
                infra=get_settings(),
            )
        return self._service_config

    def discover_service(
        self,
        service_name: str,
        default_host: str = "localhost",
        default_port: int = 80,
        env_host_key: Optional[str] = None,
        env_port_key: Optional[str] = None,
    ) -> Tuple[str, int]:
        """
        Resolve host and port of a peer service.

        Priority: explicit environment variables, then defaults.
        """
        host = os.getenv(env_host_key) if env_host_key else None
        port = _int(os.getenv(env_port_key), default_port) if env_port_key else default_port

        if host:
            logger.debug(f"Discovered {service_name} from environment: {host}:{port}")
            return host, port

        logger.debug(f"Using default address for {service_name}: {default_host}:{port}")
        return default_host, port

    def print_config_summary(self, show_secrets: bool = False):
        """Log the effective configuration (development aid)"""
        config = self.get_service_config()
        infra = config.infra
        password = infra.postgres_password if show_secrets else "***"
        logger.info(f"Configuration for {config.service_name} ({config.environment.value})")
        logger.info(f"  port={config.service_port} log_level={config.log_level} debug={config.debug}")
        logger.info(
            f"  postgres={infra.postgres_user}:{password}@{infra.postgres_host}:"
            f"{infra.postgres_port}/{infra.postgres_db}"
        )
        logger.info(f"  nats={infra.nats_servers} enabled={config.nats_enabled}")


def create_config(service_name: str) -> ServiceConfig:
    """Shortcut for ConfigManager(service_name).get_service_config()"""
    return ConfigManager(service_name).get_service_config()


__all__ = ["ConfigManager", "Environment", "ServiceConfig", "create_config"]
