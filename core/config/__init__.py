#!/usr/bin/env python3
"""Modular configuration system for the ad campaign platform

Configuration hierarchy:
- infra_config: Infrastructure services (PostgreSQL, NATS)
- logging_config: Logging configuration
"""
import os
from dotenv import load_dotenv
from .logging_config import LoggingConfig, setup_service_logger
from .infra_config import InfraConfig

# Load environment file based on ENV
env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
env_files = {
    "development": "deployment/environments/dev.env",
    "dev": "deployment/environments/dev.env",
    "testing": "deployment/environments/test.env",
    "test": "deployment/environments/test.env",
    "staging": "deployment/environments/staging.env",
    "production": "deployment/environments/production.env",
}
env_file = env_files.get(env, "deployment/environments/dev.env")
load_dotenv(env_file, override=False)

# Create global settings instance
settings = InfraConfig.from_env()


def get_settings() -> InfraConfig:
    """Get global settings instance"""
    return settings


def reload_settings() -> InfraConfig:
    """Reload settings from environment"""
    global settings
    settings = InfraConfig.from_env()
    return settings


__all__ = [
    'InfraConfig',
    'LoggingConfig',
    'get_settings',
    'reload_settings',
    'settings',
    'setup_service_logger',
]
