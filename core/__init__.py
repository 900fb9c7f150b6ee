#!/usr/bin/env python3
"""
Core Module for Microservices Architecture

Shared infrastructure components for the microservices in this repository.

COMPONENTS:
    - config/: dotenv loading, infrastructure and logging configuration
    - config_manager.py: per-service configuration and service discovery
    - postgres_client.py: asyncpg-backed PostgreSQL client
    - nats_client.py: NATS JetStream event bus
    - service_client_base.py: base class for HTTP clients of peer services

USAGE:
    from core.config_manager import ConfigManager

    # Initialize configuration for a service
    config = ConfigManager("service_name")
"""

from .config_manager import ConfigManager, Environment, ServiceConfig, create_config

__all__ = [
    "ConfigManager",
    "Environment",
    "ServiceConfig",
    "create_config",
]

__version__ = "2.0.0"
