"""
Base Service Client for Internal Microservice Communication

Base class for all HTTP clients that talk to peer microservices.
"""

import httpx
import logging
from typing import Optional, Dict, Any
from abc import ABC

from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

logger = logging.getLogger(__name__)


class BaseServiceClient(ABC):
    """
    Base class for microservice clients.

    Handles:
    1. Service discovery
    2. HTTP client management
    3. Timeouts and transport retries

    Example:
        class ShopClient(BaseServiceClient):
            service_name = "shop_service"
            default_port = 8280

            async def get_shop(self, shop_id: str):
                response = await self.get(f"/api/v1/shops/{shop_id}")
                return response.json()
    """

    # Subclasses define these
    service_name: str = None
    default_port: int = None
    env_prefix: str = None

    def __init__(
        self,
        base_url: Optional[str] = None,
        config=None,
        timeout: float = 30.0,
        enable_retry: bool = True,
    ):
        """
        Args:
            base_url: Service base URL (service discovery is used when omitted)
            config: Optional ConfigManager used for discovery
            timeout: Request timeout in seconds
            enable_retry: Retry transport errors with exponential backoff
        """
        if not self.service_name:
            raise ValueError(f"{self.__class__.__name__} must define 'service_name'")

        if base_url:
            self.base_url = base_url.rstrip('/')
        else:
            self.base_url = self._discover_service(config)

        self.enable_retry = enable_retry
        self.client = httpx.AsyncClient(
            timeout=timeout,
            headers={
                "Content-Type": "application/json",
                "User-Agent": f"isA-Internal-Client/{self.service_name}",
            },
        )

        logger.debug(f"Initialized {self.service_name} client: {self.base_url}")

    def _discover_service(self, config=None) -> str:
        from core.config_manager import ConfigManager

        if config is None:
            config = ConfigManager(self.service_name)

        prefix = self.env_prefix or self.service_name.upper()
        host, port = config.discover_service(
            service_name=self.service_name,
            default_host='localhost',
            default_port=self.default_port or 8000,
            env_host_key=f"{prefix}_HOST",
            env_port_key=f"{prefix}_PORT",
        )
        return f"http://{host}:{port}"

    async def close(self):
        """Close the HTTP client"""
        await self.client.aclose()
        logger.debug(f"Closed {self.service_name} client")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        if not self.enable_retry:
            return await self.client.request(method, url, **kwargs)

        @retry(
            stop=stop_after_attempt(3),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True
        )
        async def _retry_wrapper():
            return await self.client.request(method, url, **kwargs)

        return await _retry_wrapper()

    # ========================================
    # HTTP methods
    # ========================================

    async def get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> httpx.Response:
        return await self._request("GET", path, params=params, headers=headers)

    async def post(
        self,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> httpx.Response:
        # POST is not idempotent: no transport retries
        url = f"{self.base_url}{path}"
        return await self.client.post(url, json=json, headers=headers)

    async def delete(
        self,
        path: str,
        headers: Optional[Dict[str, str]] = None
    ) -> httpx.Response:
        return await self._request("DELETE", path, headers=headers)

    async def health_check(self) -> bool:
        """Return True when the peer answers /health with 200"""
        try:
            response = await self.get("/health")
            return response.status_code == 200
        except Exception as e:
            logger.warning(f"{self.service_name} health check failed: {e}")
            return False


__all__ = ["BaseServiceClient"]
