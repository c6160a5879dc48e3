import asyncio
import logging
from typing import Optional, Dict, Any
from dataclasses import dataclass
from enum import Enum

import httpx

from .config import panel_config, PanelConfig

logger = logging.getLogger(__name__)


class APIResult(Enum):
    SUCCESS = "success"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass
class APIResponse:
    result: APIResult
    status_code: int
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        # Suspend and unsuspend are idempotent; a conflict means the server
        # is already in the requested state.
        return self.result in (APIResult.SUCCESS, APIResult.CONFLICT)


class PterodactylClient:
    def __init__(self, config: PanelConfig = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or panel_config
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            async with self._lock:
                if self._client is None or self._client.is_closed:
                    limits = httpx.Limits(
                        max_connections=self.config.max_connections,
                        max_keepalive_connections=self.config.max_keepalive
                    )
                    self._client = httpx.AsyncClient(
                        base_url=self.config.application_url,
                        headers={
                            "Authorization": f"Bearer {self.config.api_key}",
                            "Accept": "application/json",
                            "Content-Type": "application/json",
                        },
                        timeout=httpx.Timeout(self.config.timeout),
                        limits=limits,
                        transport=self._transport,
                        http2=self._transport is None
                    )
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        url: str,
        json: Optional[Dict] = None,
        retry_count: int = None
    ) -> APIResponse:
        retry_count = retry_count or self.config.retry_count
        client = await self._get_client()

        for attempt in range(retry_count):
            try:
                response = await client.request(method, url, json=json)

                if response.status_code == 409:
                    return APIResponse(
                        result=APIResult.CONFLICT,
                        status_code=409,
                        data=response.json() if response.content else None
                    )

                if response.status_code == 404:
                    return APIResponse(
                        result=APIResult.NOT_FOUND,
                        status_code=404,
                        error="Server not found on panel"
                    )

                if response.status_code >= 400:
                    try:
                        error_data = response.json() if response.content else {}
                    except ValueError:
                        error_data = {"errors": [{"detail": response.text or "Unknown error"}]}
                    return APIResponse(
                        result=APIResult.ERROR,
                        status_code=response.status_code,
                        error=self._error_detail(error_data)
                    )

                return APIResponse(
                    result=APIResult.SUCCESS,
                    status_code=response.status_code,
                    data=response.json() if response.content else None
                )

            except httpx.TimeoutException as e:
                logger.warning(f"Panel request timeout (attempt {attempt + 1}/{retry_count}): {method} {url}")
                if attempt == retry_count - 1:
                    return APIResponse(
                        result=APIResult.ERROR,
                        status_code=0,
                        error=f"Request timeout: {str(e)}"
                    )
                await asyncio.sleep(self.config.retry_delay * (attempt + 1))

            except httpx.ConnectError as e:
                logger.warning(f"Panel connection error (attempt {attempt + 1}/{retry_count}): {method} {url}")
                if attempt == retry_count - 1:
                    return APIResponse(
                        result=APIResult.ERROR,
                        status_code=0,
                        error=f"Connection error: {str(e)}"
                    )
                await asyncio.sleep(self.config.retry_delay * (attempt + 1))

            except httpx.HTTPError as e:
                logger.error(f"Unexpected panel error: {e}")
                return APIResponse(
                    result=APIResult.ERROR,
                    status_code=0,
                    error=str(e)
                )

        return APIResponse(
            result=APIResult.ERROR,
            status_code=0,
            error="Max retries exceeded"
        )

    @staticmethod
    def _error_detail(error_data: Dict) -> str:
        errors = error_data.get("errors") if isinstance(error_data, dict) else None
        if errors:
            return "; ".join(str(e.get("detail", e)) for e in errors)
        return str(error_data)

    async def create_server(
        self,
        name: str,
        user_id: int,
        egg_id: int,
        nest_id: int,
        location_id: int,
        ram: int,
        cpu: int,
        disk: int,
        databases: int,
        backups: int,
        allocations: int,
        docker_image: str,
        startup: str,
        environment: Dict[str, str]
    ) -> APIResponse:
        # Sent once: a retried create after a timeout can leave two servers.
        return await self._request(
            "POST",
            "/servers",
            json={
                "name": name,
                "user": user_id,
                "nest": nest_id,
                "egg": egg_id,
                "docker_image": docker_image,
                "startup": startup,
                "environment": environment,
                "limits": {
                    "memory": ram,
                    "swap": 0,
                    "disk": disk,
                    "io": 500,
                    "cpu": cpu
                },
                "feature_limits": {
                    "databases": databases,
                    "backups": backups,
                    "allocations": allocations
                },
                "deploy": {
                    "locations": [location_id],
                    "dedicated_ip": False,
                    "port_range": []
                }
            },
            retry_count=1
        )

    async def get_server(self, server_id: int) -> APIResponse:
        return await self._request("GET", f"/servers/{server_id}")

    async def update_server_build(
        self,
        server_id: int,
        ram: int,
        cpu: int,
        disk: int,
        databases: int,
        backups: int,
        allocations: int
    ) -> APIResponse:
        # The build endpoint requires the primary allocation id.
        current = await self.get_server(server_id)
        if not current.ok or not current.data:
            return current

        attributes = current.data.get("attributes", {})
        limits = attributes.get("limits", {})
        return await self._request(
            "PATCH",
            f"/servers/{server_id}/build",
            json={
                "allocation": attributes.get("allocation"),
                "memory": ram,
                "swap": limits.get("swap", 0),
                "disk": disk,
                "io": limits.get("io", 500),
                "cpu": cpu,
                "threads": limits.get("threads"),
                "feature_limits": {
                    "databases": databases,
                    "backups": backups,
                    "allocations": allocations
                }
            }
        )

    async def delete_server(self, server_id: int) -> APIResponse:
        return await self._request("DELETE", f"/servers/{server_id}")

    async def suspend_server(self, server_id: int) -> APIResponse:
        return await self._request("POST", f"/servers/{server_id}/suspend")

    async def unsuspend_server(self, server_id: int) -> APIResponse:
        return await self._request("POST", f"/servers/{server_id}/unsuspend")

    async def health_check(self) -> bool:
        response = await self._request("GET", "/locations", retry_count=1)
        return response.result == APIResult.SUCCESS


_client_instance: Optional[PterodactylClient] = None


def get_panel_client() -> PterodactylClient:
    global _client_instance
    if _client_instance is None:
        _client_instance = PterodactylClient()
    return _client_instance


async def close_panel_client():
    global _client_instance
    if _client_instance:
        await _client_instance.close()
        _client_instance = None
