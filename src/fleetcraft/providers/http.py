"""Generic REST provider.

Maps the provider interface onto a plain JSON API:

    POST   {base_url}/{type}        create, body = attributes
    GET    {base_url}/{type}/{id}   describe (404 = does not exist)
    PUT    {base_url}/{type}/{id}   update
    DELETE {base_url}/{type}/{id}   delete (404 = already gone)
"""
import logging
import os
from typing import Any, Mapping, Optional

import httpx

from ..errors import ProviderError, ProviderTimeoutError
from ..values import ResourceRef
from .base import ResolvedAttributes, ResourceProvider, ResourceTypeSchema

logger = logging.getLogger(__name__)


class HttpProvider(ResourceProvider):
    """Resource provider backed by a REST endpoint."""

    name = "http"

    def __init__(
        self,
        base_url: str,
        headers: Optional[Mapping[str, str]] = None,
        timeout: float = 30.0,
        types: Optional[Mapping[str, Mapping[str, Any]]] = None,
        token_env: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._headers = dict(headers or {})
        if token_env and os.environ.get(token_env):
            self._headers["Authorization"] = f"Bearer {os.environ[token_env]}"
        self._timeout = timeout
        self._transport = transport
        self._schemas = {
            resource_type: ResourceTypeSchema.from_dict(data)
            for resource_type, data in (types or {}).items()
        }
        self._client: Optional[httpx.AsyncClient] = None

    def schema(self, resource_type: str) -> ResourceTypeSchema:
        return self._schemas.get(resource_type, ResourceTypeSchema())

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers,
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
        return self._client

    async def _request(self, method: str, path: str,
                       json: Optional[dict] = None) -> httpx.Response:
        client = self._get_client()
        try:
            resp = await client.request(method, path, json=json)
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(f"{method} {path} timed out: {e}")
        except httpx.HTTPError as e:
            raise ProviderError(f"{method} {path} failed: {e}")
        logger.debug(f"{method} {path} -> {resp.status_code}")
        return resp

    @staticmethod
    def _check(resp: httpx.Response, context: str) -> None:
        if resp.status_code >= 400:
            raise ProviderError(f"{context}: HTTP {resp.status_code} {resp.text[:200]}")

    @staticmethod
    def _attributes(resp: httpx.Response, context: str,
                    fallback_id: Optional[str] = None) -> ResolvedAttributes:
        try:
            data = resp.json()
        except ValueError:
            raise ProviderError(f"{context}: response is not JSON")
        if not isinstance(data, dict):
            raise ProviderError(f"{context}: expected a JSON object")
        if "id" not in data:
            if fallback_id is None:
                raise ProviderError(f"{context}: response has no 'id'")
            data["id"] = fallback_id
        data["id"] = str(data["id"])
        return data

    async def describe(self, ref: ResourceRef, resource_id: str) -> Optional[ResolvedAttributes]:
        resp = await self._request("GET", f"/{ref.type}/{resource_id}")
        if resp.status_code == 404:
            return None
        self._check(resp, f"describe {ref}")
        return self._attributes(resp, f"describe {ref}", fallback_id=resource_id)

    async def create(self, resource_type: str, attributes: dict[str, Any]) -> ResolvedAttributes:
        resp = await self._request("POST", f"/{resource_type}", json=attributes)
        self._check(resp, f"create {resource_type}")
        return self._attributes(resp, f"create {resource_type}")

    async def update(self, resource_type: str, resource_id: str,
                     attributes: dict[str, Any]) -> ResolvedAttributes:
        resp = await self._request("PUT", f"/{resource_type}/{resource_id}", json=attributes)
        self._check(resp, f"update {resource_type} {resource_id}")
        if not resp.content:
            return {**attributes, "id": resource_id}
        return self._attributes(resp, f"update {resource_type} {resource_id}", fallback_id=resource_id)

    async def delete(self, resource_type: str, resource_id: str) -> None:
        resp = await self._request("DELETE", f"/{resource_type}/{resource_id}")
        if resp.status_code == 404:
            logger.info(f"{resource_type} {resource_id} already gone")
            return
        self._check(resp, f"delete {resource_type} {resource_id}")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
