"""Tests for provider routing and the REST provider."""
import json

import httpx
import pytest

from fleetcraft.errors import ProviderError, ProviderTimeoutError, UnknownResourceTypeError
from fleetcraft.providers import (
    HttpProvider,
    InMemoryProvider,
    ProviderRegistry,
    build_registry,
    create_provider,
)
from fleetcraft.values import ResourceRef


class TestProviderRegistry:
    """Tests for resource type routing."""

    def test_lookup_order(self):
        exact, prefix, default = InMemoryProvider(), InMemoryProvider(), InMemoryProvider()
        registry = ProviderRegistry({"net_vpc": exact, "net": prefix, "*": default})
        assert registry.resolve("net_vpc") is exact
        assert registry.resolve("net_subnet") is prefix
        assert registry.resolve("dns_record") is default

    def test_unknown_type(self):
        registry = ProviderRegistry({"net": InMemoryProvider()})
        assert not registry.has("dns_record")
        with pytest.raises(UnknownResourceTypeError, match="dns_record"):
            registry.resolve("dns_record")

    def test_schema_from_provider(self):
        provider = InMemoryProvider(schemas={"net_vpc": {"immutable_fields": ["cidr"]}})
        registry = ProviderRegistry({"*": provider})
        assert registry.schema("net_vpc").immutable_fields == frozenset({"cidr"})
        assert registry.schema("net_subnet").immutable_fields == frozenset()

    def test_build_registry(self):
        registry = build_registry({
            "*": {"kind": "memory"},
            "dns": {"kind": "http", "base_url": "https://dns.example.test/api/"},
        })
        assert isinstance(registry.resolve("net_vpc"), InMemoryProvider)
        dns = registry.resolve("dns_record")
        assert isinstance(dns, HttpProvider)
        assert dns.base_url == "https://dns.example.test/api"

    def test_create_unknown_kind(self):
        with pytest.raises(ValueError, match="Unknown provider kind"):
            create_provider("terraform")

    @pytest.mark.asyncio
    async def test_close_each_provider_once(self):
        closed = []

        class Tracking(InMemoryProvider):
            async def close(self):
                closed.append(self)

        shared = Tracking()
        await ProviderRegistry({"net": shared, "*": shared}).close()
        assert closed == [shared]


class FakeApi:
    """In-process REST backend for httpx.MockTransport."""

    def __init__(self):
        self.items = {}
        self.requests = []
        self.counter = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, request.url.path))
        parts = request.url.path.strip("/").split("/")
        if request.method == "POST":
            self.counter += 1
            item = {**json.loads(request.content), "id": self.counter}
            self.items[(parts[-1], str(self.counter))] = item
            return httpx.Response(201, json=item)
        key = (parts[-2], parts[-1])
        if key not in self.items:
            return httpx.Response(404, json={"error": "not found"})
        if request.method == "GET":
            return httpx.Response(200, json=self.items[key])
        if request.method == "PUT":
            self.items[key] = {**json.loads(request.content), "id": int(key[1])}
            return httpx.Response(204)
        del self.items[key]
        return httpx.Response(204)


@pytest.fixture
def api():
    return FakeApi()


@pytest.fixture
def http_provider(api):
    return HttpProvider(
        "https://cloud.example.test/v1",
        types={"net_vpc": {"immutable_fields": ["cidr"]}},
        transport=httpx.MockTransport(api),
    )


class TestHttpProvider:
    """Tests for HttpProvider against a mock transport."""

    @pytest.mark.asyncio
    async def test_lifecycle(self, api, http_provider):
        """Create, describe, update and delete map to the REST verbs."""
        created = await http_provider.create("net_vpc", {"cidr": "10.0.0.0/16"})
        assert created == {"cidr": "10.0.0.0/16", "id": "1"}

        described = await http_provider.describe(ResourceRef("net_vpc", "main"), "1")
        assert described == created

        updated = await http_provider.update("net_vpc", "1", {"cidr": "10.0.0.0/16", "name": "main"})
        assert updated == {"cidr": "10.0.0.0/16", "name": "main", "id": "1"}

        await http_provider.delete("net_vpc", "1")
        assert await http_provider.describe(ResourceRef("net_vpc", "main"), "1") is None
        assert api.requests == [
            ("POST", "/v1/net_vpc"),
            ("GET", "/v1/net_vpc/1"),
            ("PUT", "/v1/net_vpc/1"),
            ("DELETE", "/v1/net_vpc/1"),
            ("GET", "/v1/net_vpc/1"),
        ]
        await http_provider.close()

    @pytest.mark.asyncio
    async def test_delete_missing_is_ok(self, http_provider):
        await http_provider.delete("net_vpc", "42")

    @pytest.mark.asyncio
    async def test_server_error(self):
        provider = HttpProvider(
            "https://cloud.example.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="quota exceeded")),
        )
        with pytest.raises(ProviderError, match="HTTP 500 quota exceeded"):
            await provider.create("net_vpc", {})

    @pytest.mark.asyncio
    async def test_create_without_id(self):
        provider = HttpProvider(
            "https://cloud.example.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"name": "x"})),
        )
        with pytest.raises(ProviderError, match="no 'id'"):
            await provider.create("net_vpc", {"name": "x"})

    @pytest.mark.asyncio
    async def test_non_json_response(self):
        provider = HttpProvider(
            "https://cloud.example.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>")),
        )
        with pytest.raises(ProviderError, match="not JSON"):
            await provider.create("net_vpc", {})

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        provider = HttpProvider("https://cloud.example.test", transport=httpx.MockTransport(handler))
        with pytest.raises(ProviderTimeoutError):
            await provider.describe(ResourceRef("net_vpc", "main"), "1")

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider = HttpProvider("https://cloud.example.test", transport=httpx.MockTransport(handler))
        with pytest.raises(ProviderError, match="failed"):
            await provider.delete("net_vpc", "1")

    @pytest.mark.asyncio
    async def test_token_from_environment(self, monkeypatch):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"id": "7"})

        monkeypatch.setenv("CLOUD_TOKEN", "abc123")
        provider = HttpProvider("https://cloud.example.test", token_env="CLOUD_TOKEN",
                                transport=httpx.MockTransport(handler))
        await provider.create("net_vpc", {})
        assert seen["auth"] == "Bearer abc123"

    def test_schema(self, http_provider):
        assert http_provider.schema("net_vpc").immutable_fields == frozenset({"cidr"})
        assert not http_provider.schema("net_subnet").destroy_before_create
