"""Tests for the tunnel coordinator, providers and URL shortener."""

import time

import httpx
import pytest

from common.exceptions import TunnelCreationError, TunnelTimeoutError
from tunnel.coordinator import TunnelCoordinator
from tunnel.providers import SshTunnelProvider, TunnelProvider
from tunnel.registry import TunnelRegistry
from tunnel.shortener import UrlShortener


@pytest.fixture
def coordinator(runtime_context, fake_provider, static_shortener):
    return TunnelCoordinator(runtime_context, provider=fake_provider, shortener=static_shortener)


class TestTunnelCoordinator:
    """Test tunnel creation and teardown."""

    @pytest.mark.asyncio
    async def test_request_tunnel_returns_endpoint(self, coordinator, fake_provider):
        endpoint = await coordinator.request_tunnel(50000)

        assert endpoint.url == "https://zap-50000.relay.test"
        assert endpoint.shortened_url == "https://short.test/zap-50000.relay.test"
        assert endpoint.provider == "fake"
        assert coordinator.list_tunnels() == [endpoint.url]
        assert coordinator.open_tunnels == [endpoint.url]

    @pytest.mark.asyncio
    async def test_close_tunnel_is_idempotent(self, coordinator, fake_provider):
        endpoint = await coordinator.request_tunnel(50000)

        first = await coordinator.close_tunnel(endpoint.url)
        second = await coordinator.close_tunnel(endpoint.url)

        assert (first.closed, first.failed) == (1, 0)
        assert (second.closed, second.failed) == (0, 0)
        assert fake_provider.closed == [endpoint.url]
        assert coordinator.list_tunnels() == []

    @pytest.mark.asyncio
    async def test_close_all_with_nothing_open_reports_zero(self, coordinator):
        result = await coordinator.close_all_tunnels()

        assert (result.closed, result.failed, result.errors) == (0, 0, [])

    @pytest.mark.asyncio
    async def test_leftover_tunnels_are_closed_before_creating(self, runtime_context, fake_provider, static_shortener):
        TunnelRegistry(runtime_context.tunnel_registry_path).register("https://zap-old.relay.test")
        coordinator = TunnelCoordinator(runtime_context, provider=fake_provider, shortener=static_shortener)

        endpoint = await coordinator.request_tunnel(50000)

        assert fake_provider.orphans_closed == ["https://zap-old.relay.test"]
        assert coordinator.list_tunnels() == [endpoint.url]

    @pytest.mark.asyncio
    async def test_second_tunnel_keeps_the_first_open(self, coordinator, fake_provider):
        first = await coordinator.request_tunnel(50000)
        second = await coordinator.request_tunnel(50002)

        assert coordinator.open_tunnels == [first.url, second.url]
        assert sorted(coordinator.list_tunnels()) == sorted([first.url, second.url])
        assert fake_provider.closed == []
        assert fake_provider.orphans_closed == []

    @pytest.mark.asyncio
    async def test_leftover_cleanup_skips_owned_tunnels(self, coordinator, fake_provider):
        owned = await coordinator.request_tunnel(50000)
        coordinator.registry.register("https://zap-stale.relay.test")

        result = await coordinator.close_leftover_tunnels()

        assert result.closed == 1
        assert fake_provider.orphans_closed == ["https://zap-stale.relay.test"]
        assert coordinator.list_tunnels() == [owned.url]
        assert coordinator.open_tunnels == [owned.url]

    @pytest.mark.asyncio
    async def test_close_all_still_closes_owned_tunnels(self, coordinator, fake_provider):
        first = await coordinator.request_tunnel(50000)
        second = await coordinator.request_tunnel(50002)

        result = await coordinator.close_all_tunnels()

        assert result.closed == 2
        assert sorted(fake_provider.closed) == sorted([first.url, second.url])
        assert coordinator.list_tunnels() == []

    @pytest.mark.asyncio
    async def test_provider_failure_is_creation_error(self, runtime_context, provider_factory, static_shortener):
        coordinator = TunnelCoordinator(
            runtime_context, provider=provider_factory(fail=True), shortener=static_shortener
        )

        with pytest.raises(TunnelCreationError):
            await coordinator.request_tunnel(50000)
        assert coordinator.list_tunnels() == []

    @pytest.mark.asyncio
    async def test_slow_provider_times_out_within_bound(self, runtime_context, provider_factory, static_shortener):
        coordinator = TunnelCoordinator(
            runtime_context, provider=provider_factory(delay=5), shortener=static_shortener
        )

        started = time.monotonic()
        with pytest.raises(TunnelTimeoutError):
            await coordinator.request_tunnel(50000, timeout=0.2)
        assert time.monotonic() - started < 2


class TestSshTunnelProvider:
    """Test ssh command construction and failure handling."""

    def test_build_command_with_subdomain(self):
        provider = SshTunnelProvider(relay_host="relay.test")

        args = provider.build_command(50000, "zap-abc123")

        assert args[0] == "ssh"
        assert "-Rzap-abc123:80:localhost:50000" in args
        assert args[-1] == "relay.test"

    def test_build_command_without_subdomain(self):
        provider = SshTunnelProvider(relay_host="relay.test")

        assert "-R80:localhost:50000" in provider.build_command(50000)

    @pytest.mark.asyncio
    async def test_missing_ssh_binary_is_creation_error(self):
        provider = SshTunnelProvider(relay_host="relay.test", ssh_binary="/nonexistent/ssh-binary")

        with pytest.raises(TunnelCreationError):
            await provider.create(50000)

    @pytest.mark.asyncio
    async def test_relay_chosen_urls_are_only_dropped(self):
        provider = SshTunnelProvider(relay_host="relay.test")

        result = await provider.close_orphans(["https://random-name.relay.test"])

        assert (result.closed, result.failed, result.dropped) == (0, 0, 1)

    @pytest.mark.asyncio
    async def test_base_provider_only_drops_orphans(self, fake_provider):
        result = await TunnelProvider.close_orphans(fake_provider, ["https://zap-old.relay.test"])

        assert (result.closed, result.dropped) == (0, 1)


class TestUrlShortener:
    """Test URL shortening with a mocked HTTP transport."""

    @pytest.mark.asyncio
    async def test_shorten_returns_service_response(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params['url'] == "https://zap-1.relay.test"
            return httpx.Response(200, text="https://tiny.test/abc")

        shortener = UrlShortener(api_url="https://tiny.test/api", transport=httpx.MockTransport(handler))

        assert await shortener.shorten("https://zap-1.relay.test") == "https://tiny.test/abc"

    @pytest.mark.asyncio
    async def test_error_status_falls_back_to_original(self):
        shortener = UrlShortener(
            api_url="https://tiny.test/api",
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="Error")),
        )

        assert await shortener.shorten("https://zap-1.relay.test") == "https://zap-1.relay.test"

    @pytest.mark.asyncio
    async def test_network_error_falls_back_to_original(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        shortener = UrlShortener(api_url="https://tiny.test/api", transport=httpx.MockTransport(handler))

        assert await shortener.shorten("https://zap-1.relay.test") == "https://zap-1.relay.test"
