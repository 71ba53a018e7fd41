"""
Tests for CLI version lookups against a mocked npm registry.
"""

import httpx
import pytest

from expo_supervisor.versions import get_cli_versions, get_latest_version


def _registry(latest_by_package, status_code=200):
    def handler(request: httpx.Request) -> httpx.Response:
        package = request.url.path.strip("/")
        if package not in latest_by_package:
            return httpx.Response(404, json={"error": "Not found"})
        return httpx.Response(
            status_code, json={"name": package, "dist-tags": {"latest": latest_by_package[package]}}
        )

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class FakeExecutor:
    def __init__(self, expo=None, eas=None):
        self.expo = expo
        self.eas = eas

    async def get_expo_version(self):
        return self.expo

    async def get_eas_version(self):
        return self.eas


class TestLatestVersion:
    @pytest.mark.asyncio
    async def test_reads_latest_dist_tag(self):
        async with _registry({"expo": "51.0.0"}) as client:
            assert await get_latest_version("expo", client) == "51.0.0"

    @pytest.mark.asyncio
    async def test_unknown_package(self):
        async with _registry({}) as client:
            assert await get_latest_version("nope", client) is None

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("offline", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            assert await get_latest_version("expo", client) is None


class TestCliVersions:
    @pytest.mark.asyncio
    async def test_update_available(self):
        async with _registry({"expo": "51.0.0", "eas-cli": "10.0.0"}) as client:
            versions = await get_cli_versions(FakeExecutor(expo="50.0.1", eas="10.0.0"), client)

        assert versions["expo"] == {
            "installed": "50.0.1",
            "latest": "51.0.0",
            "update_available": True,
        }
        assert versions["eas-cli"]["update_available"] is False

    @pytest.mark.asyncio
    async def test_not_installed(self):
        async with _registry({"expo": "51.0.0", "eas-cli": "10.0.0"}) as client:
            versions = await get_cli_versions(FakeExecutor(), client)

        assert versions["expo"]["installed"] is None
        assert versions["expo"]["update_available"] is False
