"""
Installed and published versions of the Expo and EAS CLIs.
"""

import asyncio
import logging
from typing import Optional

import httpx

from .config import config
from .executor import CommandExecutor

logger = logging.getLogger(__name__)

REGISTRY_TIMEOUT = 10.0

# npm package name -> installed-version check on the executor
CLI_PACKAGES = {
    "expo": "get_expo_version",
    "eas-cli": "get_eas_version",
}


async def _fetch_latest(client: httpx.AsyncClient, package: str) -> Optional[str]:
    url = f"{config.npm_registry_url.rstrip('/')}/{package.replace('/', '%2F')}"
    response = await client.get(url, timeout=REGISTRY_TIMEOUT)
    if response.status_code != 200:
        logger.warning(f"Registry lookup for {package} failed with status {response.status_code}")
        return None
    return response.json().get("dist-tags", {}).get("latest")


async def get_latest_version(package: str, client: Optional[httpx.AsyncClient] = None) -> Optional[str]:
    """Latest published version of an npm package, or None if it cannot be fetched."""
    try:
        if client is not None:
            return await _fetch_latest(client, package)
        async with httpx.AsyncClient() as own_client:
            return await _fetch_latest(own_client, package)
    except httpx.HTTPError as e:
        logger.error(f"Error fetching latest version of {package}: {e}")
        return None
    except ValueError as e:
        logger.error(f"Invalid registry response for {package}: {e}")
        return None


async def _cli_version(
    executor: CommandExecutor, package: str, check: str, client: Optional[httpx.AsyncClient]
) -> dict:
    installed, latest = await asyncio.gather(
        getattr(executor, check)(),
        get_latest_version(package, client),
    )
    return {
        "installed": installed,
        "latest": latest,
        "update_available": bool(installed and latest and installed != latest),
    }


async def get_cli_versions(
    executor: CommandExecutor, client: Optional[httpx.AsyncClient] = None
) -> dict[str, dict]:
    """Installed vs. latest version for each CLI, keyed by npm package name."""
    results = await asyncio.gather(
        *(_cli_version(executor, package, check, client) for package, check in CLI_PACKAGES.items())
    )
    return dict(zip(CLI_PACKAGES, results))
