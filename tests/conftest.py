"""Shared pytest fixtures for all tests."""

import asyncio
from typing import List

import pytest
from pathlib import Path

from cli.config import Config
from common.context import RuntimeContext, TransferSettings
from common.exceptions import TunnelCreationError
from common.types import TunnelCloseResult
from tunnel.providers import TunnelHandle, TunnelProvider


class FakeTunnelProvider(TunnelProvider):
    """In-memory tunnel backend recording every call."""

    name = "fake"

    def __init__(self, fail: bool = False, delay: float = 0.0):
        self.fail = fail
        self.delay = delay
        self.created: List[int] = []
        self.closed: List[str] = []
        self.orphans_closed: List[str] = []

    async def create(self, port: int) -> TunnelHandle:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise TunnelCreationError("relay refused the forward")
        self.created.append(port)
        return TunnelHandle(url=f"https://zap-{port}.relay.test", provider=self.name, port=port)

    async def close(self, handle: TunnelHandle) -> None:
        self.closed.append(handle.url)

    async def close_orphans(self, urls: List[str]) -> TunnelCloseResult:
        self.orphans_closed.extend(urls)
        return TunnelCloseResult(closed=len(urls))


class StaticShortener:
    """Shortener stand-in that never touches the network."""

    async def shorten(self, url: str) -> str:
        return url.replace("https://", "https://short.test/")


@pytest.fixture
def fast_settings():
    """
    TransferSettings with short protocol delays for live tests.

    Returns:
        TransferSettings instance
    """
    return TransferSettings(
        inactivity_timeout=60,
        metadata_delay=0.01,
        auth_failure_close_delay=0.05,
        connect_timeout=2,
        tunnel_timeout=1,
        listener_close_timeout=1,
        shutdown_grace=2,
    )


@pytest.fixture
def runtime_context(tmp_path, fast_settings):
    """
    RuntimeContext rooted in a temporary home directory.

    Args:
        tmp_path: pytest tmp_path fixture
        fast_settings: Short protocol delays

    Returns:
        RuntimeContext instance
    """
    home = tmp_path / 'home'
    home.mkdir()
    return RuntimeContext(settings=fast_settings, home_dir=home, receive_dir_override=tmp_path / 'received')


@pytest.fixture
def fake_provider():
    return FakeTunnelProvider()


@pytest.fixture
def static_shortener():
    return StaticShortener()


@pytest.fixture
def temp_config_dir(tmp_path):
    """
    Create temporary config directory.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Path to temporary .zapshare directory
    """
    config_dir = tmp_path / '.zapshare'
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def temp_config(temp_config_dir):
    """
    Create temporary config instance.

    Args:
        temp_config_dir: Temporary config directory fixture

    Returns:
        Config instance with temp config file
    """
    return Config(temp_config_dir / 'config.json')


@pytest.fixture
def sample_file(tmp_path):
    """
    Create a sample file for testing transfers.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Path to sample text file
    """
    file_path = tmp_path / 'shared' / 'report.txt'
    file_path.parent.mkdir()
    file_path.write_text('Sample content for testing')
    return file_path


@pytest.fixture
def provider_factory():
    """
    Returns:
        FakeTunnelProvider class, for tests that need a failing or slow backend
    """
    return FakeTunnelProvider
