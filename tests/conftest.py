"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from autoshut_core import AutoShutdownConfig, AutoShutdownCore


class FakeResponse:
    """Stand-in for a streamed requests.Response."""

    def __init__(self, body: bytes = b"", status: int = 200, chunk_size: int = 7,
                 fail_after: int | None = None):
        self.body = body
        self.status_code = status
        self.chunk_size = chunk_size
        self.fail_after = fail_after
        self.closed = False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)

    def iter_content(self, chunk_size=1):
        sent = 0
        for i in range(0, len(self.body), self.chunk_size):
            if self.fail_after is not None and sent >= self.fail_after:
                raise requests.exceptions.ChunkedEncodingError("connection broken")
            chunk = self.body[i:i + self.chunk_size]
            sent += len(chunk)
            yield chunk

    def close(self):
        self.closed = True


def store_page(name: bytes) -> bytes:
    return (b"<html><body><div class=\"breadcrumbs\">All Games</div>"
            b"<div id=\"appHubAppName\" class=\"apphub_AppName\">" + name
            + b"</div><div class=\"more\">...</div></body></html>")


@pytest.fixture
def fake_response():
    """Factory for FakeResponse objects."""
    return FakeResponse


@pytest.fixture
def make_page():
    """Factory for store page bodies carrying a given app name."""
    return store_page


@pytest.fixture
def session() -> requests.Session:
    """A real session whose get() never touches the network."""
    s = requests.Session()
    s.get = MagicMock(return_value=FakeResponse(store_page(b"Half-Life 3")))
    return s


@pytest.fixture
def downloads_dir(tmp_path):
    """An empty Steam downloading folder."""
    d = tmp_path / "downloading"
    d.mkdir()
    return d


@pytest.fixture
def config(downloads_dir) -> AutoShutdownConfig:
    return AutoShutdownConfig(
        watch_directory=str(downloads_dir),
        poll_interval_seconds=30,
        shutdown_command=("shutdown", ("/s",)),
    )


@pytest.fixture
def runner() -> MagicMock:
    """Replacement for subprocess.run so nothing is ever shut down."""
    return MagicMock()


@pytest.fixture
def removing_sleep(downloads_dir):
    """Sleep replacement that deletes every download folder on its first call."""
    calls = []

    def sleep(seconds):
        calls.append(seconds)
        for entry in downloads_dir.iterdir():
            if entry.is_dir():
                entry.rmdir()

    sleep.calls = calls
    return sleep


@pytest.fixture
def make_core(config, session, runner, removing_sleep):
    """Build an engine wired to fakes; keyword arguments override them."""

    def factory(**overrides) -> AutoShutdownCore:
        kwargs = {
            "config": config,
            "session": session,
            "sleep": removing_sleep,
            "runner": runner,
            "log_file": None,
        }
        kwargs.update(overrides)
        return AutoShutdownCore(**kwargs)

    return factory
