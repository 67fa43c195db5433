"""Tests for configuration, logging, name lookup, folder watching and shutdown."""

import dataclasses
import subprocess
import threading
from unittest.mock import MagicMock

import pytest
import requests

from autoshut_core import (
    STATE_FAILED, STATE_MISSING, STATE_SHUTDOWN, STATE_STOPPED, UNKNOWN_APP_NAME,
    AppNameResolver, AutoShutdownConfig, DownloadWatcher, EventLog, ShutdownInvoker
)


# =========================
# CONFIGURATION
# =========================
def test_config_overrides_skip_none():
    config = AutoShutdownConfig(poll_interval_seconds=30)

    updated = config.with_overrides(poll_interval_seconds=5, watch_directory=None)

    assert updated.poll_interval_seconds == 5
    assert updated.watch_directory == config.watch_directory
    assert config.poll_interval_seconds == 30


def test_config_is_immutable():
    with pytest.raises(dataclasses.FrozenInstanceError):
        AutoShutdownConfig().poll_interval_seconds = 1


def test_config_app_url():
    config = AutoShutdownConfig(app_url_template="https://example.test/app/{app_id}")

    assert config.app_url("221100") == "https://example.test/app/221100"


# =========================
# EVENT LOG
# =========================
def test_event_log_format_and_index():
    log = EventLog()
    log.log("hello", "success")

    lines, index = log.get_logs()

    assert len(lines) == 1
    assert lines[0].endswith("[SUCCESS] hello")
    assert index == 1
    assert log.get_logs(index) == ([], 1)


def test_event_log_index_survives_dropped_lines():
    log = EventLog(maxlen=3)
    for i in range(5):
        log.log(f"line {i}")

    lines, index = log.get_logs(0)
    assert [l.split("] ")[-1] for l in lines] == ["line 2", "line 3", "line 4"]
    assert index == 5

    lines, _ = log.get_logs(4)
    assert lines[0].endswith("line 4")


def test_event_log_writes_fresh_file(tmp_path):
    path = tmp_path / "autoshut_debug.log"
    path.write_text("stale run\n")

    log = EventLog(path)
    log.log("first")

    content = path.read_text()
    assert "stale run" not in content
    assert "[INFO] first" in content


# =========================
# NAME RESOLVER
# =========================
def test_resolve_reads_name_from_store_page(config, session):
    resolver = AppNameResolver(config, session)

    assert resolver.resolve("221100") == "Half-Life 3"

    session.get.assert_called_once_with(
        "https://store.steampowered.com/app/221100",
        stream=True, timeout=config.connection_timeout
    )
    assert session.get.return_value.closed


def test_resolve_sends_age_check_cookie(config, session):
    AppNameResolver(config, session)

    assert session.headers["Cookie"] == config.cookie_header
    assert session.headers["Connection"] == "keep-alive"
    assert session.headers["User-Agent"] == config.user_agent


@pytest.mark.parametrize("strategy", ["window", "kmp"])
def test_resolve_with_each_strategy(config, session, strategy):
    resolver = AppNameResolver(config.with_overrides(match_strategy=strategy), session)

    assert resolver.resolve("221100") == "Half-Life 3"


def test_resolve_connection_error_gives_fallback(config, session):
    session.get.side_effect = requests.ConnectionError("offline")
    log = EventLog()

    assert AppNameResolver(config, session, log).resolve("221100") == UNKNOWN_APP_NAME
    assert "fetch failed" in log.get_logs()[0][-1]


def test_resolve_http_error_gives_fallback(config, session, fake_response, make_page):
    response = fake_response(make_page(b"Half-Life 3"), status=404)
    session.get.return_value = response

    assert AppNameResolver(config, session).resolve("1") == UNKNOWN_APP_NAME
    assert response.closed


def test_resolve_page_without_tag(config, session, fake_response):
    session.get.return_value = fake_response(b"<html>Welcome to Steam</html>")
    log = EventLog()

    assert AppNameResolver(config, session, log).resolve("1") == UNKNOWN_APP_NAME
    assert "No app name" in log.get_logs()[0][-1]


def test_resolve_broken_stream(config, session, fake_response, make_page):
    session.get.return_value = fake_response(make_page(b"Half-Life 3"), fail_after=60)
    log = EventLog()

    assert AppNameResolver(config, session, log).resolve("1") == UNKNOWN_APP_NAME
    assert "read failed" in log.get_logs()[0][-1]


def test_resolve_invalid_utf8(config, session, fake_response, make_page):
    session.get.return_value = fake_response(make_page(b"Caf\xe9"))

    assert AppNameResolver(config, session).resolve("1") == UNKNOWN_APP_NAME


def test_resolve_keeps_utf8_names(config, session, fake_response, make_page):
    session.get.return_value = fake_response(make_page("Pokémon™".encode("utf-8")))

    assert AppNameResolver(config, session).resolve("1") == "Pokémon™"


def test_resolve_many_keeps_order(config, session, fake_response, make_page):
    pages = {
        "https://store.steampowered.com/app/10": make_page(b"Counter-Strike"),
        "https://store.steampowered.com/app/20": b"nothing here",
    }
    session.get.side_effect = lambda url, **kw: fake_response(pages[url])

    result = AppNameResolver(config, session).resolve_many(["20", "10"])

    assert result == [("20", UNKNOWN_APP_NAME), ("10", "Counter-Strike")]


# =========================
# DOWNLOAD WATCHER
# =========================
def test_list_entries_only_directories(config, downloads_dir):
    (downloads_dir / "221100").mkdir()
    (downloads_dir / "state_221100.patch").write_text("x")

    assert DownloadWatcher(config).list_entries() == {"221100"}
    assert DownloadWatcher(config).exists("221100")
    assert not DownloadWatcher(config).exists("state_221100.patch")


def test_list_entries_missing_folder(tmp_path):
    log = EventLog()
    config = AutoShutdownConfig(watch_directory=str(tmp_path / "nope"))

    assert DownloadWatcher(config, log).list_entries() == set()
    assert "Cannot read download folder" in log.get_logs()[0][-1]


class _BrokenEntry:
    name = "broken"

    def is_dir(self):
        raise PermissionError("denied")


class _GoodEntry:
    name = "221100"

    def is_dir(self):
        return True


class _FakeScandir:
    def __init__(self, entries):
        self.entries = entries

    def __enter__(self):
        return iter(self.entries)

    def __exit__(self, *exc):
        return False


def test_list_entries_skips_unreadable_entry(config, monkeypatch):
    monkeypatch.setattr("autoshut_core.os.scandir",
                        lambda path: _FakeScandir([_BrokenEntry(), _GoodEntry()]))
    log = EventLog()

    assert DownloadWatcher(config, log).list_entries() == {"221100"}
    assert "Skipping unreadable entry broken" in log.get_logs()[0][-1]


def test_watch_signals_completion_once(config, downloads_dir, removing_sleep):
    """Present then absent: completion is reported after exactly one poll."""
    (downloads_dir / "221100").mkdir()
    watcher = DownloadWatcher(config, sleep=removing_sleep)

    assert watcher.wait_for_removal("221100") is True
    assert removing_sleep.calls == [30]
    assert watcher.polls == 1


def test_watch_keeps_polling_while_present(config, downloads_dir):
    (downloads_dir / "221100").mkdir()
    calls = []

    def sleep(seconds):
        calls.append(seconds)
        if len(calls) == 3:
            (downloads_dir / "221100").rmdir()

    watcher = DownloadWatcher(config, sleep=sleep)

    assert watcher.wait_for_removal("221100") is True
    assert watcher.polls == 3


def test_watch_absent_folder_returns_false(config, removing_sleep):
    watcher = DownloadWatcher(config, sleep=removing_sleep)

    assert watcher.wait_for_removal("221100") is False
    assert removing_sleep.calls == []


def test_watch_stops_on_event(config, downloads_dir):
    (downloads_dir / "221100").mkdir()
    stop = threading.Event()

    watcher = DownloadWatcher(config, stop_event=stop, sleep=lambda s: stop.set())

    assert watcher.wait_for_removal("221100") is False
    assert (downloads_dir / "221100").exists()


# =========================
# SHUTDOWN
# =========================
def test_shutdown_runs_configured_command(config, runner):
    ShutdownInvoker(config, runner=runner).shutdown()

    runner.assert_called_once_with(["shutdown", "/s"], check=True, capture_output=True)


def test_shutdown_failure_propagates(config):
    runner = MagicMock(side_effect=subprocess.CalledProcessError(1, ["shutdown", "/s"]))

    with pytest.raises(subprocess.CalledProcessError):
        ShutdownInvoker(config, runner=runner).shutdown()


# =========================
# ENGINE
# =========================
def test_list_downloads_resolves_sorted(make_core, downloads_dir):
    (downloads_dir / "440").mkdir()
    (downloads_dir / "221100").mkdir()

    downloads = make_core().list_downloads()

    assert downloads == [("221100", "Half-Life 3"), ("440", "Half-Life 3")]


def test_run_shuts_down_when_download_finishes(make_core, downloads_dir, runner):
    (downloads_dir / "221100").mkdir()
    core = make_core()

    assert core.run("221100", "Half-Life 3") is True

    runner.assert_called_once_with(["shutdown", "/s"], check=True, capture_output=True)
    stats = core.get_stats()
    assert stats["state"] == STATE_SHUTDOWN
    assert stats["armed_app_name"] == "Half-Life 3"
    assert stats["polls"] == 1


def test_run_missing_download(make_core, runner):
    core = make_core()

    assert core.run("221100") is False

    runner.assert_not_called()
    assert core.get_stats()["state"] == STATE_MISSING
    assert any("doesn't exist" in line for line in core.get_logs()[0])


def test_start_and_stop_in_background(make_core, downloads_dir, runner):
    (downloads_dir / "221100").mkdir()
    core = make_core(sleep=None)

    core.start("221100")
    core.stop()

    assert not core.watch_thread.is_alive()
    assert core.get_stats()["state"] == STATE_STOPPED
    runner.assert_not_called()


def test_background_shutdown_failure_is_reported(make_core, downloads_dir):
    (downloads_dir / "221100").mkdir()
    runner = MagicMock(side_effect=OSError("shutdown not found"))
    core = make_core(runner=runner)

    core.start("221100")
    core.watch_thread.join(timeout=5)

    assert core.get_stats()["state"] == STATE_FAILED
    assert isinstance(core.failure, OSError)
