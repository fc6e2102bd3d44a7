"""End-to-end tests of the 'once' mode and pipeline wiring.

Feeds are served by respx; everything else (SQLite, queue, workers) is real.
"""

from collections.abc import Iterator
from datetime import timedelta
from pathlib import Path
import sys

import httpx
import pytest
from pytest import MonkeyPatch
import respx
import yaml

from feedrefresh.cli.components import init_components, job_options_from
from feedrefresh.cli.debug_once import run_debug_once_mode
from feedrefresh.config import AppSettings
from feedrefresh.db import FeedDatabase, JobDatabase, SqlalchemyCore
from feedrefresh.db.types import JobState
from feedrefresh.queue import InMemoryJobQueue, SqlJobQueue

GOOD_URL = "https://example.com/good.xml"
BAD_URL = "https://example.com/bad.xml"

RSS_DOC = b"""<?xml version="1.0"?>
<rss version="2.0"><channel>
  <item><guid>1</guid><pubDate>Sat, 01 Jun 2024 10:00:00 GMT</pubDate></item>
  <item><guid>2</guid><pubDate>Sat, 01 Jun 2024 11:00:00 GMT</pubDate></item>
</channel></rss>
"""


@pytest.fixture(autouse=True)
def clean_argv(monkeypatch: MonkeyPatch) -> None:
    """Keep the test runner's argv out of AppSettings."""
    monkeypatch.setattr(sys, "argv", ["feedrefresh"])


@pytest.fixture
def settings(tmp_path: Path) -> AppSettings:
    """Provides settings for two feeds, fast retries and a temporary data dir."""
    config_path = tmp_path / "feeds.yaml"
    with Path.open(config_path, "w", encoding="utf-8") as f:
        yaml.dump(
            {
                "feeds": {
                    "good": {"url": GOOD_URL},
                    "bad": {"url": BAD_URL},
                    "off": {"url": "https://example.com/off.xml", "enabled": False},
                }
            },
            f,
        )
    return AppSettings(  # type: ignore
        config_file=config_path,
        data_dir=tmp_path / "data",
        poll_interval=timedelta(milliseconds=10),
        max_attempts=2,
        backoff_delay=timedelta(milliseconds=20),
    )


@pytest.fixture
def feed_server() -> Iterator[respx.MockRouter]:
    """Serves a working feed and a failing one."""
    with respx.mock(assert_all_called=False) as router:
        router.get(GOOD_URL).mock(return_value=httpx.Response(200, content=RSS_DOC))
        router.get(BAD_URL).mock(return_value=httpx.Response(503))
        yield router


@pytest.mark.unit
@pytest.mark.asyncio
async def test_once_mode_refreshes_due_feeds_and_exits(
    settings: AppSettings, feed_server: respx.MockRouter
):
    await run_debug_once_mode(settings)

    core = SqlalchemyCore(settings.data_dir)
    try:
        feed_db = FeedDatabase(core)
        job_db = JobDatabase(core)

        good = await feed_db.get_feed_by_id("good")
        assert good.last_fetched_at is not None
        assert good.last_error is None

        bad = await feed_db.get_feed_by_id("bad")
        assert bad.last_fetched_at is None
        assert bad.last_error is not None and "503" in bad.last_error

        off = await feed_db.get_feed_by_id("off")
        assert off.is_enabled is False
        assert off.last_fetched_at is None

        good_jobs = await job_db.get_jobs(dedupe_key="feed-good")
        assert [(job.state, job.result_count) for job in good_jobs] == [
            (JobState.COMPLETED, 2)
        ]
        bad_jobs = await job_db.get_jobs(dedupe_key="feed-bad")
        assert [job.state for job in bad_jobs] == [
            JobState.FAILED,
            JobState.ABANDONED,
        ]
        assert bad_jobs[1].scheduled_at - bad_jobs[1].enqueued_at == timedelta(
            milliseconds=20
        )
        assert await job_db.get_jobs(dedupe_key="feed-off") == []
    finally:
        await core.close()

    assert feed_server.routes[1].call_count == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_second_once_run_skips_fresh_feeds(
    settings: AppSettings, feed_server: respx.MockRouter
):
    await run_debug_once_mode(settings)
    good_calls = feed_server.routes[0].call_count

    await run_debug_once_mode(settings)

    # "good" was fetched moments ago; "bad" was never fetched successfully
    assert feed_server.routes[0].call_count == good_calls
    assert feed_server.routes[1].call_count == 4


@pytest.mark.unit
@pytest.mark.asyncio
async def test_init_components_wires_selected_backend(settings: AppSettings):
    components = await init_components(settings)
    try:
        assert isinstance(components.queue, SqlJobQueue)
        assert not components.worker_pool.running
        assert settings.data_dir.is_dir()
        assert len(await components.feed_db.get_feeds(enabled=True)) == 2
    finally:
        await components.db_core.close()

    memory_settings = settings.model_copy(update={"queue_backend": "memory"})
    components = await init_components(memory_settings)
    try:
        assert isinstance(components.queue, InMemoryJobQueue)
    finally:
        await components.db_core.close()


@pytest.mark.unit
def test_job_options_from_settings(settings: AppSettings):
    options = job_options_from(settings)

    assert options.attempts == 2
    assert options.backoff_delay == timedelta(milliseconds=20)
    assert options.remove_on_complete == 100
    assert options.remove_on_fail == 50
