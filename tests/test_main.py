import json

import pytest

from conftest import make_item
from neptune.config import NeptuneConfig, load_config
from neptune.main import build_parser, build_services, run_search, show_cache_stats

FEED_URL = "https://a.example.com/feed.xml"


def test_load_config_reads_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("PORT", "9090")
    monkeypatch.setenv("USE_HTTPS", "TRUE")
    monkeypatch.setenv("CACHE_DIR", str(tmp_path / "c"))
    monkeypatch.setenv("FEED_HTTP_TIMEOUT_MS", "2500")
    monkeypatch.setenv("SEARCH_TIMEOUT_SECONDS", "7.5")
    monkeypatch.setenv("LOG_FORMAT", "JSON")
    monkeypatch.delenv("OPML_FILE", raising=False)

    config = load_config()

    assert config.port == 9090
    assert config.use_https is True
    assert config.cache_dir == str(tmp_path / "c")
    assert config.feed_http_timeout_seconds == 2.5
    assert config.search_timeout_seconds == 7.5
    assert config.log_format == "json"
    assert config.opml_file == NeptuneConfig().opml_file


def test_parser_modes_are_exclusive():
    parser = build_parser()

    args = parser.parse_args(["--search", "gis", "--fuzzy", "0", "--feed", FEED_URL, "--feed", "https://b"])
    assert args.search == "gis"
    assert args.fuzzy == 0
    assert args.feed_urls == [FEED_URL, "https://b"]

    with pytest.raises(SystemExit):
        parser.parse_args(["--once", "--mcp"])


@pytest.mark.asyncio
async def test_run_search_prints_json(config, populate, capsys):
    populate({FEED_URL: ("Feed A", [make_item("GIS mapping tools", source="Feed A")])})
    services = build_services(config)
    args = build_parser().parse_args(["--search", "gis", "--limit", "5"])

    await run_search(services, args)

    output = json.loads(capsys.readouterr().out)
    assert output["query"] == "gis"
    assert output["results"][0]["title"] == "GIS mapping tools"


@pytest.mark.asyncio
async def test_cache_stats(config, populate, capsys):
    populate({FEED_URL: ("Feed A", [make_item("One"), make_item("Two")])})
    services = build_services(config)

    await show_cache_stats(services)

    out = capsys.readouterr().out
    assert "configuredFeeds: 1" in out
    assert "cachedItems: 2" in out
