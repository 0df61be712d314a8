from __future__ import annotations

import json
from pathlib import Path

import pytest

from collector import cli
from collector.models.domain import BatchCollectionResult, CollectionResult, CollectorSource, ItemDTO
from collector.services.deduplicator import deduplicate_and_store
from collector.db.session import ensure_schema, session_scope
from collector.settings import get_settings, reset_settings_cache


@pytest.fixture(autouse=True)
def _env(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("COLLECTOR_CONFIG_PATH", str(tmp_path / "collector.config.json"))
    monkeypatch.setenv("RSS_SOURCES_PATH", str(tmp_path / "rss_sources.json"))
    monkeypatch.delenv("NEWSAPI_KEY", raising=False)
    monkeypatch.delenv("NEWS_API_KEY", raising=False)
    monkeypatch.setattr(cli, "configure_logging", lambda *a, **k: None)
    reset_settings_cache()
    yield
    reset_settings_cache()


def _fake_run(results, captured=None):
    async def fake_run_collection(options, **kwargs):
        if captured is not None:
            captured["options"] = options
            captured.update(kwargs)
        hook = kwargs.get("on_collected")
        if hook is not None:
            hook(
                CollectorSource.HN,
                [
                    ItemDTO(
                        source=CollectorSource.HN,
                        title=f"Sample {n}",
                        url=f"https://example.com/{n}",
                        published_at="2025-01-01T00:00:00.000Z",
                        score=n,
                    )
                    for n in range(5)
                ],
            )
        return BatchCollectionResult(results=results)

    return fake_run_collection


def test_all_rejects_unknown_collectors(capsys):
    with pytest.raises(SystemExit) as exc:
        cli.main(["all", "--collectors", "hn,reddit"])

    assert exc.value.code == 2
    assert "reddit" in capsys.readouterr().err


def test_rss_timeout_has_a_floor():
    with pytest.raises(SystemExit):
        cli.main(["rss", "--timeout", "500"])


def test_all_dry_run_reports_success(monkeypatch, capsys):
    captured = {}
    monkeypatch.setattr(
        cli,
        "run_collection",
        _fake_run([CollectionResult(source=CollectorSource.HN, items_collected=2)], captured),
    )

    code = cli.main(["all", "--collectors", "hn,rss", "--dry-run", "--stop-on-error"])

    assert code == 0
    options = captured["options"]
    assert options.collectors == [CollectorSource.HN, CollectorSource.RSS]
    assert options.dry_run
    assert not options.continue_on_error
    assert "COLLECTION SUMMARY" in capsys.readouterr().out


def test_failures_exit_non_zero(monkeypatch, capsys):
    monkeypatch.setattr(
        cli,
        "run_collection",
        _fake_run([CollectionResult(source=CollectorSource.RSS, success=False, errors=["x"])]),
    )

    assert cli.main(["all", "--collectors", "rss", "--dry-run"]) == 1
    assert "completed with failures" in capsys.readouterr().out


def test_single_source_flags_become_config(monkeypatch, capsys):
    captured = {}
    monkeypatch.setattr(
        cli,
        "run_collection",
        _fake_run([CollectionResult(source=CollectorSource.HN, items_collected=5)], captured),
    )

    code = cli.main(["hn", "--max-stories", "7", "--concurrent", "2", "--dry-run"])

    assert code == 0
    assert captured["config"].hn.max_stories == 7
    assert captured["config"].hn.concurrent_requests == 2
    out = capsys.readouterr().out
    assert "Sample 2" in out
    assert "Sample 3" not in out


def test_newsapi_without_key_fails_before_collecting(monkeypatch, capsys):
    def _unexpected(*_args, **_kwargs):
        raise AssertionError("should not run")

    monkeypatch.setattr(cli, "run_collection", _unexpected)

    assert cli.main(["newsapi"]) == 1
    assert "NEWSAPI_KEY" in capsys.readouterr().err


def test_validate_config_exit_codes(tmp_path: Path, monkeypatch):
    (tmp_path / "rss_sources.json").write_text(
        json.dumps({"sources": [{"name": "A", "url": "https://a.example.com/rss"}]}),
        encoding="utf-8",
    )
    assert cli.main(["validate-config", "--rss"]) == 2

    (tmp_path / "collector.config.json").write_text(json.dumps({"hn": {"maxStories": 10}}), encoding="utf-8")
    assert cli.main(["validate-config", "--rss"]) == 0
    assert cli.main(["validate-config", "--all"]) == 1


def test_stats_lists_stored_items(capsys):
    settings = get_settings()
    ensure_schema(settings)
    item = ItemDTO(
        source=CollectorSource.RSS,
        title="Stored item",
        url="https://example.com/stored",
        published_at="2025-01-01T00:00:00.000Z",
    )
    deduplicate_and_store([item], CollectorSource.RSS, lambda: session_scope(settings))

    assert cli.main(["stats"]) == 0
    out = capsys.readouterr().out
    assert "Total items in database: 1" in out
    assert "rss: 1" in out
    assert "Stored item" in out
