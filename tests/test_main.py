from __future__ import annotations

import argparse
import json
from datetime import timedelta

import pytest

import main
from briefly.models.research import ResearchBrief, SearchBackend
from briefly.research_core.errors import NoSourcesError, PlanningError


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("24h", timedelta(hours=24)),
        ("7d", timedelta(days=7)),
        ("2W", timedelta(weeks=2)),
        (" 3 d ", timedelta(days=3)),
    ],
)
def test_parse_since(value, expected):
    assert main.parse_since(value) == expected


@pytest.mark.parametrize("value", ["", "7", "d7", "7m", "0d", "-1d"])
def test_parse_since_rejects_bad_values(value):
    with pytest.raises(argparse.ArgumentTypeError):
        main.parse_since(value)


def test_build_config_from_arguments():
    args = main.build_parser().parse_args(
        ["research", "solid", "state", "batteries", "-n", "7", "--since", "7d", "-p", "mock", "--js"]
    )
    config = main.build_config(args)

    assert args.topic == ["solid", "state", "batteries"]
    assert config.max_sources == 7
    assert config.since == timedelta(days=7)
    assert config.search_provider is SearchBackend.MOCK
    assert config.use_javascript is True
    assert config.refresh_cache is False


class _FakeEngine:
    def __init__(self, first_error: Exception | None = None, metadata: dict | None = None):
        self.first_error = first_error
        self.metadata = metadata or {}
        self.calls: list[list[str] | None] = []

    async def research(self, topic, config, *, sub_queries=None):
        self.calls.append(sub_queries)
        if self.first_error is not None and len(self.calls) == 1:
            raise self.first_error
        return ResearchBrief(
            id="b", topic=topic, sub_queries=sub_queries or ["q"], metadata=dict(self.metadata)
        )


def test_research_command_writes_brief(monkeypatch, tmp_path, capsys):
    engine = _FakeEngine()
    monkeypatch.setattr(main, "build_engine", lambda *_args, **_kwargs: engine)

    code = main.main(["research", "topic", "-p", "mock", "-o", str(tmp_path)])

    assert code == 0
    assert len(list(tmp_path.glob("research-topic-*.md"))) == 1
    assert "[+] Brief written to" in capsys.readouterr().out


def test_research_error_exits_with_one(monkeypatch, tmp_path, capsys):
    engine = _FakeEngine(first_error=NoSourcesError("no sources could be fetched"))
    monkeypatch.setattr(main, "build_engine", lambda *_args, **_kwargs: engine)

    code = main.main(["research", "topic", "-p", "mock", "-o", str(tmp_path)])

    assert code == 1
    assert "[!] Error (fetch): no sources could be fetched" in capsys.readouterr().out


def test_planner_failure_without_fallback_is_fatal(monkeypatch, tmp_path):
    engine = _FakeEngine(first_error=PlanningError("failed to decompose topic: x"))
    monkeypatch.setattr(main, "build_engine", lambda *_args, **_kwargs: engine)

    assert main.main(["research", "topic", "-p", "mock", "-o", str(tmp_path)]) == 1
    assert engine.calls == [None]


def test_single_query_fallback_retries_with_topic(monkeypatch, tmp_path):
    engine = _FakeEngine(first_error=PlanningError("failed to decompose topic: x"))
    monkeypatch.setattr(main, "build_engine", lambda *_args, **_kwargs: engine)

    code = main.main(
        ["research", "tidal", "power", "-p", "mock", "-f", "json", "-o", str(tmp_path), "--single-query-fallback"]
    )

    assert code == 0
    assert engine.calls == [None, ["tidal power"]]
    written = json.loads(next(tmp_path.glob("research-tidal-power-*.json")).read_text(encoding="utf-8"))
    assert written["metadata"]["degraded"] == ["planner_fallback"]


def test_fallback_keeps_degraded_markers_from_the_retry(monkeypatch, tmp_path, capsys):
    engine = _FakeEngine(
        first_error=PlanningError("failed to decompose topic: x"),
        metadata={"degraded": ["ranking"]},
    )
    monkeypatch.setattr(main, "build_engine", lambda *_args, **_kwargs: engine)

    code = main.main(
        ["research", "tidal", "-p", "mock", "-f", "json", "-o", str(tmp_path), "--single-query-fallback"]
    )

    assert code == 0
    written = json.loads(next(tmp_path.glob("research-tidal-*.json")).read_text(encoding="utf-8"))
    assert written["metadata"]["degraded"] == ["ranking", "planner_fallback"]
    assert "Degraded: ranking, planner_fallback" in capsys.readouterr().out


def test_cache_stats_and_clear(monkeypatch, tmp_path, capsys):
    monkeypatch.setattr(main.settings, "content_cache_dir", str(tmp_path))

    assert main.main(["cache", "stats"]) == 0
    assert "Entries: 0" in capsys.readouterr().out
    assert main.main(["cache", "clear"]) == 0
    assert "Removed 0 cached articles" in capsys.readouterr().out
