import argparse

import pytest

from rankgrid.core.config import ConfigError
from rankgrid.core.models import PlaceResult
from rankgrid.jobs import run_grid


class DummySettings:
    def __init__(self, api_key="test-key", max_concurrency=4):
        self.serpapi_api_key = api_key
        self.max_concurrency = max_concurrency


def test_run_grid_job_requires_api_key(monkeypatch):
    monkeypatch.setattr(run_grid, "get_settings", lambda: DummySettings(api_key=""))

    with pytest.raises(ConfigError):
        run_grid.run_grid_job(
            lat=40.7,
            lng=-74.0,
            keyword="pizza",
            website="example.com",
            spacing=500,
            unit="meters",
            grid_size=3,
            max_concurrency=2,
        )


def test_run_grid_job_writes_csv(monkeypatch, tmp_path):
    monkeypatch.setattr(run_grid, "get_settings", lambda: DummySettings())

    def provider(lat, lng, keyword):
        return [PlaceResult(position=3, title="Target", website="https://example.com")]

    output = tmp_path / "report.csv"
    response = run_grid.run_grid_job(
        lat=40.7128,
        lng=-74.006,
        keyword="coffee shop",
        website="example.com",
        spacing=1,
        unit="miles",
        grid_size=3,
        max_concurrency=2,
        output=str(output),
        provider=provider,
    )

    assert response.total_points == 9
    assert response.summary.avg_rank == 3.0
    assert response.summary.top3_percent == 100
    text = output.read_text(encoding="utf-8")
    assert "# Spacing: 1 miles" in text
    assert text.count("\n0_0,") == 1


def test_run_grid_job_rejects_bad_grid(monkeypatch):
    monkeypatch.setattr(run_grid, "get_settings", lambda: DummySettings())

    with pytest.raises(ValueError):
        run_grid.run_grid_job(
            lat=40.7,
            lng=-74.0,
            keyword="pizza",
            website="",
            spacing=0,
            unit="meters",
            grid_size=3,
            max_concurrency=2,
            provider=lambda *args: [],
        )


def test_build_parser_defaults(monkeypatch):
    monkeypatch.setattr(run_grid, "get_settings", lambda: DummySettings(max_concurrency=7))
    parser = run_grid.build_parser()
    args = parser.parse_args(["--lat", "40.7", "--lng", "-74", "--keyword", "pizza"])

    assert isinstance(parser, argparse.ArgumentParser)
    assert args.max_concurrency == 7
    assert args.unit == "meters"
    assert args.grid_size == 5
    assert args.website == ""
