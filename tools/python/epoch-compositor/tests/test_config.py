"""
Tests for the epoch table and run configuration.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from epoch_compositor.bands import LANDSAT_OLI, SENTINEL2
from epoch_compositor.config import (
    DEFAULT_EPOCHS,
    CompositorConfig,
    EpochConfig,
    load_config,
    load_epoch_table,
    parse_epoch,
)
from shared.python.exceptions import InputValidationError


def _write(tmp_path: Path, payload, name: str = "config.json") -> Path:
    path = tmp_path / name
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


class TestDefaultEpochs:

    def test_five_epochs_in_order(self) -> None:
        assert [e.label for e in DEFAULT_EPOCHS] == ["1985", "1995", "2005", "2015", "2025"]

    def test_sensor_generations(self) -> None:
        by_label = {e.label: e for e in DEFAULT_EPOCHS}
        assert by_label["2015"].profile is LANDSAT_OLI
        assert by_label["2025"].profile is SENTINEL2
        assert by_label["2025"].export_scale == 10.0
        assert by_label["2005"].platforms == ("landsat-7",)

    def test_sar_only_for_sentinel1_era(self) -> None:
        with_sar = [e.label for e in DEFAULT_EPOCHS if e.sar_window is not None]
        assert with_sar == ["2015", "2025"]

    def test_peak_window_is_the_calendar_year(self) -> None:
        assert DEFAULT_EPOCHS[1].peak_window == ("1995-01-01", "1996-01-01")

    def test_defaults_validate(self) -> None:
        CompositorConfig().validate()


class TestParsing:

    def test_parse_epoch_defaults(self) -> None:
        epoch = parse_epoch({"label": "2020", "profile": "sentinel2"})
        assert epoch.year == 2020
        assert epoch.collection_id == "sentinel-2-l2a"
        assert epoch.baseline_window is None

    def test_parse_epoch_windows(self) -> None:
        epoch = parse_epoch({
            "label": "1990", "year": 1990, "profile": "landsat_tm_etm",
            "platforms": ["landsat-5"], "baseline_window": ["1989-01-01", "1991-12-31"],
        })
        assert epoch.baseline_window == ("1989-01-01", "1991-12-31")
        assert epoch.platforms == ("landsat-5",)

    @pytest.mark.parametrize(
        "raw",
        [
            {"year": 1990, "profile": "landsat_oli"},
            {"label": "1990", "profile": "modis"},
            {"label": "x", "profile": "landsat_oli"},
            {"label": "1990", "profile": "landsat_oli", "sar_window": ["2015-01-01"]},
        ],
    )
    def test_malformed_epoch(self, raw) -> None:
        with pytest.raises(InputValidationError):
            parse_epoch(raw)

    def test_load_epoch_table_list_or_object(self, tmp_path: Path) -> None:
        rows = [{"label": "1995", "profile": "landsat_tm_etm"}]
        assert len(load_epoch_table(_write(tmp_path, rows, "a.json"))) == 1
        assert len(load_epoch_table(_write(tmp_path, {"epochs": rows}, "b.json"))) == 1

    def test_load_epoch_table_bad_json(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(InputValidationError, match="Failed to read"):
            load_epoch_table(path)

    def test_load_config_overrides(self, tmp_path: Path) -> None:
        config = load_config(_write(tmp_path, {
            "analysis_scale": 500, "prefix": "Basin",
            "epochs": [{"label": "2025", "profile": "sentinel2"}],
        }))
        assert config.analysis_scale == 500
        assert config.prefix == "Basin"
        assert [e.label for e in config.epochs] == ["2025"]
        assert config.max_workers == 4

    def test_load_config_unknown_key(self, tmp_path: Path) -> None:
        with pytest.raises(InputValidationError, match="analysis_scael"):
            load_config(_write(tmp_path, {"analysis_scael": 500}))


class TestValidation:

    def test_select_keeps_table_order(self) -> None:
        config = CompositorConfig()
        config.select(["2025", "1985"])
        assert [e.label for e in config.epochs] == ["1985", "2025"]

    def test_select_unknown_label(self) -> None:
        with pytest.raises(InputValidationError, match="1975"):
            CompositorConfig().select(["1975"])

    def test_duplicate_labels(self) -> None:
        config = CompositorConfig(epochs=[DEFAULT_EPOCHS[0], DEFAULT_EPOCHS[0]])
        with pytest.raises(InputValidationError, match="Duplicate"):
            config.validate()

    def test_empty_window(self) -> None:
        epoch = EpochConfig(
            label="bad", year=2000, profile=LANDSAT_OLI, collection_id="landsat-c2-l2",
            baseline_window=("2001-01-01", "2000-01-01"),
        )
        with pytest.raises(InputValidationError, match="empty"):
            epoch.validate()

    @pytest.mark.parametrize("field, value", [("max_workers", 0), ("analysis_scale", -1), ("export_retries", -1)])
    def test_out_of_range_settings(self, field, value) -> None:
        config = CompositorConfig()
        setattr(config, field, value)
        with pytest.raises(InputValidationError, match=field):
            config.validate()
