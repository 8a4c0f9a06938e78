"""
Offline tests for the Planetary Computer source helpers.

No catalog is opened; only the static stack transforms are exercised.
"""

from __future__ import annotations

from types import SimpleNamespace

import numpy as np
import pytest

from conftest import GRID, build_stack
from epoch_compositor.bands import SENTINEL2
from epoch_compositor.fetcher import PlanetaryComputerSource, empty_stack, stac_interval


def _item(baseline: str) -> SimpleNamespace:
    return SimpleNamespace(properties={"s2:processing_baseline": baseline})


class TestHelpers:

    def test_interval_excludes_end_date(self) -> None:
        assert stac_interval("1995-01-01", "1996-01-01") == (
            "1995-01-01T00:00:00Z/1995-12-31T23:59:59Z"
        )

    def test_empty_stack(self) -> None:
        stack = empty_stack(SENTINEL2.all_band_ids)
        assert stack.sizes["time"] == 0
        assert list(stack["band"].values) == SENTINEL2.all_band_ids

    def test_same_time_tiles_are_mosaicked(self) -> None:
        west = np.full((GRID, GRID), np.nan)
        west[:, : GRID // 2] = 0.1
        east = np.full((GRID, GRID), np.nan)
        east[:, GRID // 2:] = 0.2
        stack = build_stack(
            [{"B4": west, "QA60": west * 0}, {"B4": east, "QA60": east * 0}, {"B4": 0.3, "QA60": 0}],
            ["2025-08-01", "2025-08-01", "2025-08-11"],
        )
        out = PlanetaryComputerSource._merge_duplicate_times(stack)
        assert out.sizes["time"] == 2
        first = out.isel(time=0).values
        assert np.isfinite(first).all()
        assert np.all(first[0, :, : GRID // 2] == pytest.approx(0.1))
        assert np.all(first[0, :, GRID // 2:] == pytest.approx(0.2))
        assert float(out.values[1, 0, 0, 0]) == pytest.approx(0.3)

    def test_overlap_keeps_first_tile_whole(self) -> None:
        stack = build_stack(
            [{"B4": 0.1, "QA60": np.nan}, {"B4": 0.2, "QA60": 1024}],
            ["2025-08-01", "2025-08-01"],
        )
        out = PlanetaryComputerSource._merge_duplicate_times(stack)
        px = out.isel(time=0, y=0, x=0)
        assert float(px.sel(band="B4")) == pytest.approx(0.1)
        assert np.isnan(float(px.sel(band="QA60")))

    def test_unique_times_untouched(self) -> None:
        stack = build_stack([{"VV": 0.1}, {"VV": 0.2}], ["2015-01-01", "2015-02-01"])
        assert PlanetaryComputerSource._merge_duplicate_times(stack) is stack


class TestSentinel2Harmonisation:

    def _stack(self, scl: int):
        scene = {"B2": 1500, "B3": 1500, "B4": 1500, "B8": 1500, "B11": 1500, "QA60": scl}
        return build_stack([scene, scene], ["2021-06-01", "2023-06-01"])

    def test_offset_removed_from_new_baseline_only(self) -> None:
        out = PlanetaryComputerSource._harmonize_sentinel2(
            self._stack(4), [_item("03.01"), _item("05.09")], SENTINEL2
        )
        b4 = out.sel(band="B4").values[:, 0, 0]
        assert b4.tolist() == [1500.0, 500.0]

    @pytest.mark.parametrize("scl, expected", [(4, 0), (8, 1 << 10), (9, 1 << 10), (10, 1 << 11)])
    def test_qa60_from_scl(self, scl, expected) -> None:
        out = PlanetaryComputerSource._harmonize_sentinel2(
            self._stack(scl), [_item("02.14"), _item("02.14")], SENTINEL2
        )
        qa = out.sel(band="QA60").values
        assert qa.shape == (2, GRID, GRID)
        assert np.all(qa == expected)
