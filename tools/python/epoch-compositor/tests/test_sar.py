"""
Tests for the SAR composite builder.

These tests run entirely offline; the "source" is a fixed in-memory
stack of linear VV backscatter.
"""

from __future__ import annotations

import numpy as np
import pytest

from conftest import GRID, FakeSource, build_stack
from epoch_compositor.sar import (
    SARCompositeBuilder,
    circular_footprint,
    focal_median,
    select_scenes,
    to_db,
)
from shared.python.exceptions import BandResolutionError, InputValidationError


def _sar_stack(values, times, polarizations=None, modes=None):
    stack = build_stack([{"VV": v} for v in values], times)
    if polarizations is not None:
        stack = stack.assign_coords(polarizations=("time", polarizations))
    if modes is not None:
        stack = stack.assign_coords(instrument_mode=("time", modes))
    return stack


class TestFootprint:

    def test_radius_one_pixel_is_a_cross(self) -> None:
        fp = circular_footprint(30.0, 30.0)
        assert fp.shape == (3, 3)
        assert fp.sum() == 5
        assert not fp[0, 0]

    def test_finer_grid_gives_a_wider_kernel(self) -> None:
        assert circular_footprint(30.0, 10.0).shape == (7, 7)


class TestFocalMedian:

    def test_removes_isolated_speckle(self) -> None:
        arr = np.full((GRID, GRID), -12.0)
        arr[4, 4] = 10.0
        out = focal_median(arr, circular_footprint(30.0, 30.0))
        assert out[4, 4] == pytest.approx(-12.0)

    def test_ignores_nan_neighbours(self) -> None:
        arr = np.full((GRID, GRID), -8.0)
        arr[4, 5] = np.nan
        out = focal_median(arr, circular_footprint(30.0, 30.0))
        assert out[4, 4] == pytest.approx(-8.0)

    def test_edges_do_not_depend_on_gaps(self) -> None:
        arr = np.add.outer(np.arange(GRID), np.arange(GRID)) - 20.0
        gappy = arr.copy()
        gappy[4, 4] = np.nan
        footprint = circular_footprint(30.0, 30.0)
        full, holed = focal_median(arr, footprint), focal_median(gappy, footprint)
        for y, x in ((0, 0), (0, GRID - 1), (GRID - 1, 0), (GRID - 1, GRID - 1), (0, 4)):
            assert holed[y, x] == pytest.approx(full[y, x])


class TestSceneSelection:

    def test_keeps_vv_iw_only(self) -> None:
        stack = _sar_stack(
            [0.1, 0.1, 0.1],
            ["2015-01-01", "2015-02-01", "2015-03-01"],
            polarizations=["VV,VH", "HH,HV", "VV"],
            modes=["IW", "IW", "EW"],
        )
        selected = select_scenes(stack)
        assert selected.sizes["time"] == 1
        assert int(selected["time"].dt.month.values[0]) == 1

    def test_stack_without_metadata_is_kept(self) -> None:
        stack = _sar_stack([0.1, 0.2], ["2015-01-01", "2015-02-01"])
        assert select_scenes(stack).sizes["time"] == 2


class TestSARCompositeBuilder:

    def test_median_in_db(self, roi) -> None:
        stack = _sar_stack(
            [0.01, 0.1, 1.0],
            ["2015-01-01", "2015-05-01", "2015-09-01"],
            polarizations=["VV,VH"] * 3,
            modes=["IW"] * 3,
        )
        composite = SARCompositeBuilder(roi, FakeSource(sar=stack)).build(
            "2015", "2014-10-01", "2016-12-31"
        )
        assert composite.available
        assert composite.scene_count == 3
        assert list(composite.image["band"].values) == ["VV"]
        assert float(composite.image.sel(band="VV")[4, 4]) == pytest.approx(-10.0, abs=1e-4)
        assert composite.image.attrs["units"] == "dB"

    def test_empty_window_is_unavailable(self, roi) -> None:
        composite = SARCompositeBuilder(roi, FakeSource()).build("2015", "2014-10-01", "2016-12-31")
        assert not composite.available
        assert composite.image is None
        assert composite.scene_count == 0

    def test_filtered_to_nothing_is_unavailable(self, roi) -> None:
        stack = _sar_stack([0.1], ["2015-01-01"], polarizations=["HH"], modes=["IW"])
        composite = SARCompositeBuilder(roi).composite("2015", "2014-10-01", "2016-12-31", stack)
        assert not composite.available

    def test_invalid_window(self, roi) -> None:
        with pytest.raises(InputValidationError):
            SARCompositeBuilder(roi, FakeSource()).build("2015", "2016-12-31", "2014-10-01")

    def test_non_positive_power_is_nan(self) -> None:
        stack = _sar_stack([0.0], ["2015-01-01"])
        assert np.isnan(to_db(stack).values).all()

    def test_pixels_outside_roi_are_nan(self, west_roi) -> None:
        stack = _sar_stack([0.1, 0.1], ["2015-01-01", "2015-02-01"])
        composite = SARCompositeBuilder(west_roi).composite("2015", "2014-10-01", "2016-12-31", stack)
        vv = composite.image.sel(band="VV").values
        assert np.isfinite(vv[:, :4]).all()
        assert np.isnan(vv[:, 4:]).all()

    def test_missing_polarisation_band_is_fatal(self, roi) -> None:
        stack = build_stack([{"VH": 0.1}], ["2015-01-01"])
        with pytest.raises(BandResolutionError):
            SARCompositeBuilder(roi).composite("2015", "2014-10-01", "2016-12-31", stack)
