"""
Tests for the yearly peak detector.

Test classes:
    TestQualityMosaic       Argmax-and-carry selection, ties and NaN handling.
    TestRegionStatistics    Region medians at the analysis scale.
    TestYearlyPeakDetector  Year filtering, empty collections, the 1995 scenario.
    TestBaseline            Multi-year median mosaic.
"""

from __future__ import annotations

import numpy as np
import pytest

from conftest import GRID, build_stack, scene_with_mndwi
from epoch_compositor.bands import LANDSAT_TM_ETM
from epoch_compositor.peak import (
    EpochStatistics,
    YearlyPeakDetector,
    build_baseline,
    median_composite,
    quality_mosaic,
    region_statistics,
    round_half_up,
    year_window,
)
from epoch_compositor.fetcher import empty_stack
from shared.python.exceptions import BandResolutionError, EmptyCollectionError, RasterError


def _index_stack(mndwi, ndvi, bsi, months):
    scenes = [
        {"MNDWI": m, "NDVI": n, "BSI": b, "month": mo}
        for m, n, b, mo in zip(mndwi, ndvi, bsi, months)
    ]
    times = [f"2000-{mo:02d}-15" for mo in months]
    return build_stack(scenes, times)


class TestQualityMosaic:

    def test_carries_every_band_of_the_winner(self) -> None:
        stack = _index_stack([0.1, 0.5, 0.3], [0.2, 0.7, 0.4], [0.0, -0.2, 0.1], [3, 8, 11])
        image = quality_mosaic(stack)
        assert image.dims == ("band", "y", "x")
        px = image.isel(y=4, x=4)
        assert float(px.sel(band="MNDWI")) == pytest.approx(0.5)
        assert float(px.sel(band="NDVI")) == pytest.approx(0.7)
        assert float(px.sel(band="BSI")) == pytest.approx(-0.2)
        assert float(px.sel(band="month")) == 8.0

    def test_winner_is_chosen_per_pixel(self) -> None:
        left = np.zeros((GRID, GRID))
        left[:, :4] = 0.9
        stack = _index_stack([left, 0.5], [0.1, 0.6], [0.0, 0.0], [2, 9])
        month = quality_mosaic(stack).sel(band="month").values
        assert np.all(month[:, :4] == 2.0)
        assert np.all(month[:, 4:] == 9.0)

    def test_tie_goes_to_earliest_scene(self) -> None:
        stack = _index_stack([0.4, 0.4], [0.1, 0.9], [0.0, 0.0], [5, 6])
        px = quality_mosaic(stack).isel(y=0, x=0)
        assert float(px.sel(band="month")) == 5.0
        assert float(px.sel(band="NDVI")) == pytest.approx(0.1)

    def test_nan_never_wins(self) -> None:
        first = np.full((GRID, GRID), np.nan)
        stack = _index_stack([first, -0.6], [0.9, 0.2], [0.0, 0.0], [1, 4])
        assert float(quality_mosaic(stack).sel(band="month")[0, 0]) == 4.0

    def test_all_nan_pixel_is_nan_in_every_band(self) -> None:
        crit = np.full((GRID, GRID), 0.3)
        crit[2, 2] = np.nan
        stack = _index_stack([crit, crit], [0.1, 0.2], [0.0, 0.0], [1, 2])
        assert np.isnan(quality_mosaic(stack).values[:, 2, 2]).all()

    def test_chunked_stack_stays_lazy(self) -> None:
        stack = _index_stack([0.1, 0.5, 0.3], [0.2, 0.7, 0.4], [0.0, -0.2, 0.1], [3, 8, 11])
        image = quality_mosaic(stack.chunk({"time": 1, "y": 3, "x": 3}))
        assert image.chunks is not None
        eager = quality_mosaic(stack)
        np.testing.assert_allclose(image.compute().values, eager.values)

    def test_missing_criterion(self) -> None:
        stack = _index_stack([0.1], [0.2], [0.0], [1]).sel(band=["NDVI", "BSI", "month"])
        with pytest.raises(BandResolutionError):
            quality_mosaic(stack)

    def test_zero_scenes(self) -> None:
        with pytest.raises(RasterError):
            quality_mosaic(empty_stack(["MNDWI"]))


class TestRegionStatistics:

    def test_coarse_scale_samples_the_bbox_centre(self, roi) -> None:
        values = np.arange(GRID * GRID, dtype="float64").reshape(GRID, GRID)
        image = _index_stack([values], [0.0], [0.0], [1]).isel(time=0)
        medians = region_statistics(image, roi, scale=1000)
        assert medians["MNDWI"] == values[4, 4]

    def test_native_scale_is_the_pixel_median(self, roi) -> None:
        values = np.arange(GRID * GRID, dtype="float64").reshape(GRID, GRID)
        values[0, :] = np.nan
        image = _index_stack([values], [0.0], [0.0], [1]).isel(time=0)
        medians = region_statistics(image, roi, scale=30)
        assert medians["MNDWI"] == pytest.approx(np.nanmedian(values))

    def test_all_nan_band_gives_nan(self, roi) -> None:
        image = _index_stack([np.nan], [0.3], [0.0], [1]).isel(time=0)
        medians = region_statistics(image, roi, scale=30)
        assert np.isnan(medians["MNDWI"])
        assert medians["NDVI"] == pytest.approx(0.3)

    def test_pixel_budget(self, roi) -> None:
        image = _index_stack([0.1], [0.3], [0.0], [1]).isel(time=0)
        with pytest.raises(RasterError, match="max_pixels"):
            region_statistics(image, roi, scale=30, max_pixels=10)


class TestYearlyPeakDetector:

    def test_1995_scenario(self, roi, scenario_1995) -> None:
        composite = YearlyPeakDetector(roi).detect("1995", 1995, scenario_1995, LANDSAT_TM_ETM)
        props = composite.statistics.as_properties()
        assert props["year_label"] == "1995"
        assert props["MNDWI_v"] == pytest.approx(0.42, abs=1e-4)
        assert props["NDVI_v"] == pytest.approx(0.35, abs=1e-4)
        assert props["BSI_v"] == pytest.approx(-0.10, abs=1e-4)
        assert props["peak_month"] == 7
        assert composite.scene_count == 3
        assert composite.date_range == ("1995-01-01", "1996-01-01")

    def test_statistics_match_composite_medians(self, roi, scenario_1995) -> None:
        composite = YearlyPeakDetector(roi, analysis_scale=30).detect(
            "1995", 1995, scenario_1995, LANDSAT_TM_ETM
        )
        mndwi = composite.index_image.sel(band="MNDWI").values
        assert composite.statistics.mndwi == pytest.approx(float(np.nanmedian(mndwi)))

    def test_scenes_outside_the_year_are_ignored(self, roi, scenario_1995) -> None:
        wetter = build_stack([scene_with_mndwi(0.8)], ["1996-01-01"])
        stack = scenario_1995.combine_first(wetter)
        composite = YearlyPeakDetector(roi).detect("1995", 1995, stack, LANDSAT_TM_ETM)
        assert composite.scene_count == 3
        assert composite.statistics.mndwi == pytest.approx(0.42, abs=1e-4)

    def test_empty_year_raises_before_reduction(self, roi) -> None:
        stack = build_stack([scene_with_mndwi(0.4)], ["1994-12-31"])
        with pytest.raises(EmptyCollectionError) as excinfo:
            YearlyPeakDetector(roi).detect("1995", 1995, stack, LANDSAT_TM_ETM)
        assert excinfo.value.start == "1995-01-01"
        assert excinfo.value.end == "1996-01-01"

    def test_empty_stack(self, roi) -> None:
        with pytest.raises(EmptyCollectionError):
            YearlyPeakDetector(roi).detect(
                "1985", 1985, empty_stack(LANDSAT_TM_ETM.all_band_ids), LANDSAT_TM_ETM
            )

    def test_fully_clouded_year_reports_nan(self, roi) -> None:
        scene = scene_with_mndwi(0.3)
        scene["QA_PIXEL"] = 1 << 3
        composite = YearlyPeakDetector(roi).detect(
            "1995", 1995, build_stack([scene], ["1995-05-05"]), LANDSAT_TM_ETM
        )
        assert np.isnan(composite.statistics.mndwi)
        assert composite.statistics.peak_month is None


class TestBaseline:

    def test_median_of_window(self, roi) -> None:
        stack = build_stack(
            [scene_with_mndwi(m) for m in (0.1, 0.2, 0.6)],
            ["1994-03-01", "1995-03-01", "1996-03-01"],
        )
        mosaic = build_baseline("1995", ("1994-01-01", "1996-12-31"), stack, LANDSAT_TM_ETM, roi)
        assert list(mosaic.image["band"].values) == LANDSAT_TM_ETM.band_ids
        green = float(mosaic.image.sel(band="SR_B2")[4, 4])
        assert green == pytest.approx(0.1 * 1.2 / 0.8, abs=1e-4)
        assert mosaic.scene_count == 3

    def test_empty_window(self, roi) -> None:
        with pytest.raises(EmptyCollectionError):
            build_baseline(
                "1985", ("1984-01-01", "1987-12-31"),
                empty_stack(LANDSAT_TM_ETM.all_band_ids), LANDSAT_TM_ETM, roi,
            )

    def test_median_composite_skips_nan(self) -> None:
        stack = _index_stack([np.nan, 0.2, 0.4], [0.0] * 3, [0.0] * 3, [1, 2, 3])
        assert float(median_composite(stack).sel(band="MNDWI")[0, 0]) == pytest.approx(0.3)


class TestHelpers:

    @pytest.mark.parametrize("value, expected", [(6.5, 7), (6.49, 6), (7.0, 7), (float("nan"), None)])
    def test_round_half_up(self, value, expected) -> None:
        assert round_half_up(value) == expected

    def test_year_window(self) -> None:
        assert year_window(2025) == ("2025-01-01", "2026-01-01")

    def test_statistics_from_medians(self) -> None:
        stats = EpochStatistics.from_medians(
            "2005", {"MNDWI": 0.1, "NDVI": 0.2, "BSI": 0.0, "month": 8.5}
        )
        assert stats.peak_month == 9
