from __future__ import annotations

import warnings

import numpy as np
import pytest

from landfrag.errors import InvalidArgument
from landfrag.indicators.fragmentation import (
    CLASS_LABELS,
    CLASS_NODATA,
    binary_cover,
    class_shares,
    classify_fragmentation,
    fragmentation,
    natural_fraction,
    natural_mask,
    window_statistics,
)
from landfrag.raster import Raster


def _checkerboard() -> np.ndarray:
    return np.array(
        [
            [1, 0, 1],
            [0, 1, 0],
            [1, 0, 1],
        ],
        dtype=float,
    )


def test_all_occupied_grid_is_interior_everywhere():
    out = fragmentation(np.ones((3, 3)), size=3)

    assert out.names == ("class", "density", "connect")
    assert np.all(out["density"].data == 1.0)
    assert np.all(out["connect"].data == 1.0)
    assert np.all(out["class"].data == 6)


def test_checkerboard_centre_is_transitional():
    out = fragmentation(_checkerboard(), size=3)

    assert out["density"].data[1, 1] == pytest.approx(5 / 9)
    # every adjacent pair mixes a 1 with a 0
    assert out["connect"].data[1, 1] == 0.0
    assert out["class"].data[1, 1] == 2


def test_corner_window_only_counts_cells_inside_raster():
    pf, pff = window_statistics(_checkerboard(), 3)

    # corner window holds (0,0)=1, (0,1)=0, (1,0)=0, (1,1)=1
    assert pf[0, 0] == pytest.approx(0.5)
    assert pff[0, 0] == 0.0


@pytest.mark.parametrize("size", [4, 2, 1, 0, -3, 3.0, "3", True])
def test_invalid_size_fails_before_touching_raster(size):
    with pytest.raises(InvalidArgument):
        fragmentation(object(), size=size)


@pytest.mark.parametrize("undet", ["", "x", "random-ish", None, "perforatedd"])
def test_unknown_policy_rejected(undet):
    with pytest.raises(InvalidArgument):
        fragmentation(np.ones((3, 3)), undet=undet)


def test_invalid_argument_is_a_value_error():
    with pytest.raises(ValueError):
        fragmentation(np.ones((3, 3)), size=6)


def test_policy_prefix_matching_is_case_insensitive():
    pf = np.array([0.75])
    pff = np.array([0.75])

    assert classify_fragmentation(pf, pff, undet="Perf")[0] == 3
    assert classify_fragmentation(pf, pff, undet="E")[0] == 4
    assert classify_fragmentation(pf, pff, undet="UNDET")[0] == 5
    assert classify_fragmentation(pf, pff, undet="r", seed=1)[0] in (3, 4)


def test_class_requested_forces_statistics_with_warning():
    with pytest.warns(UserWarning, match="calc_class"):
        out = fragmentation(np.ones((4, 4)), calc_density=False, calc_connect=False)

    assert out.density is not None
    assert out.connect is not None
    assert out.classification is not None


def test_statistics_only_without_class():
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        out = fragmentation(np.ones((4, 4)), calc_class=False, calc_connect=False)

    assert out.names == ("density",)
    assert out.classification is None and out.connect is None
    with pytest.raises(KeyError):
        out["class"]


def test_decision_table():
    pf = np.array([0.0, 0.2, 0.4, 0.5, 0.6, 1.0, 0.7, 0.7, 0.7, np.nan, 0.5])
    pff = np.array([0.0, 0.1, 0.9, 0.5, 0.6, 0.3, 0.5, 0.9, 0.7, 0.5, np.nan])

    out = classify_fragmentation(pf, pff)

    assert out.dtype == np.int16
    assert out.tolist() == [0, 1, 2, 2, 5, 6, 3, 4, 5, CLASS_NODATA, CLASS_NODATA]


def test_tie_policies():
    pf = np.array([0.6, 0.75, 0.9, 0.8])
    pff = np.array([0.6, 0.75, 0.9, 0.5])

    assert classify_fragmentation(pf, pff, undet="undetermined").tolist() == [5, 5, 5, 3]
    assert classify_fragmentation(pf, pff, undet="perforated").tolist() == [3, 3, 3, 3]
    assert classify_fragmentation(pf, pff, undet="edge").tolist() == [4, 4, 4, 3]


def test_interior_wins_regardless_of_connectivity():
    pf = np.ones(4)
    pff = np.array([0.0, 0.5, 1.0, 0.99])

    for policy in ("undetermined", "perforated", "edge", "random"):
        assert np.all(classify_fragmentation(pf, pff, undet=policy, seed=3) == 6)


def test_random_ties_are_position_keyed():
    pf = np.full((40, 30), 0.8)
    pff = np.full((40, 30), 0.8)

    whole = classify_fragmentation(pf, pff, undet="random", seed=7)
    again = classify_fragmentation(pf, pff, undet="random", seed=7)
    top = classify_fragmentation(pf[:13], pff[:13], undet="random", seed=7)
    bottom = classify_fragmentation(pf[13:], pff[13:], undet="random", seed=7, row_offset=13)
    right = classify_fragmentation(pf[:, 11:], pff[:, 11:], undet="random", seed=7, col_offset=11)

    assert set(np.unique(whole)) == {3, 4}
    np.testing.assert_array_equal(whole, again)
    np.testing.assert_array_equal(whole, np.vstack([top, bottom]))
    np.testing.assert_array_equal(whole[:, 11:], right)
    assert 0.35 < np.mean(whole == 3) < 0.65


def test_random_seed_changes_draws():
    pf = np.full((20, 20), 0.8)
    a = classify_fragmentation(pf, pf, undet="random", seed=1)
    b = classify_fragmentation(pf, pf, undet="random", seed=2)

    assert not np.array_equal(a, b)


def test_class_missing_iff_statistic_missing(random_binary):
    for size in (3, 5, 7):
        out = fragmentation(random_binary, size=size)
        cls = out["class"].data
        stat_missing = np.isnan(out["density"].data) | np.isnan(out["connect"].data)

        np.testing.assert_array_equal(np.isnan(cls), stat_missing)
        assert set(np.unique(cls[~np.isnan(cls)])).issubset(set(CLASS_LABELS))


def test_repeat_runs_are_identical(random_binary):
    a = fragmentation(random_binary, size=5)
    b = fragmentation(random_binary, size=5)

    for name in a:
        np.testing.assert_array_equal(a[name].data, b[name].data)


def test_padding_keeps_extent_and_metadata(forest_raster):
    for size in (3, 5, 9):
        out = fragmentation(forest_raster, size=size, pad=True, pad_value=0)
        for name in out:
            layer = out[name]
            assert layer.shape == forest_raster.shape
            assert layer.transform == forest_raster.transform
            assert layer.crs == forest_raster.crs
            assert layer.bounds == forest_raster.bounds


def test_pad_value_feeds_edge_windows():
    data = np.ones((5, 5))

    plain = fragmentation(data, size=3, pad=True)
    zeros = fragmentation(data, size=3, pad=True, pad_value=0)

    assert np.all(plain["class"].data == 6)
    assert zeros["density"].data[0, 0] == pytest.approx(4 / 9)
    assert zeros["class"].data[2, 2] == 6


def test_missing_cells_are_ineligible_by_default():
    data = np.ones((3, 3))
    data[0, 0] = np.nan

    excluded = fragmentation(data, size=3)
    included = fragmentation(data, size=3, treat_missing_as_eligible=True)

    assert excluded["density"].data[1, 1] == 1.0
    assert excluded["class"].data[1, 1] == 6
    assert included["density"].data[1, 1] == pytest.approx(8 / 9)
    assert included["connect"].data[1, 1] == pytest.approx(10 / 12)
    assert included["class"].data[1, 1] == 3


def test_outside_raster_behaves_like_missing():
    included = fragmentation(np.ones((3, 3)), size=3, treat_missing_as_eligible=True)

    assert included["density"].data[0, 0] == pytest.approx(4 / 9)
    assert included["class"].data[0, 0] == 2


def test_all_missing_window_is_missing():
    data = np.full((5, 5), np.nan)
    data[0, 0] = 1

    out = fragmentation(data, size=3)

    assert np.isnan(out["density"].data[4, 4])
    assert np.isnan(out["class"].data[4, 4])
    assert out["density"].data[0, 0] == 1.0


def test_unoccupied_window_has_no_connectivity():
    out = fragmentation(np.zeros((4, 4)), size=3)

    assert np.all(out["density"].data == 0)
    assert np.all(np.isnan(out["connect"].data))
    assert np.all(np.isnan(out["class"].data))


def test_class_layer_nodata_marker(forest_raster):
    out = fragmentation(forest_raster, size=3)

    assert out["class"].nodata == CLASS_NODATA
    assert out["density"].nodata == -9999.0


def test_class_shares_table():
    cls = np.array([[6, 6, 3], [4, np.nan, 0]], dtype=float)

    shares = class_shares(cls).set_index("label")

    assert list(shares.index) == list(CLASS_LABELS.values())
    assert shares.loc["interior", "cells"] == 2
    assert shares["cells"].sum() == 5
    assert shares["fraction"].sum() == pytest.approx(1.0)


def test_class_shares_accepts_raster(forest_raster):
    out = fragmentation(forest_raster, size=3)
    shares = class_shares(out["class"])

    assert shares["cells"].sum() == int((~np.isnan(out["class"].data)).sum())


def test_natural_mask_and_fraction():
    lc = np.array([[311, 211, -9999], [324, 512, np.nan]], dtype=float)

    mask = natural_mask(lc, nodata=-9999)

    assert mask.tolist() == [[True, False, False], [True, False, False]]
    assert natural_fraction(lc, nodata=-9999) == pytest.approx(2 / 4)
    assert np.isnan(natural_fraction(np.full((2, 2), -9999.0), nodata=-9999))


def test_binary_cover_with_codes():
    lc = np.array([[311, 312, 211], [np.nan, 313, 324]], dtype=float)

    natural = binary_cover(lc)
    forest = binary_cover(lc, codes=[311, 312, 313])

    np.testing.assert_array_equal(natural, [[1, 1, 0], [np.nan, 1, 1]])
    np.testing.assert_array_equal(forest, [[1, 1, 0], [np.nan, 1, 0]])


def test_raster_input_metadata_passed_through(forest_raster):
    out = fragmentation(forest_raster, size=5, undet="edge")

    for name in out:
        assert out[name].transform == forest_raster.transform
        assert out[name].crs == "EPSG:32631"
    assert isinstance(out["class"], Raster)


def test_random_ties_on_flat_and_scalar_input():
    row = np.full(25, 0.8)

    flat = classify_fragmentation(row, row, undet="random", seed=5)
    grid = classify_fragmentation(row[None, :], row[None, :], undet="random", seed=5)
    scalar = classify_fragmentation(np.float64(0.8), np.float64(0.8), undet="random", seed=5)

    assert flat.shape == (25,)
    np.testing.assert_array_equal(flat, grid[0])
    assert scalar.shape == ()
    assert int(scalar) == grid[0, 0]
