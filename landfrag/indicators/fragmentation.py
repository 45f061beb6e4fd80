"""Landscape fragmentation indicators.

Implements the focal-window fragmentation model of Riitters et al. (2000),
"Global-scale patterns of forest fragmentation", Conservation Ecology 4:3,
using the class numbering of their January 2001 erratum:

* ``0`` none: no occupied cells in the window (``pf == 0``)
* ``1`` patch: ``pf < 0.4``
* ``2`` transitional: ``0.4 <= pf < 0.6``
* ``3`` perforated: ``pf >= 0.6`` and ``pf > pff``
* ``4`` edge: ``pf >= 0.6`` and ``pf < pff``
* ``5`` undetermined: ``pf >= 0.6`` and ``pf == pff``
* ``6`` interior: ``pf == 1``

``pf`` is the share of eligible window cells that are occupied (density) and
``pff`` the share of adjacent cell pairs with at least one occupied cell in
which both cells are occupied (connectivity).

Input grids hold 1 (occupied), 0 (unoccupied) or NaN (missing). Cells beyond
the raster edge behave exactly like interior missing cells.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.ndimage import correlate

from landfrag.errors import InvalidArgument
from landfrag.raster import Raster, as_raster, crop, extend

logger = logging.getLogger(__name__)

CLASS_NODATA = -1
CLASS_LABELS: Dict[int, str] = {
    0: "none",
    1: "patch",
    2: "transitional",
    3: "perforated",
    4: "edge",
    5: "undetermined",
    6: "interior",
}
UNDET_POLICIES: Tuple[str, ...] = ("undetermined", "perforated", "edge", "random")


# Basic classification of CLC-like codes into natural vs modified.
def natural_mask(land_cover: np.ndarray, nodata: Optional[float] = None) -> np.ndarray:
    """Return a boolean mask where True indicates natural/semi-natural cover."""

    land_cover = np.asarray(land_cover, dtype="float64")
    mask_valid = ~np.isnan(land_cover)
    if nodata is not None:
        mask_valid &= land_cover != nodata
    natural = np.zeros(land_cover.shape, dtype=bool)
    # CLC 3xx, 4xx often semi-natural / forest / wetlands
    natural[(land_cover >= 311) & (land_cover <= 399) & mask_valid] = True
    return natural


def natural_fraction(land_cover: np.ndarray, nodata: Optional[float] = None) -> float:
    """Compute the fraction of natural / semi-natural land in the raster."""

    land_cover = np.asarray(land_cover, dtype="float64")
    mask_valid = ~np.isnan(land_cover)
    if nodata is not None:
        mask_valid &= land_cover != nodata
    if not np.any(mask_valid):
        return float("nan")
    nat = natural_mask(land_cover, nodata)
    return float(nat.sum()) / float(mask_valid.sum())


def binary_cover(land_cover: np.ndarray, codes: Optional[Sequence[int]] = None, nodata: Optional[float] = None) -> np.ndarray:
    """Turn a coded land-cover grid into the 1/0/NaN grid the classifier expects.

    Cells whose code is in ``codes`` become 1; without ``codes`` the CLC
    natural/semi-natural range is used. Missing cells stay NaN.
    """

    land_cover = np.asarray(land_cover, dtype="float64")
    missing = np.isnan(land_cover)
    if nodata is not None:
        missing |= land_cover == nodata
    if codes is None:
        hit = natural_mask(land_cover, nodata)
    else:
        hit = np.isin(land_cover, np.asarray(list(codes), dtype="float64"))
    out = hit.astype("float64")
    out[missing] = np.nan
    return out


@dataclass(frozen=True)
class FragmentationResult:
    """Co-registered output layers; absent layers are None."""

    classification: Optional[Raster] = None
    density: Optional[Raster] = None
    connect: Optional[Raster] = None

    def layers(self) -> Dict[str, Raster]:
        out: Dict[str, Raster] = {}
        if self.classification is not None:
            out["class"] = self.classification
        if self.density is not None:
            out["density"] = self.density
        if self.connect is not None:
            out["connect"] = self.connect
        return out

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(self.layers())

    def __getitem__(self, name: str) -> Raster:
        layers = self.layers()
        if name not in layers:
            raise KeyError(name)
        return layers[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self.layers())

    def __len__(self) -> int:
        return len(self.layers())


def check_size(size) -> int:
    """Validate the window side length and return it as an int."""

    if isinstance(size, (bool, np.bool_)) or not isinstance(size, (int, np.integer)):
        raise InvalidArgument(f"Window size must be an odd integer >= 3, got {size!r}.")
    if size < 3 or size % 2 == 0:
        raise InvalidArgument(f"Window size must be an odd integer >= 3, got {size}.")
    return int(size)


def match_policy(undet: str) -> str:
    """Resolve an undetermined-case policy by case-insensitive prefix."""

    key = undet.strip().lower() if isinstance(undet, str) else ""
    hits = [name for name in UNDET_POLICIES if key and name.startswith(key)]
    if len(hits) != 1:
        raise InvalidArgument(
            f"Unknown undetermined-case policy {undet!r}; expected one of {', '.join(UNDET_POLICIES)}."
        )
    return hits[0]


def _ratio(num: np.ndarray, den: np.ndarray) -> np.ndarray:
    out = np.full(num.shape, np.nan, dtype="float64")
    np.divide(num, den, out=out, where=den > 0)
    return out


def _focal_sum(arr: np.ndarray, kernel: np.ndarray) -> np.ndarray:
    return np.rint(correlate(arr.astype("float64"), kernel, mode="constant", cval=0.0))


def window_statistics(
    data: np.ndarray,
    size: int,
    treat_missing_as_eligible: bool = False,
    calc_density: bool = True,
    calc_connect: bool = True,
) -> Tuple[Optional[np.ndarray], Optional[np.ndarray]]:
    """Compute per-cell density (pf) and connectivity (pff) for a 1/0/NaN grid.

    Returns ``(pf, pff)``; a statistic that was not requested is None.
    """

    data = np.asarray(data, dtype="float64")
    half = (size - 1) // 2
    missing = np.isnan(data)
    occupied = np.pad(~missing & (data == 1), half, mode="constant", constant_values=False)
    eligible = np.pad(~missing, half, mode="constant", constant_values=False)
    if treat_missing_as_eligible:
        eligible[:] = True
    inner = (slice(half, half + data.shape[0]), slice(half, half + data.shape[1]))
    window = np.ones((size, size), dtype="float64")

    pf = pff = None
    if calc_density:
        n_occupied = _focal_sum(occupied, window)[inner]
        n_eligible = _focal_sum(eligible, window)[inner]
        pf = _ratio(n_occupied, n_eligible)

    if calc_connect:
        # Pairs are anchored on their left (resp. upper) cell; dropping the last
        # kernel column (row) keeps both members of every counted pair inside
        # the window.
        h_both = np.zeros(occupied.shape, dtype=bool)
        h_any = np.zeros(occupied.shape, dtype=bool)
        h_both[:, :-1] = occupied[:, :-1] & occupied[:, 1:]
        h_any[:, :-1] = (occupied[:, :-1] & eligible[:, 1:]) | (eligible[:, :-1] & occupied[:, 1:])

        v_both = np.zeros(occupied.shape, dtype=bool)
        v_any = np.zeros(occupied.shape, dtype=bool)
        v_both[:-1, :] = occupied[:-1, :] & occupied[1:, :]
        v_any[:-1, :] = (occupied[:-1, :] & eligible[1:, :]) | (eligible[:-1, :] & occupied[1:, :])

        h_kernel = window.copy()
        h_kernel[:, -1] = 0.0
        v_kernel = window.copy()
        v_kernel[-1, :] = 0.0

        linked = _focal_sum(h_both, h_kernel) + _focal_sum(v_both, v_kernel)
        links = _focal_sum(h_any, h_kernel) + _focal_sum(v_any, v_kernel)
        pff = _ratio(linked[inner], links[inner])

    logger.debug("Window statistics for %s grid, size=%d", data.shape, size)
    return pf, pff


_GOLDEN = np.uint64(0x9E3779B97F4A7C15)
_MIX1 = np.uint64(0xBF58476D1CE4E5B9)
_MIX2 = np.uint64(0x94D049BB133111EB)


def _splitmix64(x: np.ndarray) -> np.ndarray:
    z = x + _GOLDEN
    z = (z ^ (z >> np.uint64(30))) * _MIX1
    z = (z ^ (z >> np.uint64(27))) * _MIX2
    return z ^ (z >> np.uint64(31))


def cell_coin(seed: int, rows: np.ndarray, cols: np.ndarray) -> np.ndarray:
    """Fair coin per (row, col), a pure function of seed and position."""

    rows = np.ascontiguousarray(rows, dtype=np.int64).view(np.uint64)
    cols = np.ascontiguousarray(cols, dtype=np.int64).view(np.uint64)
    key = np.full(rows.shape, int(seed) & 0xFFFFFFFFFFFFFFFF, dtype=np.uint64)
    with np.errstate(over="ignore"):
        key = _splitmix64(key ^ _splitmix64(rows))
        key = _splitmix64(key ^ cols)
    return (key >> np.uint64(63)) == 0


def classify_fragmentation(
    pf: np.ndarray,
    pff: np.ndarray,
    undet: str = "undetermined",
    seed: Optional[int] = None,
    row_offset: int = 0,
    col_offset: int = 0,
) -> np.ndarray:
    """Map density/connectivity pairs to fragmentation classes.

    Returns an ``int16`` array with :data:`CLASS_NODATA` where either input
    is missing. Under the ``random`` policy each tied cell flips its own coin
    keyed on ``seed`` and its position; ``row_offset``/``col_offset`` place a
    tile inside a larger grid so tiled runs match whole-grid runs.
    """

    policy = match_policy(undet)
    pf = np.asarray(pf, dtype="float64")
    pff = np.asarray(pff, dtype="float64")
    if pf.shape != pff.shape:
        raise ValueError(f"Density shape {pf.shape} does not match connectivity shape {pff.shape}.")

    missing = np.isnan(pf) | np.isnan(pff)
    with np.errstate(invalid="ignore"):
        out = np.select(
            [missing, pf == 0, pf < 0.4, pf < 0.6, pf == 1, pf > pff, pf < pff],
            [CLASS_NODATA, 0, 1, 2, 6, 3, 4],
            default=5,
        ).astype("int16")

    tie = out == 5
    if policy == "perforated":
        out[tie] = 3
    elif policy == "edge":
        out[tie] = 4
    elif policy == "random" and np.any(tie):
        if seed is None:
            seed = int(np.random.default_rng().integers(0, 2**63 - 1))
        # 0-d and 1-d inputs are keyed as a single row
        idx = np.nonzero(np.atleast_2d(tie))
        rows, cols = idx[-2], idx[-1]
        coin = cell_coin(seed, rows + row_offset, cols + col_offset)
        out[tie] = np.where(coin, 3, 4).astype("int16")
    return out


def normalise_flags(calc_density: bool, calc_connect: bool, calc_class: bool) -> Tuple[bool, bool, bool]:
    """Force density and connectivity on when classification is requested."""

    if calc_class and not (calc_density and calc_connect):
        msg = 'Forcing "calc_density" and "calc_connect" to True since "calc_class" is True.'
        warnings.warn(msg, UserWarning, stacklevel=3)
        logger.warning(msg)
        calc_density = calc_connect = True
    return calc_density, calc_connect, calc_class


def assemble_result(
    source: Raster,
    pf: Optional[np.ndarray],
    pff: Optional[np.ndarray],
    calc_class: bool,
    undet: str,
    seed: Optional[int],
    padded: Optional[Raster] = None,
) -> FragmentationResult:
    """Wrap statistics as rasters on ``source``'s grid and classify them.

    When ``padded`` is given the statistics live on that larger grid and are
    cropped back to ``source``'s extent first.
    """

    def _layer(values: Optional[np.ndarray]) -> Optional[Raster]:
        if values is None:
            return None
        if padded is not None:
            values = crop(padded.with_data(values), source.bounds).data
        return source.with_data(values, nodata=-9999.0)

    density = _layer(pf)
    connect = _layer(pff)
    classification = None
    if calc_class:
        classes = classify_fragmentation(density.data, connect.data, undet=undet, seed=seed)
        classification = density.with_data(
            np.where(classes == CLASS_NODATA, np.nan, classes), nodata=CLASS_NODATA
        )
    return FragmentationResult(classification=classification, density=density, connect=connect)


def fragmentation(
    raster,
    size: int = 3,
    pad: bool = False,
    pad_value: float = np.nan,
    calc_density: bool = True,
    calc_connect: bool = True,
    calc_class: bool = True,
    treat_missing_as_eligible: bool = False,
    undet: str = "undetermined",
    seed: Optional[int] = None,
) -> FragmentationResult:
    """Calculate fragmentation density, connectivity and class for a binary raster.

    Parameters
    ----------
    raster:
        :class:`~landfrag.raster.Raster` (or anything :func:`as_raster`
        accepts) with values 1, 0 or missing.
    size:
        Odd window side length, at least 3.
    pad:
        Extend the grid by ``(size - 1) / 2`` cells of ``pad_value`` on every
        side before computing statistics; the border is cropped away again.
    calc_density, calc_connect, calc_class:
        Which layers to produce. Classification needs both statistics, so
        asking for it forces the other two on with a warning.
    treat_missing_as_eligible:
        Count missing cells (including those beyond the raster edge) as
        potentially occupied area in both statistics.
    undet:
        How ``pf == pff`` ties at ``0.6 <= pf < 1`` are resolved:
        ``undetermined`` (5), ``perforated`` (3), ``edge`` (4) or ``random``
        (3 or 4 per cell). Partial names are accepted.
    seed:
        Seed for the ``random`` policy.

    Returns
    -------
    FragmentationResult
        Layers ``class``, ``density`` and ``connect`` on the input's grid.
    """

    size = check_size(size)
    policy = match_policy(undet)
    calc_density, calc_connect, calc_class = normalise_flags(calc_density, calc_connect, calc_class)

    source = as_raster(raster)
    half = (size - 1) // 2
    padded = extend(source, half, pad_value) if pad else None
    work = padded if padded is not None else source

    pf, pff = window_statistics(
        work.data,
        size,
        treat_missing_as_eligible=treat_missing_as_eligible,
        calc_density=calc_density,
        calc_connect=calc_connect,
    )
    return assemble_result(source, pf, pff, calc_class, policy, seed, padded=padded)


def class_shares(classification) -> pd.DataFrame:
    """Cell counts and fractions per fragmentation class.

    Accepts a class :class:`Raster` or array (NaN or :data:`CLASS_NODATA`
    for missing). Fractions are relative to classified cells.
    """

    values = classification.data if isinstance(classification, Raster) else np.asarray(classification, dtype="float64")
    values = values[~np.isnan(values) & (values != CLASS_NODATA)].astype(int)
    total = int(values.size)
    rows = []
    for code, label in CLASS_LABELS.items():
        cells = int(np.count_nonzero(values == code))
        rows.append(
            {
                "code": code,
                "label": label,
                "cells": cells,
                "fraction": cells / total if total else float("nan"),
            }
        )
    return pd.DataFrame(rows)
