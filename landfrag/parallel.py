"""Multi-process helpers for raster cell functions and fragmentation.

Both helpers split the grid into horizontal strips and hand them to a
``concurrent.futures.ProcessPoolExecutor``. Results are stitched back in row
order, so output never depends on which worker finishes first.
"""

from __future__ import annotations

import concurrent.futures
import functools
import logging
import os
from typing import Callable, List, Optional, Tuple

import numpy as np

from landfrag.indicators.fragmentation import (
    FragmentationResult,
    assemble_result,
    check_size,
    match_policy,
    normalise_flags,
    window_statistics,
)
from landfrag.raster import Raster, as_raster, extend, write_raster

logger = logging.getLogger(__name__)

# Below this many rows per worker a strip costs more to ship than to compute.
MIN_ROWS_PER_WORKER = 64


def get_cores(n_rows: int, cores: int = 2, force_multi: bool = True) -> int:
    """Number of workers to use for a grid with ``n_rows`` rows.

    With ``force_multi`` every requested core is used (capped at one row
    each); otherwise the count is also capped by the machine and by
    :data:`MIN_ROWS_PER_WORKER`.
    """

    cores = max(1, int(cores))
    cores = min(cores, max(1, n_rows))
    if not force_multi:
        cores = min(cores, os.cpu_count() or 1, max(1, n_rows // MIN_ROWS_PER_WORKER))
    return cores


def _row_blocks(n_rows: int, parts: int) -> List[Tuple[int, int]]:
    edges = np.linspace(0, n_rows, parts + 1).round().astype(int)
    return [(int(a), int(b)) for a, b in zip(edges[:-1], edges[1:]) if b > a]


def _apply_block(fun: Callable, block: np.ndarray) -> np.ndarray:
    out = np.asarray(fun(block), dtype="float64")
    if out.shape != block.shape:
        raise ValueError(f"Cell function changed block shape from {block.shape} to {out.shape}.")
    return out


def faster_calc(
    raster,
    fun: Callable,
    cores: int = 2,
    force_multi: bool = True,
    filename: Optional[str] = None,
    **kwargs,
) -> Raster:
    """Apply a cell-wise function to a raster, optionally across processes.

    ``fun`` receives a 2-D ``float64`` block (NaN for missing) and must
    return an array of the same shape without looking at neighbouring cells.
    Extra keyword arguments are forwarded to ``fun``. With more than one
    worker, ``fun`` must be picklable (a module-level function or ufunc).
    When ``filename`` is given the result is also written there as GeoTIFF.
    """

    source = as_raster(raster)
    func = functools.partial(fun, **kwargs) if kwargs else fun
    n_workers = get_cores(source.height, cores=cores, force_multi=force_multi)

    if n_workers == 1:
        out = source.with_data(_apply_block(func, source.data))
    else:
        blocks = _row_blocks(source.height, n_workers)
        logger.debug("faster_calc: %d row blocks on %d workers", len(blocks), n_workers)
        with concurrent.futures.ProcessPoolExecutor(max_workers=n_workers) as executor:
            parts = list(
                executor.map(
                    _apply_block,
                    [func] * len(blocks),
                    [source.data[a:b] for a, b in blocks],
                )
            )
        out = source.with_data(np.vstack(parts))

    if filename:
        write_raster(out, filename)
        logger.info("faster_calc: wrote %s", filename)
    return out


def _strip_statistics(
    strip: np.ndarray,
    keep: Tuple[int, int],
    size: int,
    treat_missing_as_eligible: bool,
    calc_density: bool,
    calc_connect: bool,
) -> Tuple[Optional[np.ndarray], Optional[np.ndarray]]:
    pf, pff = window_statistics(
        strip,
        size,
        treat_missing_as_eligible=treat_missing_as_eligible,
        calc_density=calc_density,
        calc_connect=calc_connect,
    )
    a, b = keep
    return (pf[a:b] if pf is not None else None, pff[a:b] if pff is not None else None)


def _stack(parts: List[Optional[np.ndarray]]) -> Optional[np.ndarray]:
    if parts[0] is None:
        return None
    return np.vstack(parts)


def faster_fragmentation(
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
    cores: int = 2,
    force_multi: bool = True,
) -> FragmentationResult:
    """Strip-parallel version of :func:`~landfrag.indicators.fragmentation.fragmentation`.

    Each worker gets a strip of rows plus a halo of ``(size - 1) / 2`` rows
    from its neighbours, so window statistics match the single-process call
    cell for cell. Classification runs once on the stitched grid.
    """

    size = check_size(size)
    policy = match_policy(undet)
    calc_density, calc_connect, calc_class = normalise_flags(calc_density, calc_connect, calc_class)
    if policy == "random" and seed is None:
        seed = int(np.random.default_rng().integers(0, 2**63 - 1))

    source = as_raster(raster)
    half = (size - 1) // 2
    padded = extend(source, half, pad_value) if pad else None
    work = padded if padded is not None else source

    n_workers = get_cores(work.height, cores=cores, force_multi=force_multi)
    blocks = _row_blocks(work.height, n_workers)
    jobs = []
    for a, b in blocks:
        lo = max(0, a - half)
        hi = min(work.height, b + half)
        jobs.append((work.data[lo:hi], (a - lo, b - lo)))

    if n_workers == 1:
        results = [
            _strip_statistics(strip, keep, size, treat_missing_as_eligible, calc_density, calc_connect)
            for strip, keep in jobs
        ]
    else:
        logger.info("Fragmentation on %d strips across %d workers (size=%d)", len(jobs), n_workers, size)
        with concurrent.futures.ProcessPoolExecutor(max_workers=n_workers) as executor:
            futures = [
                executor.submit(
                    _strip_statistics, strip, keep, size, treat_missing_as_eligible, calc_density, calc_connect
                )
                for strip, keep in jobs
            ]
            results = [future.result() for future in futures]

    pf = _stack([r[0] for r in results])
    pff = _stack([r[1] for r in results])
    return assemble_result(source, pf, pff, calc_class, policy, seed, padded=padded)
