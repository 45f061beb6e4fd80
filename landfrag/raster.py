# landfrag/raster.py
"""Single-band raster grids backed by NumPy and rasterio.

Missing cells are held as NaN in memory; the ``nodata`` marker is only used
when a grid is written to disk. Transform and CRS are carried through every
operation untouched, so derived layers stay co-registered with their source.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Optional, Tuple

import numpy as np
import rasterio
from affine import Affine
from rasterio.transform import array_bounds

Bounds = Tuple[float, float, float, float]


@dataclass(frozen=True)
class Raster:
    """A 2-D grid plus the georeferencing needed to write it back out.

    Attributes
    ----------
    data : np.ndarray
        ``float64`` cell values, NaN where missing.
    transform : affine.Affine
        Pixel-to-map transform of the upper-left corner.
    crs :
        Anything rasterio accepts as a CRS; passed through unchanged.
    nodata : float
        Marker written in place of NaN when saving.
    """

    data: np.ndarray
    transform: Affine = Affine.identity()
    crs: object = None
    nodata: float = -9999.0

    @property
    def height(self) -> int:
        return int(self.data.shape[0])

    @property
    def width(self) -> int:
        return int(self.data.shape[1])

    @property
    def shape(self) -> Tuple[int, int]:
        return self.height, self.width

    @property
    def bounds(self) -> Bounds:
        """(west, south, east, north) in map units."""
        return array_bounds(self.height, self.width, self.transform)

    def with_data(self, data: np.ndarray, nodata: Optional[float] = None) -> "Raster":
        """Return a grid sharing this one's georeferencing but holding ``data``."""
        data = np.asarray(data, dtype="float64")
        if data.shape != self.shape:
            raise ValueError(f"Shape {data.shape} does not match raster shape {self.shape}.")
        return replace(self, data=data, nodata=self.nodata if nodata is None else nodata)


def _to_float(arr: np.ndarray, nodata: Optional[float]) -> np.ndarray:
    out = np.ma.filled(np.ma.asarray(arr).astype("float64"), np.nan)
    if nodata is not None and not np.isnan(nodata):
        out[out == nodata] = np.nan
    return out


def as_raster(obj, transform: Optional[Affine] = None, crs: object = None, nodata: Optional[float] = None) -> Raster:
    """Coerce ``obj`` into a :class:`Raster`.

    Accepts a :class:`Raster` (returned as is), an open rasterio dataset
    (band 1 is read), or anything :func:`numpy.asarray` turns into a 2-D
    array. Masked arrays have their mask converted to NaN.
    """

    if isinstance(obj, Raster):
        return obj
    if hasattr(obj, "read") and hasattr(obj, "transform"):
        src_nodata = obj.nodata
        data = _to_float(obj.read(1, masked=True), src_nodata)
        return Raster(
            data=data,
            transform=obj.transform,
            crs=obj.crs,
            nodata=src_nodata if src_nodata is not None else -9999.0,
        )

    data = _to_float(obj, nodata)
    if data.ndim != 2:
        raise ValueError(f"Expected a 2-D grid, got an array with {data.ndim} dimension(s).")
    return Raster(
        data=data,
        transform=transform if transform is not None else Affine.identity(),
        crs=crs,
        nodata=nodata if nodata is not None else -9999.0,
    )


def read_raster(path: str, band: int = 1) -> Raster:
    """Read one band of a raster file, converting nodata to NaN."""

    with rasterio.open(path) as src:
        data = _to_float(src.read(band, masked=True), src.nodata)
        return Raster(
            data=data,
            transform=src.transform,
            crs=src.crs,
            nodata=src.nodata if src.nodata is not None else -9999.0,
        )


def _profile(raster: Raster, count: int, dtype: str, nodata: float) -> Dict[str, object]:
    return {
        "driver": "GTiff",
        "height": raster.height,
        "width": raster.width,
        "count": count,
        "dtype": dtype,
        "transform": raster.transform,
        "crs": raster.crs,
        "nodata": nodata,
    }


def _filled(raster: Raster, dtype: str, nodata: float) -> np.ndarray:
    return np.where(np.isnan(raster.data), nodata, raster.data).astype(dtype)


def write_raster(raster: Raster, path: str, dtype: str = "float32", nodata: Optional[float] = None) -> str:
    """Write ``raster`` to a single-band GeoTIFF and return the path."""

    nodata = raster.nodata if nodata is None else nodata
    with rasterio.open(path, "w", **_profile(raster, 1, dtype, nodata)) as dst:
        dst.write(_filled(raster, dtype, nodata), 1)
    return str(path)


def write_stack(layers: Dict[str, Raster], path: str, dtype: str = "float32", nodata: float = -9999.0) -> str:
    """Write co-registered layers as bands of one GeoTIFF, named after their keys."""

    if not layers:
        raise ValueError("No layers to write.")
    names = list(layers)
    first = layers[names[0]]
    with rasterio.open(path, "w", **_profile(first, len(names), dtype, nodata)) as dst:
        for idx, name in enumerate(names, start=1):
            dst.write(_filled(layers[name], dtype, nodata), idx)
            dst.set_band_description(idx, name)
    return str(path)


def extend(raster: Raster, cells: int, value: float = np.nan) -> Raster:
    """Grow the grid by ``cells`` rows/columns on every side, filled with ``value``."""

    if cells < 0:
        raise ValueError("cells must be non-negative.")
    if cells == 0:
        return raster
    data = np.pad(raster.data, cells, mode="constant", constant_values=value)
    transform = raster.transform @ Affine.translation(-cells, -cells)
    return replace(raster, data=data, transform=transform)


def crop(raster: Raster, bounds: Bounds) -> Raster:
    """Cut the grid down to ``bounds`` (west, south, east, north), snapped to cells."""

    west, south, east, north = bounds
    inv = ~raster.transform
    col0, row0 = inv * (west, north)
    col1, row1 = inv * (east, south)
    c0, c1 = sorted((int(round(col0)), int(round(col1))))
    r0, r1 = sorted((int(round(row0)), int(round(row1))))
    c0, r0 = max(c0, 0), max(r0, 0)
    c1, r1 = min(c1, raster.width), min(r1, raster.height)
    if c1 <= c0 or r1 <= r0:
        raise ValueError("Crop bounds do not overlap the raster.")
    data = raster.data[r0:r1, c0:c1]
    transform = raster.transform @ Affine.translation(c0, r0)
    return replace(raster, data=data, transform=transform)
