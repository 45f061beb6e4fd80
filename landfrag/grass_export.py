"""Push in-memory layers into an existing GRASS GIS session.

The GRASS session itself (location, mapset, ``GISRC``) is created by the
caller; these helpers only write a temporary file and run the matching
GRASS import module on it:

* rasters go through a GeoTIFF and ``r.in.gdal``;
* vectors go through a GeoPackage and ``v.in.ogr`` first, and fall back to
  an ESRI Shapefile and ``v.import`` (slower, but reprojects and cleans
  geometries) when the fast import fails.
"""

from __future__ import annotations

import logging
import os
import subprocess as sp
import tempfile
from pathlib import Path
from typing import List, Optional, Sequence

import geopandas as gpd
from shapely.geometry.base import BaseGeometry

from landfrag.errors import GrassExportError
from landfrag.raster import Raster, as_raster, write_raster

logger = logging.getLogger(__name__)


def _require_session() -> None:
    if not os.environ.get("GISRC"):
        raise GrassExportError("No active GRASS session: GISRC is not set.")


def run_grass(module: str, flags: Sequence[str] = ("overwrite", "quiet"), **params) -> None:
    """Run one GRASS module, e.g. ``run_grass("r.in.gdal", input=..., output=...)``."""

    cmd: List[str] = [module] + [f"{k}={v}" for k, v in params.items()] + [f"--{f}" for f in flags]
    logger.info("+ %s", " ".join(cmd))
    try:
        sp.run(cmd, check=True, capture_output=True, text=True)
    except FileNotFoundError as exc:
        raise GrassExportError(f"GRASS module {module!r} not found on PATH.") from exc
    except sp.CalledProcessError as exc:
        detail = (exc.stderr or "").strip() or f"exit status {exc.returncode}"
        raise GrassExportError(f"{module} failed: {detail}") from exc


def export_raster_to_grass(rast, grass_name: str = "rast", temp_dir: Optional[str] = None) -> str:
    """Write a raster into the active GRASS session as ``grass_name``.

    ``rast`` may be a :class:`~landfrag.raster.Raster`, anything
    :func:`~landfrag.raster.as_raster` accepts, or a path to a raster file
    (imported directly). Returns the GRASS map name.
    """

    _require_session()
    if isinstance(rast, (str, Path)):
        run_grass("r.in.gdal", input=str(rast), output=grass_name)
        return grass_name

    raster: Raster = as_raster(rast)
    with tempfile.TemporaryDirectory(dir=temp_dir) as tmpdir:
        path = write_raster(raster, os.path.join(tmpdir, f"{grass_name}.tif"), dtype="float64")
        run_grass("r.in.gdal", input=path, output=grass_name)
    return grass_name


def as_geodataframe(vect) -> gpd.GeoDataFrame:
    """Promote geometries to a GeoDataFrame with at least one attribute column.

    GRASS attaches attribute tables by category, so bare geometries get a
    ``cat`` column numbered from 1.
    """

    if isinstance(vect, gpd.GeoDataFrame):
        gdf = vect.copy()
    elif isinstance(vect, gpd.GeoSeries):
        gdf = gpd.GeoDataFrame(geometry=vect.reset_index(drop=True), crs=vect.crs)
    elif isinstance(vect, BaseGeometry):
        gdf = gpd.GeoDataFrame(geometry=[vect])
    else:
        gdf = gpd.GeoDataFrame(geometry=list(vect))

    if gdf.empty:
        raise ValueError("Vector layer has no features.")
    if len(gdf.columns) == 1:
        gdf.insert(0, "cat", range(1, len(gdf) + 1))
    return gdf


def _write_fast(gdf: gpd.GeoDataFrame, vname: str, tmpdir: str) -> None:
    path = os.path.join(tmpdir, f"{vname}.gpkg")
    gdf.to_file(path, driver="GPKG", layer=vname)
    run_grass("v.in.ogr", input=path, layer=vname, output=vname)


def _write_slow(gdf: gpd.GeoDataFrame, vname: str, tmpdir: str) -> None:
    path = os.path.join(tmpdir, f"{vname}.shp")
    gdf.to_file(path, driver="ESRI Shapefile")
    run_grass("v.import", input=path, output=vname)


def export_vector_to_grass(vect, vname: str = "vect", temp_dir: Optional[str] = None) -> str:
    """Write a vector layer into the active GRASS session as ``vname``.

    Tries the fast GeoPackage/``v.in.ogr`` route first and retries with a
    Shapefile/``v.import`` when that raises. Returns the GRASS map name.
    """

    _require_session()
    gdf = as_geodataframe(vect)
    with tempfile.TemporaryDirectory(dir=temp_dir) as tmpdir:
        try:
            _write_fast(gdf, vname, tmpdir)
        except (RuntimeError, OSError, ValueError) as exc:
            logger.warning("Fast vector export of %r failed (%s); retrying with v.import.", vname, exc)
            _write_slow(gdf, vname, tmpdir)
    return vname
