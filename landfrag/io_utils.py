from __future__ import annotations

from typing import Optional, Sequence

import geopandas as gpd
import numpy as np
import pandas as pd
from rasterio.features import rasterize

from landfrag.raster import Raster

VECTOR_SUFFIXES = (".geojson", ".json", ".gpkg", ".shp")

CLC_CODE_FIELDS: Sequence[str] = (
    "CODE_18", "CLC_CODE", "CLC_CODE18", "code_18", "CODE", "CLC_CODE_18"
)


def is_vector_path(path: str) -> bool:
    return str(path).lower().endswith(VECTOR_SUFFIXES)


def pick_code_field(gdf: gpd.GeoDataFrame) -> Optional[str]:
    for f in CLC_CODE_FIELDS:
        if f in gdf.columns:
            return f
    for c in gdf.columns:
        if c != gdf.geometry.name and gdf[c].dtype.kind in ("i", "u", "f"):
            return c
    return None


def load_cover_vector(path: str, layer: Optional[str] = None) -> gpd.GeoDataFrame:
    """Read land-cover polygons and normalise the code column to ``CLC_CODE``."""

    gdf = gpd.read_file(path, layer=layer) if layer else gpd.read_file(path)
    if gdf.empty:
        return gdf
    if gdf.crs is None:
        raise ValueError("Land-cover vector has no CRS.")
    code_field = pick_code_field(gdf)
    if code_field is None:
        raise ValueError("Cannot find land-cover code field (e.g., CODE_18/CLC_CODE).")
    gdf = gdf[[code_field, gdf.geometry.name]].rename(columns={code_field: "CLC_CODE"})
    gdf["CLC_CODE"] = pd.to_numeric(gdf["CLC_CODE"], errors="coerce")
    return gdf[gdf["CLC_CODE"].notna() & gdf.geometry.notna() & ~gdf.geometry.is_empty]


def rasterize_cover(gdf: gpd.GeoDataFrame, template: Raster, field: str = "CLC_CODE") -> Raster:
    """Burn polygon codes onto ``template``'s grid; uncovered cells are NaN."""

    if gdf.empty:
        return template.with_data(np.full(template.shape, np.nan))
    if template.crs is not None and gdf.crs is not None and gdf.crs != template.crs:
        gdf = gdf.to_crs(template.crs)
    shapes = ((geom, float(code)) for geom, code in zip(gdf.geometry, gdf[field]))
    burned = rasterize(
        shapes,
        out_shape=template.shape,
        transform=template.transform,
        fill=np.nan,
        dtype="float64",
    )
    return template.with_data(burned)
