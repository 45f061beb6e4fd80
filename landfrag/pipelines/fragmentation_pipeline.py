"""Fragmentation screening pipeline.

Reads a site's land-cover layer, reduces it to an occupied / unoccupied
grid, runs the fragmentation classifier and summarises the class mix.
Outputs can optionally be written next to each other as GeoTIFFs plus a
CSV of class shares.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Mapping, Optional

import numpy as np

from landfrag.indicators.fragmentation import binary_cover, class_shares, fragmentation
from landfrag.io_utils import is_vector_path, load_cover_vector, rasterize_cover
from landfrag.parallel import faster_fragmentation
from landfrag.raster import Raster, read_raster, write_raster
from landfrag.settings import DEFAULT_OPTIONS, FragmentationOptions

logger = logging.getLogger(__name__)


def load_cover(site_cfg: Mapping[str, object]) -> Raster:
    """Load the site's land-cover grid from ``cover`` (or ``clc``).

    Vector land cover is burned onto the raster named by ``template``.
    """

    cover_path = site_cfg.get("cover") or site_cfg.get("clc")
    if not cover_path:
        raise ValueError("Site configuration must define a 'cover' (or 'clc') path.")

    if is_vector_path(str(cover_path)):
        template_path = site_cfg.get("template")
        if not template_path:
            raise ValueError("Vector land cover needs a 'template' raster path to rasterise onto.")
        template = read_raster(str(template_path))
        return rasterize_cover(load_cover_vector(str(cover_path)), template)
    return read_raster(str(cover_path))


def occupancy_grid(cover: Raster, binary: bool = False, codes=None) -> Raster:
    """1/0/NaN grid: any positive value when ``binary``, else matching codes."""

    if binary:
        data = np.where(np.isnan(cover.data), np.nan, (cover.data > 0).astype("float64"))
        return cover.with_data(data)
    return cover.with_data(binary_cover(cover.data, codes=codes))


def write_outputs(layers: Dict[str, Raster], shares, out_dir) -> Dict[str, str]:
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    paths: Dict[str, str] = {}
    for name, layer in layers.items():
        dtype = "int16" if name == "class" else "float32"
        paths[name] = write_raster(layer, str(out / f"{name}.tif"), dtype=dtype)
    shares_path = out / "class_shares.csv"
    shares.to_csv(shares_path, index=False)
    paths["class_shares"] = str(shares_path)
    return paths


def run_fragmentation_pipeline(
    site_cfg: Mapping[str, object],
    options: Optional[FragmentationOptions] = None,
    out_dir: Optional[str] = None,
) -> Dict[str, object]:
    """Run fragmentation screening for one site.

    Parameters
    ----------
    site_cfg:
        Mapping with ``cover`` (or ``clc``) and, for vector land cover,
        ``template``. ``binary: true`` treats any positive cell as occupied
        instead of matching land-cover codes.
    options:
        Classifier defaults; ``options.cores > 1`` runs strip-parallel.
    out_dir:
        If given, layers and ``class_shares.csv`` are written there.
    """

    options = options or DEFAULT_OPTIONS
    cover = load_cover(site_cfg)
    occupied = occupancy_grid(cover, binary=bool(site_cfg.get("binary", False)), codes=options.natural_codes)
    valid = ~np.isnan(occupied.data)
    frac = float(occupied.data[valid].mean()) if np.any(valid) else float("nan")
    logger.info("Occupied fraction %.3f over %d valid cells", frac, int(valid.sum()))

    if options.cores > 1:
        result = faster_fragmentation(occupied, cores=options.cores, **options.classifier_kwargs())
    else:
        result = fragmentation(occupied, **options.classifier_kwargs())
    shares = class_shares(result["class"])

    paths: Dict[str, str] = {}
    if out_dir:
        paths = write_outputs(result.layers(), shares, out_dir)
        logger.info("Wrote %d fragmentation outputs to %s", len(paths), out_dir)

    return {
        "result": result,
        "shares": shares,
        "natural_fraction": frac,
        "paths": paths,
    }
