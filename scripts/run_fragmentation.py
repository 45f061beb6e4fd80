#!/usr/bin/env python3
"""Run fragmentation screening on a land-cover raster from the command line.
Writes class.tif, density.tif, connect.tif and class_shares.csv to --out_dir.
"""
import argparse
import logging
import os
import sys
from dataclasses import replace

os.environ.setdefault("OMP_NUM_THREADS", "1")
os.environ.setdefault("GDAL_CACHEMAX", "128")

from landfrag.pipelines.fragmentation_pipeline import run_fragmentation_pipeline
from landfrag.settings import load_options, load_sites_config


def build_parser():
    ap = argparse.ArgumentParser(description="Classify landscape fragmentation (Riitters et al. 2000).")
    src = ap.add_mutually_exclusive_group(required=True)
    src.add_argument("--cover", help="Land-cover raster (GeoTIFF) or polygons (GPKG/GeoJSON/SHP)")
    src.add_argument("--site", help="Site name from the config 'sites:' section")
    ap.add_argument("--template", default=None, help="Template raster when --cover is a vector")
    ap.add_argument("--binary", action="store_true", help="Treat any positive cell as occupied")
    ap.add_argument("--config", default=None, help="YAML with 'fragmentation:' defaults")
    ap.add_argument("--size", type=int, default=None)
    ap.add_argument("--pad", action=argparse.BooleanOptionalAction, default=None)
    ap.add_argument(
        "--treat-missing-as-eligible",
        dest="treat_missing_as_eligible",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Count missing cells as unoccupied instead of ignoring them",
    )
    ap.add_argument("--undet", default=None, help="undetermined | perforated | edge | random")
    ap.add_argument("--seed", type=int, default=None)
    ap.add_argument("--cores", type=int, default=None)
    ap.add_argument("--out_dir", default=".", help="Output directory")
    ap.add_argument("-v", "--verbose", action="store_true")
    return ap


OVERRIDE_KEYS = ("size", "pad", "treat_missing_as_eligible", "undet", "seed", "cores")


def apply_overrides(options, args):
    """Replace config defaults with the flags given on the command line."""
    overrides = {k: getattr(args, k) for k in OVERRIDE_KEYS if getattr(args, k) is not None}
    return replace(options, **overrides)


def main(argv=None):
    args = build_parser().parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(levelname)s %(name)s: %(message)s")

    options = apply_overrides(load_options(args.config), args)

    if args.site:
        sites = load_sites_config(args.config)
        if args.site not in sites:
            print(f"Unknown site {args.site!r}; known: {', '.join(sorted(sites)) or 'none'}")
            return 1
        site_cfg = sites[args.site]
    else:
        site_cfg = {"cover": args.cover, "template": args.template, "binary": args.binary}

    out = run_fragmentation_pipeline(site_cfg, options, out_dir=args.out_dir)
    print(out["shares"].to_string(index=False))
    for name, path in out["paths"].items():
        print(f"{name}: {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
