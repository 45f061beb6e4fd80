from __future__ import annotations

import os
import subprocess

import geopandas as gpd
import numpy as np
import pytest
from shapely.geometry import LineString, Point, box

from landfrag import grass_export
from landfrag.errors import GrassExportError
from landfrag.grass_export import as_geodataframe, export_raster_to_grass, export_vector_to_grass


class FakeGrass:
    """Records GRASS invocations; modules listed in ``failing`` exit non-zero."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls = []

    def __call__(self, cmd, check=False, capture_output=False, text=False):
        params = dict(arg.split("=", 1) for arg in cmd[1:] if "=" in arg)
        # the temporary input must exist while GRASS reads it
        self.calls.append((cmd[0], params, os.path.exists(params.get("input", ""))))
        if cmd[0] in self.failing:
            raise subprocess.CalledProcessError(1, cmd, stderr="ERROR: cannot open datasource")
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    @property
    def modules(self):
        return [c[0] for c in self.calls]


@pytest.fixture
def grass_session(monkeypatch, tmp_path):
    monkeypatch.setenv("GISRC", str(tmp_path / "rc"))
    fake = FakeGrass()
    monkeypatch.setattr(grass_export.sp, "run", fake)
    return fake


def _points():
    return gpd.GeoDataFrame(
        {"name": ["a", "b"]}, geometry=[Point(0, 0), Point(1, 1)], crs="EPSG:4326"
    )


def test_raster_export_writes_temp_geotiff(grass_session, forest_raster):
    name = export_raster_to_grass(forest_raster, grass_name="forest")

    assert name == "forest"
    module, params, existed = grass_session.calls[0]
    assert module == "r.in.gdal"
    assert params["output"] == "forest"
    assert params["input"].endswith("forest.tif")
    assert existed
    assert not os.path.exists(params["input"])


def test_raster_export_from_path_skips_temp_file(grass_session, tmp_path):
    export_raster_to_grass(str(tmp_path / "dem.tif"), grass_name="dem")

    assert grass_session.calls[0][1] == {"input": str(tmp_path / "dem.tif"), "output": "dem"}


def test_raster_export_accepts_arrays(grass_session):
    export_raster_to_grass(np.ones((3, 3)))

    assert grass_session.calls[0][1]["output"] == "rast"


def test_vector_export_fast_path(grass_session):
    name = export_vector_to_grass(_points(), vname="sites")

    assert name == "sites"
    assert grass_session.modules == ["v.in.ogr"]
    params = grass_session.calls[0][1]
    assert params["output"] == "sites"
    assert params["input"].endswith(".gpkg")


def test_vector_export_falls_back_to_v_import(grass_session):
    grass_session.failing.add("v.in.ogr")

    name = export_vector_to_grass(_points(), vname="sites")

    assert name == "sites"
    assert grass_session.modules == ["v.in.ogr", "v.import"]
    module, params, existed = grass_session.calls[1]
    assert params["input"].endswith("sites.shp")
    assert existed


def test_vector_export_raises_when_both_paths_fail(grass_session):
    grass_session.failing.update({"v.in.ogr", "v.import"})

    with pytest.raises(GrassExportError, match="v.import failed"):
        export_vector_to_grass(_points())


def test_export_requires_session(monkeypatch, forest_raster):
    monkeypatch.delenv("GISRC", raising=False)

    with pytest.raises(GrassExportError, match="GISRC"):
        export_raster_to_grass(forest_raster)
    with pytest.raises(GrassExportError):
        export_vector_to_grass(_points())


def test_missing_grass_binary(monkeypatch, tmp_path, forest_raster):
    monkeypatch.setenv("GISRC", str(tmp_path / "rc"))

    def _missing(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(grass_export.sp, "run", _missing)
    with pytest.raises(GrassExportError, match="not found"):
        export_raster_to_grass(forest_raster)


def test_as_geodataframe_adds_category_column():
    series = gpd.GeoSeries([box(0, 0, 1, 1), box(1, 1, 2, 2)], crs="EPSG:3035")

    gdf = as_geodataframe(series)

    assert list(gdf["cat"]) == [1, 2]
    assert gdf.crs == series.crs


def test_as_geodataframe_keeps_attributes_and_wraps_geometries():
    assert "cat" not in as_geodataframe(_points()).columns
    assert len(as_geodataframe(LineString([(0, 0), (1, 1)]))) == 1
    assert len(as_geodataframe([Point(0, 0), Point(2, 2), Point(3, 3)])) == 3
    with pytest.raises(ValueError):
        as_geodataframe([])
