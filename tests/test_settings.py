from __future__ import annotations

import math

from landfrag.settings import DEFAULT_OPTIONS, FragmentationOptions, load_options, load_sites_config


def test_missing_file_gives_defaults(tmp_path):
    assert load_options(tmp_path / "nope.yaml") == DEFAULT_OPTIONS


def test_options_from_yaml(tmp_path):
    cfg = tmp_path / "frag.yaml"
    cfg.write_text(
        "fragmentation:\n"
        "  size: 7\n"
        "  pad: true\n"
        "  pad_value: null\n"
        "  undet: edge\n"
        "  natural_codes: [311, 313]\n"
        "  colour: green\n"
        "sites:\n"
        "  girona:\n"
        "    cover: data/girona/clc.tif\n"
    )

    opts = load_options(cfg)

    assert opts.size == 7 and opts.pad is True
    assert math.isnan(opts.pad_value)
    assert opts.undet == "edge"
    assert opts.natural_codes == (311, 313)
    assert load_sites_config(cfg) == {"girona": {"cover": "data/girona/clc.tif"}}


def test_env_var_points_at_config(tmp_path, monkeypatch):
    cfg = tmp_path / "frag.yaml"
    cfg.write_text("fragmentation:\n  cores: 4\n")
    monkeypatch.setenv("LANDFRAG_CONFIG", str(cfg))

    assert load_options().cores == 4


def test_classifier_kwargs():
    kwargs = FragmentationOptions(size=5, seed=3).classifier_kwargs()

    assert kwargs["size"] == 5 and kwargs["seed"] == 3
    assert "cores" not in kwargs and "natural_codes" not in kwargs


def test_repo_config_loads():
    opts = load_options()

    assert opts.size % 2 == 1
    assert "example_forest" in load_sites_config()
