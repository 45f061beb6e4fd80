import os, sys, pathlib
# Robust import path so 'landfrag/' is always found
APP_DIR = pathlib.Path(__file__).resolve().parent
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

# Cap resources
os.environ.setdefault("OMP_NUM_THREADS", "1")
os.environ.setdefault("GDAL_CACHEMAX", "128")

import streamlit as st
import numpy as np
import pandas as pd
import tempfile

from landfrag.errors import GrassExportError, InvalidArgument
from landfrag.grass_export import export_raster_to_grass
from landfrag.indicators.fragmentation import CLASS_LABELS, UNDET_POLICIES
from landfrag.pipelines.fragmentation_pipeline import run_fragmentation_pipeline
from landfrag.settings import FragmentationOptions, load_options

st.set_page_config(page_title="Landscape Fragmentation Screening", layout="wide")

CLASS_COLORS = {
    "none": "#e5e5e5",
    "patch": "#1f4e9c",
    "transitional": "#8ec5ff",
    "perforated": "#f2d024",
    "edge": "#f28e2b",
    "undetermined": "#b07aa1",
    "interior": "#2e7d32",
}

for k in ["frag_out", "frag_options"]:
    if k not in st.session_state:
        st.session_state[k] = None


def _save_uploaded(tmpdir, uploaded_file, target_basename):
    if uploaded_file is None: return None
    suffix = pathlib.Path(uploaded_file.name).suffix.lower() or ".bin"
    path = pathlib.Path(tmpdir)/f"{target_basename}{suffix}"
    with open(path, "wb") as f: f.write(uploaded_file.getbuffer())
    return str(path)


def _try_import_matplotlib():
    try:
        import matplotlib.pyplot as plt
        from matplotlib.colors import ListedColormap
        return plt, ListedColormap
    except Exception:
        return None, None


def frag_exec_summary(shares: pd.DataFrame, occupied_frac: float) -> str:
    by_label = shares.set_index("label")["fraction"].fillna(0.0) * 100
    return (
        f"**Fragmentation Summary**\n"
        f"- Occupied share of valid cells: **{occupied_frac*100:.0f}%**\n"
        f"- Interior: **{by_label.get('interior', 0):.0f}%**, "
        f"edge: **{by_label.get('edge', 0):.0f}%**, perforated: **{by_label.get('perforated', 0):.0f}%**\n"
        f"- Transitional: **{by_label.get('transitional', 0):.0f}%**, patch: **{by_label.get('patch', 0):.0f}%**\n"
    )


def render_class_map(class_data: np.ndarray):
    plt, ListedColormap = _try_import_matplotlib()
    if plt is None:
        st.info("Map skipped: `matplotlib` not installed.")
        return
    cmap = ListedColormap([CLASS_COLORS[CLASS_LABELS[c]] for c in sorted(CLASS_LABELS)])
    fig = plt.figure()
    plt.imshow(np.ma.masked_invalid(class_data), cmap=cmap, vmin=-0.5, vmax=6.5, interpolation="nearest")
    cbar = plt.colorbar(ticks=sorted(CLASS_LABELS))
    cbar.ax.set_yticklabels([CLASS_LABELS[c] for c in sorted(CLASS_LABELS)])
    plt.axis("off")
    st.pyplot(fig)


defaults = load_options()

st.title("Landscape Fragmentation Screening")
st.caption("Riitters et al. (2000) focal-window density / connectivity classes.")

cover_up = st.file_uploader("Land cover or binary habitat raster (.tif)", type=["tif", "tiff"])
c1, c2, c3 = st.columns(3)
with c1:
    size = st.number_input("Window size (odd)", min_value=3, step=2, value=int(defaults.size))
    pad = st.checkbox("Pad edges", value=defaults.pad)
with c2:
    undet = st.selectbox("Undetermined cases", UNDET_POLICIES, index=UNDET_POLICIES.index(defaults.undet)
                         if defaults.undet in UNDET_POLICIES else 0)
    treat_missing = st.checkbox("Count missing cells as eligible", value=defaults.treat_missing_as_eligible)
with c3:
    binary = st.checkbox("Raster is already binary (1 = habitat)", value=False)
    codes_txt = st.text_input("Habitat codes (comma-separated, blank = CLC 311-399)",
                              value=",".join(str(c) for c in (defaults.natural_codes or ())))
    cores = st.number_input("Worker processes", min_value=1, value=int(defaults.cores))

if cover_up and st.button("Run Fragmentation", type="primary"):
    try:
        codes = tuple(int(c) for c in codes_txt.split(",") if c.strip()) or None
    except ValueError:
        st.error("Habitat codes must be integers.")
        st.stop()
    options = FragmentationOptions(
        size=int(size), pad=pad, pad_value=defaults.pad_value, treat_missing_as_eligible=treat_missing,
        undet=undet, seed=defaults.seed, cores=int(cores), natural_codes=codes,
    )
    with tempfile.TemporaryDirectory() as tmpdir:
        cover_path = _save_uploaded(tmpdir, cover_up, "cover")
        out_dir = pathlib.Path(tmpdir) / "out"
        with st.spinner("Classifying fragmentation..."):
            try:
                out = run_fragmentation_pipeline({"cover": cover_path, "binary": binary}, options, out_dir=str(out_dir))
                out["class_tif"] = (out_dir / "class.tif").read_bytes()
                st.session_state["frag_out"] = out
                st.session_state["frag_options"] = options
                st.success("Done.")
            except InvalidArgument as e:
                st.error(f"Invalid options: {e}")
            except Exception as e:
                st.error(f"Fragmentation failed {e}")

out = st.session_state.get("frag_out")
if out is None:
    st.info("Upload a raster and run the classifier.")
else:
    shares = out["shares"]
    st.header("Executive Summary")
    st.info(frag_exec_summary(shares, out["natural_fraction"]))

    with st.expander("Class map", expanded=True):
        render_class_map(out["result"]["class"].data)

    st.header("Class Shares")
    st.dataframe(shares)
    st.bar_chart(shares.set_index("label")["cells"])
    st.download_button("Download class shares (CSV)", shares.to_csv(index=False).encode("utf-8"),
                       "class_shares.csv", "text/csv")
    st.download_button("Download class raster (GeoTIFF)", out["class_tif"], "class.tif", "image/tiff")

    if os.environ.get("GISRC"):
        grass_name = st.text_input("GRASS map name", value="frag_class")
        if st.button("Send class raster to GRASS"):
            try:
                export_raster_to_grass(out["result"]["class"], grass_name=grass_name)
                st.success(f"Exported to GRASS as {grass_name}.")
            except GrassExportError as e:
                st.error(f"GRASS export failed: {e}")
    else:
        st.caption("Start the app from inside a GRASS session to enable GRASS export.")
