import streamlit as st
import pandas as pd

from create_sample_neighborhoods import create_sample_neighborhoods
from housing_map import BASE_STYLES, build_housing_map
from neighborhood_aggregator import (
    AggregatorConfig,
    CoordinateSystemMismatch,
    MalformedPointError,
    aggregate_points_to_neighborhoods,
)
from scripts.ingest.ingest_housing_layers import (
    config_from_env,
    fetch_housing_points,
    load_neighborhood_gdf,
)
from scripts.utils.data_quality import summarize_join

st.set_page_config(page_title="Affordable Housing by Neighborhood", layout="wide")


# --- DATA LOADING ---
@st.cache_data(ttl=3600)
def load_layers():
    config = config_from_env()
    try:
        neighborhoods = load_neighborhood_gdf(config.neighborhoods_source)
        projects = fetch_housing_points(config.points_source, raw_path=config.fallback_points)
        return neighborhoods, projects, False
    except RuntimeError:
        neighborhoods, projects = create_sample_neighborhoods()
        return neighborhoods, projects, True


try:
    neighborhoods, projects, using_sample = load_layers()
except MalformedPointError as exc:
    st.error(f"Data Error: {exc}")
    st.stop()

# Sidebar
st.sidebar.header("Map options")
palette_kind = st.sidebar.selectbox("Palette", ["quantile", "binned", "linear"])
bins = st.sidebar.slider("Bins", min_value=2, max_value=9, value=4, disabled=palette_kind == "linear")
colorscale = st.sidebar.selectbox("Color scale", ["YlOrRd", "Blues", "Viridis", "Greens", "Purples"])
style = st.sidebar.selectbox("Base tiles", BASE_STYLES, index=BASE_STYLES.index("carto-positron"))
predicate = st.sidebar.radio("Boundary points count as", ["inside (intersects)", "outside (within)"])
show_points = st.sidebar.checkbox("Show housing projects", value=True)

st.header("Affordable Housing Units by Neighborhood")
if using_sample:
    st.info("No housing data found in data/raw or the environment; showing generated sample data.")

config = AggregatorConfig(predicate="intersects" if predicate.startswith("inside") else "within")
try:
    result = aggregate_points_to_neighborhoods(projects, neighborhoods, config)
except (MalformedPointError, CoordinateSystemMismatch) as exc:
    st.error(f"Data Error: {exc}")
    st.stop()

stats = summarize_join(result.joined, config.id_col)
col1, col2, col3, col4 = st.columns(4)
col1.metric("Projects", f"{stats['points']:,}")
col2.metric("In a neighborhood", f"{stats['matched']:,}")
col3.metric("Outside city limits", f"{stats['unmatched']:,}")
col4.metric("Neighborhoods with no projects", f"{len(result.without_data):,}")

fig = build_housing_map(
    result,
    palette_kind=palette_kind,
    bins=bins,
    colorscale=colorscale,
    style=style,
    show_points=show_points,
)
st.plotly_chart(fig, use_container_width=True, key="housing_map")

# Tables
tab_units, tab_projects = st.tabs(["Units by neighborhood", "Projects"])
with tab_units:
    table = pd.DataFrame(result.enriched.drop(columns="geometry"))
    st.dataframe(table.sort_values(config.value_col, ascending=False, na_position="last"))
with tab_projects:
    st.dataframe(pd.DataFrame(result.joined.drop(columns="geometry")))
