import logging

import streamlit as st
from dotenv import load_dotenv

from constants.schemas import ALL, Facet, SyncProgress
from utils.inventory_sync import InventoryStore
from utils.inventory_view import quantity_by_state, records_to_dataframe
from utils.record_sources import create_record_source
from utils.sync_config import SyncConfig

# Load environment variables
load_dotenv()
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)

# Set page configuration
st.set_page_config(
    page_title="Relief Inventory Console",
    page_icon="📦",
    layout="wide",
    initial_sidebar_state="expanded",
)

ROWS_PER_PAGE = 50


def get_store() -> InventoryStore:
    """Create the inventory store once per session"""
    if "inventory_store" not in st.session_state:
        config = SyncConfig.from_env()
        st.session_state.inventory_store = InventoryStore(create_record_source(config), config)
    return st.session_state.inventory_store


def reload_inventory(store: InventoryStore):
    """Run a full reload, driving a progress bar from the sync progress channel"""
    progress_bar = st.progress(0, text="Loading inventory data...")

    def show_progress(progress: SyncProgress):
        progress_bar.progress(
            progress.percentage,
            text=f"Loaded {progress.accumulated:,} of ~{progress.estimated_total:,} items ({progress.percentage}%)",
        )

    result = store.reload_all(on_progress=show_progress)
    progress_bar.empty()
    st.session_state.failed_offsets = result.failed_offsets

    if result.aborted:
        st.error(f"❌ {result.summary()}")
    elif result.failures:
        st.warning(f"⚠️ {result.summary()}. Some pages could not be loaded; the table may be incomplete.")
    else:
        st.success(f"✅ {result.summary()}")
    st.session_state.current_page = 1


def select_with_all(label: str, options, key: str) -> str:
    choices = [ALL] + list(options)
    # A selection that is no longer offered (upstream filter changed) resets to "all"
    if st.session_state.get(key) not in choices:
        st.session_state[key] = ALL
    return st.selectbox(label, choices, key=key, format_func=lambda v: "All" if v == ALL else v)


def render_filters(store: InventoryStore):
    """State -> district -> department type selectors; each list is scoped by the ones before it"""
    col1, col2, col3 = st.columns(3)
    records = list(store.records)

    with col1:
        state = select_with_all("State", store.facet_provider.values(Facet.STATE, records), "selected_state")
    with col2:
        district = select_with_all(
            "District",
            store.facet_provider.values(Facet.DISTRICT, records, state=state),
            "selected_district",
        )
    with col3:
        department_type = select_with_all(
            "Department Type",
            store.facet_provider.values(Facet.DEPARTMENT_TYPE, records, state=state, district=district),
            "selected_department_type",
        )
    return state, district, department_type


def main():
    st.title("📦 Relief Inventory")
    store = get_store()

    if "current_page" not in st.session_state:
        st.session_state.current_page = 1
    if "failed_offsets" not in st.session_state:
        st.session_state.failed_offsets = []

    with st.sidebar:
        st.subheader("🔄 Data")
        if st.button("Reload all inventory", use_container_width=True):
            reload_inventory(store)
        if store.last_result is not None:
            st.caption(store.last_result.summary())
        if st.session_state.failed_offsets:
            with st.expander("Failed page offsets"):
                st.write(st.session_state.failed_offsets)

    if store.last_result is None:
        with st.spinner("Fetching inventory data... This might take a moment for large datasets."):
            reload_inventory(store)

    if not store.records:
        st.info("No inventory items loaded.")
        return

    state, district, department_type = render_filters(store)
    view = store.view(state, district, department_type, st.session_state.current_page, ROWS_PER_PAGE)

    metric1, metric2, metric3 = st.columns(3)
    metric1.metric("Loaded Items", f"{len(store.records):,}")
    metric2.metric("Matching Items", f"{view.total:,}")
    metric3.metric("Pages", view.page_count)

    st.dataframe(records_to_dataframe(view.items), use_container_width=True, hide_index=True)

    prev_col, page_col, next_col = st.columns([1, 2, 1])
    if prev_col.button("◀ Previous", disabled=view.page <= 1):
        st.session_state.current_page = view.page - 1
        st.rerun()
    page_col.markdown(f"Page **{view.page}** of **{max(view.page_count, 1)}**")
    if next_col.button("Next ▶", disabled=view.page >= view.page_count):
        st.session_state.current_page = view.page + 1
        st.rerun()

    st.subheader("Quantity by State")
    summary = quantity_by_state(store.filtered(state, district, department_type))
    if not summary.empty:
        st.bar_chart(summary.set_index("state")["total_quantity"])


if __name__ == "__main__":
    main()
