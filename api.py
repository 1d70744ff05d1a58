"""
FastAPI endpoints for the relief inventory console.
Serves the paginated records contract the console's sync engine consumes.
"""

import logging
from functools import lru_cache
from typing import Iterator, Optional

from fastapi import Depends, FastAPI, Query
from fastapi.responses import JSONResponse
import uvicorn

from constants.schemas import Facet, InventoryFilters
from utils.diagnostics import diagnose_source
from utils.facets import build_scope, distinct_values, extract_facet_set
from utils.page_fetcher import PageFetcher
from utils.record_sources import RecordSource, SupabaseSource
from utils.sync_config import SyncConfig
from utils.sync_errors import CountProbeFailure, FetchFailed

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Relief Inventory API",
    description="Paginated access to the disaster-relief inventory table",
    version="1.0.0"
)


@lru_cache(maxsize=1)
def get_config() -> SyncConfig:
    return SyncConfig.from_env()


@lru_cache(maxsize=1)
def get_source() -> RecordSource:
    return SupabaseSource(get_config())


def get_fetcher(
    source: RecordSource = Depends(get_source),
    config: SyncConfig = Depends(get_config),
) -> Iterator[PageFetcher]:
    fetcher = PageFetcher(source, config)
    try:
        yield fetcher
    finally:
        fetcher.close()


def get_filters(
    state: Optional[str] = None,
    district: Optional[str] = None,
    department_type: Optional[str] = None,
    department_name: Optional[str] = None,
    item_code: Optional[int] = None,
    item_name: Optional[str] = None,
) -> InventoryFilters:
    """Equality filters shared by the records and count endpoints"""
    return InventoryFilters(
        state=state,
        district=district,
        department_type=department_type,
        department_name=department_name,
        item_code=item_code,
        item_name=item_name,
    )


def error_response(message: str, detail: str, status_code: int = 500) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message, "error": detail})


@app.get("/")
async def root():
    """Health check endpoint"""
    return {"message": "Relief Inventory API is running", "status": "healthy"}


@app.get("/api/health")
def health_check(fetcher: PageFetcher = Depends(get_fetcher)):
    """Detailed health check: connectivity, row count, facets and sample rows"""
    report = diagnose_source(fetcher)
    return JSONResponse(status_code=200 if report["success"] else 503, content=report)


@app.get("/records")
def get_records(
    offset: int = Query(0, ge=0),
    limit: Optional[int] = Query(None, gt=0),
    filters: InventoryFilters = Depends(get_filters),
    fetcher: PageFetcher = Depends(get_fetcher),
):
    """
    One page of inventory records.

    The first page (offset 0) also carries ``totalCount`` and the
    ``filterOptions`` derived from that page.
    """
    limit = min(limit or fetcher.config.page_size, fetcher.config.max_page_size)

    try:
        page = fetcher.fetch_page(offset, limit, filters)
    except FetchFailed as e:
        logger.error(f"❌ Error fetching inventory items: {e}")
        return error_response("Error fetching inventory items", e.cause)

    body = {
        "success": True,
        "items": [record.model_dump(mode="json") for record in page.records],
        "count": len(page.records),
        "hasMore": page.has_more,
        "nextOffset": offset + len(page.records) if page.has_more else None,
    }

    if offset == 0:
        try:
            body["totalCount"] = page.total_count if page.total_count is not None else fetcher.count(filters)
        except CountProbeFailure as e:
            logger.warning(f"Count for first page failed: {e}")
        body["filterOptions"] = extract_facet_set(page.records).as_filter_options()

    logger.info(f"API: Returned {len(page.records)} items from offset {offset}")
    return body


@app.get("/records/count")
def get_record_count(
    filters: InventoryFilters = Depends(get_filters),
    fetcher: PageFetcher = Depends(get_fetcher),
):
    """Exact row count, or the configured fallback estimate when counting fails"""
    try:
        return {"success": True, "count": fetcher.count(filters)}
    except CountProbeFailure as e:
        logger.warning(f"Count failed, returning fallback estimate: {e}")
        return {
            "success": True,
            "count": fetcher.config.fallback_estimate,
            "isEstimate": True,
            "isFallback": True,
            "errorMessage": str(e),
        }


def facet_response(facet: Facet, fetcher: PageFetcher, state: Optional[str] = None, district: Optional[str] = None):
    scope = build_scope(facet, state, district)
    try:
        values = distinct_values(fetcher.source.facet_values(facet, scope, fetcher.config.request_timeout))
    except Exception as e:
        logger.error(f"❌ Error fetching {facet.value} values: {e}")
        return error_response(f"Error fetching {facet.value} values", str(e))
    return {"success": True, "values": values}


@app.get("/facets/states")
def get_states(fetcher: PageFetcher = Depends(get_fetcher)):
    return facet_response(Facet.STATE, fetcher)


@app.get("/facets/districts")
def get_districts(state: Optional[str] = None, fetcher: PageFetcher = Depends(get_fetcher)):
    return facet_response(Facet.DISTRICT, fetcher, state=state)


@app.get("/facets/department-types")
def get_department_types(
    state: Optional[str] = None,
    district: Optional[str] = None,
    fetcher: PageFetcher = Depends(get_fetcher),
):
    return facet_response(Facet.DEPARTMENT_TYPE, fetcher, state=state, district=district)


if __name__ == "__main__":
    # This allows running the API standalone for testing
    uvicorn.run(app, host="0.0.0.0", port=8001)
