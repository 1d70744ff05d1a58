import logging
import time
from typing import Any, Callable, Dict

from constants.schemas import Facet
from utils.page_fetcher import PageFetcher
from utils.sync_errors import FacetsUnavailable

logger = logging.getLogger(__name__)

SAMPLE_SIZE = 10


def _timed(check: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
    start_time = time.monotonic()
    result = check()
    result["time_ms"] = round((time.monotonic() - start_time) * 1000)
    return result


def diagnose_source(fetcher: PageFetcher) -> Dict[str, Any]:
    """
    Run connectivity, count, facet and sample checks against a record source.

    Each check is independent; a failing check is reported, never raised.

    Returns:
        Dict[str, Any]: One entry per check plus ``errors`` and an overall ``success`` flag
    """
    source = fetcher.source
    timeout = fetcher.config.request_timeout
    results: Dict[str, Any] = {"errors": []}

    def connectivity() -> Dict[str, Any]:
        page = fetcher.fetch_page(0, 1)
        return {"success": True, "rows": len(page.records)}

    def count() -> Dict[str, Any]:
        return {"success": True, "count": fetcher.count()}

    def facet_check(facet: Facet) -> Callable[[], Dict[str, Any]]:
        def check() -> Dict[str, Any]:
            try:
                values = sorted(set(source.facet_values(facet, {}, timeout)))
            except FacetsUnavailable as e:
                return {"success": True, "count": 0, "warning": str(e)}
            result = {"success": True, "count": len(values), "sample": values[:5]}
            if not values:
                result["warning"] = f"No {facet.value} values found"
            return result

        return check

    def sample_items() -> Dict[str, Any]:
        page = fetcher.fetch_page(0, SAMPLE_SIZE)
        return {
            "success": True,
            "count": len(page.records),
            "sample": [
                record.model_dump(include={"id", "state", "district", "department_type", "item_name"})
                for record in page.records
            ],
        }

    checks = {
        "connectivity": connectivity,
        "count": count,
        "states": facet_check(Facet.STATE),
        "districts": facet_check(Facet.DISTRICT),
        "departmentTypes": facet_check(Facet.DEPARTMENT_TYPE),
        "sampleItems": sample_items,
    }

    for name, check in checks.items():
        try:
            results[name] = _timed(check)
            logger.info(f"✅ {name} check passed")
        except Exception as e:
            logger.error(f"❌ {name} check failed: {e}")
            results[name] = {"success": False, "error": str(e)}
            results["errors"].append(f"{name}: {e}")

    results["success"] = not results["errors"]
    return results
