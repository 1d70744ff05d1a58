"""
Record Sources Module

Paginated access to the ``inventory`` table. The sync engine only ever talks to
a ``RecordSource``; the concrete source is built once by the caller and passed
in explicitly.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import requests

from constants.schemas import ALL, Facet, PageRequest
from utils.sync_config import SyncConfig
from utils.sync_errors import FacetsUnavailable, SourceError

logger = logging.getLogger(__name__)

FACET_PATHS = {
    Facet.STATE: "states",
    Facet.DISTRICT: "districts",
    Facet.DEPARTMENT_TYPE: "department-types",
}


class RecordSource:
    """Interface the Page Fetcher uses to reach the remote inventory table."""

    def fetch_rows(self, request: PageRequest, timeout: float) -> Tuple[List[Dict[str, Any]], Optional[int]]:
        """
        Fetch one slice of rows.

        Returns:
            Tuple of the raw rows and an optional total-count hint
        """
        raise NotImplementedError

    def count_rows(self, filters: Dict[str, Any], timeout: float) -> int:
        raise NotImplementedError

    def facet_values(self, facet: Facet, scope: Dict[str, str], timeout: float) -> List[str]:
        raise FacetsUnavailable(f"{type(self).__name__} has no facet endpoint")

    def close(self) -> None:
        pass


class SupabaseSource(RecordSource):
    """Direct access to the hosted table through its PostgREST interface."""

    def __init__(self, config: SyncConfig, session: Optional[requests.Session] = None):
        if not config.supabase_url or not config.supabase_key:
            raise ValueError("Supabase URL or key not found in configuration")

        self.config = config
        self.base_url = f"{config.supabase_url.rstrip('/')}/rest/v1/{config.table}"
        self.headers = {
            "apikey": config.supabase_key,
            "Authorization": f"Bearer {config.supabase_key}",
            "Accept": "application/json",
        }
        self._owns_session = session is None
        self._session = session or requests.Session()

    def close(self) -> None:
        if self._owns_session:
            self._session.close()

    @staticmethod
    def _filter_params(filters: Dict[str, Any]) -> Dict[str, str]:
        return {field: f"eq.{value}" for field, value in filters.items()}

    def fetch_rows(self, request: PageRequest, timeout: float) -> Tuple[List[Dict[str, Any]], Optional[int]]:
        params = {
            "select": "*",
            "order": ",".join(f"{column}.asc" for column in request.order),
            "offset": request.offset,
            "limit": request.limit,
        }
        params.update(self._filter_params(request.filters))

        logger.debug(f"Fetching rows {request.offset}-{request.range_end} from {self.config.table}")
        response = self._session.get(self.base_url, headers=self.headers, params=params, timeout=timeout)
        if response.status_code not in (200, 206):
            raise SourceError(f"Failed to fetch inventory rows: {response.text}", response.status_code)

        return response.json(), None

    def count_rows(self, filters: Dict[str, Any], timeout: float) -> int:
        headers = dict(self.headers, Prefer="count=exact")
        params = {"select": "*"}
        params.update(self._filter_params(filters))

        response = self._session.head(self.base_url, headers=headers, params=params, timeout=timeout)
        if response.status_code not in (200, 206):
            raise SourceError("Failed to count inventory rows", response.status_code)

        # Content-Range looks like "0-24/3573" or "*/3573"
        content_range = response.headers.get("Content-Range", "")
        total = content_range.rpartition("/")[2]
        if not total.isdigit():
            raise SourceError(f"Unexpected Content-Range header: {content_range!r}")
        return int(total)

    def facet_values(self, facet: Facet, scope: Dict[str, str], timeout: float) -> List[str]:
        column = facet.value
        params: Dict[str, Any] = {"select": column, "order": f"{column}.asc"}
        params.update(self._filter_params({key: value for key, value in scope.items() if value and value != ALL}))

        values = set()
        page_size = self.config.facet_page_size
        offset = 0

        # Loop to handle pagination
        while True:
            params["offset"] = offset
            params["limit"] = page_size
            try:
                response = self._session.get(self.base_url, headers=self.headers, params=params, timeout=timeout)
            except requests.RequestException as e:
                raise FacetsUnavailable(f"Failed to fetch {column} values: {e}") from e

            if response.status_code not in (200, 206):
                raise FacetsUnavailable(f"Failed to fetch {column} values: {response.text}")

            rows = response.json()
            values.update(row.get(column) for row in rows)
            if len(rows) < page_size:
                break  # No more pages
            offset += page_size

        return [value for value in values if isinstance(value, str)]


class RecordsApiSource(RecordSource):
    """Client for the console's JSON records API (``/records``, ``/records/count``, ``/facets/*``)."""

    def __init__(self, base_url: str, token: Optional[str] = None, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.headers = {"Accept": "application/json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"
        self._owns_session = session is None
        self._session = session or requests.Session()

    def close(self) -> None:
        if self._owns_session:
            self._session.close()

    def _get(self, path: str, params: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        response = self._session.get(
            f"{self.base_url}{path}", headers=self.headers, params=params, timeout=timeout
        )
        if response.status_code != 200:
            raise SourceError(f"GET {path} failed: {response.text}", response.status_code)

        payload = response.json()
        if not payload.get("success"):
            detail = payload.get("error") or payload.get("message") or "success=false"
            raise SourceError(f"GET {path} failed: {detail}", response.status_code)
        return payload

    def fetch_rows(self, request: PageRequest, timeout: float) -> Tuple[List[Dict[str, Any]], Optional[int]]:
        params = {"offset": request.offset, "limit": request.limit}
        params.update(request.filters)

        payload = self._get("/records", params, timeout)
        total_count = payload.get("totalCount") if request.offset == 0 else None
        return payload.get("items") or [], total_count

    def count_rows(self, filters: Dict[str, Any], timeout: float) -> int:
        payload = self._get("/records/count", dict(filters), timeout)
        if payload.get("isEstimate"):
            logger.info(f"Records API returned an estimated count of {payload.get('count')}")
        return int(payload["count"])

    def facet_values(self, facet: Facet, scope: Dict[str, str], timeout: float) -> List[str]:
        params = {key: value for key, value in scope.items() if value and value != ALL}
        try:
            payload = self._get(f"/facets/{FACET_PATHS[facet]}", params, timeout)
        except (requests.RequestException, SourceError, ValueError) as e:
            raise FacetsUnavailable(str(e)) from e
        return list(payload.get("values") or [])


def create_record_source(config: SyncConfig, session: Optional[requests.Session] = None) -> RecordSource:
    """
    Build the record source described by the configuration.

    The JSON records API wins when its base URL is configured; otherwise the
    table is read directly through Supabase.
    """
    if config.api_base_url:
        logger.info(f"Using records API at {config.api_base_url}")
        return RecordsApiSource(config.api_base_url, token=config.api_token, session=session)

    logger.info(f"Using Supabase table '{config.table}'")
    return SupabaseSource(config, session=session)
