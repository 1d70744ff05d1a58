"""
Facet Extractor

Derives the distinct, sorted option lists behind the state / district /
department type selectors. Extraction is a pure function of the record buffer;
``FacetProvider`` adds the lighter-weight facet endpoints of a record source in
front of it.
"""

import logging
from typing import Dict, Iterable, List, Optional

from constants.schemas import ALL, Facet, FacetSet, InventoryRecord
from utils.record_sources import RecordSource
from utils.sync_config import SyncConfig
from utils.sync_errors import FacetComputationEmpty, FacetsUnavailable

logger = logging.getLogger(__name__)

# Which upstream selections may scope each facet
SCOPE_FIELDS = {
    Facet.STATE: (),
    Facet.DISTRICT: ("state",),
    Facet.DEPARTMENT_TYPE: ("state", "district"),
}


def build_scope(facet: Facet, state: Optional[str] = None, district: Optional[str] = None) -> Dict[str, str]:
    """Upstream selections that apply to ``facet``, without "all" or blanks"""
    selected = {"state": state, "district": district}
    scope = {}
    for field in SCOPE_FIELDS[facet]:
        value = selected[field]
        if value and value.strip() and value != ALL:
            scope[field] = value
    return scope


def distinct_values(values: Iterable[Optional[str]]) -> List[str]:
    """Exact-match dedup, blanks dropped, ordinal ascending order"""
    return sorted({value for value in values if isinstance(value, str) and value.strip()})


def _scoped_values(records: List[InventoryRecord], facet: Facet, scope: Dict[str, str]) -> List[str]:
    matching = (
        record for record in records if all(getattr(record, field) == value for field, value in scope.items())
    )
    values = distinct_values(getattr(record, facet.value) for record in matching)
    if not values:
        raise FacetComputationEmpty(f"No {facet.value} values for {scope}")
    return values


def extract_facet(
    records: List[InventoryRecord],
    facet: Facet,
    state: Optional[str] = None,
    district: Optional[str] = None,
) -> List[str]:
    """
    Distinct values of one facet, optionally scoped by upstream selections.

    A scope that matches nothing falls back to the unscoped list so the
    selector is never left empty by a stale selection.
    """
    facet = Facet(facet)
    scope = build_scope(facet, state, district)
    if not scope:
        return distinct_values(getattr(record, facet.value) for record in records)

    try:
        return _scoped_values(records, facet, scope)
    except FacetComputationEmpty as e:
        logger.info(f"{e}; using all {facet.value} values")
        return distinct_values(getattr(record, facet.value) for record in records)


def extract_facet_set(
    records: List[InventoryRecord], state: Optional[str] = None, district: Optional[str] = None
) -> FacetSet:
    return FacetSet(
        states=extract_facet(records, Facet.STATE),
        districts=extract_facet(records, Facet.DISTRICT, state=state),
        department_types=extract_facet(records, Facet.DEPARTMENT_TYPE, state=state, district=district),
    )


class FacetProvider:
    """Facet lists from the source's facet endpoints, or from the buffer when those are unavailable."""

    def __init__(self, source: Optional[RecordSource] = None, config: Optional[SyncConfig] = None):
        self.source = source
        self.config = config or SyncConfig()

    def _from_source(self, facet: Facet, scope: Dict[str, str]) -> List[str]:
        values = distinct_values(self.source.facet_values(facet, scope, self.config.request_timeout))
        if not values and scope:
            logger.info(f"Facet endpoint returned no {facet.value} values for {scope}; using all values")
            values = distinct_values(self.source.facet_values(facet, {}, self.config.request_timeout))
        return values

    def values(
        self,
        facet: Facet,
        records: List[InventoryRecord],
        state: Optional[str] = None,
        district: Optional[str] = None,
    ) -> List[str]:
        facet = Facet(facet)
        if self.source is not None:
            try:
                return self._from_source(facet, build_scope(facet, state, district))
            except FacetsUnavailable as e:
                logger.debug(f"Facet endpoint unavailable ({e}), deriving from loaded records")
            except Exception as e:
                logger.warning(f"Facet endpoint failed ({e}), deriving from loaded records")
        return extract_facet(records, facet, state=state, district=district)

    def facet_set(
        self, records: List[InventoryRecord], state: Optional[str] = None, district: Optional[str] = None
    ) -> FacetSet:
        return FacetSet(
            states=self.values(Facet.STATE, records),
            districts=self.values(Facet.DISTRICT, records, state=state),
            department_types=self.values(Facet.DEPARTMENT_TYPE, records, state=state, district=district),
        )
