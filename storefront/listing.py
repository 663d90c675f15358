"""
One paginated, filtered, searchable list used by every back-office table.

A ListSpec says which table to read, how to order it, which free-text fields a
search covers, which named filters exist and how rows are enriched/rendered.
`fetch_page` runs one query. `ListController` keeps the state of an open list
view: current page and filters, debounced search, and the rule that only the
latest request may update the rows.
"""
from __future__ import annotations
import logging
import math
import re
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from .debounce import Debouncer
from .errors import GatewayError, ValidationError
from .gateway import Gateway, Record
from .notifications import Notifier

logger = logging.getLogger(__name__)

FilterBuilder = Callable[[Gateway, Any], Awaitable[Record]]
Enricher = Callable[[Gateway, List[Record]], Awaitable[List[Record]]]


@dataclass
class ListSpec:
    table: str
    label: str
    order_by: str
    descending: bool = True
    search_fields: Sequence[str] = ()
    filters: Mapping[str, FilterBuilder] = field(default_factory=dict)
    enrich: Optional[Enricher] = None
    render: Callable[[Record], Record] = dict
    page_size: int = 6


@dataclass
class ListParams:
    page: int = 1
    search: str = ""
    filters: Dict[str, Any] = field(default_factory=dict)
    page_size: Optional[int] = None
    # fixed clause ANDed into every query, e.g. {"user_id": ...}
    scope: Optional[Record] = None


@dataclass
class Page:
    rows: List[Record]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.page_size else 0

    def as_dict(self) -> dict:
        return {
            "items": self.rows,
            "page": self.page,
            "page_size": self.page_size,
            "total": self.total,
            "total_pages": self.total_pages,
        }


def search_clause(fields: Sequence[str], text: str) -> Record:
    pattern = re.escape(text)
    return {"$or": [{f: {"$regex": pattern, "$options": "i"}} for f in fields]}


def equals(name: str) -> FilterBuilder:
    async def build(gateway: Gateway, value: Any) -> Record:
        return {name: value}
    return build


def contains(name: str) -> FilterBuilder:
    async def build(gateway: Gateway, value: Any) -> Record:
        return {name: {"$regex": re.escape(str(value)), "$options": "i"}}
    return build


async def build_query(gateway: Gateway, spec: ListSpec, params: ListParams) -> Record:
    clauses: List[Record] = []
    if params.scope:
        clauses.append(params.scope)
    text = params.search.strip()
    if text and spec.search_fields:
        clauses.append(search_clause(spec.search_fields, text))
    for name, value in params.filters.items():
        if value is None or value == "":
            continue
        builder = spec.filters.get(name)
        if builder is None:
            raise ValidationError({name: f"Unknown filter for {spec.label}"})
        clauses.append(await builder(gateway, value))
    if not clauses:
        return {}
    return clauses[0] if len(clauses) == 1 else {"$and": clauses}


async def fetch_page(gateway: Gateway, spec: ListSpec, params: ListParams) -> Page:
    size = params.page_size or spec.page_size
    page = max(1, params.page)
    query = await build_query(gateway, spec, params)
    result = await gateway.select(
        spec.table, query,
        order_by=spec.order_by, descending=spec.descending,
        offset=(page - 1) * size, limit=size, count=True,
    )
    rows = result.rows
    if spec.enrich is not None:
        rows = await spec.enrich(gateway, rows)
    return Page([spec.render(r) for r in rows], result.count or 0, page, size)


class ListController:
    def __init__(self, gateway: Gateway, spec: ListSpec, notifier: Optional[Notifier] = None, *,
                 page_size: Optional[int] = None, debounce: float = 0.3,
                 min_search_length: int = 2, scope: Optional[Record] = None):
        self.gateway = gateway
        self.spec = spec
        self.notifier = notifier or Notifier()
        self.params = ListParams(page_size=page_size, scope=scope)
        self.min_search_length = min_search_length
        self.rows: List[Record] = []
        self.total = 0
        self.total_pages = 0
        self.loading = False
        self.closed = False
        self._generation = 0
        self._debouncer = Debouncer(debounce)

    @property
    def page(self) -> int:
        return self.params.page

    async def refresh(self) -> bool:
        """Load the current page. Returns False when the result was not applied."""
        if self.closed:
            return False
        self._generation += 1
        generation = self._generation
        params = replace(self.params, filters=dict(self.params.filters))
        self.loading = True
        try:
            page = await fetch_page(self.gateway, self.spec, params)
        except GatewayError:
            logger.exception("Error fetching %s", self.spec.label)
            if self._current(generation):
                self.notifier.error(f"Failed to load {self.spec.label}")
            return False
        finally:
            # a newer refresh owns the flag until it finishes
            if generation == self._generation:
                self.loading = False
        if not self._current(generation):
            logger.debug("discarding superseded %s result (generation %d)", self.spec.label, generation)
            return False
        self.rows = page.rows
        self.total = page.total
        self.total_pages = page.total_pages
        return True

    def _current(self, generation: int) -> bool:
        return not self.closed and generation == self._generation

    def set_search(self, text: str) -> None:
        self.params.search = text
        self.params.page = 1
        length = len(text.strip())
        if length == 0 or length >= self.min_search_length:
            self._debouncer.call(self.refresh)
        else:
            self._debouncer.cancel()

    async def set_filter(self, name: str, value: Any) -> bool:
        if name not in self.spec.filters:
            raise ValidationError({name: f"Unknown filter for {self.spec.label}"})
        self.params.filters[name] = value
        self.params.page = 1
        return await self.refresh()

    async def go_to(self, page: int) -> bool:
        if page < 1 or page > self.total_pages or page == self.params.page:
            return False
        self.params.page = page
        return await self.refresh()

    def patch_row(self, row_id: str, changes: Mapping[str, Any]) -> None:
        self.rows = [{**row, **changes} if row.get("id") == row_id else row for row in self.rows]

    def drop_row(self, row_id: str) -> None:
        self.rows = [row for row in self.rows if row.get("id") != row_id]

    async def settle(self) -> None:
        await self._debouncer.wait()

    def close(self) -> None:
        self.closed = True
        self._debouncer.cancel()
