"""Generic entity resolver slots and the cascade graph between them.

A ``ResolverSlot`` owns the search state for one free-text field (customer,
brand, a line's product, ...). Searches are debounced and superseded by a
sequence number: only the latest issued search may update the slot.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Optional

from orderflow.clients.base import CatalogGateway
from orderflow.core.config import get_settings
from orderflow.core.errors import TransientSearchError
from orderflow.schemas.catalog import CanonicalRecord, EntityKind

logger = logging.getLogger(__name__)

# Lookups shared across documents; a freshly created record is re-searched so
# it shows up in the result list.
REUSABLE_KINDS = frozenset({EntityKind.CATALOG, EntityKind.ATTRIBUTE_TYPE, EntityKind.ATTRIBUTE_VALUE})

ScopeProvider = Callable[[], Optional[Mapping[str, Any]]]
SelectHook = Callable[[CanonicalRecord], Awaitable[None]]


class ResolverSlot:
    def __init__(
        self,
        kind: EntityKind,
        gateway: CatalogGateway,
        *,
        multi: bool = False,
        auto_select: bool = True,
        scope: Optional[ScopeProvider] = None,
        on_select: Optional[SelectHook] = None,
        debounce_seconds: Optional[float] = None,
        label: Optional[str] = None,
    ) -> None:
        self.kind = kind
        self.label = label or kind.value
        self.multi = multi
        self.auto_select = auto_select
        self._gateway = gateway
        self._scope = scope
        self._on_select = on_select
        if debounce_seconds is None:
            debounce_seconds = get_settings().search_debounce_seconds
        self._debounce = debounce_seconds

        self.query = ""
        self.results: list[CanonicalRecord] = []
        self.selected: Optional[CanonicalRecord] = None
        self.selections: list[CanonicalRecord] = []
        self.last_error: Optional[TransientSearchError] = None
        self.is_searching = False

        self._seq = 0
        self._pending: Optional[asyncio.Task] = None
        self._listeners: list[Callable[["ResolverSlot"], None]] = []

    # -- state -----------------------------------------------------------

    @property
    def selected_id(self) -> Optional[str]:
        return self.selected.id if self.selected else None

    @property
    def selected_ids(self) -> list[str]:
        return [record.id for record in self.selections]

    @property
    def has_selection(self) -> bool:
        return bool(self.selections) if self.multi else self.selected is not None

    @property
    def is_resolving(self) -> bool:
        return self.is_searching or (self._pending is not None and not self._pending.done())

    @property
    def is_pending(self) -> bool:
        """An empty slot whose search may still fill it."""
        return self.is_resolving and not self.has_selection

    @property
    def can_create(self) -> bool:
        """Zero results for a non-empty query: offer "create new with this name"."""
        return bool(self.query.strip()) and not self.results and not self.is_resolving and self.last_error is None

    def subscribe(self, listener: Callable[["ResolverSlot"], None]) -> None:
        self._listeners.append(listener)

    def _changed(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    # -- searching -------------------------------------------------------

    def set_query(self, query: str) -> asyncio.Task:
        """Debounced search for *query*; supersedes any pending or in-flight search."""
        self.query = query or ""
        self._seq += 1
        self.is_searching = False
        self._cancel_pending()
        self._pending = asyncio.ensure_future(self._debounced())
        return self._pending

    async def _debounced(self) -> None:
        if self._debounce > 0:
            await asyncio.sleep(self._debounce)
        await self.search_now()

    async def flush(self) -> None:
        """Wait for the pending debounced search, if any."""
        pending = self._pending
        if pending is None or pending.done():
            return
        try:
            await pending
        except asyncio.CancelledError:
            if not pending.cancelled():
                raise

    async def search_now(self, query: Optional[str] = None) -> list[CanonicalRecord]:
        if query is not None:
            self.query = query
        self._seq += 1
        seq = self._seq
        text = self.query.strip()

        scope = None
        if self._scope is not None:
            scope = self._scope()
            if scope is None:
                # dependency not chosen yet
                self.results = []
                return self.results

        if not text:
            self.results = []
            self.last_error = None
            return self.results

        self.is_searching = True
        try:
            found = await self._gateway.search(self.kind, text, scope)
        except TransientSearchError as exc:
            if seq == self._seq:
                logger.warning("Search failed for %s slot %r: %s", self.label, text, exc)
                self.last_error = exc
            return self.results
        finally:
            if seq == self._seq:
                self.is_searching = False

        if seq != self._seq:
            logger.debug("Discarding stale %s results for %r", self.label, text)
            return self.results

        self.results = list(found)
        self.last_error = None
        await self._auto_select()
        return self.results

    async def _auto_select(self) -> None:
        if not self.auto_select or len(self.results) != 1:
            return
        only = self.results[0]
        if self.multi:
            if not self.selections:
                await self.choose(only)
        elif self.selected is None:
            await self.choose(only)

    # -- selection -------------------------------------------------------

    def select(self, record: CanonicalRecord) -> bool:
        """Select *record* synchronously. Multi slots reject duplicates."""
        if self.multi:
            if record.id in self.selected_ids:
                return False
            self.selections.append(record)
        else:
            if self.selected is not None and self.selected.id == record.id:
                return False
            self.selected = record
        self._changed()
        return True

    async def choose(self, record: CanonicalRecord) -> bool:
        """Select *record* and run the slot's follow-up hook."""
        changed = self.select(record)
        if changed and self._on_select is not None:
            await self._on_select(record)
        return changed

    def remove(self, record_id: str) -> bool:
        before = len(self.selections)
        self.selections = [record for record in self.selections if record.id != record_id]
        if len(self.selections) == before:
            return False
        self._changed()
        return True

    def clear(self) -> None:
        if not self.has_selection:
            return
        self.selected = None
        self.selections = []
        self._changed()

    def invalidate(self) -> None:
        """Drop selection and results and supersede in-flight searches; keep the query text."""
        self._seq += 1
        self._cancel_pending()
        self.is_searching = False
        self.results = []
        self.last_error = None
        if self.has_selection:
            self.selected = None
            self.selections = []
            self._changed()

    def reset(self) -> None:
        self.query = ""
        self.invalidate()

    async def create(self, name: str, **extra: Any) -> CanonicalRecord:
        """Create a canonical record named *name* and select it."""
        record = await self._gateway.create(self.kind, {"name": name.strip(), **extra})
        logger.info("Created %s %r from %s slot", self.kind.value, record.name, self.label)
        await self.choose(record)
        if self.kind in REUSABLE_KINDS:
            await self.search_now(record.name)
        return record

    def _cancel_pending(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None


class DependencyGraph:
    """Directed edges ``parent -> child``: a change of *parent* invalidates *child*.

    Applied synchronously and transitively, before any new search is issued.
    """

    def __init__(self) -> None:
        self._children: dict[int, list[ResolverSlot]] = {}

    def add_edge(self, parent: ResolverSlot, child: ResolverSlot) -> None:
        if parent is child or self._reaches(child, parent):
            raise ValueError(f"Edge {parent.label} -> {child.label} would create a cycle")
        key = id(parent)
        if key not in self._children:
            self._children[key] = []
            parent.subscribe(self._propagate)
        self._children[key].append(child)

    def remove_slot(self, slot: ResolverSlot) -> None:
        self._children.pop(id(slot), None)
        for children in self._children.values():
            if slot in children:
                children.remove(slot)

    def dependents(self, slot: ResolverSlot) -> list[ResolverSlot]:
        return list(self._children.get(id(slot), []))

    def _propagate(self, parent: ResolverSlot) -> None:
        for child in self.dependents(parent):
            had_selection = child.has_selection
            child.invalidate()
            # invalidate() only notifies when something was selected
            if not had_selection:
                self._propagate(child)

    def _reaches(self, start: ResolverSlot, target: ResolverSlot) -> bool:
        stack = [start]
        seen: set[int] = set()
        while stack:
            slot = stack.pop()
            if slot is target:
                return True
            if id(slot) in seen:
                continue
            seen.add(id(slot))
            stack.extend(self._children.get(id(slot), []))
        return False
