"""
Execution tracker for ambient context scopes.

Answers "which scope is this code currently running under" for any code
reached from a scope root: awaited coroutines, spawned tasks, loop callbacks
and timers, and executor offloads.

Unit identity rides on a ContextVar. asyncio copies the current
contextvars.Context into every Task and every call_soon/call_later callback,
so the identity follows the runtime's own scheduling rather than lexical
nesting. Task lifecycle is observed through a task factory installed on the
running loop (creation hook) and a done-callback per tracked task
(destruction hook). A root's Store is released once every unit under it,
the root itself included, has been destroyed.
"""

from __future__ import annotations

import asyncio
import contextvars
import itertools
import weakref
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Coroutine, Dict, Optional, Set

from ctxscope.config.environment import Environment
from ctxscope.config.logging_config import get_logger
from ctxscope.runtime.registry import ScopeStoreRegistry, Store

log = get_logger(__name__)

TaskFactory = Callable[..., "asyncio.Future[Any]"]

# One counter for the whole process so ids never collide across trackers
_unit_ids = itertools.count(1)


def allocate_id() -> int:
    """Return a fresh, never reused unit id."""
    return next(_unit_ids)


@dataclass(frozen=True)
class UnitRef:
    """Identity of the unit of work the current code runs in."""

    task_id: int
    root_id: int
    # Code bound to this unit keeps reading its scope after the root is released
    store: Optional[Store] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True, eq=False)
class TrackerEntry:
    """Association of a unit to its owning scope root and Store."""

    root_id: int
    store: Store


@dataclass
class TrackerStats:
    """Snapshot of tracker bookkeeping."""

    active_roots: int = 0
    tracked_units: int = 0
    members_by_root: dict[int, int] = field(default_factory=dict)


_current_unit: contextvars.ContextVar[Optional[UnitRef]] = contextvars.ContextVar(
    "ctxscope_current_unit", default=None
)


def current_unit() -> Optional[UnitRef]:
    """Return the unit the calling code runs in, or None outside any scope."""
    return _current_unit.get()


def bind_unit(context: contextvars.Context, unit: UnitRef) -> None:
    """Make ``unit`` the current unit for code later run in ``context``."""
    context.run(_current_unit.set, unit)


def enter_unit(unit: UnitRef) -> contextvars.Token[Optional[UnitRef]]:
    """Make ``unit`` current in the calling context until ``exit_unit``."""
    return _current_unit.set(unit)


def exit_unit(token: contextvars.Token[Optional[UnitRef]]) -> None:
    _current_unit.reset(token)


class ExecutionTracker:
    """
    Tracks which scope root every live unit of work belongs to.

    Bookkeeping is plain dicts and sets: the tracker is driven by a single
    event loop thread, and every operation is keyed by unit or root id, so it
    stays correct under any interleaving of creation and destruction events.

    Attributes:
        registry: Registry owning the Store of every active root.
    """

    def __init__(self, registry: ScopeStoreRegistry | None = None) -> None:
        self.registry = registry if registry is not None else ScopeStoreRegistry()
        self._entries: Dict[int, TrackerEntry] = {}
        self._members: Dict[int, Set[int]] = {}
        self._installed: "weakref.WeakSet[asyncio.AbstractEventLoop]" = weakref.WeakSet()
        self._trace = Environment.trace_tasks()

    # ------------------------------------------------------------------
    # Lifecycle hooks
    # ------------------------------------------------------------------

    def attach_root(self, root_id: int, store: Store) -> TrackerEntry:
        """Start tracking a new scope root whose only member is itself."""
        entry = TrackerEntry(root_id=root_id, store=store)
        self._entries[root_id] = entry
        self._members[root_id] = {root_id}
        log.debug("Attached scope root %s", root_id)
        return entry

    def on_task_created(self, task_id: int, parent_id: int) -> Optional[TrackerEntry]:
        """
        Attribute a new unit to its parent's scope root.

        Args:
            task_id: Id of the unit being created.
            parent_id: Id of the unit that created it.

        Returns:
            The inherited entry, or None when the parent is untracked.
        """
        parent = self._entries.get(parent_id)
        if parent is None:
            return None
        self._add_member(task_id, parent)
        return parent

    def adopt(self, task_id: int, root_id: int) -> Optional[TrackerEntry]:
        """
        Attribute a new unit directly to a root that is still alive.

        Used when the creating unit has already finished, e.g. a task spawned
        from a timer callback scheduled by a completed task.
        """
        members = self._members.get(root_id)
        if not members:
            return None
        entry = self._entries.get(root_id)
        if entry is None:
            entry = self._entries[next(iter(members))]
        self._add_member(task_id, entry)
        return entry

    def on_task_destroyed(self, task_id: int) -> None:
        """Stop tracking a unit; releases its root when it was the last member."""
        entry = self._entries.pop(task_id, None)
        if entry is None:
            return
        members = self._members.get(entry.root_id)
        if members is None:
            return
        members.discard(task_id)
        if self._trace:
            log.debug("Unit %s finished under root %s (%d live)", task_id, entry.root_id, len(members))
        if not members:
            self.release_root(entry.root_id)

    def release_root(self, root_id: int) -> None:
        """Drop every entry of a root along with its Store. Idempotent."""
        members = self._members.pop(root_id, set())
        for task_id in members:
            self._entries.pop(task_id, None)
        self._entries.pop(root_id, None)
        if self.registry.delete_root(root_id):
            log.debug("Scope root %s released", root_id)

    def _add_member(self, task_id: int, entry: TrackerEntry) -> None:
        self._entries[task_id] = entry
        self._members.setdefault(entry.root_id, set()).add(task_id)
        if self._trace:
            log.debug("Unit %s created under root %s", task_id, entry.root_id)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def current_scope(self) -> Optional[Store]:
        """Return the Store of the scope the calling code runs under, or None."""
        unit = _current_unit.get()
        if unit is None:
            return None
        entry = self._entries.get(unit.task_id)
        if entry is not None:
            return entry.store
        # The unit itself finished (e.g. a callback outliving the task that
        # scheduled it). Its own store stays readable even once the root is
        # released.
        if unit.store is not None:
            return unit.store
        return self.registry.get_store(unit.root_id)

    def current_root(self) -> Optional[int]:
        """Return the id of the active scope root, or None."""
        unit = _current_unit.get()
        if unit is None or self.current_scope() is None:
            return None
        return unit.root_id

    def is_tracked(self, task_id: int) -> bool:
        return task_id in self._entries

    def stats(self) -> TrackerStats:
        return TrackerStats(
            active_roots=len(self._members),
            tracked_units=len(self._entries),
            members_by_root={root_id: len(ids) for root_id, ids in self._members.items()},
        )

    # ------------------------------------------------------------------
    # Event loop integration
    # ------------------------------------------------------------------

    def install(self, loop: asyncio.AbstractEventLoop) -> None:
        """
        Install the tracking task factory on ``loop`` (once per loop).

        Any task factory already installed keeps being used to build the
        tasks; this one only wraps it.
        """
        if loop in self._installed:
            return
        previous = loop.get_task_factory()
        loop.set_task_factory(partial(self._create_task, previous))
        self._installed.add(loop)
        log.debug("Installed context tracking task factory on %r", loop)

    def _create_task(
        self,
        previous: Optional[TaskFactory],
        loop: asyncio.AbstractEventLoop,
        coro: Coroutine[Any, Any, Any],
        **kwargs: Any,
    ) -> "asyncio.Future[Any]":
        context: Optional[contextvars.Context] = kwargs.pop("context", None)
        if context is None:
            context = contextvars.copy_context()

        task_id: Optional[int] = None
        parent = context.get(_current_unit)
        if parent is not None:
            candidate = allocate_id()
            entry = self.on_task_created(candidate, parent.task_id) or self.adopt(candidate, parent.root_id)
            if entry is not None:
                task_id = candidate
                context = context.copy()
                bind_unit(context, UnitRef(task_id=task_id, root_id=entry.root_id, store=entry.store))

        try:
            if previous is not None:
                task = previous(loop, coro, context=context, **kwargs)
            else:
                task = asyncio.Task(coro, loop=loop, context=context, **kwargs)
        except BaseException:
            if task_id is not None:
                self.on_task_destroyed(task_id)
            raise

        if task_id is not None:
            task.add_done_callback(partial(self._task_done, task_id))
        return task

    def _task_done(self, task_id: int, _task: "asyncio.Future[Any]") -> None:
        self.on_task_destroyed(task_id)


_default_tracker: Optional[ExecutionTracker] = None


def get_default_tracker() -> ExecutionTracker:
    """Return the process-wide tracker, creating it on first use."""
    global _default_tracker
    if _default_tracker is None:
        _default_tracker = ExecutionTracker()
    return _default_tracker


__all__ = [
    "ExecutionTracker",
    "TrackerEntry",
    "TrackerStats",
    "UnitRef",
    "allocate_id",
    "bind_unit",
    "current_unit",
    "enter_unit",
    "exit_unit",
    "get_default_tracker",
]
