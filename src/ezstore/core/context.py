"""
Contexts: units of work over the persistence store.

Contexts form a tree. The root ``Context`` owns a SQLAlchemy session and
commits to the database when saved. ``Context.begin_child()`` returns a
``ChildContext`` that stages inserts, deletes and edits on top of its parent:
reads see the parent's view (including the parent's own pending records) merged
with the child's staged changes, ``save()`` pushes the staged changes into
the parent, where they stay pending until the root is saved, and
``discard()`` drops them.

Every context is confined to an ``ExecutionDomain``. Public methods route
themselves onto that domain, running inline when the caller is already on
it.

ARCHITECTURE
────────────
::

    Context("main", domain=main)              StoreSession (autoflush)
      ├── create / insert / delete             session.add / delete / expunge
      ├── execute / count                      SELECT via compile_descriptor
      ├── save                                 commit, rollback + SaveError on failure
      └── begin_child(domain=background)
            └── ChildContext("background")
                  ├── record copies   ── private, edits applied to the parent on save
                  ├── staged inserts  ── evaluated with descriptor.matches()
                  ├── staged deletes  ── matched by record_identity()
                  └── save            ── setattr / parent.insert / parent.delete

Tags:
    ezstore, context, unit-of-work, session, child-context

Doc-Types:
    api-reference
"""

from __future__ import annotations

import weakref
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import event
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ezstore.core.domains import ExecutionDomain, PendingResult, submit_request
from ezstore.core.errors import QueryError, SaveError, StoreError
from ezstore.core.logging import get_logger
from ezstore.core.query import QueryDescriptor, compile_count, compile_descriptor, sort_records
from ezstore.core.result import Result

if TYPE_CHECKING:
    from ezstore.core.fetch import FetchRequest

logger = get_logger(__name__)

T = TypeVar("T")


# Child-context copy -> the record it was copied from
_origins: weakref.WeakKeyDictionary[Any, Any] = weakref.WeakKeyDictionary()


def record_identity(record: Any) -> tuple:
    """Store identity of *record*: its identity key once flushed, else its object id.

    A copy handed out by a child context has the identity of the record it
    was copied from.
    """
    record = _source_record(record)
    state = sa_inspect(record)
    if state.key is not None:
        return state.key
    return ("transient", id(record))


def _source_record(record: Any) -> Any:
    """Follow child-context copies back to the record they were made from."""
    origin = _origins.get(record)
    while origin is not None:
        record = origin
        origin = _origins.get(record)
    return record


def _column_values(record: Any) -> dict[str, Any]:
    mapper = sa_inspect(record).mapper
    return {attr.key: getattr(record, attr.key) for attr in mapper.column_attrs}


def _copy_record(record: Any, values: dict[str, Any]) -> Any:
    """Build an unattached instance of *record*'s class holding *values*."""
    copy = sa_inspect(record).mapper.class_manager.new_instance()
    for key, value in values.items():
        setattr(copy, key, value)
    _origins[copy] = record
    return copy


class BaseContext(ABC):
    """Operations shared by root and child contexts."""

    def __init__(self, domain: ExecutionDomain, name: str, parent: BaseContext | None = None):
        self.domain = domain
        self.name = name
        self.parent = parent

    # ------------------------------------------------------------------ #
    # Domain confinement
    # ------------------------------------------------------------------ #

    def run(self, fn: Callable[[], T]) -> T:
        """Run *fn* on this context's domain and return its value."""
        return self.domain.run(fn)

    def submit(
        self,
        fn: Callable[[], T],
        completion: Callable[[Result[T]], Any] | None = None,
        *,
        label: str = "request",
        error_type: type[StoreError] = StoreError,
    ) -> PendingResult[T]:
        """Run *fn* on this context's domain without blocking."""
        return submit_request(self.domain, fn, completion, label=f"{self.name}:{label}", error_type=error_type)

    # ------------------------------------------------------------------ #
    # Store operations
    # ------------------------------------------------------------------ #

    def create(self, kind: type[T], **values: Any) -> T:
        """Create a new record of *kind* owned by this context."""
        record = kind(**values)
        self.insert(record)
        return record

    @abstractmethod
    def insert(self, record: Any) -> None:
        """Stage *record* for insertion."""

    @abstractmethod
    def execute(self, descriptor: QueryDescriptor) -> list[Any]:
        """Return the records matching *descriptor*, in order."""

    @abstractmethod
    def count(self, descriptor: QueryDescriptor) -> int:
        """Return the number of records matching *descriptor*."""

    @abstractmethod
    def delete(self, record: Any) -> None:
        """Mark *record* for deletion."""

    def contains_record(self, record: Any) -> bool:
        """True if *record* is part of this context's view and not marked for deletion."""
        return self.run(lambda: self._contains(record))

    @abstractmethod
    def _contains(self, record: Any) -> bool:
        """``contains_record`` body; call only on this context's domain."""

    @abstractmethod
    def save(self) -> None:
        """Commit pending changes (root) or push them to the parent (child)."""

    @abstractmethod
    def discard(self) -> None:
        """Drop pending changes."""

    @property
    @abstractmethod
    def has_changes(self) -> bool:
        """True when the context holds unsaved inserts, updates or deletes."""

    def execute_async(self, request: FetchRequest) -> PendingResult[list[Any]]:
        """Execute *request* on this context's domain, delivering ``Ok``/``Err`` to its completion."""
        descriptor = request.descriptor
        return self.submit(
            lambda: self.execute(descriptor),
            request.completion,
            label=f"fetch {descriptor.entity_name}",
            error_type=QueryError,
        )

    def begin_child(self, domain: ExecutionDomain | None = None, name: str | None = None) -> ChildContext:
        """Start a child context whose parent is this context."""
        return ChildContext(self, domain=domain or self.domain, name=name or f"{self.name}.child")

    def close(self) -> None:
        self.discard()

    def _error_context(self, descriptor: QueryDescriptor | None, operation: str) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "operation": operation,
            "context_name": self.name,
            "domain": self.domain.name,
        }
        if descriptor is not None:
            fields["entity"] = descriptor.entity_name
        return fields

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, domain={self.domain.name!r})"


class Context(BaseContext):
    """Root context backed by a SQLAlchemy session.

    The session must autoflush so that reads observe records inserted in this
    context but not yet saved.
    """

    def __init__(self, session: Session, domain: ExecutionDomain, name: str = "main"):
        super().__init__(domain, name)
        self.session = session
        # Autoflush empties session.new/dirty; remember flushed-but-uncommitted work
        self._flushed = False
        event.listen(session, "after_flush", self._on_flush)
        event.listen(session, "after_commit", self._on_transaction_end)
        event.listen(session, "after_rollback", self._on_transaction_end)

    def _on_flush(self, session: Session, flush_context: Any) -> None:
        self._flushed = True

    def _on_transaction_end(self, session: Session) -> None:
        self._flushed = False

    def insert(self, record: Any) -> None:
        self.run(lambda: self.session.add(record))

    def execute(self, descriptor: QueryDescriptor) -> list[Any]:
        return self.run(lambda: self._execute(descriptor))

    def _execute(self, descriptor: QueryDescriptor) -> list[Any]:
        stmt = compile_descriptor(descriptor)
        try:
            records = list(self.session.scalars(stmt))
        except SQLAlchemyError as exc:
            error = QueryError(f"fetch of {descriptor.entity_name} failed: {exc}", cause=exc)
            error.with_context(**self._error_context(descriptor, "fetch"))
            logger.error("fetch_failed", **error.to_dict())
            raise error from exc
        logger.debug("fetch_completed", entity=descriptor.entity_name, context=self.name, count=len(records))
        return records

    def count(self, descriptor: QueryDescriptor) -> int:
        return self.run(lambda: self._count(descriptor))

    def _count(self, descriptor: QueryDescriptor) -> int:
        stmt = compile_count(descriptor)
        try:
            return int(self.session.scalar(stmt) or 0)
        except SQLAlchemyError as exc:
            error = QueryError(f"count of {descriptor.entity_name} failed: {exc}", cause=exc)
            error.with_context(**self._error_context(descriptor, "count"))
            logger.error("count_failed", **error.to_dict())
            raise error from exc

    def delete(self, record: Any) -> None:
        self.run(lambda: self._delete(record))

    def _delete(self, record: Any) -> None:
        record = _source_record(record)
        state = sa_inspect(record)
        if state.pending and state.session_id == self.session.hash_key:
            self.session.expunge(record)
            return
        if state.key is None or state.deleted:
            return
        if state.session_id == self.session.hash_key:
            self.session.delete(record)
            return
        # Owned by another context; re-fetch by identity
        local = self.session.get(state.mapper.class_, state.identity)
        if local is not None:
            self.session.delete(local)

    def _contains(self, record: Any) -> bool:
        session = self.session
        record = _source_record(record)
        state = sa_inspect(record)
        if state.session_id == session.hash_key:
            return not (state.deleted or state.detached) and record not in session.deleted
        if state.key is None:
            return False
        local = session.get(state.mapper.class_, state.identity)
        return local is not None and local not in session.deleted

    def save(self) -> None:
        self.run(self._save)

    def _save(self) -> None:
        session = self.session
        counts = {"inserted": len(session.new), "updated": len(session.dirty), "deleted": len(session.deleted)}
        try:
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            error = SaveError(f"save of context {self.name!r} failed: {exc}", cause=exc)
            error.with_context(**self._error_context(None, "save"))
            logger.error("save_failed", **error.to_dict())
            raise error from exc
        logger.debug("context_saved", context=self.name, **counts)

    def discard(self) -> None:
        self.run(self.session.rollback)

    @property
    def has_changes(self) -> bool:
        session = self.session
        return self.run(lambda: bool(self._flushed or session.new or session.dirty or session.deleted))

    def close(self) -> None:
        if self.domain.closed:
            self.session.close()
            return
        self.run(self.session.close)


@dataclass(eq=False)
class _RecordView:
    """A child's private copy of a parent record, with the values it was read with."""

    original: Any
    copy: Any
    snapshot: dict[str, Any]

    def changes(self) -> dict[str, Any]:
        return {
            key: getattr(self.copy, key)
            for key, value in self.snapshot.items()
            if getattr(self.copy, key) != value
        }

    def reset(self, values: dict[str, Any]) -> None:
        for key, value in values.items():
            setattr(self.copy, key, value)
        self.snapshot = dict(values)

    def accept(self) -> None:
        self.snapshot = {key: getattr(self.copy, key) for key in self.snapshot}


class ChildContext(BaseContext):
    """Context stacked on a parent, staging changes until saved.

    Records read through a child are private copies of the parent's records.
    Attribute changes on them stay in the child until ``save()`` applies them
    to the parent's records; ``discard()`` reverts them.
    """

    def __init__(self, parent: BaseContext, domain: ExecutionDomain, name: str):
        super().__init__(domain, name, parent)
        self._inserted: list[Any] = []
        self._deleted: dict[int, Any] = {}
        self._views: dict[int, _RecordView] = {}
        self._by_copy: dict[int, _RecordView] = {}

    def insert(self, record: Any) -> None:
        self.run(lambda: self._insert(record))

    def _insert(self, record: Any) -> None:
        if not self._is_staged(record):
            self._inserted.append(record)

    def _is_staged(self, record: Any) -> bool:
        return any(staged is record for staged in self._inserted)

    def _view_of(self, original: Any, values: dict[str, Any]) -> _RecordView:
        view = self._views.get(id(original))
        if view is None:
            view = _RecordView(original, _copy_record(original, values), dict(values))
            self._views[id(original)] = view
            self._by_copy[id(view.copy)] = view
        elif not view.changes():
            # Unedited copies follow the parent
            view.reset(values)
        return view

    def _edited_views(self) -> list[_RecordView]:
        return [view for view in self._views.values() if id(view.original) not in self._deleted and view.changes()]

    def _deleted_identities(self) -> set[tuple]:
        return {record_identity(record) for record in self._deleted.values()}

    def _locate(self, record: Any) -> tuple[Any, bool]:
        """Map *record* to ``(staged insert, True)`` or ``(parent-side record, False)``."""
        current = record
        last = record
        while current is not None:
            if self._is_staged(current):
                return current, True
            view = self._by_copy.get(id(current))
            if view is not None and view.copy is current:
                return view.original, False
            last = current
            current = _origins.get(current)
        return last, False

    def execute(self, descriptor: QueryDescriptor) -> list[Any]:
        return self.run(lambda: self._execute(descriptor))

    def _execute(self, descriptor: QueryDescriptor) -> list[Any]:
        edited = self._edited_views()
        widen = len(self._deleted) + len(edited)
        parent_descriptor = descriptor
        if widen and descriptor.limit is not None:
            parent_descriptor = descriptor.with_limit(descriptor.limit + widen)

        parent = self.parent
        rows = parent.run(lambda: [(record, _column_values(record)) for record in parent.execute(parent_descriptor)])

        deleted = self._deleted_identities()
        edited_copies = {id(view.copy) for view in edited}
        records: list[Any] = []
        seen: set[int] = set()
        for original, values in rows:
            if record_identity(original) in deleted:
                continue
            copy = self._view_of(original, values).copy
            seen.add(id(copy))
            records.append(copy)
        # Edited copies may match now even if the parent's values do not
        records.extend(view.copy for view in edited if id(view.copy) not in seen)
        records = [r for r in records if id(r) not in edited_copies or descriptor.matches(r)]
        records.extend(record for record in self._inserted if descriptor.matches(record))
        if descriptor.sort:
            records = sort_records(records, descriptor.sort)
        if descriptor.limit is not None:
            records = records[: descriptor.limit]
        return records

    def count(self, descriptor: QueryDescriptor) -> int:
        return self.run(lambda: self._count(descriptor))

    def _count(self, descriptor: QueryDescriptor) -> int:
        parent = self.parent
        deleted = list(self._deleted.values())
        edited = self._edited_views()

        def _parent_view() -> int:
            total = parent.count(descriptor)
            for record in deleted:
                # Already gone in the parent
                if parent._contains(record) and descriptor.matches(record):
                    total -= 1
            for view in edited:
                if parent._contains(view.original):
                    total += int(descriptor.matches(view.copy)) - int(descriptor.matches(view.original))
            return total

        total = parent.run(_parent_view)
        return total + sum(1 for record in self._inserted if descriptor.matches(record))

    def _contains(self, record: Any) -> bool:
        target, staged = self._locate(record)
        if staged:
            return True
        if record_identity(target) in self._deleted_identities():
            return False
        return self.parent.contains_record(target)

    def delete(self, record: Any) -> None:
        self.run(lambda: self._delete(record))

    def _delete(self, record: Any) -> None:
        target, staged = self._locate(record)
        if staged:
            self._inserted = [r for r in self._inserted if r is not target]
            return
        if not self.parent.contains_record(target):
            return
        self._deleted[id(target)] = target

    def save(self) -> None:
        self.run(self._save)

    def _save(self) -> None:
        inserted, deleted = list(self._inserted), list(self._deleted.values())
        updates = [(view.original, view.changes()) for view in self._edited_views()]
        parent = self.parent

        def _push() -> None:
            for original, changes in updates:
                for key, value in changes.items():
                    setattr(original, key, value)
            for record in inserted:
                parent.insert(record)
            for record in deleted:
                parent.delete(record)

        try:
            parent.run(_push)
        except SQLAlchemyError as exc:
            error = SaveError(f"save of context {self.name!r} failed: {exc}", cause=exc)
            error.with_context(**self._error_context(None, "save"))
            logger.error("save_failed", **error.to_dict())
            raise error from exc
        for key in self._deleted:
            view = self._views.pop(key, None)
            if view is not None:
                self._by_copy.pop(id(view.copy), None)
        for view in self._views.values():
            view.accept()
        self._inserted.clear()
        self._deleted.clear()
        logger.debug(
            "context_saved",
            context=self.name,
            parent=parent.name,
            inserted=len(inserted),
            updated=len(updates),
            deleted=len(deleted),
        )

    def discard(self) -> None:
        self.run(self._discard)

    def _discard(self) -> None:
        for view in self._views.values():
            view.reset(view.snapshot)
        self._inserted.clear()
        self._deleted.clear()

    @property
    def has_changes(self) -> bool:
        return self.run(lambda: bool(self._inserted or self._deleted or self._edited_views()))


__all__ = [
    "BaseContext",
    "Context",
    "ChildContext",
    "record_identity",
]
