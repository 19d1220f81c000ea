"""
Import / reconciliation engine.

``import_list`` turns a list of raw field-maps (decoded JSON objects) into
records: each entry is upserted by its identifying key and the remaining
fields are assigned by a ``RecordDecoder``. The whole list is processed in
order and the context is saved once at the end when ``should_save`` is set.

Failure semantics:
    The first failing entry stops the import. Entries after it are not
    touched, and records upserted before it stay pending in the context
    (there is no rollback; call ``context.discard()`` to drop them).

Deletion of records missing from the list is not done here; compose with
``delete_all_except``.

Tags:
    ezstore, import, upsert, decoding, pydantic

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable, Collection, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, TypeVar, runtime_checkable

from pydantic import ValidationError as PydanticValidationError

from ezstore.core.context import BaseContext
from ezstore.core.domains import PendingResult
from ezstore.core.errors import DecodeError, EzStoreError, RecordImportError
from ezstore.core.logging import LogContext, get_logger
from ezstore.core.query import attribute_python_type, coerce_value, entity_name, mapper_for
from ezstore.core.result import Result
from ezstore.core.upsert import get_or_create

if TYPE_CHECKING:
    from ezstore.core.settings import StoreSettings

logger = get_logger(__name__)

T = TypeVar("T")


@runtime_checkable
class RecordDecoder(Protocol):
    """Assigns raw field values onto a record."""

    def decode(self, record: Any, fields: Mapping[str, Any], *, skip: Collection[str] = ()) -> None: ...


class ColumnDecoder:
    """Default decoder: assigns mapped columns, coercing with pydantic.

    ISO strings become datetimes, numeric strings become ints, numbers become
    strings for text columns. Keys that are not mapped columns are ignored.
    A mapped class may define ``decode_fields(self, fields)`` to decode
    itself instead.
    """

    def decode(self, record: Any, fields: Mapping[str, Any], *, skip: Collection[str] = ()) -> None:
        remaining = {key: value for key, value in fields.items() if key not in skip}
        hook = getattr(record, "decode_fields", None)
        if callable(hook):
            hook(remaining)
            return

        kind = type(record)
        columns = mapper_for(kind).column_attrs
        for key, raw in remaining.items():
            if key not in columns:
                logger.debug("field_ignored", entity=entity_name(kind), field=key)
                continue
            try:
                value = coerce_value(attribute_python_type(kind, key), raw)
            except PydanticValidationError as exc:
                raise DecodeError(
                    f"cannot decode {entity_name(kind)}.{key} from {raw!r}",
                    field_name=key,
                    value=raw,
                    cause=exc,
                ).with_context(entity=entity_name(kind), attribute=key) from exc
            setattr(record, key, value)


default_decoder = ColumnDecoder()


@dataclass(frozen=True)
class ImportOptions:
    """Per-call import options.

    Attributes:
        id_key: Field-map key holding the identifying attribute value; the
            record attribute has the same name
        should_save: Save the context after the whole list is imported
        decoder: Field decoder; ``None`` uses ``ColumnDecoder``
    """

    id_key: str = "id"
    should_save: bool = True
    decoder: RecordDecoder | None = None

    @classmethod
    def from_settings(cls, settings: StoreSettings, decoder: RecordDecoder | None = None) -> ImportOptions:
        return cls(id_key=settings.import_id_key, should_save=settings.import_should_save, decoder=decoder)


def import_list(
    context: BaseContext,
    kind: type[T],
    raw_list: Sequence[Mapping[str, Any]],
    options: ImportOptions | None = None,
) -> list[T]:
    """Upsert and decode every entry of *raw_list*, returning the records in order.

    Raises ``RecordImportError`` for an entry without a usable identifying
    value, ``DecodeError`` for an undecodable field and ``StoreError`` for
    lookup or save failures.
    """
    options = options or ImportOptions()
    decoder = options.decoder or default_decoder
    name = entity_name(kind)

    def _import() -> list[T]:
        with LogContext(context_name=context.name, domain=context.domain.name, operation="import"):
            return _import_entries()

    def _import_entries() -> list[T]:
        records: list[T] = []
        for index, fields in enumerate(raw_list):
            if not isinstance(fields, Mapping):
                raise RecordImportError(
                    f"entry {index} is not a field map", index=index
                ).with_context(entity=name, operation="import")
            key_value = fields.get(options.id_key)
            if key_value is None:
                raise RecordImportError(
                    f"entry {index} has no {options.id_key!r} value", index=index
                ).with_context(entity=name, operation="import", attribute=options.id_key)
            record = get_or_create(context, kind, options.id_key, key_value)
            try:
                decoder.decode(record, fields, skip=(options.id_key,))
            except DecodeError as exc:
                exc.with_context(operation="import", index=index)
                raise
            records.append(record)
        if options.should_save:
            context.save()
        logger.info("import_completed", entity=name, context=context.name, count=len(records), saved=options.should_save)
        return records

    try:
        return context.run(_import)
    except EzStoreError as exc:
        logger.error("import_failed", **exc.to_dict())
        raise


def import_list_async(
    context: BaseContext,
    kind: type[T],
    raw_list: Sequence[Mapping[str, Any]],
    options: ImportOptions | None = None,
    completion: Callable[[Result[list[T]]], Any] | None = None,
) -> PendingResult[list[T]]:
    """Run ``import_list`` on the context's domain; deliver ``Ok(records)`` or ``Err`` once."""
    entries = list(raw_list)
    return context.submit(
        lambda: import_list(context, kind, entries, options),
        completion,
        label=f"import {entity_name(kind)}",
    )


__all__ = [
    "RecordDecoder",
    "ColumnDecoder",
    "ImportOptions",
    "import_list",
    "import_list_async",
]
