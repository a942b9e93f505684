"""
recordcsv: map typed record classes to and from flat CSV text (stdlib-only).

Contract (v0):
- Columns are declared on the record class, never in the file:
    dataclass fields: csv_field("Employee ID", 1, default=0)
    plain classes:    __csv_fields__ = {"id": CsvField("Employee ID", 1, int)}
- Column order is ascending `order`; columns without an order go last, in
  declaration order. Duplicate orders or names raise SchemaError.
- Value types: str, int (32-bit), float, bool, datetime, any Enum subclass.
  Optional[X] lets an empty cell decode to None. More types via
  register_codec(python_type, factory).
- Text format: csv.reader / csv.writer with QUOTE_NONE, one record per line.
  No quoting: str values containing the delimiter or a line break are rejected.
- Writing: None -> "", int -> str(v), float -> repr(v), Enum -> member name,
  bool -> true/false, datetime -> isoformat().
- Reading:
    header must equal the schema names, same count, same order;
    cells are matched to fields by header name, so absent columns are skipped
    and the field keeps its default;
    Enum cells try Enum.from_str(text) first, then a case-insensitive member
    name match; an unmatched Enum cell logs a warning and keeps the default.
- Errors: RecordCSVError subclasses; ConversionError carries row/column context.
  OSError from file access propagates unchanged.

API:
- writer(f, record_type) / reader(f, record_type): synchronous, on text files.
- CsvExporter.export_bulk / export_stream -> Future[int] (rows written)
- CsvImporter.import_bulk -> Future[list]
  CsvImporter.import_stream -> RecordReader (header checked on construction)

Python: 3.10+
"""

from __future__ import annotations

import csv
import dataclasses
import enum
import logging
import os
import re
import threading
import types
import typing
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

logger = logging.getLogger(__name__)

__version__ = "0.1.0"


# ----------------------------
# Exceptions
# ----------------------------

class RecordCSVError(ValueError):
    """Base class for every recordcsv failure."""


class SchemaError(RecordCSVError):
    """Column metadata on a record type is invalid or ambiguous."""


class UnsupportedTypeError(SchemaError):
    """A column's value type has no registered codec."""


class SchemaMismatchError(RecordCSVError):
    """The header line does not match the record type's columns."""


class InstantiationError(RecordCSVError):
    """A record cannot be built: no zero-argument constructor, or read-only fields."""


class EmptyInputError(RecordCSVError):
    """Export was asked to write zero records."""


class ConversionError(RecordCSVError):
    """Raised when a cell cannot be parsed, or a value cannot be formatted, with context."""

    def __init__(
        self,
        *,
        row: int,
        column: str,
        value: str,
        reason: str,
    ) -> None:
        msg = (
            "ConversionError(" +
            f"row={row}, column={column!r}, value={value!r}): {reason}"
        )
        super().__init__(msg)
        self.row = row          # 1-based line number (header is 1); 0 outside a file
        self.column = column    # column name
        self.value = value      # raw cell text, or repr of the value being written
        self.reason = reason


# ----------------------------
# Dialect
# ----------------------------

_ROW_ERROR_POLICIES = ("raise", "skip")


@dataclass(frozen=True)
class CsvDialect:
    delimiter: str = ","
    line_terminator: str = "\n"
    encoding: str = "utf-8"
    # classmethod looked up on Enum types before the name match; "" disables it
    enum_hook: str = "from_str"
    # unmatched Enum cells keep the field default instead of failing the row
    lenient_enums: bool = True
    # "skip" drops rows with a ConversionError (logged) instead of raising
    on_row_error: str = "raise"
    # bool parsing (case-insensitive)
    bool_true: Tuple[str, ...] = ("true", "t", "yes", "y", "1")
    bool_false: Tuple[str, ...] = ("false", "f", "no", "n", "0")
    datetime_parser: Callable[[str], datetime] = staticmethod(datetime.fromisoformat)
    datetime_formatter: Callable[[datetime], str] = staticmethod(lambda dt: dt.isoformat())

    def __post_init__(self) -> None:
        if len(self.delimiter) != 1 or self.delimiter in "\r\n":
            raise ValueError(f"delimiter must be a single non-newline character, got {self.delimiter!r}")
        if self.line_terminator not in ("\n", "\r\n"):
            raise ValueError(f"line_terminator must be '\\n' or '\\r\\n', got {self.line_terminator!r}")
        if self.on_row_error not in _ROW_ERROR_POLICIES:
            raise ValueError(f"on_row_error must be one of {_ROW_ERROR_POLICIES}, got {self.on_row_error!r}")

    def csv_params(self) -> Dict[str, Any]:
        """Format parameters for csv.reader / csv.writer: split on the delimiter, never quote or escape."""
        return {
            "delimiter": self.delimiter,
            "lineterminator": self.line_terminator,
            "quoting": csv.QUOTE_NONE,
            "quotechar": None,
            "escapechar": None,
        }


DEFAULT = CsvDialect()


# ----------------------------
# Value codecs
# ----------------------------

@dataclass(frozen=True)
class ValueCodec:
    type_name: str                 # "text" | "int32" | "float64" | "enum" | "bool" | "datetime" | custom
    python_type: type
    parse: Callable[[str], Any]
    format: Callable[[Any], str]
    lenient: bool = False          # a parse failure keeps the field default instead of failing the row


CodecFactory = Callable[[type, CsvDialect], ValueCodec]

INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1

_INT_LITERAL = re.compile(r"[+-]?[0-9]+")
_FLOAT_LITERAL = re.compile(
    r"[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?|[+-]?(?:nan|inf|infinity)",
    re.IGNORECASE,
)


def _check_int32(value: int) -> int:
    if not INT32_MIN <= value <= INT32_MAX:
        raise ValueError(f"{value} is outside the 32-bit integer range")
    return value


def _parse_int32(raw: str) -> int:
    if _INT_LITERAL.fullmatch(raw) is None:
        raise ValueError(f"Invalid int literal: {raw!r}")
    return _check_int32(int(raw))


def _format_int32(v: Any) -> str:
    if isinstance(v, bool) or not isinstance(v, int):
        raise TypeError(f"expected int, got {type(v).__name__}")
    return str(_check_int32(v))


def _parse_float64(raw: str) -> float:
    if _FLOAT_LITERAL.fullmatch(raw) is None:
        raise ValueError(f"Invalid float literal: {raw!r}")
    return float(raw)


def _parse_bool(raw: str, td: CsvDialect) -> bool:
    s = raw.strip().lower()
    if s in td.bool_true:
        return True
    if s in td.bool_false:
        return False
    raise ValueError(f"Invalid bool literal: {raw!r}")


def _format_bool(v: Any) -> str:
    return "true" if bool(v) else "false"


def _parse_enum(enum_type: type, raw: str, td: CsvDialect) -> Any:
    hook = getattr(enum_type, td.enum_hook, None) if td.enum_hook else None
    if callable(hook):
        try:
            member = hook(raw)
        except Exception as e:
            logger.debug("%s.%s(%r) failed, falling back to name match: %s",
                         enum_type.__name__, td.enum_hook, raw, e)
        else:
            if isinstance(member, enum_type):
                return member

    wanted = raw.casefold()
    for name, member in enum_type.__members__.items():
        if name.casefold() == wanted:
            return member
    raise ValueError(f"{raw!r} is not a member of {enum_type.__name__}")


def _text_codec(python_type: type, td: CsvDialect) -> ValueCodec:
    def format_text(v: Any) -> str:
        s = v if isinstance(v, str) else str(v)
        if td.delimiter in s or "\n" in s or "\r" in s:
            raise ValueError("text contains the delimiter or a line break (quoting is not supported)")
        return s

    return ValueCodec("text", python_type, lambda s: s, format_text)


def _int32_codec(python_type: type, td: CsvDialect) -> ValueCodec:
    return ValueCodec("int32", python_type, _parse_int32, _format_int32)


def _float64_codec(python_type: type, td: CsvDialect) -> ValueCodec:
    return ValueCodec("float64", python_type, _parse_float64, lambda v: repr(float(v)))


def _bool_codec(python_type: type, td: CsvDialect) -> ValueCodec:
    return ValueCodec("bool", python_type, lambda s: _parse_bool(s, td), _format_bool)


def _datetime_codec(python_type: type, td: CsvDialect) -> ValueCodec:
    return ValueCodec("datetime", python_type, td.datetime_parser, td.datetime_formatter)


def _enum_codec(python_type: type, td: CsvDialect) -> ValueCodec:
    return ValueCodec(
        "enum",
        python_type,
        lambda s: _parse_enum(python_type, s, td),
        lambda v: python_type(v).name,
        lenient=td.lenient_enums,
    )


_CODECS: Dict[type, CodecFactory] = {
    str: _text_codec,
    int: _int32_codec,
    float: _float64_codec,
    bool: _bool_codec,
    datetime: _datetime_codec,
    enum.Enum: _enum_codec,
}


def register_codec(python_type: type, factory: CodecFactory) -> None:
    """Register (or replace) the codec factory used for `python_type` and its subclasses."""
    _CODECS[python_type] = factory
    clear_schema_cache()


def codec_for(python_type: Any, td: CsvDialect = DEFAULT) -> ValueCodec:
    """
    Look up the codec for a value type: exact match, then Enum, then the MRO.
    Raises UnsupportedTypeError when nothing matches.
    """
    factory = _CODECS.get(python_type)
    if factory is None and isinstance(python_type, enum.EnumMeta):
        factory = _CODECS[enum.Enum]
    if factory is None:
        for klass in getattr(python_type, "__mro__", ())[1:]:
            factory = _CODECS.get(klass)
            if factory is not None:
                break
    if factory is None:
        raise UnsupportedTypeError(f"No codec registered for type {python_type!r}")
    return factory(python_type, td)


def encode_value(value: Any, codec: ValueCodec, *, column: str = "", row: int = 0) -> str:
    if value is None:
        return ""
    try:
        return codec.format(value)
    except Exception as e:
        raise ConversionError(
            row=row, column=column, value=repr(value),
            reason=f"Format failed for type {codec.type_name!r}: {e}"
        ) from e


def decode_value(
    cell: str,
    codec: ValueCodec,
    *,
    optional: bool = False,
    column: str = "",
    row: int = 0,
) -> Any:
    if cell == "" and optional and codec.type_name != "text":
        return None
    try:
        return codec.parse(cell)
    except Exception as e:
        raise ConversionError(
            row=row, column=column, value=cell,
            reason=f"Parse failed for type {codec.type_name!r}: {e}"
        ) from e


# ----------------------------
# Column declarations
# ----------------------------

METADATA_KEY = "recordcsv"


@dataclass(frozen=True)
class CsvField:
    name: str                          # column name written to / expected in the header
    order: Optional[int] = None        # None sorts after every explicit order
    value_type: Optional[Any] = None   # overrides the attribute's annotation


def csv_field(
    name: str,
    order: Optional[int] = None,
    *,
    value_type: Optional[Any] = None,
    **kwargs: Any,
) -> Any:
    """dataclasses.field() carrying a CsvField; remaining kwargs go to dataclasses.field."""
    metadata = dict(kwargs.pop("metadata", None) or {})
    metadata[METADATA_KEY] = CsvField(name=name, order=order, value_type=value_type)
    return dataclasses.field(metadata=metadata, **kwargs)


# ----------------------------
# Schema
# ----------------------------

@dataclass(frozen=True)
class FieldSpec:
    name: str
    ordinal: Optional[int]
    attribute: str
    codec: ValueCodec
    optional: bool = False

    def get(self, record: Any) -> Any:
        return getattr(record, self.attribute, None)

    def set(self, record: Any, value: Any) -> None:
        setattr(record, self.attribute, value)


@dataclass(frozen=True)
class ColumnSchema:
    record_type: type
    fields: Tuple[FieldSpec, ...]

    @property
    def names(self) -> List[str]:
        return [f.name for f in self.fields]

    def __len__(self) -> int:
        return len(self.fields)

    def __iter__(self) -> Iterator[FieldSpec]:
        return iter(self.fields)


_SCHEMA_CACHE: Dict[Tuple[type, CsvDialect], ColumnSchema] = {}
_SCHEMA_LOCK = threading.Lock()


def clear_schema_cache() -> None:
    with _SCHEMA_LOCK:
        _SCHEMA_CACHE.clear()


def _declared_fields(record_type: type) -> List[Tuple[str, Any]]:
    explicit = getattr(record_type, "__csv_fields__", None)
    if explicit is not None:
        return list(explicit.items())
    if dataclasses.is_dataclass(record_type):
        return [
            (f.name, f.metadata[METADATA_KEY])
            for f in dataclasses.fields(record_type)
            if METADATA_KEY in f.metadata
        ]
    return []


def _unwrap_optional(annotation: Any) -> Tuple[Any, bool]:
    origin = typing.get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        args = typing.get_args(annotation)
        non_none = [a for a in args if a is not type(None)]
        if len(non_none) == 1 and len(args) == 2:
            return non_none[0], True
        raise UnsupportedTypeError(f"Only Optional[X] unions are supported, got {annotation!r}")
    return annotation, False


def _type_hints(record_type: type) -> Dict[str, Any]:
    try:
        return typing.get_type_hints(record_type)
    except Exception as e:
        raise SchemaError(f"Cannot resolve annotations of {record_type.__name__}: {e}") from e


def _build_schema(record_type: type, td: CsvDialect) -> ColumnSchema:
    owner = record_type.__name__
    hints: Optional[Dict[str, Any]] = None
    specs: List[FieldSpec] = []
    names: Dict[str, str] = {}
    orders: Dict[int, str] = {}

    for attribute, meta in _declared_fields(record_type):
        where = f"{owner}.{attribute}"
        if not isinstance(meta, CsvField):
            raise SchemaError(f"{where}: expected CsvField metadata, got {meta!r}")

        name = meta.name
        if not isinstance(name, str) or not name.strip():
            raise SchemaError(f"{where}: column name must be a non-empty string")
        if td.delimiter in name or "\n" in name or "\r" in name:
            raise SchemaError(f"{where}: column name {name!r} contains the delimiter or a line break")
        if name in names:
            raise SchemaError(f"{where}: duplicate column name {name!r} (already used by {names[name]!r})")
        names[name] = attribute

        order = meta.order
        if order is not None:
            if isinstance(order, bool) or not isinstance(order, int):
                raise SchemaError(f"{where}: order must be an int, got {order!r}")
            if order in orders:
                raise SchemaError(f"{where}: duplicate column order {order} (already used by {orders[order]!r})")
            orders[order] = attribute

        annotation = meta.value_type
        if annotation is None:
            if hints is None:
                hints = _type_hints(record_type)
            annotation = hints.get(attribute)
            if annotation is None:
                raise SchemaError(f"{where}: no value type (annotate the attribute or pass value_type)")

        try:
            value_type, optional = _unwrap_optional(annotation)
            codec = codec_for(value_type, td)
        except UnsupportedTypeError as e:
            raise UnsupportedTypeError(f"{where}: {e}") from e

        specs.append(FieldSpec(
            name=name,
            ordinal=order,
            attribute=attribute,
            codec=codec,
            optional=optional,
        ))

    # stable: unordered columns keep declaration order at the end
    specs.sort(key=lambda s: (s.ordinal is None, s.ordinal or 0))
    return ColumnSchema(record_type=record_type, fields=tuple(specs))


def resolve_schema(record_type: type, td: CsvDialect = DEFAULT) -> ColumnSchema:
    """
    Ordered column schema of `record_type`, built once per (type, dialect) and cached.
    Raises SchemaError / UnsupportedTypeError on invalid declarations.
    """
    if not isinstance(record_type, type):
        raise TypeError(f"record_type must be a class, got {record_type!r}")
    key = (record_type, td)
    schema = _SCHEMA_CACHE.get(key)
    if schema is None:
        schema = _build_schema(record_type, td)
        with _SCHEMA_LOCK:
            schema = _SCHEMA_CACHE.setdefault(key, schema)
    return schema


def _as_schema(schema_or_type: Union[ColumnSchema, type], td: CsvDialect) -> ColumnSchema:
    if isinstance(schema_or_type, ColumnSchema):
        return schema_or_type
    return resolve_schema(schema_or_type, td)


# ----------------------------
# Rows
# ----------------------------

def split_row(line: str, td: CsvDialect = DEFAULT) -> List[str]:
    """One line split into raw cells; a blank line gives no cells."""
    return next(csv.reader([line], **td.csv_params()), [])


def encode_header(schema: Union[ColumnSchema, type], td: CsvDialect = DEFAULT) -> str:
    return td.delimiter.join(_as_schema(schema, td).names)


def encode_cells(record: Any, schema: Union[ColumnSchema, type], td: CsvDialect = DEFAULT, *, row: int = 0) -> List[str]:
    schema = _as_schema(schema, td)
    if not isinstance(record, schema.record_type):
        raise ConversionError(
            row=row, column="", value=type(record).__name__,
            reason=f"Expected an instance of {schema.record_type.__name__}"
        )
    return [
        encode_value(spec.get(record), spec.codec, column=spec.name, row=row)
        for spec in schema.fields
    ]


def encode_row(record: Any, schema: Union[ColumnSchema, type], td: CsvDialect = DEFAULT, *, row: int = 0) -> str:
    return td.delimiter.join(encode_cells(record, schema, td, row=row))


def _instantiate(record_type: type) -> Any:
    try:
        return record_type()
    except TypeError as e:
        raise InstantiationError(
            f"{record_type.__name__} cannot be constructed without arguments: {e}"
        ) from e


def _find_column(name: str, headers: Sequence[str]) -> int:
    for i, header in enumerate(headers):
        if header == name:
            return i
    return -1


def decode_row(
    raw_row: Sequence[str],
    headers: Sequence[str],
    schema: Union[ColumnSchema, type],
    td: CsvDialect = DEFAULT,
    *,
    row: int = 0,
) -> Any:
    """
    Build a record from one split line. Cells are looked up by header name;
    a column missing from `headers` (or past the end of `raw_row`) is skipped
    and the attribute keeps whatever the constructor set.
    """
    schema = _as_schema(schema, td)
    record = _instantiate(schema.record_type)
    for spec in schema.fields:
        index = _find_column(spec.name, headers)
        if index < 0 or index >= len(raw_row):
            continue
        try:
            value = decode_value(raw_row[index], spec.codec, optional=spec.optional, column=spec.name, row=row)
        except ConversionError as e:
            if not spec.codec.lenient:
                raise
            logger.warning("Row %d, column %r: %s; keeping default", row, spec.name, e.reason)
            continue
        try:
            spec.set(record, value)
        except AttributeError as e:
            raise InstantiationError(
                f"Cannot set {schema.record_type.__name__}.{spec.attribute}: {e}"
            ) from e
    return record


def validate_header(header_line: str, schema: Union[ColumnSchema, type], td: CsvDialect = DEFAULT) -> bool:
    """Exact, order-sensitive comparison of a header line with the schema names. Logs the first mismatch."""
    return _check_headers(split_row(header_line, td), _as_schema(schema, td))


def _check_headers(headers: Sequence[str], schema: ColumnSchema) -> bool:
    expected = schema.names
    if len(headers) != len(expected):
        logger.error(
            "Header has %d columns but %s declares %d: %r",
            len(headers), schema.record_type.__name__, len(expected), list(headers),
        )
        return False

    for i, (found, wanted) in enumerate(zip(headers, expected)):
        if found != wanted:
            logger.error("Header mismatch at index %d: expected %r, but found %r", i, wanted, found)
            return False
    return True


# ----------------------------
# Writer
# ----------------------------

class RecordWriter:
    """Writes the header and one line per record of `record_type` through csv.writer."""

    def __init__(self, f: Any, record_type: type, td: CsvDialect = DEFAULT) -> None:
        self._f = f
        self._csv = csv.writer(f, **td.csv_params())
        self._td = td
        self.schema = resolve_schema(record_type, td)
        self.rows_written = 0

    def writeheader(self) -> int:
        return int(self._csv.writerow(self.schema.names))

    def writerow(self, record: Any) -> int:
        row = self.rows_written + 2
        cells = encode_cells(record, self.schema, self._td, row=row)
        if cells == [""]:
            # csv refuses a lone empty field without quoting
            n = self._f.write(self._td.line_terminator)
        else:
            try:
                n = self._csv.writerow(cells)
            except csv.Error as e:
                raise ConversionError(
                    row=row, column="", value=self._td.delimiter.join(cells),
                    reason=f"Cannot write row: {e}"
                ) from e
        self.rows_written += 1
        return int(n)

    def writerows(self, records: Iterable[Any]) -> None:
        for r in records:
            self.writerow(r)


def writer(f: Any, record_type: type, td: CsvDialect = DEFAULT) -> RecordWriter:
    return RecordWriter(f, record_type, td)


# ----------------------------
# Reader
# ----------------------------

class RecordReader:
    """
    Forward-only, single-pass iterator of records read through csv.reader.

    The header is read and validated on construction (SchemaMismatchError).
    At most one undecoded row is held ahead of the consumer. A failure while
    reading ahead is raised on the following pull, after the record already
    decoded has been returned. With close_source=True the file is closed on
    end of input, on a header mismatch, on a read failure, or by close().
    """

    def __init__(
        self,
        f: Any,
        record_type: type,
        td: CsvDialect = DEFAULT,
        *,
        close_source: bool = False,
    ) -> None:
        self._f = f
        self._td = td
        self._close_source = close_source
        self._csv = csv.reader(f, **td.csv_params())
        self._current: Optional[List[str]] = None
        self._current_line = 0
        self._error: Optional[Exception] = None
        self._exhausted = False
        self.schema = resolve_schema(record_type, td)

        try:
            header = next(self._csv, None)
        except Exception:
            self.close()
            raise
        if header is None or not _check_headers(header, self.schema):
            self.close()
            found = "<empty input>" if header is None else td.delimiter.join(header)
            raise SchemaMismatchError(
                f"CSV header {found!r} does not match {record_type.__name__} "
                f"columns {encode_header(self.schema, td)!r}"
            )
        self.headers = header
        self._advance()

    @property
    def line_num(self) -> int:
        return self._csv.line_num

    @property
    def buffered_lines(self) -> int:
        return 0 if self._current is None else 1

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    @property
    def closed(self) -> bool:
        return bool(getattr(self._f, "closed", False))

    def _advance(self) -> None:
        try:
            row = next(self._csv)
        except StopIteration:
            self.close()
            return
        except Exception as e:
            self._error = e
            self.close()
            return
        self._current = row
        self._current_line = self._csv.line_num

    def close(self) -> None:
        self._exhausted = True
        self._current = None
        if self._close_source:
            self._f.close()

    def __enter__(self) -> "RecordReader":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def __iter__(self) -> "RecordReader":
        return self

    def __next__(self) -> Any:
        while self._current is not None:
            cells, row = self._current, self._current_line
            self._current = None
            try:
                record = decode_row(cells, self.headers, self.schema, self._td, row=row)
            except ConversionError as e:
                self._advance()
                if self._td.on_row_error != "skip":
                    raise
                logger.warning("Skipping row %d: %s", row, e)
                continue
            self._advance()
            return record

        if self._error is not None:
            error, self._error = self._error, None
            raise error
        raise StopIteration


def reader(f: Any, record_type: type, td: CsvDialect = DEFAULT) -> RecordReader:
    return RecordReader(f, record_type, td)


# ----------------------------
# Worker pool
# ----------------------------

_DEFAULT_EXECUTOR: Optional[ThreadPoolExecutor] = None
_EXECUTOR_LOCK = threading.Lock()


def _default_executor() -> ThreadPoolExecutor:
    global _DEFAULT_EXECUTOR
    with _EXECUTOR_LOCK:
        if _DEFAULT_EXECUTOR is None:
            _DEFAULT_EXECUTOR = ThreadPoolExecutor(thread_name_prefix="recordcsv")
        return _DEFAULT_EXECUTOR


def _submit(executor: Executor, label: str, fn: Callable[..., Any], *args: Any) -> Future:
    def task() -> Any:
        logger.debug("%s started", label)
        try:
            result = fn(*args)
        except Exception:
            logger.exception("%s failed", label)
            raise
        logger.debug("%s finished", label)
        return result

    return executor.submit(task)


# ----------------------------
# Export
# ----------------------------

_NOTHING = object()


def _write_file(records: Iterable[Any], path: Any, record_type: Optional[type], td: CsvDialect) -> int:
    it = iter(records)
    first = next(it, _NOTHING)
    if first is _NOTHING:
        raise EmptyInputError(f"No records to export to {os.fspath(path)!r}")

    schema = resolve_schema(record_type if record_type is not None else type(first), td)
    # a bad first record fails before the file exists
    encode_cells(first, schema, td, row=2)

    f = open(path, "w", encoding=td.encoding, newline="")
    try:
        with f:
            w = RecordWriter(f, schema.record_type, td)
            w.writeheader()
            w.writerow(first)
            w.writerows(it)
    except Exception:
        os.remove(path)
        raise
    return w.rows_written


class CsvExporter:
    """Writes records to CSV files on a worker pool; each call returns a Future of rows written."""

    def __init__(self, executor: Optional[Executor] = None, td: CsvDialect = DEFAULT) -> None:
        self._executor = executor
        self._td = td

    @property
    def executor(self) -> Executor:
        return self._executor if self._executor is not None else _default_executor()

    def export_bulk(self, records: Sequence[Any], path: Any, record_type: Optional[type] = None) -> Future:
        # snapshot now; later changes to `records` by the caller do not leak into the file
        snapshot = list(records)
        return _submit(self.executor, f"export_bulk({os.fspath(path)!r})",
                       _write_file, snapshot, path, record_type, self._td)

    def export_stream(self, records: Iterable[Any], path: Any, record_type: Optional[type] = None) -> Future:
        return _submit(self.executor, f"export_stream({os.fspath(path)!r})",
                       _write_file, records, path, record_type, self._td)


# ----------------------------
# Import
# ----------------------------

def _open_reader(path: Any, record_type: type, td: CsvDialect) -> RecordReader:
    resolve_schema(record_type, td)
    f = open(path, "r", encoding=td.encoding, newline="")
    try:
        return RecordReader(f, record_type, td, close_source=True)
    except Exception:
        f.close()
        raise


def _read_file(path: Any, record_type: type, td: CsvDialect) -> List[Any]:
    with _open_reader(path, record_type, td) as records:
        return list(records)


class CsvImporter:
    """Reads CSV files into records of a given type, in bulk (Future) or as a RecordReader."""

    def __init__(self, executor: Optional[Executor] = None, td: CsvDialect = DEFAULT) -> None:
        self._executor = executor
        self._td = td

    @property
    def executor(self) -> Executor:
        return self._executor if self._executor is not None else _default_executor()

    def import_bulk(self, path: Any, record_type: type) -> Future:
        return _submit(self.executor, f"import_bulk({os.fspath(path)!r})",
                       _read_file, path, record_type, self._td)

    def import_stream(self, path: Any, record_type: type) -> RecordReader:
        return _open_reader(path, record_type, self._td)

    def import_stream_async(self, path: Any, record_type: type) -> Future:
        return _submit(self.executor, f"import_stream({os.fspath(path)!r})",
                       _open_reader, path, record_type, self._td)


def export_bulk(records: Sequence[Any], path: Any, record_type: Optional[type] = None,
                *, td: CsvDialect = DEFAULT) -> Future:
    return CsvExporter(td=td).export_bulk(records, path, record_type)


def export_stream(records: Iterable[Any], path: Any, record_type: Optional[type] = None,
                  *, td: CsvDialect = DEFAULT) -> Future:
    return CsvExporter(td=td).export_stream(records, path, record_type)


def import_bulk(path: Any, record_type: type, *, td: CsvDialect = DEFAULT) -> Future:
    return CsvImporter(td=td).import_bulk(path, record_type)


def import_stream(path: Any, record_type: type, *, td: CsvDialect = DEFAULT) -> RecordReader:
    return CsvImporter(td=td).import_stream(path, record_type)


__all__ = [
    "RecordCSVError",
    "SchemaError",
    "UnsupportedTypeError",
    "SchemaMismatchError",
    "InstantiationError",
    "EmptyInputError",
    "ConversionError",
    "CsvDialect",
    "DEFAULT",
    "ValueCodec",
    "register_codec",
    "codec_for",
    "encode_value",
    "decode_value",
    "CsvField",
    "csv_field",
    "FieldSpec",
    "ColumnSchema",
    "resolve_schema",
    "clear_schema_cache",
    "split_row",
    "encode_header",
    "encode_cells",
    "encode_row",
    "decode_row",
    "validate_header",
    "RecordWriter",
    "RecordReader",
    "writer",
    "reader",
    "CsvExporter",
    "CsvImporter",
    "export_bulk",
    "export_stream",
    "import_bulk",
    "import_stream",
    "__version__",
]
