"""Composable schema values used to validate states, actions, and effect args.

Every schema exposes one operation, ``parse(value)``, which returns the parsed
output or raises :class:`SchemaError` with every issue found. The machine core
only relies on that contract, so any object with a ``parse`` method (for
example an adapter around another validation library) can be registered
wherever a schema is accepted.

Example:
    from finity.schema import Is, Nilable, Record

    schema = Record({"url": Is(str), "retries": Nilable(Is(int))})
    schema.parse({"url": "https://example.com"})
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple

Path = Tuple[Any, ...]


@dataclass(frozen=True)
class Issue:
    """A single validation failure at a path inside the parsed value."""

    path: Path
    message: str

    def __str__(self) -> str:
        if not self.path:
            return self.message
        return f"{'.'.join(str(p) for p in self.path)}: {self.message}"


class SchemaError(Exception):
    """Raised by ``parse`` with the aggregated issues."""

    def __init__(self, issues: Sequence[Issue]):
        self.issues = list(issues)
        super().__init__(self.format())

    def format(self) -> str:
        return "\n".join(f"- {issue}" for issue in self.issues)

    def nested(self, key: Any) -> List[Issue]:
        """Return the issues re-rooted under ``key``."""
        return [Issue((key,) + issue.path, issue.message) for issue in self.issues]


def _fail(message: str) -> SchemaError:
    return SchemaError([Issue((), message)])


class Schema:
    def parse(self, value: Any) -> Any:
        raise NotImplementedError


@dataclass(frozen=True)
class Literal(Schema):
    value: Any

    def parse(self, value: Any) -> Any:
        if value != self.value:
            raise _fail(f"expected {self.value!r}, got {value!r}")
        return value


@dataclass(frozen=True)
class Is(Schema):
    """isinstance check. ``bool`` never satisfies ``int``/``float``."""

    types: Tuple[type, ...]

    def __init__(self, *types: type):
        object.__setattr__(self, "types", tuple(types))

    def parse(self, value: Any) -> Any:
        if isinstance(value, bool) and bool not in self.types:
            ok = False
        else:
            ok = isinstance(value, self.types)
        if not ok:
            names = " | ".join(t.__name__ for t in self.types)
            raise _fail(f"expected {names}, got {type(value).__name__}")
        return value


@dataclass(frozen=True)
class Assert(Schema):
    predicate: Callable[[Any], bool]
    message: str = "assertion failed"

    def parse(self, value: Any) -> Any:
        if not self.predicate(value):
            raise _fail(f"{self.message}, got {value!r}")
        return value


@dataclass(frozen=True)
class Nilable(Schema):
    inner: Schema

    def parse(self, value: Any) -> Any:
        if value is None:
            return None
        return self.inner.parse(value)


@dataclass(frozen=True)
class Union(Schema):
    options: Tuple[Schema, ...]

    def __init__(self, *options: Schema):
        object.__setattr__(self, "options", tuple(options))

    def parse(self, value: Any) -> Any:
        issues: List[Issue] = []
        for option in self.options:
            try:
                return option.parse(value)
            except SchemaError as e:
                issues.extend(e.issues)
        raise SchemaError(issues or [Issue((), "no union options")])


@dataclass(frozen=True)
class Record(Schema):
    """Mapping with declared fields. Undeclared keys pass through unchanged."""

    fields: Mapping[str, Schema]

    def parse(self, value: Any) -> Any:
        if not isinstance(value, Mapping):
            raise _fail(f"expected mapping, got {type(value).__name__}")

        output = dict(value)
        issues: List[Issue] = []
        for key, schema in self.fields.items():
            try:
                parsed = schema.parse(value.get(key))
            except SchemaError as e:
                issues.extend(e.nested(key))
                continue
            if key in value or parsed is not None:
                output[key] = parsed

        if issues:
            raise SchemaError(issues)
        return output


@dataclass(frozen=True)
class MapOf(Schema):
    key: Schema
    value: Schema

    def parse(self, value: Any) -> Any:
        if not isinstance(value, Mapping):
            raise _fail(f"expected mapping, got {type(value).__name__}")

        output = {}
        issues: List[Issue] = []
        for k, v in value.items():
            try:
                parsed_key = self.key.parse(k)
            except SchemaError as e:
                issues.extend(Issue((k,), f"invalid key: {i.message}") for i in e.issues)
                continue
            try:
                output[parsed_key] = self.value.parse(v)
            except SchemaError as e:
                issues.extend(e.nested(k))

        if issues:
            raise SchemaError(issues)
        return output


@dataclass(frozen=True)
class ListOf(Schema):
    item: Schema

    def parse(self, value: Any) -> Any:
        if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
            raise _fail(f"expected list, got {type(value).__name__}")

        output = []
        issues: List[Issue] = []
        for i, item in enumerate(value):
            try:
                output.append(self.item.parse(item))
            except SchemaError as e:
                issues.extend(e.nested(i))

        if issues:
            raise SchemaError(issues)
        return output


def is_schema(obj: Any) -> bool:
    return callable(getattr(obj, "parse", None)) and not isinstance(obj, type)


def as_schema(obj: Any) -> Optional[Any]:
    """Coerce a user-supplied schema: ``None`` stays ``None``, a mapping of
    field schemas becomes a :class:`Record`, anything with ``parse`` is used
    as-is.
    """
    if obj is None:
        return None
    if is_schema(obj):
        return obj
    if isinstance(obj, Mapping):
        fields = {}
        for key, value in obj.items():
            if value is None:
                raise TypeError(f"field {key!r} has no schema")
            fields[key] = as_schema(value)
        return Record(fields)
    raise TypeError(f"expected a schema or a mapping of schemas, got {type(obj).__name__}")


is_mapping = Assert(lambda v: isinstance(v, Mapping), "expected mapping")
