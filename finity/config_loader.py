from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .errors import (
    ConfigError,
    DefinitionError,
    ErrorContext,
    ValidationError,
    config_missing_field,
    config_wrong_type,
)
from .imports import load_callable, load_symbol
from .schema import Assert, Is, Literal, Nilable, Record, Union, is_mapping, is_schema
from .spec import Spec, define

TYPE_NAMES: Dict[str, Any] = {
    "str": Is(str),
    "int": Is(int),
    "float": Is(float),
    "number": Is(int, float),
    "bool": Is(bool),
    "map": is_mapping,
    "list": Is(list),
    "any": Assert(lambda _value: True),
}


class ConfigLoader:
    @staticmethod
    def load_yaml(path: str | Path) -> Dict[str, Any]:
        p = Path(path)
        with p.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise config_wrong_type(
                field="(root)",
                expected="mapping/object",
                got=type(data).__name__,
                path=str(p),
            )
        return data

    @staticmethod
    def _field_schema(field: str, value: Any, path_str: str) -> Any:
        """
        Turn a YAML field declaration into a schema.

        Accepts a type name (``str``, ``int?``...), a ``module:symbol`` schema,
        a nested mapping of fields, or a list of allowed literal values.
        """
        if isinstance(value, Mapping):
            return Record(
                {k: ConfigLoader._field_schema(f"{field}.{k}", v, path_str) for k, v in value.items()}
            )

        if isinstance(value, list):
            if not value:
                raise config_wrong_type(field, "non-empty list of values", "empty list", path_str)
            return Union(*(Literal(v) for v in value))

        if not isinstance(value, str):
            raise config_wrong_type(field, "type name", type(value).__name__, path_str)

        nilable = value.endswith("?")
        name = value[:-1].strip() if nilable else value.strip()

        if ":" in name:
            schema = load_symbol(name)
            if not is_schema(schema):
                ctx = ErrorContext().add("config_path", path_str).add("field", field).add("value", value)
                raise ConfigError(
                    f"Not a schema: {name!r}",
                    why=f"Field '{field}' points at a {type(schema).__name__}, which has no parse() method.",
                    fix="Point the dotted path at a schema object (for example a finity.schema.Record).",
                    context=ctx,
                )
        elif name in TYPE_NAMES:
            schema = TYPE_NAMES[name]
        else:
            ctx = ErrorContext().add("config_path", path_str).add("field", field).add("value", value)
            raise ConfigError(
                f"Unknown type name {name!r} for field '{field}'",
                why="Field types must be a known type name or a 'module:symbol' schema.",
                fix=f"Use one of: {', '.join(sorted(TYPE_NAMES))} (suffix '?' for optional).",
                context=ctx,
            )

        return Nilable(schema) if nilable else schema

    @staticmethod
    def _schema_map(section: str, value: Any, path_str: str) -> Optional[Any]:
        if value is None:
            return None
        if isinstance(value, str) and ":" in value:
            return ConfigLoader._field_schema(section, value, path_str)
        if not isinstance(value, Mapping):
            raise config_wrong_type(section, "mapping of fields", type(value).__name__, path_str)
        return {
            k: ConfigLoader._field_schema(f"{section}.{k}", v, path_str) for k, v in value.items()
        }

    @staticmethod
    def _section(data: Dict[str, Any], name: str, expected: type, path_str: str, required: bool = False) -> Any:
        value = data.get(name)
        if value is None:
            if required:
                raise config_missing_field(name, path_str)
            return expected()
        if not isinstance(value, expected):
            raise config_wrong_type(name, expected.__name__, type(value).__name__, path_str)
        return value

    @staticmethod
    def load_document(path: str | Path) -> Dict[str, Any]:
        """Load a YAML machine document and resolve its types and dotted paths.

        The result is ready for :func:`finity.spec.define`.
        """
        path_str = str(path)
        data = ConfigLoader.load_yaml(path)

        spec_id = data.get("id")
        if not spec_id or not isinstance(spec_id, str):
            raise config_missing_field("id", path_str)
        if data.get("initial") is None:
            raise config_missing_field("initial", path_str)

        states = ConfigLoader._section(data, "states", dict, path_str, required=True)
        actions = ConfigLoader._section(data, "actions", dict, path_str)
        effects = ConfigLoader._section(data, "effects", dict, path_str)
        transitions = ConfigLoader._section(data, "transitions", list, path_str)
        options = ConfigLoader._section(data, "options", dict, path_str)

        doc_effects: Dict[str, Any] = {}
        for effect_id, effect in effects.items():
            if isinstance(effect, str):
                doc_effects[effect_id] = load_callable(effect, "effect handler")
            elif isinstance(effect, Mapping) and isinstance(effect.get("do"), str):
                doc_effects[effect_id] = {
                    "args": ConfigLoader._schema_map(f"effects.{effect_id}.args", effect.get("args"), path_str),
                    "do": load_callable(effect["do"], "effect handler"),
                }
            else:
                raise config_wrong_type(
                    f"effects.{effect_id}", "'module:handler' or {args, do}", type(effect).__name__, path_str
                )

        doc_transitions: List[Dict[str, Any]] = []
        for i, trn in enumerate(transitions):
            if not isinstance(trn, Mapping):
                raise config_wrong_type(f"transitions[{i}]", "mapping", type(trn).__name__, path_str)
            entry = dict(trn)
            if "do" in entry:
                if not isinstance(entry["do"], str):
                    raise config_wrong_type(f"transitions[{i}].do", "'module:reducer'", type(entry["do"]).__name__, path_str)
                entry["do"] = load_callable(entry["do"], "reducer")
            doc_transitions.append(entry)

        return {
            "id": spec_id,
            "initial": data["initial"],
            "states": {k: ConfigLoader._schema_map(f"states.{k}", v, path_str) for k, v in states.items()},
            "actions": {k: ConfigLoader._schema_map(f"actions.{k}", v, path_str) for k, v in actions.items()},
            "effects": doc_effects,
            "transitions": doc_transitions,
            "options": options,
        }

    @staticmethod
    def load_machine(path: str | Path) -> Spec:
        """Load a YAML machine document into a Spec."""
        document = ConfigLoader.load_document(path)
        try:
            return define(document)
        except (DefinitionError, ValidationError) as e:
            e.context.add("config_path", str(path))
            raise ConfigError(e.what, why=e.why, fix=e.fix, context=e.context) from e
