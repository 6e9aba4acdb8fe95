"""Translate OpenAPI schema nodes into pydantic validators.

Supported subset: primitives, string enums, arrays of non-object items, and
objects nested at most one level below a parameter or request-body root.
Only ``#/components/schemas/`` references are followed. Anything else raises
:class:`~spec2tools.errors.UnsupportedSchemaError` with the offending path.
"""

from __future__ import annotations

import keyword
import re
from typing import Annotated, Any, Dict, FrozenSet, Iterable, List, Literal, NamedTuple, Optional, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict, Field, create_model

from .errors import UnsupportedSchemaError


COMPONENT_SCHEMA_PREFIX = "#/components/schemas/"
MAX_OBJECT_DEPTH = 1

_UNSUPPORTED_COMPOSITION = ("anyOf", "oneOf", "allOf")


class SchemaField(NamedTuple):
    name: str
    annotation: Any
    required: bool
    description: Optional[str] = None


def resolve_ref(
    ref: str, document: Dict[str, Any], seen_refs: FrozenSet[str] = frozenset()
) -> Tuple[Dict[str, Any], FrozenSet[str]]:
    """Follow a component-schema reference chain.

    Returns the resolved schema together with the references seen on the way,
    so callers can keep passing them down the recursion.
    """
    current = ref
    seen = seen_refs
    while True:
        if current in seen:
            raise UnsupportedSchemaError(str(current), "Circular $ref detected")
        seen = seen | {current}

        if not isinstance(current, str) or not current.startswith(COMPONENT_SCHEMA_PREFIX):
            raise UnsupportedSchemaError(
                str(current), f"Only {COMPONENT_SCHEMA_PREFIX} $refs are supported"
            )

        schema_name = current[len(COMPONENT_SCHEMA_PREFIX):]
        schemas = (document.get("components") or {}).get("schemas") or {}
        schema = schemas.get(schema_name)
        if not isinstance(schema, dict):
            raise UnsupportedSchemaError(current, f'Schema "{schema_name}" not found in components')

        if "$ref" not in schema:
            return schema, seen
        current = schema["$ref"]


def translate_schema(
    schema: Dict[str, Any],
    path: str,
    document: Dict[str, Any],
    depth: int = 0,
    seen_refs: FrozenSet[str] = frozenset(),
) -> Any:
    """Convert one schema node into a type pydantic can validate against."""
    if not isinstance(schema, dict):
        raise UnsupportedSchemaError(path, "Schema must be a mapping")

    if "$ref" in schema:
        resolved, seen_refs = resolve_ref(schema["$ref"], document, seen_refs)
        if schema.get("description") and not resolved.get("description"):
            resolved = {**resolved, "description": schema["description"]}
        return translate_schema(resolved, path, document, depth, seen_refs)

    for composition in _UNSUPPORTED_COMPOSITION:
        if composition in schema:
            raise UnsupportedSchemaError(path, f"{composition} is not supported")

    schema_type = schema.get("type")
    description = schema.get("description")

    if schema_type == "array":
        return _translate_array(schema, path, document, depth, seen_refs)

    if schema_type == "object" or "properties" in schema:
        return _translate_object(schema, path, document, depth, seen_refs)

    annotation: Any
    if schema_type == "string":
        if schema.get("format") == "binary":
            raise UnsupportedSchemaError(path, "File uploads are not supported")
        enum = schema.get("enum")
        annotation = Literal[tuple(str(value) for value in enum)] if enum else str
    elif schema_type == "integer":
        annotation = int
    elif schema_type == "number":
        # int first, so integer input is not rewritten as a float.
        annotation = Union[int, float]
    elif schema_type == "boolean":
        annotation = bool
    else:
        # Untyped or unknown: accept it as a plain string.
        annotation = str

    return describe(annotation, description)


def describe(annotation: Any, description: Optional[str]) -> Any:
    if not description:
        return annotation
    return Annotated[annotation, Field(description=description)]


def _translate_array(
    schema: Dict[str, Any],
    path: str,
    document: Dict[str, Any],
    depth: int,
    seen_refs: FrozenSet[str],
) -> Any:
    items = schema.get("items")
    if not isinstance(items, dict):
        raise UnsupportedSchemaError(path, "Array without items schema")

    item_schema, item_refs = items, seen_refs
    if "$ref" in items:
        item_schema, item_refs = resolve_ref(items["$ref"], document, seen_refs)

    if item_schema.get("type") == "object" or "properties" in item_schema:
        raise UnsupportedSchemaError(path, "Arrays of objects are not supported")

    # Arrays do not count toward the nesting depth.
    item_type = translate_schema(item_schema, f"{path}.items", document, depth, item_refs)
    return describe(List[item_type], schema.get("description"))


def _translate_object(
    schema: Dict[str, Any],
    path: str,
    document: Dict[str, Any],
    depth: int,
    seen_refs: FrozenSet[str],
) -> Any:
    if depth > MAX_OBJECT_DEPTH:
        raise UnsupportedSchemaError(path, "Nested objects beyond 1 level are not supported")

    properties = schema.get("properties") or {}
    if not properties:
        return describe(Dict[str, Any], schema.get("description"))

    required = set(schema.get("required") or [])
    fields = [
        SchemaField(
            name=name,
            annotation=translate_schema(prop, f"{path}.{name}", document, depth + 1, seen_refs),
            required=name in required,
        )
        for name, prop in properties.items()
    ]
    return build_model(model_name(path), fields, description=schema.get("description"))


def build_model(
    name: str, fields: Iterable[SchemaField], description: Optional[str] = None
) -> Type[BaseModel]:
    """Build a pydantic model whose aliases are the original property names.

    Optional fields get a ``None`` default that is never validated, so a
    dump with ``exclude_unset=True`` leaves out everything the caller omitted.
    """
    definitions: Dict[str, Any] = {}
    used: set[str] = set()
    for field in fields:
        attribute = _python_name(field.name, used)
        used.add(attribute)
        default = ... if field.required else None
        # An explicit description=None would mask one carried by the annotation.
        extra = {"description": field.description} if field.description else {}
        definitions[attribute] = (field.annotation, Field(default, alias=field.name, **extra))

    return create_model(
        name,
        __config__=ConfigDict(extra="ignore"),
        __doc__=description,
        **definitions,
    )


def model_name(path: str) -> str:
    return "".join(ch if ch.isalnum() else "_" for ch in path)


_NON_IDENTIFIER = re.compile(r"\W")


def _python_name(name: str, used: set[str]) -> str:
    candidate = _NON_IDENTIFIER.sub("_", name) or "field"
    if candidate[0].isdigit() or candidate.startswith("_") or candidate.startswith("model_"):
        candidate = f"f_{candidate}"
    if keyword.iskeyword(candidate) or hasattr(BaseModel, candidate):
        candidate = f"{candidate}_"
    while candidate in used:
        candidate = f"{candidate}_"
    return candidate
