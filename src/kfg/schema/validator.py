"""Schema validator for Kfg.

Compiles a Schema Definition into a pydantic ``TypeAdapter`` over nested
``TypedDict`` types and validates plain dict trees against it:

  Schema Declaration        -> Compiled As
  -----------------------------------------------
  c.string()                -> str
  c.number()                -> int or float (numeric strings are coerced)
  c.integer()               -> int
  c.boolean()               -> bool ("true"/"false"/"1"/"0" coerced)
  c.array(item)             -> list[item]
  c.record(value)           -> dict[str, value]
  c.object({...}) / {...}   -> TypedDict (extra keys allowed)
  c.enum([...])             -> Literal[...]
  c.ip/ipv6/email/url       -> str checked by format
  minimum=/maximum=         -> Field(ge=, le=) bounds (also gt/lt/multiple_of)
  min_length=/max_length=   -> Field length bounds on strings and arrays
  c.rule("integer|min:1")   -> the same leaves, declared from a rule string
  refines=[fn, ...]         -> after-validators, fn returns True or a message

Validation never mutates its input: defaults are filled on a deep copy, the
copy is coerced by pydantic, and the resulting tree is returned.
"""

import copy
import ipaddress
import re
from typing import Annotated, Any, Literal

from loguru import logger
from pydantic import (
    AfterValidator,
    AnyUrl,
    ConfigDict,
    Field,
    PlainValidator,
    TypeAdapter,
    ValidationError,
    with_config,
)
from typing_extensions import NotRequired, TypedDict

from kfg.errors import KfgValidationError, ValidationIssue
from kfg.schema.fields import (
    Leaf,
    SchemaDefinition,
    is_namespace_required,
    schematic,
)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_url_adapter = TypeAdapter(AnyUrl)


# --- Format checks ---


def _number(value: Any) -> int | float:
    if isinstance(value, bool):
        raise ValueError("Input should be a valid number")
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError:
            pass
    raise ValueError("Input should be a valid number")


def _check_ipv4(value: str) -> str:
    ipaddress.IPv4Address(value)
    return value


def _check_ipv6(value: str) -> str:
    ipaddress.IPv6Address(value)
    return value


def _check_email(value: str) -> str:
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Input should be a valid email address")
    return value


def _check_url(value: str) -> str:
    try:
        _url_adapter.validate_python(value)
    except ValidationError:
        raise ValueError("Input should be a valid URL")
    return value


def _pattern(pattern: str):
    compiled = re.compile(pattern)

    def check(value: str) -> str:
        if not compiled.search(value):
            raise ValueError(f"String should match pattern '{pattern}'")
        return value

    return check


def _refine(fn):
    def check(value: Any) -> Any:
        result = fn(value)
        if result is not True:
            raise ValueError(result if isinstance(result, str) else "failed refine function")
        return value

    return check


# --- Compilation ---


def _leaf_type(leaf: Leaf, name: str, only_importants: bool) -> Any:
    match leaf.kind:
        case "string":
            annotation: Any = str
        case "number":
            annotation = Annotated[Any, PlainValidator(_number)]
        case "integer":
            annotation = int
        case "boolean":
            annotation = bool
        case "array":
            item = _leaf_type(leaf.items, f"{name}_item", only_importants) if leaf.items else Any
            annotation = list[item]
        case "many":
            annotation = list[str]
        case "record":
            value = (
                _leaf_type(leaf.value_type, f"{name}_value", only_importants)
                if leaf.value_type
                else Any
            )
            annotation = dict[str, value]
        case "object":
            annotation = (
                _namespace_type(leaf.properties, name, only_importants)
                if leaf.properties is not None
                else dict[str, Any]
            )
        case "enum":
            annotation = Literal[leaf.values] if leaf.values else Any
        case "ip":
            annotation = Annotated[str, AfterValidator(_check_ipv4)]
        case "ipv6":
            annotation = Annotated[str, AfterValidator(_check_ipv6)]
        case "email":
            annotation = Annotated[str, AfterValidator(_check_email)]
        case "url":
            annotation = Annotated[str, AfterValidator(_check_url)]
        case _:
            annotation = Any

    if leaf.constraints:
        annotation = Annotated[annotation, Field(**leaf.constraints)]
    for pattern in leaf.patterns:
        annotation = Annotated[annotation, AfterValidator(_pattern(pattern))]
    for fn in leaf.refines:
        annotation = Annotated[annotation, AfterValidator(_refine(fn))]
    return annotation


def _namespace_type(node: SchemaDefinition, name: str, only_importants: bool) -> Any:
    fields: dict[str, Any] = {}
    for key, child in node.items():
        child_name = f"{name}_{key}"
        match child:
            case Leaf():
                annotation = _leaf_type(child, child_name, only_importants)
                required = child.is_required(only_importants)
                if not required:
                    annotation = annotation | None
            case dict():
                annotation = _namespace_type(child, child_name, only_importants)
                required = is_namespace_required(child, only_importants)
            case _:
                raise TypeError(f"Invalid schema node at '{key}': {child!r}")
        fields[key] = annotation if required else NotRequired[annotation]

    typed = TypedDict(name, fields)  # type: ignore[misc]
    return with_config(ConfigDict(extra="allow"))(typed)


# --- Defaults ---


def fill_defaults(definition: SchemaDefinition, data: dict, only_importants: bool = False) -> dict:
    """Fill missing (or None) values with declared defaults, in place.

    Namespaces are materialized as ``{}`` so that missing required fields are
    reported at the leaf rather than at the namespace.
    """
    for key, node in definition.items():
        match node:
            case Leaf() as leaf:
                if data.get(key) is None and leaf.has_default:
                    data[key] = copy.deepcopy(leaf.default)
                elif data.get(key) is None and leaf.kind == "many":
                    data[key] = []
                elif (
                    data.get(key) is None
                    and leaf.kind == "object"
                    and leaf.properties is not None
                    and leaf.is_required(only_importants)
                ):
                    data[key] = {}
                if leaf.kind == "object" and leaf.properties and isinstance(data.get(key), dict):
                    fill_defaults(leaf.properties, data[key], only_importants)
            case dict():
                if data.get(key) is None:
                    data[key] = {}
                if isinstance(data[key], dict):
                    fill_defaults(node, data[key], only_importants)
    return data


def defaults(definition: SchemaDefinition) -> dict:
    """Build an object containing only the declared defaults."""
    result: dict = {}
    for key, node in definition.items():
        match node:
            case Leaf() as leaf if leaf.has_default:
                result[key] = copy.deepcopy(leaf.default)
            case dict():
                result[key] = defaults(node)
    return result


# --- Error conversion ---


def type_name(value: Any) -> str:
    """Name a Python value by its JSON type."""
    match value:
        case None:
            return "null"
        case bool():
            return "boolean"
        case int() | float():
            return "number"
        case str():
            return "string"
        case list() | tuple():
            return "array"
        case dict():
            return "object"
    return type(value).__name__


def _expected(definition: SchemaDefinition, path: str) -> str | None:
    node = schematic(definition, path) if path else definition
    match node:
        case Leaf() as leaf:
            return leaf.kind
        case dict():
            return "object"
    return None


def _issue(definition: SchemaDefinition, error: dict) -> ValidationIssue:
    path = ".".join(str(part) for part in error["loc"])
    message = error["msg"].removeprefix("Value error, ")
    missing = error["type"] == "missing"
    return ValidationIssue(
        path=path,
        expected=_expected(definition, path),
        received=None if missing else type_name(error.get("input")),
        message="required" if missing else message,
        value=None if missing else error.get("input"),
    )


class CompiledSchema:
    """Checkable form of a Schema Definition.

    Derived from the definition and the ``only_importants`` flag; rebuild it
    whenever either changes.
    """

    def __init__(self, definition: SchemaDefinition, only_importants: bool = False):
        self.definition = definition
        self.only_importants = only_importants
        self._adapter = TypeAdapter(_namespace_type(definition, "Kfg", only_importants))

    def validate(self, data: Any) -> dict:
        """Return a defaulted, coerced copy of ``data`` or raise KfgValidationError."""
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise KfgValidationError(
                [
                    ValidationIssue(
                        path="",
                        expected="object",
                        received=type_name(data),
                        message="configuration root must be an object",
                    )
                ]
            )

        candidate = fill_defaults(self.definition, copy.deepcopy(data), self.only_importants)
        try:
            return self._adapter.validate_python(candidate)
        except ValidationError as e:
            issues = [_issue(self.definition, error) for error in e.errors()]
            logger.debug("Validation failed", issues=len(issues))
            raise KfgValidationError(issues) from e


def compile_schema(definition: SchemaDefinition, only_importants: bool = False) -> CompiledSchema:
    """Compile a Schema Definition.

    Args:
        definition: The schema tree of leaves and namespaces.
        only_importants: Treat every field not marked ``important`` as optional.

    Raises:
        TypeError: If a node is neither a Leaf nor a namespace dict.
    """
    return CompiledSchema(definition, only_importants)
