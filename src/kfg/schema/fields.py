"""Schema definition nodes and the ``c`` factory used to declare them.

A Schema Definition is a tree:

    {
        "app": {                                   # namespace (plain dict)
            "port": c.number(default=3000),        # leaf
            "hosts": c.array(c.string(), default=[]),
        },
        "token": c.string(important=True, prop="API_TOKEN"),
    }

A node is a leaf iff it is a ``Leaf`` instance; any dict is a namespace and is
recursed into.
"""

import math
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

type Refine = Callable[[Any], bool | str]
type SchemaNode = Leaf | dict[str, SchemaNode]
type SchemaDefinition = dict[str, SchemaNode]

LEAF_KINDS = frozenset(
    {
        "string",
        "number",
        "integer",
        "boolean",
        "any",
        "object",
        "array",
        "record",
        "enum",
        "ip",
        "ipv6",
        "email",
        "url",
        "many",
        "join",
    }
)


@dataclass
class Relation:
    """Reference from a leaf to another file-backed collection.

    ``many`` leaves hold an array of ids; ``join`` leaves read a single id from
    the ``fk`` field of the same record.
    """

    type: Literal["many", "join"]
    target: Any  # KfgFS
    fk: str | None = None


@dataclass
class Leaf:
    """A typed field declaration."""

    kind: str
    default: Any = None
    description: str | None = None
    important: bool = False
    optional: bool = False
    prop: str | None = None  # storage key override (env var name, etc.)
    refines: list[Refine] = field(default_factory=list)
    items: "Leaf | None" = None  # array element type
    properties: "SchemaDefinition | None" = None  # object members
    values: tuple = ()  # enum members
    value_type: "Leaf | None" = None  # record value type
    relation: Relation | None = None
    # numeric bounds
    minimum: float | None = None
    maximum: float | None = None
    exclusive_minimum: float | None = None
    exclusive_maximum: float | None = None
    multiple_of: float | None = None
    # string or array length
    min_length: int | None = None
    max_length: int | None = None
    patterns: tuple[str, ...] = ()

    def __post_init__(self):
        if self.kind not in LEAF_KINDS:
            raise ValueError(f"Unknown schema kind '{self.kind}'")

    @property
    def has_default(self) -> bool:
        return self.default is not None

    @property
    def constraints(self) -> dict[str, Any]:
        """Bounds and lengths as pydantic ``Field`` keyword arguments."""
        bounds = {
            "ge": self.minimum,
            "le": self.maximum,
            "gt": self.exclusive_minimum,
            "lt": self.exclusive_maximum,
            "multiple_of": self.multiple_of,
            "min_length": self.min_length,
            "max_length": self.max_length,
        }
        return {name: value for name, value in bounds.items() if value is not None}

    def is_required(self, only_importants: bool = False) -> bool:
        """Whether the field must be present once defaults are applied."""
        if self.optional or self.has_default or self.kind == "join":
            return False
        if only_importants and not self.important:
            return False
        return True


def is_namespace_required(node: SchemaDefinition, only_importants: bool = False) -> bool:
    """A namespace is required when any field below it is required."""
    for child in node.values():
        match child:
            case Leaf() as leaf:
                if leaf.is_required(only_importants):
                    return True
            case dict():
                if is_namespace_required(child, only_importants):
                    return True
    return False


def walk_leaves(definition: SchemaDefinition, prefix: str = "") -> Iterator[tuple[str, Leaf]]:
    """Yield ``(dot_path, leaf)`` for every scalar-like leaf.

    Object leaves with declared properties are descended into, so callers that
    map fields to flat storage keys see only the innermost fields.
    """
    for key, node in definition.items():
        path = f"{prefix}.{key}" if prefix else key
        match node:
            case Leaf(kind="object", properties=dict() as props):
                yield from walk_leaves(props, path)
            case Leaf():
                yield path, node
            case dict():
                yield from walk_leaves(node, path)


def schematic(definition: SchemaDefinition, path: str) -> "SchemaNode | None":
    """Return the schema node at a dot-path, or None if the path is not declared."""
    node: Any = definition
    for segment in path.split("."):
        match node:
            case Leaf(kind="object", properties=dict() as props):
                node = props.get(segment)
            case Leaf(kind="array", items=Leaf() as items) if segment.isdigit():
                node = items
            case dict():
                node = node.get(segment)
            case _:
                return None
        if node is None:
            return None
    return node


def _enum_values(values: Any) -> tuple:
    if isinstance(values, type) and issubclass(values, Enum):
        return tuple(member.value for member in values)
    return tuple(values)


# --- Rule strings ---

# Rules that only state presence or the default string type
PRESENCE_RULES = frozenset(
    {"required", "filled", "present", "sometimes", "string", "text", "optional", "nullable"}
)
TYPE_RULES = frozenset({"boolean", "integer", "int", "number", "numeric", "in"})
FORMAT_KINDS = {"email": "email", "url": "url", "uri": "url", "ipv4": "ip", "ipv6": "ipv6"}
FORMAT_PATTERNS = {
    "uuid": r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$",
    "date": r"^\d{4}-\d{2}-\d{2}$",
    "date_time": r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}(:\d{2}(\.\d+)?)?(Z|[+-]\d{2}:?\d{2})?$",
    "datetime": r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}(:\d{2}(\.\d+)?)?(Z|[+-]\d{2}:?\d{2})?$",
    "alpha": r"^[A-Za-z]+$",
    "alpha_num": r"^[A-Za-z0-9]+$",
    "alpha_dash": r"^[A-Za-z0-9_-]+$",
    "ascii": r"^[\x00-\x7F]*$",
    "lowercase": r"^[^A-Z]*$",
    "uppercase": r"^[^a-z]*$",
    "ulid": r"^[0-9A-HJKMNP-TV-Z]{26}$",
    "slug": r"^[a-z0-9]+(?:-[a-z0-9]+)*$",
}
LENGTH_RULES = frozenset({"min", "max", "between", "size", "len", "length"})
BOUND_RULES = frozenset({"min", "max", "between", "gt", "gte", "lt", "lte", "multiple_of"})
STRING_RULES = frozenset(
    {"regex", "starts_with", "ends_with", "digits", "digits_between"}
    | set(FORMAT_KINDS)
    | set(FORMAT_PATTERNS)
)
KNOWN_RULES = PRESENCE_RULES | TYPE_RULES | LENGTH_RULES | BOUND_RULES | STRING_RULES


def _rule_number(raw: str | None) -> float | None:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    return int(value) if value.is_integer() else value


def _rule_pair(raw: str | None) -> tuple[float | None, float | None]:
    low, _, high = (raw or "").partition(",")
    return _rule_number(low), _rule_number(high)


def _rule_list(raw: str | None) -> list[str]:
    return [item.strip() for item in (raw or "").split(",") if item.strip()]


def _regex_rule(raw: str | None) -> str | None:
    """Accept ``regex:/body/flags`` or a bare pattern; flags are dropped."""
    text = (raw or "").strip()
    if text.startswith("/") and text.rfind("/") > 0:
        return text[1 : text.rfind("/")]
    return text or None


def _numeric_options(rules: list[tuple[str, str | None]]) -> dict[str, Any]:
    options: dict[str, Any] = {}
    for name, raw in rules:
        value = _rule_number(raw)
        match name:
            case "min" | "gte" if value is not None:
                options["minimum"] = value
            case "max" | "lte" if value is not None:
                options["maximum"] = value
            case "gt" if value is not None:
                options["exclusive_minimum"] = value
            case "lt" if value is not None:
                options["exclusive_maximum"] = value
            case "multiple_of" if value:
                options["multiple_of"] = value
            case "between":
                low, high = _rule_pair(raw)
                if low is not None:
                    options["minimum"] = low
                if high is not None:
                    options["maximum"] = high
    return options


def _string_options(rules: list[tuple[str, str | None]]) -> dict[str, Any]:
    options: dict[str, Any] = {}
    patterns: list[str] = []
    for name, raw in rules:
        value = _rule_number(raw)
        match name:
            case "min" if value is not None:
                options["min_length"] = int(value)
            case "max" if value is not None:
                options["max_length"] = int(value)
            case "size" | "len" | "length" if value is not None:
                options["min_length"] = options["max_length"] = int(value)
            case "between":
                low, high = _rule_pair(raw)
                if low is not None:
                    options["min_length"] = int(low)
                if high is not None:
                    options["max_length"] = int(high)
            case "regex":
                if pattern := _regex_rule(raw):
                    patterns.append(pattern)
            case "starts_with" if _rule_list(raw):
                patterns.append(f"^(?:{'|'.join(map(re.escape, _rule_list(raw)))})")
            case "ends_with" if _rule_list(raw):
                patterns.append(f"(?:{'|'.join(map(re.escape, _rule_list(raw)))})$")
            case "digits" if value is not None:
                patterns.append(rf"^\d{{{int(value)}}}$")
            case "digits_between":
                low, high = _rule_pair(raw)
                if low is not None and high is not None:
                    patterns.append(rf"^\d{{{int(low)},{int(high)}}}$")
            case _ if name in FORMAT_PATTERNS:
                patterns.append(FORMAT_PATTERNS[name])
    if patterns:
        options["patterns"] = tuple(patterns)
    return options


def parse_rule(rules: str, default: Any = None) -> Leaf:
    """Build a leaf from a pipe-separated rule string.

    Examples::

        parse_rule("required|string|min:3|max:10", "guest")   # 3..10 chars
        parse_rule("integer|between:1,65535", 8080)            # bounded int
        parse_rule("optional|in:debug,info,warn")              # enum

    ``in:`` wins over the type rules, then ``boolean``, ``integer``/``int``,
    ``number``/``numeric``; anything else is a string. For strings ``min`` and
    ``max`` bound the length, for numbers the value.

    Raises:
        ValueError: If a rule name is not recognised.
    """
    parsed = []
    for part in rules.split("|"):
        part = part.strip()
        if not part:
            continue
        name, sep, raw = part.partition(":")
        if name not in KNOWN_RULES:
            raise ValueError(f"Unknown rule '{name}' in '{rules}'")
        parsed.append((name, raw if sep else None))

    names = {name for name, _ in parsed}
    options: dict[str, Any] = {
        "default": default,
        "optional": bool(names & {"optional", "nullable"}),
    }

    enum_values = next((_rule_list(raw) for name, raw in parsed if name == "in"), None)
    if enum_values is not None:
        return Leaf("enum", values=tuple(enum_values), **options)
    if "boolean" in names:
        return Leaf("boolean", **options)
    if names & {"integer", "int"}:
        return Leaf("integer", **_numeric_options(parsed), **options)
    if names & {"number", "numeric"}:
        return Leaf("number", **_numeric_options(parsed), **options)

    kind = next((FORMAT_KINDS[name] for name, _ in parsed if name in FORMAT_KINDS), "string")
    return Leaf(kind, **_string_options(parsed), **options)


class SchemaFactory:
    """Builders for schema leaves. Exposed as ``kfg.c``."""

    def string(self, **options: Any) -> Leaf:
        return Leaf("string", **options)

    def number(self, **options: Any) -> Leaf:
        return Leaf("number", **options)

    def integer(self, **options: Any) -> Leaf:
        return Leaf("integer", **options)

    def boolean(self, **options: Any) -> Leaf:
        return Leaf("boolean", **options)

    def any(self, **options: Any) -> Leaf:
        return Leaf("any", **options)

    def object(self, properties: SchemaDefinition, **options: Any) -> Leaf:
        return Leaf("object", properties=properties, **options)

    def array(self, items: Leaf | None = None, **options: Any) -> Leaf:
        return Leaf("array", items=items, **options)

    def record(self, value_type: Leaf | None = None, **options: Any) -> Leaf:
        return Leaf("record", value_type=value_type, **options)

    def enum(self, values: Any, **options: Any) -> Leaf:
        """Union of literals from a list/tuple of values or an Enum class."""
        return Leaf("enum", values=_enum_values(values), **options)

    def ip(self, **options: Any) -> Leaf:
        return Leaf("ip", **options)

    def ipv6(self, **options: Any) -> Leaf:
        return Leaf("ipv6", **options)

    def email(self, **options: Any) -> Leaf:
        return Leaf("email", **options)

    def url(self, **options: Any) -> Leaf:
        return Leaf("url", **options)

    def optional(self, leaf: Leaf) -> Leaf:
        leaf.optional = True
        return leaf

    def rule(self, rules: str, default: Any = None) -> Leaf:
        """Declare a leaf from a rule string such as ``"required|string|min:3"``."""
        return parse_rule(rules, default)


c = SchemaFactory()
