"""Schema declaration and validation for Kfg."""

from kfg.schema.fields import (
    Leaf,
    Relation,
    SchemaDefinition,
    SchemaFactory,
    c,
    schematic,
    walk_leaves,
)
from kfg.schema.validator import CompiledSchema, compile_schema, defaults

__all__ = [
    "CompiledSchema",
    "Leaf",
    "Relation",
    "SchemaDefinition",
    "SchemaFactory",
    "c",
    "compile_schema",
    "defaults",
    "schematic",
    "walk_leaves",
]
