"""Exceptions raised by the metamodel compiler."""

from __future__ import annotations


class MetamodelError(ValueError):
    """Base class for all compiler errors."""


class SchemaCompileError(MetamodelError):
    """An entity definition could not be compiled."""

    def __init__(self, entity: str, message: str) -> None:
        super().__init__(f"Entity '{entity}': {message}")
        self.entity = entity


class UnknownEntityError(SchemaCompileError):
    """A foreign key points at an entity outside the compiled set."""

    def __init__(self, entity: str, attribute: str, target: str) -> None:
        super().__init__(
            entity,
            f"attribute '{attribute}' references unknown entity '{target}'",
        )
        self.attribute = attribute
        self.target = target


class PathResolutionError(MetamodelError):
    """A path expression could not be resolved against the schema graph."""

    def __init__(self, message: str, expression: str, segment: str | None = None) -> None:
        super().__init__(f"{message} (path: \"{expression}\")")
        self.expression = expression
        self.segment = segment


class BackReferenceError(PathResolutionError):
    """A back-reference expression is inconsistent with the schema graph."""
