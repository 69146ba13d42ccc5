"""Metamodel compiler - markdown entity models to schema graphs, DDL and view queries."""

from metamodel.compiler import SchemaCompiler
from metamodel.ddl import DDLGenerator
from metamodel.errors import (
    BackReferenceError,
    MetamodelError,
    PathResolutionError,
    SchemaCompileError,
    UnknownEntityError,
)
from metamodel.model import (
    Column,
    EntitySchema,
    ForeignKey,
    LabelFields,
    SchemaGraph,
)
from metamodel.ordering import DependencyOrderer
from metamodel.parsing import EntityParser, PathParser, TypesDocumentParser
from metamodel.resolver import AggregateMarker, PathResolution, PathResolver
from metamodel.schema import Schema
from metamodel.types import (
    AggregateTypeDefinition,
    EnumTypeDefinition,
    PatternTypeDefinition,
    TypeDefinition,
    TypeRegistry,
)
from metamodel.views import CompiledView, ViewCompiler, ViewDefinition

__all__ = [
    # Main API
    "Schema",
    "SchemaCompiler",
    "DependencyOrderer",
    "DDLGenerator",
    "PathResolver",
    "ViewCompiler",
    # Parsing
    "EntityParser",
    "TypesDocumentParser",
    "PathParser",
    # Model
    "Column",
    "EntitySchema",
    "ForeignKey",
    "LabelFields",
    "SchemaGraph",
    "PathResolution",
    "AggregateMarker",
    "ViewDefinition",
    "CompiledView",
    # Types
    "TypeDefinition",
    "EnumTypeDefinition",
    "PatternTypeDefinition",
    "AggregateTypeDefinition",
    "TypeRegistry",
    # Errors
    "MetamodelError",
    "SchemaCompileError",
    "UnknownEntityError",
    "PathResolutionError",
    "BackReferenceError",
]

__version__ = "0.1.0"
