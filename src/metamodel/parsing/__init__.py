"""Parsing module for entity documents, type documents and path expressions."""

from metamodel.parsing.annotations import parse_annotations, parse_type_annotations, strip_tags
from metamodel.parsing.entity_parser import (
    AttributeDefinition,
    EntityDefinition,
    EntityParser,
    parse_areas,
    parse_entity_document,
)
from metamodel.parsing.path_parser import (
    BackReference,
    ForwardPath,
    LabelExpression,
    PathParser,
)
from metamodel.parsing.types_parser import TypesDocumentParser, parse_types_document

__all__ = [
    "AttributeDefinition",
    "BackReference",
    "EntityDefinition",
    "EntityParser",
    "ForwardPath",
    "LabelExpression",
    "PathParser",
    "TypesDocumentParser",
    "parse_annotations",
    "parse_areas",
    "parse_entity_document",
    "parse_type_annotations",
    "parse_types_document",
    "strip_tags",
]
