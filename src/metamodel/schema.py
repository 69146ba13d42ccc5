"""Schema class tying parsing, compilation and SQL generation together."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from metamodel.compiler import SchemaCompiler
from metamodel.ddl import DDLGenerator
from metamodel.model import EntitySchema, SchemaGraph
from metamodel.parsing import EntityParser, TypesDocumentParser, parse_areas
from metamodel.parsing.entity_parser import EntityDefinition
from metamodel.resolver import AggregateMarker, PathResolution, PathResolver
from metamodel.types import TypeRegistry
from metamodel.views import CompiledView, ViewCompiler, ViewDefinition


class Schema:
    """A compiled metamodel with its type registry."""

    def __init__(self, graph: SchemaGraph, registry: TypeRegistry) -> None:
        """Initialize a schema.

        Args:
            graph: The compiled schema graph.
            registry: Type registry the graph was compiled with.
        """
        self.graph = graph
        self.registry = registry
        self._resolver: PathResolver | None = None

    @classmethod
    def parse(
        cls,
        data_model: str = "",
        entity_documents: Iterable[str] = (),
        types_document: str | None = None,
        enabled_entities: Iterable[str] | None = None,
    ) -> Schema:
        """Parse markdown documents and compile a schema.

        Args:
            data_model: Data-model overview document holding the areas and,
                optionally, a legacy '## Entity Descriptions' section.
            entity_documents: One markdown document per entity. An entity
                document takes precedence over a legacy description of the
                same entity.
            types_document: Global type document.
            enabled_entities: If given, only these entities are compiled.

        Returns:
            A new Schema instance.
        """
        registry = TypeRegistry()
        if types_document:
            TypesDocumentParser().parse_into(types_document, registry)

        parser = EntityParser()
        definitions: dict[str, EntityDefinition] = {}
        for definition in parser.parse_entity_descriptions(data_model):
            definitions[definition.name] = definition
        for document in entity_documents:
            definition = parser.parse(document)
            if definition is not None:
                definitions[definition.name] = definition

        areas, entity_areas = parse_areas(data_model)

        compiler = SchemaCompiler(registry)
        graph = compiler.compile(
            list(definitions.values()),
            areas=areas,
            entity_areas=entity_areas,
            enabled_entities=enabled_entities,
        )
        return cls(graph, registry)

    @property
    def resolver(self) -> PathResolver:
        if self._resolver is None:
            self._resolver = PathResolver(self.graph)
        return self._resolver

    def get_entity(self, name: str) -> EntitySchema:
        """Get a compiled entity by name.

        Raises:
            KeyError: If the entity is not found.
        """
        entity = self.graph.get_entity(name)
        if entity is None:
            raise KeyError(f"Unknown entity: {name}")
        return entity

    def list_entities(self) -> list[str]:
        """List entity names in dependency order, followed by any left out by a cycle."""
        return [e.class_name for e in self.graph.ordered_entities] + list(self.graph.unordered)

    def ddl(self) -> list[str]:
        """Render the base schema: tables and indexes in dependency order, then views."""
        return DDLGenerator(self.graph.entities).generate(self.graph)

    def resolve(self, expression: str, base: str) -> PathResolution | AggregateMarker:
        """Resolve a path expression relative to a base entity."""
        return self.resolver.resolve(expression, base)

    def compile_views(
        self, definitions: Iterable[ViewDefinition | Mapping[str, Any] | str]
    ) -> list[CompiledView]:
        """Compile user view definitions against this schema."""
        return ViewCompiler(self.graph, self.resolver).compile(definitions)
