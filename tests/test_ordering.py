"""Tests for foreign key dependency ordering."""

from structlog.testing import capture_logs

from metamodel.model import EntitySchema, ForeignKey
from metamodel.ordering import DependencyOrderer


def entity(name, *targets):
    return EntitySchema(
        class_name=name,
        table_name=name.lower(),
        foreign_keys=[
            ForeignKey(column=f"{t.lower()}_{i}_id", entity=t, table=t.lower(), display_name=t)
            for i, t in enumerate(targets)
        ],
    )


def entities(*schemas):
    return {s.class_name: s for s in schemas}


def names(ordered):
    return [e.class_name for e in ordered]


class TestDependencyOrderer:
    def test_chain(self):
        """Referenced entities come before the entities that reference them."""
        graph = entities(entity("C", "B"), entity("B", "A"), entity("A"))
        assert names(DependencyOrderer().order(graph)) == ["A", "B", "C"]

    def test_independent_entities_keep_declaration_order(self):
        graph = entities(entity("Z"), entity("Y"), entity("X"))
        assert names(DependencyOrderer().order(graph)) == ["Z", "Y", "X"]

    def test_self_reference_is_not_an_edge(self):
        graph = entities(entity("Part", "Part"), entity("Bin"))
        assert names(DependencyOrderer().order(graph)) == ["Part", "Bin"]

    def test_several_fks_to_one_target(self):
        """Two FKs into the same target both release when the target is emitted."""
        graph = entities(
            entity("Flight", "Airport", "Airport", "Aircraft"),
            entity("Airport"),
            entity("Aircraft"),
        )
        orderer = DependencyOrderer()
        assert orderer.dependencies(graph)["Flight"] == ["Airport", "Airport", "Aircraft"]
        assert names(orderer.order(graph)) == ["Airport", "Aircraft", "Flight"]

    def test_references_outside_the_set_are_ignored(self):
        graph = entities(entity("Bay", "Hangar"))
        assert names(DependencyOrderer().order(graph)) == ["Bay"]

    def test_cycle(self):
        """Entities in a cycle are left out and logged."""
        graph = entities(entity("A", "B"), entity("B", "A"), entity("C"), entity("D", "A"))
        with capture_logs() as logs:
            ordered, unordered = DependencyOrderer().order_with_cycles(graph)
        assert names(ordered) == ["C"]
        assert unordered == ["A", "B", "D"]
        assert logs == [
            {"event": "dependency_cycle", "entities": ["A", "B", "D"], "log_level": "warning"}
        ]

    def test_inverse_relationships(self):
        graph = entities(entity("Flight", "Airport", "Airport"), entity("Airport"))
        inverse = DependencyOrderer().inverse_relationships(graph)
        assert [(r.entity, r.column) for r in inverse["Airport"]] == [
            ("Flight", "airport_0_id"),
            ("Flight", "airport_1_id"),
        ]
        assert "Flight" not in inverse
