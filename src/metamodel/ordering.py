"""Dependency ordering of entities by foreign key."""

from __future__ import annotations

from collections import deque
from collections.abc import Mapping

import structlog

from metamodel.model import EntitySchema, InverseRelationship

logger = structlog.get_logger(__name__)


class DependencyOrderer:
    """Orders entities so every table is created after the tables it references.

    Uses Kahn's algorithm over the foreign key graph. Self-references are not
    edges. An entity with several foreign keys into the same target carries
    one in-degree unit per foreign key, and each unit is released when the
    target is emitted.
    """

    def dependencies(self, entities: Mapping[str, EntitySchema]) -> dict[str, list[str]]:
        """Entity name -> names it depends on, one entry per foreign key."""
        deps: dict[str, list[str]] = {}
        for name, entity in entities.items():
            deps[name] = [
                fk.entity
                for fk in entity.foreign_keys
                if fk.entity != name and fk.entity in entities
            ]
        return deps

    def order_with_cycles(
        self, entities: Mapping[str, EntitySchema]
    ) -> tuple[list[EntitySchema], list[str]]:
        """Return (ordered entities, names of entities left out by a cycle)."""
        deps = self.dependencies(entities)
        in_degree = {name: len(targets) for name, targets in deps.items()}

        queue = deque(name for name, degree in in_degree.items() if degree == 0)
        emitted: list[str] = []
        seen: set[str] = set(queue)

        while queue:
            node = queue.popleft()
            emitted.append(node)
            for name, targets in deps.items():
                count = targets.count(node)
                if count == 0:
                    continue
                in_degree[name] -= count
                if in_degree[name] == 0 and name not in seen:
                    seen.add(name)
                    queue.append(name)

        unordered = [name for name in entities if name not in seen]
        if unordered:
            logger.warning("dependency_cycle", entities=unordered)

        return [entities[name] for name in emitted], unordered

    def order(self, entities: Mapping[str, EntitySchema]) -> list[EntitySchema]:
        """Return entities in a safe creation order.

        Entities caught in a cycle through non-self foreign keys are left out;
        use order_with_cycles() to see which.
        """
        ordered, _ = self.order_with_cycles(entities)
        return ordered

    def inverse_relationships(
        self, entities: Mapping[str, EntitySchema]
    ) -> dict[str, list[InverseRelationship]]:
        """Target entity -> the child columns that reference it."""
        inverse: dict[str, list[InverseRelationship]] = {}
        for entity in entities.values():
            for fk in entity.foreign_keys:
                inverse.setdefault(fk.entity, []).append(
                    InverseRelationship(entity=entity.class_name, column=fk.column)
                )
        return inverse
