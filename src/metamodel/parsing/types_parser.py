"""Parser for markdown type documents.

A type document (the global types file, or the ``## Types`` section of an
entity document) defines pattern, enum and aggregate types as tables:

    ## Pattern Types

    ### TailSign
    Aircraft registration mark
    | Pattern | Example |
    |---------|---------|
    | `^[A-Z]-[A-Z]{4}$` | D-AIAB |

    ## Enum Types

    ### Status
    | Internal | External | Description |
    |----------|----------|-------------|
    | 1 | Active | In service |
    | 2 | Retired | Out of service |

    ## Aggregate Types

    ### Address
    | Field | Type | Description |
    |-------|------|-------------|
    | street | string | Street and number |
    | city | string | City |

The table layout, not the section, decides the kind of a ``### Name`` block,
so an Internal/External table is an enum wherever it appears. Two flat
layouts without ``### Name`` headings are also accepted: a
``| Type | Pattern | Description | Example |`` table of patterns and a
``| Type | Internal | External | Description |`` table of inline enums.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from metamodel.parsing.markdown import is_separator_row, strip_backticks, table_cells
from metamodel.types import (
    STRING,
    AggregateField,
    AggregateTypeDefinition,
    EnumTypeDefinition,
    EnumValue,
    PatternTypeDefinition,
    TypeDefinition,
    TypeRegistry,
    builtin_type,
)

logger = structlog.get_logger(__name__)

_HEADER_WORDS = {"type", "pattern", "internal", "external", "field"}


def _enum_internal(value: str) -> int | str:
    try:
        return int(value)
    except ValueError:
        return value


@dataclass
class _Block:
    """Accumulator for one '### Name' block."""

    name: str
    description: str = ""
    enum_values: list[EnumValue] = field(default_factory=list)
    aggregate_fields: list[AggregateField] = field(default_factory=list)


class TypesDocumentParser:
    """Turns markdown type tables into type definitions."""

    def __init__(self) -> None:
        self._types: dict[str, TypeDefinition] = {}
        self._inline_enums: dict[str, list[EnumValue]] = {}
        self._section: str | None = None
        self._block: _Block | None = None
        self._headers: list[str] = []

    def parse(self, text: str) -> list[TypeDefinition]:
        """Parse a type document and return its definitions in document order."""
        self._types = {}
        self._inline_enums = {}
        self._section = None
        self._block = None
        self._headers = []

        for raw in text.splitlines():
            line = raw.strip()

            if line.startswith("## "):
                self._flush_block()
                self._flush_inline_enums()
                heading = line[3:].strip().lower()
                if heading.startswith("pattern"):
                    self._section = "pattern"
                elif heading.startswith("enum"):
                    self._section = "enum"
                elif heading.startswith("aggregate"):
                    self._section = "aggregate"
                else:
                    self._section = None
                self._headers = []
                continue

            if line.startswith("### "):
                self._flush_block()
                self._block = _Block(name=line[4:].strip())
                self._headers = []
                continue

            if not line.startswith("|"):
                self._headers = []
                if line and self._block is not None and not line.startswith("#"):
                    self._block.description = line
                continue

            if is_separator_row(line):
                continue

            cells = table_cells(line)
            if not self._headers:
                lowered = [cell.lower() for cell in cells]
                if _HEADER_WORDS.intersection(lowered):
                    self._headers = lowered
                continue

            self._parse_row(cells)

        self._flush_block()
        self._flush_inline_enums()
        return list(self._types.values())

    def parse_into(
        self, text: str, registry: TypeRegistry, scope: str | None = None
    ) -> list[TypeDefinition]:
        """Parse a type document and register every definition under a scope."""
        type_defs = self.parse(text)
        registry.register_all(type_defs, scope)
        return type_defs

    def _cell(self, cells: list[str], header: str) -> str:
        if header not in self._headers:
            return ""
        index = self._headers.index(header)
        return cells[index] if index < len(cells) else ""

    def _parse_row(self, cells: list[str]) -> None:
        headers = self._headers
        block = self._block

        if block is not None and "internal" in headers and "external" in headers:
            internal = self._cell(cells, "internal")
            if internal:
                block.enum_values.append(
                    EnumValue(
                        internal=_enum_internal(internal),
                        external=self._cell(cells, "external"),
                        description=self._cell(cells, "description"),
                    )
                )
            return

        if "type" in headers and "internal" in headers and "external" in headers:
            type_name = self._cell(cells, "type")
            internal = self._cell(cells, "internal")
            if type_name and internal:
                self._inline_enums.setdefault(type_name, []).append(
                    EnumValue(
                        internal=_enum_internal(internal),
                        external=self._cell(cells, "external"),
                        description=self._cell(cells, "description"),
                    )
                )
            return

        if self._section == "pattern" and "pattern" in headers:
            pattern = strip_backticks(self._cell(cells, "pattern"))
            if not pattern:
                return
            if block is not None and "type" not in headers:
                name, description = block.name, block.description
            else:
                name = self._cell(cells, "type")
                description = self._cell(cells, "description")
            if name:
                self._types[name] = PatternTypeDefinition(
                    name=name,
                    description=description,
                    pattern=pattern,
                    example=self._cell(cells, "example"),
                )
            return

        if block is not None and "field" in headers and "type" in headers:
            field_name = self._cell(cells, "field")
            type_name = self._cell(cells, "type") or STRING
            if not field_name:
                return
            builtin = builtin_type(type_name)
            required = self._cell(cells, "required").lower() in ("yes", "true", "x", "1")
            block.aggregate_fields.append(
                AggregateField(
                    name=field_name,
                    type_name=type_name,
                    sql_type=builtin.sql_type if builtin else "TEXT",
                    result_type=builtin.result_type if builtin else STRING,
                    required=required,
                    description=self._cell(cells, "description"),
                )
            )
            return

        logger.debug("type_row_skipped", cells=cells, section=self._section)

    def _flush_block(self) -> None:
        block = self._block
        self._block = None
        if block is None:
            return
        if block.enum_values:
            self._types[block.name] = EnumTypeDefinition(
                name=block.name, description=block.description, values=block.enum_values
            )
        elif block.aggregate_fields:
            self._types[block.name] = AggregateTypeDefinition(
                name=block.name,
                description=block.description,
                fields=block.aggregate_fields,
            )

    def _flush_inline_enums(self) -> None:
        for name, values in self._inline_enums.items():
            self._types[name] = EnumTypeDefinition(name=name, values=values)
        self._inline_enums = {}


def parse_types_document(text: str) -> list[TypeDefinition]:
    """Parse a markdown type document."""
    return TypesDocumentParser().parse(text)
