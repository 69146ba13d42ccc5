"""Parser for markdown entity documents and the data-model overview document.

An entity document looks like this:

    # Engine
    A turbofan engine installed on an aircraft. [LABEL=concat(type, '-', serial_number)]

    ## Attributes

    | Attribute | Type | Description | Example |
    |-----------|------|-------------|---------|
    | id | int | Primary key | 1 |
    | serial_number | string | Manufacturer serial [UNIQUE] | 888123 |
    | type | [EngineType](EngineType.md) | Engine model | 3 |
    | status | Status [DEFAULT=Active] | Operational status | Active |
    | removed_date | date | Removal date | null |

    ## Types
    ...

    ## Calculations
    ...
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

import structlog

from metamodel.parsing.annotations import parse_default, parse_type_annotations
from metamodel.parsing.markdown import extract_section, is_separator_row, table_cells
from metamodel.parsing.path_parser import LabelExpression, PathParser
from metamodel.parsing.types_parser import TypesDocumentParser
from metamodel.types import TypeDefinition

logger = structlog.get_logger(__name__)

_ENTITY_HEADING = re.compile(r"^#\s+(\w+)")
_ENTITY_LABEL = re.compile(r"\[LABEL=([^\]]+)\]", re.IGNORECASE)
_DEFAULT_TAG = re.compile(r"\s*\[DEFAULT=[^\]]+\]", re.IGNORECASE)
_AREA = re.compile(
    r"###\s+([^\n]+)\n<div[^>]*style=\"[^\"]*background-color:\s*(#[0-9A-Fa-f]{6})[^\"]*\"[^>]*>"
    r"(.*?)</div>",
    re.DOTALL,
)
_LINK_TEXT = re.compile(r"\[([^\]]+)\]")
_PASCAL_CASE = re.compile(r"^[A-Z][a-zA-Z0-9]*$")
_DEPENDS_ON = re.compile(r"^\*\*Depends on:\*\*\s*(.+)$", re.IGNORECASE)
_SORT = re.compile(r"^\*\*Sort:\*\*\s*(.+)$", re.IGNORECASE)


@dataclass
class CalculatedDefinition:
    """Client-side formula attached to a [CALCULATED] column."""

    code: str = ""
    depends: list[str] = field(default_factory=list)
    sort: list[str] = field(default_factory=list)


@dataclass
class Area:
    """A named group of entities with a display colour."""

    key: str
    name: str
    color: str


@dataclass
class AttributeDefinition:
    """One row of an attribute table, before type resolution."""

    name: str
    type_name: str
    description: str = ""
    example: str | None = None
    explicit_default: str | None = None
    optional: bool = False


@dataclass
class EntityDefinition:
    """Structural record of one entity document."""

    name: str
    description: str = ""
    attributes: list[AttributeDefinition] = field(default_factory=list)
    local_types: list[TypeDefinition] = field(default_factory=list)
    calculations: dict[str, CalculatedDefinition] = field(default_factory=dict)
    label_expression: LabelExpression | None = None
    area: str | None = None


def _split_list(text: str) -> list[str]:
    return [item.strip() for item in text.split(",") if item.strip()]


def area_key(name: str) -> str:
    """'Fleet & Engines' -> 'fleet_and_engines'."""
    return name.lower().replace(" ", "_").replace("&", "and")


class EntityParser:
    """Parses entity documents into EntityDefinition records."""

    def __init__(self) -> None:
        self._label_parser: PathParser | None = None
        self._types_parser = TypesDocumentParser()

    def parse(self, text: str) -> EntityDefinition | None:
        """Parse one entity document.

        Returns None (and logs) when the document has no '# Name' heading.
        """
        lines = text.splitlines()
        first = next((line for line in lines if line.strip()), "")
        match = _ENTITY_HEADING.match(first.strip())
        if not match:
            logger.warning("entity_heading_missing", first_line=first.strip())
            return None

        name = match.group(1)
        start = lines.index(first) + 1

        description_lines: list[str] = []
        index = start
        while index < len(lines):
            stripped = lines[index].strip()
            if stripped.startswith("|") or stripped.startswith("## "):
                break
            if stripped:
                description_lines.append(stripped)
            index += 1
        description = " ".join(description_lines)

        entity = EntityDefinition(name=name)
        entity.description, entity.label_expression = self._split_label(name, description)
        entity.attributes = self._parse_attribute_table(name, lines[index:])

        types_section = extract_section(text, "Types")
        if types_section is not None:
            entity.local_types = self._types_parser.parse(types_section)

        calculations_section = extract_section(text, "Calculations")
        if calculations_section is not None:
            entity.calculations = parse_calculations(calculations_section)

        return entity

    def parse_entity_descriptions(self, text: str) -> list[EntityDefinition]:
        """Parse the legacy '## Entity Descriptions' section of a data-model document.

        Each '### Entity' block holds a description and an attribute table.
        """
        section = extract_section(text, "Entity Descriptions")
        if section is None:
            return []

        entities = []
        blocks = re.split(r"^###\s+", section, flags=re.MULTILINE)
        for block in blocks[1:]:
            block_lines = block.strip().splitlines()
            if not block_lines:
                continue
            name = block_lines[0].strip()

            description_lines: list[str] = []
            index = 1
            while index < len(block_lines) and not block_lines[index].strip().startswith("|"):
                if block_lines[index].strip():
                    description_lines.append(block_lines[index].strip())
                index += 1

            description, label_expression = self._split_label(name, " ".join(description_lines))
            entities.append(
                EntityDefinition(
                    name=name,
                    description=description,
                    attributes=self._parse_attribute_table(name, block_lines[index:]),
                    label_expression=label_expression,
                )
            )
        return entities

    def _split_label(self, entity: str, description: str) -> tuple[str, LabelExpression | None]:
        match = _ENTITY_LABEL.search(description)
        if not match:
            return description, None

        description = _ENTITY_LABEL.sub("", description).strip()
        if self._label_parser is None:
            self._label_parser = PathParser()
        try:
            return description, self._label_parser.parse_label(match.group(1).strip())
        except SyntaxError as e:
            logger.warning(
                "label_expression_invalid",
                entity=entity,
                expression=match.group(1),
                error=str(e),
            )
            return description, None

    def _parse_attribute_table(self, entity: str, lines: list[str]) -> list[AttributeDefinition]:
        attributes: list[AttributeDefinition] = []
        in_attributes_section = False
        in_table = False

        for raw in lines:
            line = raw.strip()

            if line.startswith("## "):
                if line == "## Attributes":
                    in_attributes_section = True
                    continue
                if in_attributes_section or in_table:
                    break
                continue

            if not line.startswith("|"):
                continue

            if not in_table and "Attribute" in line and "Type" in line:
                in_table = True
                continue

            if not in_table or is_separator_row(line):
                continue

            cells = table_cells(line)
            if len(cells) < 3:
                logger.warning("attribute_row_malformed", entity=entity, row=line)
                continue

            type_info = parse_type_annotations(cells[1])
            description = cells[2]
            explicit_default = type_info.default
            if explicit_default is None:
                explicit_default = parse_default(description)
                if explicit_default is not None:
                    description = _DEFAULT_TAG.sub("", description, count=1).strip()

            attributes.append(
                AttributeDefinition(
                    name=cells[0],
                    type_name=type_info.type_name,
                    description=description,
                    example=cells[3] if len(cells) >= 4 else None,
                    explicit_default=explicit_default,
                    optional=type_info.optional,
                )
            )

        return attributes


def parse_calculations(section: str) -> dict[str, CalculatedDefinition]:
    """Parse the body of a '## Calculations' section.

    Each '### field' block may hold '**Depends on:**' and '**Sort:**' lines and
    a fenced js code block.
    """
    result: dict[str, CalculatedDefinition] = {}
    current: CalculatedDefinition | None = None
    code_lines: list[str] | None = None

    for raw in section.splitlines():
        line = raw.strip()

        if code_lines is not None:
            if line == "```":
                if current is not None:
                    current.code = "\n".join(code_lines).strip()
                code_lines = None
            else:
                code_lines.append(raw)
            continue

        if line.startswith("### "):
            current = CalculatedDefinition()
            result[line[4:].strip()] = current
            continue

        if current is None:
            continue

        match = _DEPENDS_ON.match(line)
        if match:
            current.depends = _split_list(match.group(1))
            continue

        match = _SORT.match(line)
        if match:
            current.sort = _split_list(match.group(1))
            continue

        if line in ("```js", "```javascript"):
            code_lines = []

    return result


def parse_areas(text: str) -> tuple[dict[str, Area], dict[str, str]]:
    """Parse area blocks from a data-model document.

    An area is a '### Name' heading followed by a coloured <div> holding an
    entity table. Returns the areas by key and a map of entity name to area key.
    """
    areas: dict[str, Area] = {}
    entity_areas: dict[str, str] = {}

    for match in _AREA.finditer(text):
        name = match.group(1).strip()
        key = area_key(name)
        areas[key] = Area(key=key, name=name, color=match.group(2))

        for line in match.group(3).splitlines():
            cells = table_cells(line)
            if len(cells) < 2 or is_separator_row(line):
                continue
            if "Entity" in cells and "Description" in cells:
                continue
            entity_name = cells[0]
            link = _LINK_TEXT.search(entity_name)
            if link:
                entity_name = link.group(1).strip()
            if _PASCAL_CASE.match(entity_name):
                entity_areas[entity_name] = key

    return areas, entity_areas


def parse_entity_document(text: str) -> EntityDefinition | None:
    """Parse one entity document."""
    return EntityParser().parse(text)
