"""Shared fixtures: a small fleet-management model and a library model."""

from __future__ import annotations

import pytest

from metamodel import Schema
from metamodel.resolver import PathResolver

TYPES_DOCUMENT = """\
# Types

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

### BookGenre
| Internal | External | Description |
|----------|----------|-------------|
| 1 | Fiction | Novels and stories |
| 2 | Science | Non-fiction science |

## Aggregate Types

### Address
| Field | Type | Description |
|-------|------|-------------|
| street | string | Street and number |
| city | string | City |

### GeoPosition
| Field | Type | Required | Description |
|-------|------|----------|-------------|
| latitude | float | yes | Degrees north |
| longitude | float | yes | Degrees east |
"""

MANUFACTURER = """\
# Manufacturer
An engine or airframe manufacturer.

## Attributes

| Attribute | Type | Description | Example |
|-----------|------|-------------|---------|
| id | int | Primary key | 1 |
| name | string | Company name [LABEL] [UNIQUE] | CFM International |
| country | string | Country of origin | France |
| address | Address | Head office | |
| parent | Manufacturer | Parent company | null |
"""

ENGINE_TYPE = """\
# EngineType
An engine model.

## Attributes

| Attribute | Type | Description | Example |
|-----------|------|-------------|---------|
| id | int | Primary key | 1 |
| designation | string | Model designation [LABEL] | CFM56-5B |
| manufacturer | [Manufacturer](Manufacturer.md) | Builder of the engine | 1 |
| thrust | int [OPTIONAL] | Rated thrust in kN | 120 |
"""

ENGINE = """\
# Engine
A turbofan engine.
[LABEL=concat(type, '-', serial_number)]

## Attributes

| Attribute | Type | Description | Example |
|-----------|------|-------------|---------|
| id | int | Primary key | 1 |
| serial_number | string | Manufacturer serial number [UNIQUE] | 888123 |
| type | EngineType | Engine model | 3 |
| status | Status [DEFAULT=Active] | Operational status | Active |
| total_cycles | int | Accumulated cycles [READONLY] | 1200 |
| cycle_limit | int | Certified cycle limit | 20000 |
| remaining_cycles | int | Cycles left before overhaul [CALCULATED] | 18800 |
| installed_date | date | Date of installation | null |

## Calculations

### remaining_cycles
**Depends on:** total_cycles, cycle_limit

```js
return cycle_limit - total_cycles;
```
"""

AIRCRAFT = """\
# Aircraft
A registered aircraft.

## Attributes

| Attribute | Type | Description | Example |
|-----------|------|-------------|---------|
| id | int | Primary key | 1 |
| registration | [TailSign](Types.md#tailsign) | Registration mark [LABEL] [UNIQUE] | D-AIAB |
| msn | int | Manufacturer serial number [UK1] | 1234 |
| manufacturer | Manufacturer | Airframe builder [UK1] | 1 |
| variant | Variant | Airframe variant | A320 |
| position | GeoPosition | Last known position | |

## Types

### Variant
| Internal | External | Description |
|----------|----------|-------------|
| A320 | A320 | Standard fuselage |
| A321 | A321 | Stretched fuselage |
"""

ALLOCATION = """\
# Allocation
Installation of an engine on an aircraft.

## Attributes

| Attribute | Type | Description | Example |
|-----------|------|-------------|---------|
| id | int | Primary key | 1 |
| reference | string | Work order reference [LABEL] | WO-1001 |
| engine | Engine | Installed engine [IX1] | 1 |
| aircraft | Aircraft | Carrying aircraft | 1 |
| mount_position | int | Mount position on the wing [IX1] | 1 |
| start_date | date | Installation date [INDEX] | 2024-01-01 |
| end_date | date | Removal date | null |
"""

DATA_MODEL = """\
# Fleet Data Model

### Fleet Assets
<div style="background-color: #e0f0ff">

| Entity | Description |
|--------|-------------|
| [Aircraft](Aircraft.md) | Registered aircraft |
| [Engine](Engine.md) | Engines |
| Allocation | Engine installations |

</div>

### Reference Data
<div style="background-color: #fff4e0">

| Entity | Description |
|--------|-------------|
| Manufacturer | Builders |
| EngineType | Engine models |

</div>
"""

# Listed in reverse dependency order on purpose
FLEET_DOCUMENTS = (ALLOCATION, AIRCRAFT, ENGINE, ENGINE_TYPE, MANUFACTURER)

BOOK = """\
# Book
A book in the library.

| Attribute | Type | Description | Example |
|-----------|------|-------------|---------|
| id | int | Primary key | 1 |
| title | string | Book title [LABEL] | Dune |
| isbn | string | ISBN [UNIQUE] | 978-0441013593 |
| genre | BookGenre | Genre | Fiction |
"""


@pytest.fixture
def fleet() -> Schema:
    return Schema.parse(DATA_MODEL, FLEET_DOCUMENTS, TYPES_DOCUMENT)


@pytest.fixture
def graph(fleet):
    return fleet.graph


@pytest.fixture
def resolver(graph) -> PathResolver:
    return PathResolver(graph)


@pytest.fixture
def library() -> Schema:
    return Schema.parse("", [BOOK], TYPES_DOCUMENT)
