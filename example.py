"""Example usage of the metamodel library."""

from metamodel import Schema

# Global types shared by every entity
types = """
## Enum Types

### Status
| Internal | External | Description |
|----------|----------|-------------|
| 1 | Active | In service |
| 2 | Retired | Out of service |
"""

# One markdown document per entity
engine_type = """
# EngineType
An engine model.

| Attribute | Type | Description | Example |
|-----------|------|-------------|---------|
| id | int | Primary key | 1 |
| designation | string | Model designation [LABEL] | CFM56-5B |
"""

engine = """
# Engine
A turbofan engine.
[LABEL=concat(type, '-', serial_number)]

| Attribute | Type | Description | Example |
|-----------|------|-------------|---------|
| id | int | Primary key | 1 |
| serial_number | string | Serial number [UNIQUE] | 888123 |
| type | EngineType | Engine model | 1 |
| status | Status [DEFAULT=Active] | Operational status | Active |
"""

allocation = """
# Allocation
Installation of an engine on an aircraft.

| Attribute | Type | Description | Example |
|-----------|------|-------------|---------|
| id | int | Primary key | 1 |
| reference | string | Work order [LABEL] | WO-1001 |
| engine | Engine | Installed engine | 1 |
| start_date | date | Installation date [INDEX] | 2024-01-01 |
| end_date | date | Removal date | null |
"""

schema = Schema.parse(entity_documents=[allocation, engine, engine_type], types_document=types)

print("Entities in creation order:")
for name in schema.list_entities():
    print(f"  {name}")

print("\nBase schema:")
for statement in schema.ddl():
    print(statement)
    print()

print("Path expressions on Engine:")
for expression in ("type", "Allocation<engine(COUNT)", "Allocation<engine(LIST).reference"):
    result = schema.resolve(expression, "Engine")
    print(f"  {expression}")
    print(f"    -> {result.select_expression}")

views = schema.compile_views(
    [
        "-------- Fleet",
        {
            "name": "Engine Overview",
            "base": "Engine",
            "columns": [
                "serial_number",
                "type AS Model",
                "Allocation<engine(WHERE end_date=null).reference AS Current Work Order",
                "Allocation<engine(COUNT) AS Installations",
            ],
            "sort": "serial_number",
        },
    ]
)

print("\nUser views:")
for view in views:
    print(f"[{view.group}] {view.name}")
    print(view.to_sql())
