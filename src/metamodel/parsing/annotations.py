"""Bracket-tag annotations embedded in attribute descriptions and type strings.

Each family of tags has its own matcher. Matchers are independent of one
another and of tag order, and each returns None (or a default-valued record)
when none of its tags are present.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field

_UNIQUE = re.compile(r"\[UNIQUE\]", re.IGNORECASE)
_UNIQUE_KEY = re.compile(r"\[UK(\d+)\]", re.IGNORECASE)
_INDEX = re.compile(r"\[INDEX\]", re.IGNORECASE)
_INDEX_KEY = re.compile(r"\[IX(\d+)\]", re.IGNORECASE)

_LABEL = re.compile(r"\[LABEL\]", re.IGNORECASE)
_LABEL2 = re.compile(r"\[LABEL2\]", re.IGNORECASE)
_READONLY = re.compile(r"\[READONLY\]", re.IGNORECASE)
_HIDDEN = re.compile(r"\[HIDDEN\]", re.IGNORECASE)
_DETAIL = re.compile(r"\[DETAIL\]", re.IGNORECASE)
_NOWRAP = re.compile(r"\[NOWRAP\]", re.IGNORECASE)
_TRUNCATE = re.compile(r"\[TRUNCATE=(\d+)\]", re.IGNORECASE)

_SIZE = re.compile(r"\[(?:MAX)?SIZE=(\d+(?:\.\d+)?)\s*(B|KB|MB|GB)?\]", re.IGNORECASE)
_DIMENSION = re.compile(r"\[DIMENSION=(\d+)x(\d+)\]", re.IGNORECASE)
_MAX_WIDTH = re.compile(r"\[MAXWIDTH=(\d+)\]", re.IGNORECASE)
_MAX_HEIGHT = re.compile(r"\[MAXHEIGHT=(\d+)\]", re.IGNORECASE)
_DURATION = re.compile(r"\[(?:MAX)?DURATION=(\d+(?:\.\d+)?)\s*(sec|min|h)?\]", re.IGNORECASE)

_COMPUTED = re.compile(
    r"\[(DAILY|IMMEDIATE|HOURLY|ON_DEMAND|ONCHANGE)=(\w+)\[([^\]]+)\]\.(\w+)\]",
    re.IGNORECASE,
)
_COMPUTED_AGGREGATE = re.compile(r"^(MAX|MIN)\((\w+)\)$", re.IGNORECASE)
_CALCULATED = re.compile(r"\[CALCULATED\]", re.IGNORECASE)

_DEFAULT = re.compile(r"\[DEFAULT=([^\]]+)\]", re.IGNORECASE)
_OPTIONAL = re.compile(r"\[OPTIONAL\]", re.IGNORECASE)

_MARKDOWN_LINK = re.compile(r"^\[([^\]]+)\]\([^)]+\)$")

_KNOWN_TAGS = (
    _UNIQUE, _UNIQUE_KEY, _INDEX, _INDEX_KEY,
    _LABEL, _LABEL2, _READONLY, _HIDDEN, _DETAIL, _NOWRAP, _TRUNCATE,
    _SIZE, _DIMENSION, _MAX_WIDTH, _MAX_HEIGHT, _DURATION,
    _COMPUTED, _CALCULATED, _DEFAULT, _OPTIONAL,
)

SIZE_MULTIPLIERS = {"B": 1, "KB": 1024, "MB": 1024 ** 2, "GB": 1024 ** 3}
DURATION_MULTIPLIERS = {"sec": 1, "min": 60, "h": 3600}


@dataclass
class Constraints:
    """Unique and index annotations of a single attribute."""

    unique: bool = False
    unique_key: str | None = None  # "UK1", "UK2", ...
    index: bool = False
    index_key: str | None = None  # "IX1", "IX2", ...


@dataclass
class UIFlags:
    """UI annotations of a single attribute."""

    label: bool = False
    label2: bool = False
    readonly: bool = False
    hidden: bool = False
    detail: bool = False
    nowrap: bool = False
    truncate: int | None = None


@dataclass
class MediaConstraints:
    """Size and dimension limits for media attributes."""

    max_size: int | None = None  # bytes
    max_width: int | None = None
    max_height: int | None = None
    max_duration: int | None = None  # seconds


@dataclass
class ComputedRule:
    """Server-computed field: [SCHEDULE=Entity[condition].field]."""

    schedule: str
    source_entity: str
    condition: str | None
    target_field: str
    aggregate: str | None = None  # MAX or MIN
    aggregate_field: str | None = None


@dataclass
class TypeAnnotations:
    """Tags found in the Type column of an attribute table."""

    type_name: str
    default: str | None = None
    optional: bool = False


@dataclass
class FieldAnnotations:
    """All description-level annotations of one attribute."""

    constraints: Constraints = field(default_factory=Constraints)
    ui: UIFlags | None = None
    media: MediaConstraints | None = None
    computed: ComputedRule | None = None
    calculated: bool = False


def parse_constraints(text: str) -> Constraints:
    """Parse [UNIQUE], [UKn], [INDEX] and [IXn]."""
    constraints = Constraints()
    constraints.unique = _UNIQUE.search(text) is not None
    match = _UNIQUE_KEY.search(text)
    if match:
        constraints.unique_key = f"UK{match.group(1)}"
    constraints.index = _INDEX.search(text) is not None
    match = _INDEX_KEY.search(text)
    if match:
        constraints.index_key = f"IX{match.group(1)}"
    return constraints


def parse_ui_flags(text: str) -> UIFlags | None:
    """Parse [LABEL], [LABEL2], [READONLY], [HIDDEN], [DETAIL], [NOWRAP], [TRUNCATE=n]."""
    flags = UIFlags(
        label=_LABEL.search(text) is not None,
        label2=_LABEL2.search(text) is not None,
        readonly=_READONLY.search(text) is not None,
        hidden=_HIDDEN.search(text) is not None,
        detail=_DETAIL.search(text) is not None,
        nowrap=_NOWRAP.search(text) is not None,
    )
    match = _TRUNCATE.search(text)
    if match:
        flags.truncate = int(match.group(1))
    if flags == UIFlags():
        return None
    return flags


def parse_media(text: str) -> MediaConstraints | None:
    """Parse [SIZE=..], [DIMENSION=WxH], [MAXWIDTH=..], [MAXHEIGHT=..], [DURATION=..]."""
    media = MediaConstraints()

    match = _SIZE.search(text)
    if match:
        unit = (match.group(2) or "B").upper()
        media.max_size = math.floor(float(match.group(1)) * SIZE_MULTIPLIERS[unit])

    match = _DIMENSION.search(text)
    if match:
        media.max_width = int(match.group(1))
        media.max_height = int(match.group(2))

    match = _MAX_WIDTH.search(text)
    if match:
        media.max_width = int(match.group(1))

    match = _MAX_HEIGHT.search(text)
    if match:
        media.max_height = int(match.group(1))

    match = _DURATION.search(text)
    if match:
        unit = (match.group(2) or "sec").lower()
        media.max_duration = math.floor(float(match.group(1)) * DURATION_MULTIPLIERS[unit])

    if media == MediaConstraints():
        return None
    return media


def parse_computed(text: str) -> ComputedRule | None:
    """Parse [DAILY=Entity[condition].field] and its sibling schedules.

    The condition is either a boolean filter or MAX(field)/MIN(field), in
    which case the rule carries an aggregate and no filter.
    """
    match = _COMPUTED.search(text)
    if not match:
        return None

    rule = ComputedRule(
        schedule=match.group(1).upper(),
        source_entity=match.group(2),
        condition=match.group(3),
        target_field=match.group(4),
    )
    aggregate = _COMPUTED_AGGREGATE.match(match.group(3).strip())
    if aggregate:
        rule.aggregate = aggregate.group(1).upper()
        rule.aggregate_field = aggregate.group(2)
        rule.condition = None
    return rule


def parse_calculated(text: str) -> bool:
    return _CALCULATED.search(text) is not None


def parse_default(text: str) -> str | None:
    match = _DEFAULT.search(text)
    return match.group(1).strip() if match else None


def extract_type_name(type_str: str) -> str:
    """Reduce a markdown link like '[TailSign](../Types.md#tailsign)' to 'TailSign'."""
    type_str = type_str.strip()
    match = _MARKDOWN_LINK.match(type_str)
    if match:
        return match.group(1).strip()
    return type_str


def parse_type_annotations(type_str: str) -> TypeAnnotations:
    """Split a Type cell into type name, [DEFAULT=x] and [OPTIONAL].

    A default implies the attribute is optional.
    """
    remaining = type_str
    default = None
    optional = False

    match = _DEFAULT.search(remaining)
    if match:
        default = match.group(1).strip()
        remaining = _DEFAULT.sub("", remaining, count=1)
        optional = True

    if _OPTIONAL.search(remaining):
        optional = True
        remaining = _OPTIONAL.sub("", remaining, count=1)

    return TypeAnnotations(
        type_name=extract_type_name(remaining.strip()),
        default=default,
        optional=optional,
    )


def parse_annotations(text: str) -> FieldAnnotations:
    """Run every description-level matcher over one piece of text."""
    return FieldAnnotations(
        constraints=parse_constraints(text),
        ui=parse_ui_flags(text),
        media=parse_media(text),
        computed=parse_computed(text),
        calculated=parse_calculated(text),
    )


def strip_tags(text: str) -> str:
    """Remove every recognized tag and collapse the whitespace left behind."""
    for pattern in _KNOWN_TAGS:
        text = pattern.sub("", text)
    return re.sub(r"\s{2,}", " ", text).strip()
