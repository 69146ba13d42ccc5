"""Parser for path expressions and computed label expressions.

Path expressions address a value relative to a base entity:

    serial_number
    type.manufacturer.name
    aircraft._label
    Allocation<engine(COUNT)
    Allocation<engine(WHERE end_date=null, ORDER BY start_date DESC, LIMIT 1).aircraft.registration

Label expressions describe an entity's computed label:

    name
    type.designation
    concat(type, '-', msn)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import ply.yacc as yacc

from metamodel.parsing.path_lexer import PathLexer


@dataclass
class ForwardPath:
    """A dot-separated chain of foreign keys ending in a column."""

    segments: list[str]

    @property
    def text(self) -> str:
        return ".".join(self.segments)


@dataclass
class WhereCondition:
    """WHERE column=value inside back-reference parameters."""

    column: str
    value: str

    @property
    def is_null(self) -> bool:
        return self.value.lower() == "null"


@dataclass
class OrderBy:
    """ORDER BY column [ASC|DESC] inside back-reference parameters."""

    column: str
    direction: str = "ASC"


@dataclass
class BackRefParams:
    """Directives between the parentheses of a back-reference."""

    where: list[WhereCondition] = field(default_factory=list)
    order_by: OrderBy | None = None
    limit: int | None = None
    count: bool = False
    list_values: bool = False


@dataclass
class BackReference:
    """Child<fk(params).tail: look from a parent at the children pointing to it."""

    entity: str
    fk_field: str
    params: BackRefParams
    tail: list[str] = field(default_factory=list)

    @property
    def tail_text(self) -> str:
        return ".".join(self.tail)


PathExpression = ForwardPath | BackReference


@dataclass
class LabelLiteral:
    """Quoted literal text inside a label expression."""

    value: str


@dataclass
class LabelRef:
    """Reference to a column, or a dotted chain through foreign keys."""

    segments: list[str]

    @property
    def is_chain(self) -> bool:
        return len(self.segments) > 1

    @property
    def text(self) -> str:
        return ".".join(self.segments)


@dataclass
class LabelExpression:
    """A computed label: one reference, or concat() of references and literals."""

    parts: list[LabelLiteral | LabelRef]

    @property
    def is_concat(self) -> bool:
        return len(self.parts) > 1

    def references(self) -> list[LabelRef]:
        return [part for part in self.parts if isinstance(part, LabelRef)]


class PathParser:
    """Parser for the path and label expression DSL.

    One grammar module yields two LALR parsers, one per start symbol. Each
    PathParser instance owns its lexer and parsers, so instances must not be
    shared between threads.
    """

    tokens = PathLexer.tokens

    def __init__(self) -> None:
        self.lexer = PathLexer()
        self.lexer.build()
        self.path_parser: yacc.LRParser = None  # type: ignore
        self.label_parser: yacc.LRParser = None  # type: ignore

    # --- path expressions ---

    def p_path_expression_forward(self, p: yacc.YaccProduction) -> None:
        """path_expression : segment_list"""
        p[0] = ForwardPath(segments=p[1])

    def p_path_expression_back_reference(self, p: yacc.YaccProduction) -> None:
        """path_expression : back_reference"""
        p[0] = p[1]

    def p_back_reference(self, p: yacc.YaccProduction) -> None:
        """back_reference : name LT name LPAREN params_opt RPAREN"""
        p[0] = BackReference(entity=p[1], fk_field=p[3], params=p[5])

    def p_back_reference_tail(self, p: yacc.YaccProduction) -> None:
        """back_reference : name LT name LPAREN params_opt RPAREN DOT segment_list"""
        p[0] = BackReference(entity=p[1], fk_field=p[3], params=p[5], tail=p[8])

    def p_params_opt_empty(self, p: yacc.YaccProduction) -> None:
        """params_opt : """
        p[0] = BackRefParams()

    def p_params_opt(self, p: yacc.YaccProduction) -> None:
        """params_opt : param_list"""
        params = BackRefParams()
        for key, value in p[1]:
            if key == "where":
                params.where.append(value)
            else:
                setattr(params, key, value)
        p[0] = params

    def p_param_list_single(self, p: yacc.YaccProduction) -> None:
        """param_list : param"""
        p[0] = [p[1]]

    def p_param_list_multiple(self, p: yacc.YaccProduction) -> None:
        """param_list : param_list COMMA param"""
        p[0] = p[1] + [p[3]]

    def p_param_count(self, p: yacc.YaccProduction) -> None:
        """param : COUNT"""
        p[0] = ("count", True)

    def p_param_list_values(self, p: yacc.YaccProduction) -> None:
        """param : LIST"""
        p[0] = ("list_values", True)

    def p_param_where(self, p: yacc.YaccProduction) -> None:
        """param : WHERE name EQ VALUE"""
        p[0] = ("where", WhereCondition(column=p[2], value=p[4]))

    def p_param_order_by(self, p: yacc.YaccProduction) -> None:
        """param : ORDER BY name
                 | ORDER BY name ASC
                 | ORDER BY name DESC"""
        direction = p[4].upper() if len(p) > 4 else "ASC"
        p[0] = ("order_by", OrderBy(column=p[3], direction=direction))

    def p_param_limit(self, p: yacc.YaccProduction) -> None:
        """param : LIMIT INTEGER"""
        p[0] = ("limit", p[2])

    # --- label expressions ---

    def p_label_expression_ref(self, p: yacc.YaccProduction) -> None:
        """label_expression : segment_list"""
        p[0] = LabelExpression(parts=[LabelRef(segments=p[1])])

    def p_label_expression_concat(self, p: yacc.YaccProduction) -> None:
        """label_expression : CONCAT LPAREN label_args RPAREN"""
        p[0] = LabelExpression(parts=p[3])

    def p_label_args_single(self, p: yacc.YaccProduction) -> None:
        """label_args : label_arg"""
        p[0] = [p[1]]

    def p_label_args_multiple(self, p: yacc.YaccProduction) -> None:
        """label_args : label_args COMMA label_arg"""
        p[0] = p[1] + [p[3]]

    def p_label_arg_literal(self, p: yacc.YaccProduction) -> None:
        """label_arg : STRING"""
        p[0] = LabelLiteral(value=p[1])

    def p_label_arg_ref(self, p: yacc.YaccProduction) -> None:
        """label_arg : segment_list"""
        p[0] = LabelRef(segments=p[1])

    # --- shared ---

    def p_segment_list_single(self, p: yacc.YaccProduction) -> None:
        """segment_list : name"""
        p[0] = [p[1]]

    def p_segment_list_multiple(self, p: yacc.YaccProduction) -> None:
        """segment_list : segment_list DOT name"""
        p[0] = p[1] + [p[3]]

    def p_name(self, p: yacc.YaccProduction) -> None:
        """name : IDENTIFIER
                | COUNT
                | LIST
                | WHERE
                | ORDER
                | BY
                | LIMIT
                | ASC
                | DESC
                | CONCAT"""
        p[0] = p[1]

    def p_error(self, p: yacc.YaccProduction) -> None:
        if p:
            raise SyntaxError(f"Syntax error at '{p.value}' (position {p.lexpos})")
        else:
            raise SyntaxError("Syntax error at end of input")

    def build(self, **kwargs: Any) -> None:
        """Build both parsers."""
        kwargs.setdefault("errorlog", yacc.NullLogger())
        self.path_parser = yacc.yacc(module=self, start="path_expression", **kwargs)
        self.label_parser = yacc.yacc(module=self, start="label_expression", **kwargs)

    def _run(self, parser: yacc.LRParser, data: str) -> Any:
        self.lexer.lexer.begin("INITIAL")
        result = parser.parse(data, lexer=self.lexer.lexer)
        if result is None:
            raise SyntaxError("Empty expression")
        return result

    def parse(self, data: str) -> PathExpression:
        """Parse a path expression."""
        if self.path_parser is None:
            self.build(debug=False, write_tables=False)
        return self._run(self.path_parser, data)

    def parse_label(self, data: str) -> LabelExpression:
        """Parse a computed label expression."""
        if self.label_parser is None:
            self.build(debug=False, write_tables=False)
        return self._run(self.label_parser, data)
