"""Lexer for the path and label expression DSL."""

import ply.lex as lex


class PathLexer:
    """Lexer for tokenizing path expressions and computed label expressions."""

    # Reserved keywords (matched case-insensitively)
    reserved = {
        "COUNT": "COUNT",
        "LIST": "LIST",
        "WHERE": "WHERE",
        "ORDER": "ORDER",
        "BY": "BY",
        "LIMIT": "LIMIT",
        "ASC": "ASC",
        "DESC": "DESC",
        "CONCAT": "CONCAT",
    }

    # Token list
    tokens = [
        "IDENTIFIER",
        "INTEGER",
        "STRING",
        "VALUE",
        "DOT",
        "LT",
        "LPAREN",
        "RPAREN",
        "COMMA",
        "EQ",
    ] + list(reserved.values())

    # The right-hand side of WHERE col=value is raw text up to ',' or ')'
    states = (("value", "exclusive"),)

    # Simple tokens
    t_DOT = r"\."
    t_LT = r"<"
    t_LPAREN = r"\("
    t_RPAREN = r"\)"
    t_COMMA = r","

    # Ignored characters
    t_ignore = " \t\r\n"
    t_value_ignore = " \t"

    def __init__(self) -> None:
        self.lexer: lex.LexToken = None  # type: ignore

    def t_EQ(self, t: lex.LexToken) -> lex.LexToken:
        r"="
        t.lexer.begin("value")
        return t

    def t_STRING(self, t: lex.LexToken) -> lex.LexToken:
        r"'[^']*'|\"[^\"]*\""
        t.value = t.value[1:-1]
        return t

    def t_INTEGER(self, t: lex.LexToken) -> lex.LexToken:
        r"\d+"
        t.value = int(t.value)
        return t

    def t_IDENTIFIER(self, t: lex.LexToken) -> lex.LexToken:
        r"[a-zA-Z_][a-zA-Z0-9_]*"
        # Keywords keep their spelling so they can double as names
        t.type = self.reserved.get(t.value.upper(), "IDENTIFIER")
        return t

    def t_value_VALUE(self, t: lex.LexToken) -> lex.LexToken:
        r"[^,)\s][^,)]*"
        value = t.value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
            value = value[1:-1]
        t.value = value
        t.lexer.begin("INITIAL")
        return t

    def t_error(self, t: lex.LexToken) -> None:
        raise SyntaxError(f"Illegal character '{t.value[0]}' at position {t.lexpos}")

    def t_value_error(self, t: lex.LexToken) -> None:
        raise SyntaxError(f"Missing value at position {t.lexpos}")

    def build(self, **kwargs) -> None:  # type: ignore
        """Build the lexer."""
        self.lexer = lex.lex(module=self, **kwargs)

    def input(self, data: str) -> None:
        """Set the input string to tokenize."""
        self.lexer.begin("INITIAL")
        self.lexer.input(data)

    def token(self) -> lex.LexToken | None:
        """Return the next token."""
        return self.lexer.token()

    def tokenize(self, data: str) -> list[lex.LexToken]:
        """Tokenize the input and return all tokens."""
        self.input(data)
        tokens = []
        while True:
            tok = self.token()
            if tok is None:
                break
            tokens.append(tok)
        return tokens
