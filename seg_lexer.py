"""SEG lexer.

Forfeited into the public domain with NO WARRANTY. Read LICENSE for details.

This lexer uses the terminal definitions in `_GRAMMAR` to chop a SEG program
text into a flat list of `Token`s for the recursive-descent parser in
`seg_parser`. Lark does the scanning (via its "basic" lexer, which we run on
its own without any parsing); this module only declares the terminals and
translates Lark's tokens into our own, which are a little friendlier to the
parser: they have a `Kind` instead of a terminal name, quoted literals come
without their quotes, and the sequence always ends in an `EOF` token.

Malformed input never raises here. A character that starts no valid token
(including the opening quote of an unterminated string or a malformed
character literal) becomes a one-character `ERROR` token, and the parser is
left to complain about it with a line number attached.
"""

import dataclasses
import enum
import functools

import lark


class Kind(enum.Enum):
  """Kinds of Token."""
  EOF = 0
  # Type keywords.
  INT = 1
  FLOAT = 2
  BOOL = 3
  CHAR = 4
  STRING = 5
  # Names and literals.
  IDENTIFIER = 6
  NUMBER = 7
  BOOL_LITERAL = 8
  CHAR_LITERAL = 9
  STRING_LITERAL = 10
  # Operators.
  ASSIGN = 11
  PLUS = 12
  MINUS = 13
  STAR = 14
  SLASH = 15
  AND = 16
  OR = 17
  NOT = 18
  XOR = 19
  EQ = 20
  NEQ = 21
  LT = 22
  GT = 23
  LEQ = 24
  GEQ = 25
  # Control flow keywords.
  IF = 26
  ELSE = 27
  # Punctuation.
  SEMICOLON = 28
  LPAREN = 29
  RPAREN = 30
  LBRACE = 31
  RBRACE = 32

  ERROR = 33

  def __str__(self):
    return self.name


# Type keywords, in the order the `Kind`s above list them.
TYPE_KEYWORDS = (Kind.INT, Kind.FLOAT, Kind.BOOL, Kind.CHAR, Kind.STRING)


@dataclasses.dataclass(frozen=True)
class Token:
  """A lexeme from a SEG program text.

  Attributes:
    kind: What sort of token this is.
    text: Source text of the token. For CHAR_LITERAL and STRING_LITERAL
        tokens, the delimiting quotes are stripped; escape sequences are
        left as they are.
    line: Line number (starting at 1) where the token begins.
  """
  kind: Kind
  text: str
  line: int

  def __str__(self) -> str:
    return f'{self.kind}({self.text!r}) at line {self.line}'


# Terminal names are `Kind` names, except for TRUE and FALSE, which are
# separate terminals (so that Lark can tell them apart from identifiers) but
# the same kind of token.
_GRAMMAR = r"""
    start: (INT | FLOAT | BOOL | CHAR | STRING | IF | ELSE | TRUE | FALSE
            | IDENTIFIER | NUMBER | CHAR_LITERAL | STRING_LITERAL
            | ASSIGN | PLUS | MINUS | STAR | SLASH
            | AND | OR | NOT | XOR
            | EQ | NEQ | LT | GT | LEQ | GEQ
            | SEMICOLON | LPAREN | RPAREN | LBRACE | RBRACE
            | ERROR)*

    INT: "int"
    FLOAT: "float"
    BOOL: "bool"
    CHAR: "char"
    STRING: "string"
    IF: "if"
    ELSE: "else"
    TRUE: "true"
    FALSE: "false"

    IDENTIFIER: /[A-Za-z_][A-Za-z0-9_]*/
    NUMBER: /[0-9]+(?:\.[0-9]*)?/
    CHAR_LITERAL: /'(\\[^\n]|[^'\\\n])'/
    STRING_LITERAL: /"(\\[^\n]|[^"\\\n])*"/

    EQ: "=="
    NEQ: "!="
    LEQ: "<="
    GEQ: ">="
    AND: "&&"
    OR: "||"
    ASSIGN: "="
    PLUS: "+"
    MINUS: "-"
    STAR: "*"
    SLASH: "/"
    NOT: "!"
    XOR: "^"
    LT: "<"
    GT: ">"

    SEMICOLON: ";"
    LPAREN: "("
    RPAREN: ")"
    LBRACE: "{"
    RBRACE: "}"

    ERROR.-10: /./s

    COMMENT: /\/\/[^\n]*/
    WHITESPACE: /\s+/
    %ignore COMMENT
    %ignore WHITESPACE
"""


def tokenize(source_text: str) -> list[Token]:
  """Convert a SEG program text into a list of tokens.

  Args:
    source_text: Complete source code for the program.

  Returns:
    The program's tokens in source order, followed by a single EOF token.
  """
  tokens = [_token(t) for t in _lexer().lex(source_text)]
  last_line = source_text.count('\n') + 1
  tokens.append(Token(Kind.EOF, '', last_line))
  return tokens


def _token(lark_token: lark.Token) -> Token:
  """Translate a Lark token into one of our own."""
  match lark_token.type:
    case 'TRUE' | 'FALSE':
      kind = Kind.BOOL_LITERAL
    case name:
      kind = Kind[name]
  text = str(lark_token)
  if kind in (Kind.CHAR_LITERAL, Kind.STRING_LITERAL):
    text = text[1:-1]  # Strip quotes.
  return Token(kind, text, lark_token.line or 1)


@functools.cache
def _lexer() -> lark.Lark:
  """Create/retrieve a singleton Lark object for the token grammar."""
  return lark.Lark(_GRAMMAR, parser='lalr', lexer='basic')
