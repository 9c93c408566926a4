"""SEG parser and type checker.

Forfeited into the public domain with NO WARRANTY. Read LICENSE for details.

This parser consumes the tokens made by `seg_lexer` and derives an abstract
syntax tree by recursive descent. It types the tree as it goes: each
expression node gets a `result_type` from `seg_types` the moment it is built,
and the rules for choosing (and sometimes retroactively changing) those types
are applied in the parsing routines themselves. In brief:

  - Numeric literals are float if their text has a decimal point, else int.
  - Logical, equality and relational operators always yield bool.
  - `+ - * /` yield the common type of their operands. If the operand types
    differ, both operand nodes are re-typed as float on the spot, and the
    result is float.
  - `!` yields bool and leaves its operand's type alone.
  - A bool declaration forces its initializer's type to bool. An int or float
    declaration with a bool initializer re-types the initializer as int. Any
    other disagreement between a declaration and its initializer draws a
    warning, but nothing is converted.

Identifiers are typed from the most recent preceding declaration of the same
name. A name with no preceding declaration is typed int for now; the code
generator's symbol table has the final say on where (and whether) it is
stored.

Abstract syntax tree nodes are instances of the Python dataclasses defined
in the first part of this file. The parser is in the second part, and a
printer for the tree is at the bottom.

Any unexpected token stops the parse with a RuntimeError that names the token
kind the parser wanted, the kind it got, and the line. There is no error
recovery.
"""

import dataclasses
import enum
import warnings

import seg_lexer
import seg_types

from seg_lexer import Kind
from seg_types import Type
from typing import Callable, Mapping, NoReturn, Optional, Sequence


def parse(tokens: Sequence[seg_lexer.Token]) -> 'Program':
  """Parse a SEG program.

  Args:
    tokens: Tokens for the entire program, as returned by
        `seg_lexer.tokenize`. Must end with an EOF token.

  Returns:
    A typed abstract syntax tree for the program.

  Raises:
    RuntimeError: the tokens do not form a valid SEG program.
  """
  return _Parser(tokens).program()


##################
#### AST NODES ###
##################


@dataclasses.dataclass
class AstNode:
  """Base class for all parse tree nodes."""


### Expressions

class BinaryOp(enum.Enum):
  """Binary operations for BinaryExpr."""
  ADD = '+'
  SUBTRACT = '-'
  MULTIPLY = '*'
  DIVIDE = '/'
  LOGICAL_AND = '&&'
  LOGICAL_OR = '||'
  LOGICAL_XOR = '^'
  COMPARE_EQ = '=='
  COMPARE_NE = '!='
  COMPARE_LT = '<'
  COMPARE_GT = '>'
  COMPARE_LE = '<='
  COMPARE_GE = '>='

class UnaryOp(enum.Enum):
  """Unary operations for UnaryExpr."""
  LOGICAL_NOT = '!'

@dataclasses.dataclass
class Expression(AstNode):
  """Base class for expressions.

  Every subclass has a `result_type` attribute, which the parser fills in
  and may later revise.
  """

@dataclasses.dataclass
class Literal(Expression):
  """Leaf node for literal values; text is as written, minus any quotes.

  Attributes:
    text: Source text of the literal, without quotes.
    result_type: Current type of the literal, which may have been changed by
        promotion or by the declaration it initializes.
    line: Source line of the literal.
    literal_type: Type the literal was written as, which never changes.
        Defaults to `result_type` at construction.
  """
  text: str
  result_type: Type
  line: int = dataclasses.field(default=0, compare=False)
  literal_type: Optional[Type] = dataclasses.field(default=None, compare=False)

  def __post_init__(self):
    if self.literal_type is None: self.literal_type = self.result_type

@dataclasses.dataclass
class Identifier(Expression):
  """Leaf node for references to variables."""
  name: str
  result_type: Type = Type.INT
  line: int = dataclasses.field(default=0, compare=False)

@dataclasses.dataclass
class BinaryExpr(Expression):
  """Node for a binary operation."""
  op: BinaryOp
  left: Expression
  right: Expression
  result_type: Type
  line: int = dataclasses.field(default=0, compare=False)

@dataclasses.dataclass
class UnaryExpr(Expression):
  """Node for a unary operation."""
  op: UnaryOp
  operand: Expression
  result_type: Type = Type.BOOL
  line: int = dataclasses.field(default=0, compare=False)


### Statements

@dataclasses.dataclass
class Statement(AstNode):
  """Base class for statements."""

@dataclasses.dataclass
class VarDecl(Statement):
  """Node for variable declarations, which always have an initializer."""
  var_type: Type
  name: str
  value: Expression
  line: int = dataclasses.field(default=0, compare=False)

@dataclasses.dataclass
class IfStatement(Statement):
  """Node for if statements.

  An `else if` chain is represented by an `else_branch` that holds a single
  IfStatement.
  """
  condition: Expression
  then_branch: tuple[Statement, ...]
  else_branch: Optional[tuple[Statement, ...]] = None
  line: int = dataclasses.field(default=0, compare=False)

@dataclasses.dataclass
class Program(AstNode):
  """Root node: all of a program's top-level statements, in order."""
  statements: tuple[Statement, ...]


################
#### PARSER ####
################


# Operators at each binary precedence level, from lowest to highest.
_LOGICAL_OR_OPS = {Kind.OR: BinaryOp.LOGICAL_OR}
_LOGICAL_XOR_OPS = {Kind.XOR: BinaryOp.LOGICAL_XOR}
_LOGICAL_AND_OPS = {Kind.AND: BinaryOp.LOGICAL_AND}
_EQUALITY_OPS = {Kind.EQ: BinaryOp.COMPARE_EQ, Kind.NEQ: BinaryOp.COMPARE_NE}
_COMPARISON_OPS = {
    Kind.LT: BinaryOp.COMPARE_LT,
    Kind.GT: BinaryOp.COMPARE_GT,
    Kind.LEQ: BinaryOp.COMPARE_LE,
    Kind.GEQ: BinaryOp.COMPARE_GE,
}
_TERM_OPS = {
    Kind.PLUS: BinaryOp.ADD,
    Kind.MINUS: BinaryOp.SUBTRACT,
    Kind.STAR: BinaryOp.MULTIPLY,
    Kind.SLASH: BinaryOp.DIVIDE,
}

# Literal token kinds and the types of the literals they make. NUMBER is
# handled separately.
_LITERAL_TYPES = {
    Kind.BOOL_LITERAL: Type.BOOL,
    Kind.CHAR_LITERAL: Type.CHAR,
    Kind.STRING_LITERAL: Type.STRING,
}


class _Parser:
  """Recursive-descent parser state for a single token sequence.

  Each grammar production has a method of the same name that parses it
  starting at the current token and returns the corresponding AST node.

  Attributes:
    declared: Types of all variables declared so far, by name. Later
        declarations replace earlier ones.
  """
  declared: dict[str, Type]

  def __init__(self, tokens: Sequence[seg_lexer.Token]):
    if not tokens or tokens[-1].kind != Kind.EOF: raise ValueError(
        'The token sequence to parse must end with an EOF token')
    self._tokens = tokens
    self._index = 0
    self.declared = {}

  ### Token handling

  @property
  def _current(self) -> seg_lexer.Token:
    return self._tokens[self._index]

  def _advance(self) -> seg_lexer.Token:
    """Consume the current token and return it. EOF is never consumed."""
    token = self._current
    if token.kind != Kind.EOF: self._index += 1
    return token

  def _expect(self, kind: Kind) -> seg_lexer.Token:
    """Consume the current token if it is a `kind`; fail otherwise."""
    if self._current.kind != kind: self._fail(str(kind))
    return self._advance()

  def _fail(self, expected: str) -> NoReturn:
    token = self._current
    raise RuntimeError(
        f'Expected {expected}, got {token.kind} (line {token.line})')

  ### Statements

  def program(self) -> Program:
    statements = []
    while self._current.kind != Kind.EOF:
      statements.append(self.statement())
    return Program(tuple(statements))

  def statement(self) -> Statement:
    if self._current.kind in seg_lexer.TYPE_KEYWORDS:
      return self.var_decl()
    elif self._current.kind == Kind.IF:
      return self.if_statement()
    else:
      self._fail('type keyword or IF')

  def var_decl(self) -> VarDecl:
    type_token = self._advance()
    var_type = seg_types.from_keyword(type_token.text)
    name = self._expect(Kind.IDENTIFIER).text
    self._expect(Kind.ASSIGN)
    value = self.expression()

    # Bring the initializer's type into line with the declaration where the
    # rules allow, and complain (but carry on) where they don't.
    if var_type is Type.BOOL:
      value.result_type = Type.BOOL
    elif (var_type in (Type.INT, Type.FLOAT) and
          value.result_type is Type.BOOL):
      value.result_type = Type.INT
    if value.result_type is not var_type: warnings.warn(
        f"Type mismatch in assignment to '{name}': declared {var_type}, "
        f'assigned {value.result_type} (line {type_token.line}). '
        'Implicit conversion applied.')

    self._expect(Kind.SEMICOLON)
    self.declared[name] = var_type
    return VarDecl(var_type, name, value, line=type_token.line)

  def if_statement(self) -> IfStatement:
    if_token = self._expect(Kind.IF)
    self._expect(Kind.LPAREN)
    condition = self.expression()
    self._expect(Kind.RPAREN)
    then_branch = self.block()

    else_branch: Optional[tuple[Statement, ...]] = None
    if self._current.kind == Kind.ELSE:
      self._advance()
      if self._current.kind == Kind.IF:
        else_branch = (self.if_statement(),)
      else:
        else_branch = self.block()

    return IfStatement(condition, then_branch, else_branch, line=if_token.line)

  def block(self) -> tuple[Statement, ...]:
    self._expect(Kind.LBRACE)
    statements = []
    while self._current.kind not in (Kind.RBRACE, Kind.EOF):
      statements.append(self.statement())
    self._expect(Kind.RBRACE)
    return tuple(statements)

  ### Expressions

  def expression(self) -> Expression:
    return self.logical_or()

  def logical_or(self) -> Expression:
    return self._binary_level(self.logical_xor, _LOGICAL_OR_OPS)

  def logical_xor(self) -> Expression:
    return self._binary_level(self.logical_and, _LOGICAL_XOR_OPS)

  def logical_and(self) -> Expression:
    return self._binary_level(self.equality, _LOGICAL_AND_OPS)

  def equality(self) -> Expression:
    return self._binary_level(self.comparison, _EQUALITY_OPS)

  def comparison(self) -> Expression:
    return self._binary_level(self.term, _COMPARISON_OPS)

  def term(self) -> Expression:
    return self._binary_level(self.unary, _TERM_OPS, promote=True)

  def unary(self) -> Expression:
    if self._current.kind == Kind.NOT:
      not_token = self._advance()
      operand = self.unary()
      return UnaryExpr(UnaryOp.LOGICAL_NOT, operand, Type.BOOL,
                       line=not_token.line)
    return self.factor()

  def factor(self) -> Expression:
    token = self._current
    match token.kind:
      case Kind.NUMBER:
        self._advance()
        result_type = Type.FLOAT if '.' in token.text else Type.INT
        return Literal(token.text, result_type, line=token.line)
      case Kind.BOOL_LITERAL | Kind.CHAR_LITERAL | Kind.STRING_LITERAL:
        self._advance()
        return Literal(token.text, _LITERAL_TYPES[token.kind], line=token.line)
      case Kind.IDENTIFIER:
        self._advance()
        return Identifier(token.text, self.declared.get(token.text, Type.INT),
                          line=token.line)
      case Kind.LPAREN:
        self._advance()
        expression = self.expression()
        self._expect(Kind.RPAREN)
        return expression
      case _:
        self._fail('expression')

  def _binary_level(
      self,
      operand: Callable[[], Expression],
      ops: Mapping[Kind, BinaryOp],
      promote: bool = False,
  ) -> Expression:
    """Parse one left-associative binary precedence level.

    Args:
      operand: Parses the next-higher precedence level.
      ops: Operator tokens accepted at this level, and their BinaryOps.
      promote: If True, apply arithmetic promotion to the operands of each
          operation; if False, each operation yields a bool.

    Returns:
      The folded expression tree.
    """
    left = operand()
    while (op := ops.get(self._current.kind)) is not None:
      op_token = self._advance()
      right = operand()
      result_type = (_promote(left, right, op_token.line) if promote else
                     Type.BOOL)
      left = BinaryExpr(op, left, right, result_type, line=op_token.line)
    return left


def _promote(left: Expression, right: Expression, line: int) -> Type:
  """Reconcile arithmetic operand types, re-typing the operands if needed."""
  if left.result_type is right.result_type:
    return left.result_type
  warnings.warn(
      f'Mixing {left.result_type} and {right.result_type} in expression: '
      f'promoting to float (line {line})')
  left.result_type = Type.FLOAT
  right.result_type = Type.FLOAT
  return Type.FLOAT


#######################
#### ODDS AND ENDS ####
#######################


class _InternalError(RuntimeError):
  """An uninformative exception for "this shouldn't happen" errors."""


def ast_text(program: Program) -> list[str]:
  """Produce a printable representation of a syntax tree.

  Statements appear one per line, with the statements in if/else branches
  indented beneath them. Expressions are fully parenthesised, and each
  expression node's type follows it after a colon, e.g. `(5:int + 3:int):int`.

  Args:
    program: A syntax tree from `parse`.

  Returns:
    A sequence of strings (without newlines) that together represent the
    tree.
  """
  text: list[str] = []

  def statements_text(statements: Sequence[Statement], indent: str):
    for statement in statements:
      match statement:
        case VarDecl(var_type=var_type, name=name, value=value):
          text.append(
              f'{indent}VarDecl {var_type} {name} = {expression_text(value)}')
        case IfStatement():
          text.append(f'{indent}If {expression_text(statement.condition)}')
          text.append(f'{indent}Then:')
          statements_text(statement.then_branch, indent + '  ')
          if statement.else_branch is not None:
            text.append(f'{indent}Else:')
            statements_text(statement.else_branch, indent + '  ')
        case _:
          raise _InternalError

  statements_text(program.statements, '')
  return text


def expression_text(ast: Expression) -> str:
  """Render an expression tree on one line; see `ast_text`."""
  match ast:
    case Literal(text=text, result_type=result_type, literal_type=written_as):
      quote = {Type.CHAR: "'", Type.STRING: '"'}.get(written_as, '')
      return f'{quote}{text}{quote}:{result_type}'
    case Identifier(name=name, result_type=result_type):
      return f'{name}:{result_type}'
    case BinaryExpr(op=op, left=left, right=right, result_type=result_type):
      return (f'({expression_text(left)} {op.value} '
              f'{expression_text(right)}):{result_type}')
    case UnaryExpr(op=op, operand=operand, result_type=result_type):
      return f'({op.value}{expression_text(operand)}):{result_type}'
    case _:
      raise _InternalError
