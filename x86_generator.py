"""SEG code generation for the x86-64 target.

Forfeited into the public domain with NO WARRANTY. Read LICENSE for details.

The code generator emits GNU assembler source in Intel syntax for a typed SEG
syntax tree from `seg_parser`. It works in two steps. First, two passes over
the whole tree (using the traversal aids in `seg_descent`) gather every
pooled literal into the read-only literal pool and every declaration into the
data section, registering each declared variable in the symbol table as its
storage is emitted. Second, a single recursive descent through the tree
assembles the instructions in the text section from code fragments.

Expressions use a simple stack discipline. Integer-class values (int, bool,
char, and string addresses) are computed into rax, and floats into xmm0. A
binary operation evaluates its right operand, saves it on the machine stack,
evaluates its left operand, and restores the right operand into rbx (or xmm1)
before operating. Whenever a value sits in one register class but its
consumer needs the other, it is converted with `cvtsi2sd` or `cvttsd2si`.

This module is organised into four sections: (1) the per-compilation session
and its parts, with the function that generates the whole program, (2)
functions that generate code for statements, (3) functions that generate code
for expressions, and (4) general utilities.
"""

import dataclasses

import seg_descent
import seg_parser
import seg_symbols
import x86_compiled

from seg_parser import BinaryOp
from seg_types import Type
from typing import Optional, Sequence


# Some constants for exp_binary.
_INTEGER_OPS = {
    BinaryOp.ADD: ['    add rax, rbx'],
    BinaryOp.SUBTRACT: ['    sub rax, rbx'],
    BinaryOp.MULTIPLY: ['    imul rax, rbx'],
    BinaryOp.DIVIDE: ['    cqo', '    idiv rbx'],
    BinaryOp.LOGICAL_AND: ['    and rax, rbx'],
    BinaryOp.LOGICAL_OR: ['    or rax, rbx'],
    BinaryOp.LOGICAL_XOR: ['    xor rax, rbx'],
}
_FLOAT_OPS = {
    BinaryOp.ADD: 'addsd',
    BinaryOp.SUBTRACT: 'subsd',
    BinaryOp.MULTIPLY: 'mulsd',
    BinaryOp.DIVIDE: 'divsd',
}
_LOGICAL_OPS = (
    BinaryOp.LOGICAL_AND, BinaryOp.LOGICAL_OR, BinaryOp.LOGICAL_XOR)
# Condition codes for comparisons. `ucomisd` sets the flags like an unsigned
# comparison does, hence the different codes for floats.
_INTEGER_SETCC = {
    BinaryOp.COMPARE_EQ: 'sete',
    BinaryOp.COMPARE_NE: 'setne',
    BinaryOp.COMPARE_LT: 'setl',
    BinaryOp.COMPARE_GT: 'setg',
    BinaryOp.COMPARE_LE: 'setle',
    BinaryOp.COMPARE_GE: 'setge',
}
_FLOAT_SETCC = {
    BinaryOp.COMPARE_EQ: 'sete',
    BinaryOp.COMPARE_NE: 'setne',
    BinaryOp.COMPARE_LT: 'setb',
    BinaryOp.COMPARE_GT: 'seta',
    BinaryOp.COMPARE_LE: 'setbe',
    BinaryOp.COMPARE_GE: 'setae',
}

# Data section directives for a variable of each type.
_SLOT_DIRECTIVES = {
    Type.INT: '.quad 0',
    Type.FLOAT: '.double 0.0',
    Type.BOOL: '.byte 0',
    Type.CHAR: '.byte 0',
    Type.STRING: '.quad 0',
}

# Character codes for backslash escapes in char literals.
_CHAR_ESCAPES = {
    'n': 10, 't': 9, 'r': 13, '0': 0, '\\': 92, "'": 39, '"': 34,
}


#########################
### PROGRAM STRUCTURE ###
#########################


class LiteralPool(dict[tuple[str, Type, Type], str]):
  """The read-only literal pool.

  As a dict, LiteralPool maps (literal text, literal type, written type)
  triples to the labels of their pool entries. The written type is the type
  the literal had in the source, before any promotion or coercion, so `'5'`
  promoted to float and `5` promoted to float are different entries, as are
  the same text under two different current types. Labels are numbered in
  the order literals are first added, and the dict iterates in that order
  too.
  """

  def add(self, text: str, typeinfo: Type,
          written_as: Optional[Type] = None) -> str:
    """Add a literal to the pool if it isn't there already; return its label.

    Args:
      text: Source text of the literal, without quotes.
      typeinfo: Current type of the literal.
      written_as: Type the literal was written as; defaults to `typeinfo`.

    Returns:
      The label of the literal's pool entry.
    """
    key = (text, typeinfo, typeinfo if written_as is None else written_as)
    if key not in self:
      self[key] = f'L_literal_{len(self)}'
    return self[key]

  def label(self, text: str, typeinfo: Type,
            written_as: Optional[Type] = None) -> str:
    """Retrieve the label for a literal that must already be in the pool."""
    key = (text, typeinfo, typeinfo if written_as is None else written_as)
    try:
      return self[key]
    except KeyError:
      raise _InternalError(
          f"Literal '{text}' of type {typeinfo} not found in the literal pool"
      ) from None


class Labels:
  """Generator for unique control-flow labels.

  A Labels object hands out serial numbers from an incrementing counter. One
  serial number can be shared by several related labels (e.g. the else and
  end labels of the same if statement) by passing it to `generate`.
  """
  _serial: int

  def __init__(self):
    self._serial = 0

  def serial(self) -> int:
    """Reserve and return a fresh serial number."""
    serial = self._serial
    self._serial += 1
    return serial

  def generate(self, kind: str, serial: Optional[int] = None) -> str:
    """Create a unique assembly label.

    Args:
      kind: Arbitrary string useful for distinguishing this label within the
          assembly code, e.g. 'else' or 'endif'.
      serial: Specify a value here to use a serial number reserved earlier
          with `serial()` instead of reserving a new one.

    Returns:
      A string usable as an assembly label.
    """
    if serial is None: serial = self.serial()
    return f'L_{kind}_{serial}'


@dataclasses.dataclass
class ProgramOptions:
  """Special options for program generation.

  Attributes:
    entry_symbol: Name of the global symbol that labels the program's code.
    exit_with_last_variable: If True, the program returns the value of the
        last variable declared at top level (or 0, if there are none) in rax.
        If False, it always returns 0.
  """
  entry_symbol: str = 'main'
  exit_with_last_variable: bool = True


@dataclasses.dataclass
class Session:
  """All of the state for generating code for one program.

  Attributes:
    options: Special options for program generation.
    literals: The literal pool.
    symbols: The symbol table, populated while the data section is emitted.
    labels: Control-flow label generator.
    slots: Maps declarations (by `id()` of their VarDecl nodes) to the labels
        of their storage.
  """
  options: ProgramOptions = dataclasses.field(default_factory=ProgramOptions)
  literals: LiteralPool = dataclasses.field(default_factory=LiteralPool)
  symbols: seg_symbols.SymbolTable = dataclasses.field(
      default_factory=seg_symbols.SymbolTable)
  labels: Labels = dataclasses.field(default_factory=Labels)
  slots: dict[int, str] = dataclasses.field(default_factory=dict)


def program(
    ast: seg_parser.Program,
    session: Optional[Session] = None,
) -> list[str]:
  """Generate: for Program AST nodes.

  Ordinarily the AST-node-to-code-fragment functions in this module aren't
  extensively commented, but as this is the one most likely to be invoked by
  a caller external to this module, we'll make an exception.

  Args:
    ast: Typed abstract syntax tree for a SEG program.
    session: Code generation state to use. Supply your own if you'd like to
        inspect the literal pool or symbol table afterwards, or to set
        program options; otherwise a fresh Session with default options is
        used. Either way, the session should be fresh, as the symbol table
        and literal pool are populated here.

  Returns:
    Lines of GNU assembler source (without newlines) for the program.

  Raises:
    RuntimeError: the program refers to an undeclared variable.
  """
  if session is None: session = Session()

  # Gather literals and declarations, both in source order.
  for literal in seg_descent.instances(ast, seg_parser.Literal):
    if literal.result_type.is_pooled:
      session.literals.add(
          literal.text, literal.result_type, literal.literal_type)
  declarations = seg_descent.instances(ast, seg_parser.VarDecl)

  code = ['    .intel_syntax noprefix', '    .section .rodata']
  code.extend(f'{label}: {_pool_directive(text, typeinfo, written_as)}'
              for (text, typeinfo, written_as), label
              in session.literals.items())

  # Storage for variables. Each declaration gets its own slot, and a symbol
  # table entry that shadows any earlier declaration of the same name.
  code.append('    .data')
  for declaration in declarations:
    symbol = session.symbols.add(declaration.name, declaration.var_type)
    session.slots[id(declaration)] = symbol.label
    code.append(f'{symbol.label}: {_SLOT_DIRECTIVES[declaration.var_type]}')

  code.extend(['    .text',
               f'    .global {session.options.entry_symbol}',
               f'{session.options.entry_symbol}:'])
  code.extend(block(ast.statements, session).code)

  # Epilogue: the exit status.
  top_level = [s for s in ast.statements if isinstance(s, seg_parser.VarDecl)]
  if top_level and session.options.exit_with_last_variable:
    last = top_level[-1]
    code.extend(_load(last.var_type, session.slots[id(last)]))
    if last.var_type.is_floating: code.append('    movq rax, xmm0')
  else:
    code.append('    mov rax, 0')
  code.append('    ret')

  return code


def block(
    statements: Sequence[seg_parser.Statement],
    session: Session,
) -> x86_compiled.Statement:
  """Generate: for a sequence of statements."""
  return x86_compiled.chain_statements(
      [sta_statement(s, session) for s in statements])


##################
### STATEMENTS ###
##################


def sta_statement(
    ast: seg_parser.Statement,
    session: Session,
) -> x86_compiled.Statement:
  """Generate: for Statement AST nodes.

  Args:
    ast: Abstract syntax tree for a SEG statement.
    session: Code generation state for the program.

  Returns:
    A compiled code fragment for the statement.
  """
  match ast:
    case seg_parser.VarDecl():
      return sta_var_decl(ast, session)
    case seg_parser.IfStatement():
      return sta_if(ast, session)
    case _:
      raise _UnexpectedParseTreeNode


def sta_var_decl(
    ast: seg_parser.VarDecl,
    session: Session,
) -> x86_compiled.Statement:
  """Generate: for VarDecl AST nodes."""
  try:
    slot = session.slots[id(ast)]
  except KeyError:
    raise _InternalError(  # Was the data section skipped?
        f'No storage was allocated for {ast.name}') from None

  # The initializer is computed in the register class of its own type, but
  # stored as the declared type says.
  code = exp_as(ast.value, session, ast.value.result_type.is_floating)
  code.append(_store(ast.var_type, slot))
  return x86_compiled.Statement(code=code)


def sta_if(
    ast: seg_parser.IfStatement,
    session: Session,
) -> x86_compiled.Statement:
  """Generate: for IfStatement AST nodes."""
  serial = session.labels.serial()
  out_label = session.labels.generate('endif', serial)
  else_label = (None if ast.else_branch is None else
                session.labels.generate('else', serial))

  statements = [
      x86_compiled.Statement(code=exp_as(ast.condition, session, False)),
      x86_compiled.Statement(code=[
          '    cmp rax, 0', f'    je {else_label or out_label}']),
      block(ast.then_branch, session)]
  if ast.else_branch is not None:
    statements.extend([
        x86_compiled.Statement(code=[f'    jmp {out_label}', f'{else_label}:']),
        block(ast.else_branch, session)])
  else:
    statements.append(x86_compiled.Statement(code=[f'    jmp {out_label}']))
  statements.append(x86_compiled.Statement(code=[f'{out_label}:']))

  return x86_compiled.chain_statements(statements)


###################
### EXPRESSIONS ###
###################


def exp_expression(
    ast: seg_parser.Expression,
    session: Session,
) -> x86_compiled.Expression:
  """Generate: for Expression AST nodes.

  Args:
    ast: Abstract syntax tree for a SEG expression.
    session: Code generation state for the program.

  Returns:
    A compiled code fragment for the expression. Its `typeinfo` says which
    register holds the result; see `x86_compiled.Expression`.
  """
  match ast:
    case seg_parser.Literal():
      return exp_literal(ast, session)
    case seg_parser.Identifier():
      return exp_identifier(ast, session)
    case seg_parser.BinaryExpr():
      return exp_binary(ast, session)
    case seg_parser.UnaryExpr():
      return exp_unary(ast, session)
    case _:
      raise _UnexpectedParseTreeNode


def exp_as(
    ast: seg_parser.Expression,
    session: Session,
    floating: bool,
) -> list[str]:
  """Generate code leaving an expression's value in xmm0 or rax.

  Args:
    ast: Abstract syntax tree for a SEG expression.
    session: Code generation state for the program.
    floating: Whether the value should end up in xmm0 (True) or rax (False).

  Returns:
    Assembly code computing the expression, converting its value from one
    register class to the other if necessary.
  """
  compiled = exp_expression(ast, session)
  code = list(compiled.code)
  if compiled.typeinfo.is_floating and not floating:
    code.append('    cvttsd2si rax, xmm0')
  elif floating and not compiled.typeinfo.is_floating:
    code.append('    cvtsi2sd xmm0, rax')
  return code


def exp_literal(
    ast: seg_parser.Literal,
    session: Session,
) -> x86_compiled.Expression:
  """Generate: for Literal AST nodes."""
  if not ast.result_type.is_pooled:
    return x86_compiled.Expression(
        typeinfo=ast.result_type,
        code=[f'    mov rax, {_immediate(ast.text, ast.literal_type)}'])

  label = session.literals.label(
      ast.text, ast.result_type, ast.literal_type)
  match ast.result_type:
    case Type.STRING:
      code = [f'    lea rax, [rip + {label}]']
    case Type.BOOL:  # Bools are pooled as quadwords.
      code = [f'    mov rax, qword ptr [rip + {label}]']
    case _:
      code = _load(ast.result_type, label)
  return x86_compiled.Expression(typeinfo=ast.result_type, code=code)


def exp_identifier(
    ast: seg_parser.Identifier,
    session: Session,
) -> x86_compiled.Expression:
  """Generate: for Identifier AST nodes."""
  symbol = session.symbols.lookup(ast.name)
  if symbol is None: raise RuntimeError(
      f'Undefined variable: {ast.name} (line {ast.line})')
  return x86_compiled.Expression(
      typeinfo=symbol.typeinfo, code=_load(symbol.typeinfo, symbol.label))


def exp_binary(
    ast: seg_parser.BinaryExpr,
    session: Session,
) -> x86_compiled.Expression:
  """Generate: for BinaryExpr AST nodes."""
  # Work out which register class the operands are computed in, and where
  # the result ends up. Comparisons work in the float class if either operand
  # is a float, but always produce an integer 0 or 1, as do logical
  # operations. Arithmetic follows the expression's own type.
  if ast.op in _INTEGER_SETCC:
    floating = (ast.left.result_type.is_floating or
                ast.right.result_type.is_floating)
    typeinfo = Type.BOOL
  elif ast.op in _LOGICAL_OPS:
    floating = False
    typeinfo = Type.BOOL
  else:
    floating = ast.result_type.is_floating
    typeinfo = ast.result_type

  code = exp_as(ast.right, session, floating)
  code.extend(['    sub rsp, 8', '    movsd qword ptr [rsp], xmm0']
              if floating else ['    push rax'])
  code.extend(exp_as(ast.left, session, floating))
  code.extend(['    movsd xmm1, qword ptr [rsp]', '    add rsp, 8']
              if floating else ['    pop rbx'])

  if ast.op in _INTEGER_SETCC:
    if floating:
      code.extend(['    ucomisd xmm0, xmm1', f'    {_FLOAT_SETCC[ast.op]} al'])
    else:
      code.extend(['    cmp rax, rbx', f'    {_INTEGER_SETCC[ast.op]} al'])
    code.append('    movzx rax, al')
  elif floating:
    code.append(f'    {_FLOAT_OPS[ast.op]} xmm0, xmm1')
  else:
    code.extend(_INTEGER_OPS[ast.op])

  return x86_compiled.Expression(typeinfo=typeinfo, code=code)


def exp_unary(
    ast: seg_parser.UnaryExpr,
    session: Session,
) -> x86_compiled.Expression:
  """Generate: for UnaryExpr AST nodes."""
  match ast.op:
    case seg_parser.UnaryOp.LOGICAL_NOT:
      code = exp_as(ast.operand, session, False)
      code.extend(['    cmp rax, 0', '    sete al', '    movzx rax, al'])
      return x86_compiled.Expression(typeinfo=Type.BOOL, code=code)
    case _:
      raise _UnexpectedParseTreeNode


#################
### UTILITIES ###
#################


def _load(typeinfo: Type, label: str) -> list[str]:
  """Load a variable of type `typeinfo` stored at `label` into rax or xmm0."""
  match typeinfo:
    case Type.FLOAT:
      return [f'    movsd xmm0, qword ptr [rip + {label}]']
    case Type.BOOL | Type.CHAR:
      return [f'    movzx rax, byte ptr [rip + {label}]']
    case _:
      return [f'    mov rax, qword ptr [rip + {label}]']


def _store(typeinfo: Type, label: str) -> str:
  """Store rax or xmm0 to a variable of type `typeinfo` at `label`."""
  match typeinfo:
    case Type.FLOAT:
      return f'    movsd qword ptr [rip + {label}], xmm0'
    case Type.BOOL | Type.CHAR:
      return f'    mov byte ptr [rip + {label}], al'
    case _:
      return f'    mov qword ptr [rip + {label}], rax'


def _pool_directive(text: str, typeinfo: Type, written_as: Type) -> str:
  """Data directive for a literal pool entry."""
  match typeinfo:
    case Type.FLOAT:
      return f'.double {_float_text(text, written_as)}'
    case Type.BOOL:
      return f'.quad {_bool_value(text, written_as)}'
    case Type.CHAR:
      return f'.byte {_char_code(text)}'
    case Type.STRING:
      return f'.string "{text}"'
    case _:
      raise _InternalError  # Int literals are never pooled.


def _immediate(text: str, written_as: Type) -> str:
  """Immediate operand for an int-typed literal."""
  if written_as is Type.BOOL: return '1' if text == 'true' else '0'
  return text


def _bool_value(text: str, written_as: Type) -> int:
  """Truth value of a bool-typed literal, whatever it was written as.

  A char is true unless it is NUL, and a string (an address) is always true.
  """
  match written_as:
    case Type.BOOL:
      return int(text == 'true')
    case Type.CHAR:
      return int(_char_code(text) != 0)
    case Type.STRING:
      return 1
    case _:
      return int(float(text) != 0)


def _float_text(text: str, written_as: Type) -> str:
  """Operand for `.double` from a float-typed literal's text.

  Literals that the parser promoted to float may have started out as bools
  or chars; these become their numeric values. Strings have none.
  """
  match written_as:
    case Type.BOOL:
      return '1.0' if text == 'true' else '0.0'
    case Type.CHAR:
      return f'{_char_code(text)}.0'
    case Type.STRING:
      raise RuntimeError(f'Cannot use "{text}" as a floating-point value')
    case _:
      return text


def _char_code(text: str) -> int:
  """Character code for the text of a char literal (quotes removed)."""
  if text.startswith('\\') and len(text) == 2:
    return _CHAR_ESCAPES.get(text[1], ord(text[1]))
  return ord(text)


class _InternalError(RuntimeError):
  """An exception type for any "this should never happen" situation."""


class _UnexpectedParseTreeNode(_InternalError):
  """Found a parse tree node we don't know how to handle."""
