"""Compiled SEG code fragments for statements and expressions.

Forfeited into the public domain with NO WARRANTY. Read LICENSE for details.

The data structures defined in this module hold fragments of x86-64 assembly
generated internally to the `x86_generator` module. Code generation is a
matter of generating small fragments and then concatenating them into bigger
and bigger ones.
"""
import dataclasses
import itertools

from seg_types import Type
from typing import Sequence


@dataclasses.dataclass
class Statement:
  """Contains compiled code that executes a statement.

  Attributes:
    code: Assembly lines (labels and indented instructions) that implement a
        sequence of SEG statements.
  """
  code: list[str]


@dataclasses.dataclass
class Expression:
  """Contains compiled code that calculates an expression.

  Attributes:
    typeinfo: Type of the value that `code` leaves behind. If this is a
        floating type, the value is in xmm0; otherwise it is in rax. This is
        usually, but not always, the `result_type` of the expression's AST
        node: comparisons and logical operations always leave an integer 0 or
        1 in rax, for instance, and variables are loaded as their declared
        type.
    code: Assembly that computes the value. The code may use rbx, xmm1 and
        the machine stack as scratch space, but leaves the stack as it found
        it.
  """
  typeinfo: Type
  code: list[str] = dataclasses.field(default_factory=list)


def chain_statements(statements: Sequence[Statement]) -> Statement:
  """Combine a sequence of Statements into one big Statement."""
  return Statement(code=list(itertools.chain(*(s.code for s in statements))))
