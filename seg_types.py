"""Type metadata for SEG values and variables.

Forfeited into the public domain with NO WARRANTY. Read LICENSE for details.

SEG has five scalar types and no way to define more. Types are compared for
identity all over the parser (promotion) and the code generator (register
class, literal pool keys), so they are plain enum members rather than the
class hierarchy a richer language would want.
"""

import enum


class Type(enum.Enum):
  """The types a SEG value or variable can have."""
  INT = 'int'
  FLOAT = 'float'
  BOOL = 'bool'
  CHAR = 'char'
  STRING = 'string'

  def __str__(self):
    return self.value

  @property
  def is_floating(self) -> bool:
    """Whether values of this type live in the floating-point registers."""
    return self is Type.FLOAT

  @property
  def is_pooled(self) -> bool:
    """Whether literals of this type are kept in the read-only literal pool.

    Integer literals are encoded as immediate operands instead.
    """
    return self is not Type.INT


def from_keyword(keyword: str) -> Type:
  """Map a type keyword (e.g. `'float'`) to its Type."""
  try:
    return Type(keyword)
  except ValueError:
    raise ValueError(f'{keyword!r} is not a SEG type keyword') from None
