"""The symbol table for SEG programs.

Forfeited into the public domain with NO WARRANTY. Read LICENSE for details.

SEG has no nested scopes: every declaration, including those inside if/else
branches, lands in one flat table. Declaring a name that is already present
doesn't replace the old entry or raise an error. Instead, the new entry is
placed ahead of the old one, so that lookups find it first ("shadowing"), and
it gets storage of its own: the first declaration of `x` is stored at the
label `x`, the second at `x.1`, the third at `x.2`, and so on. (GNU `as`
accepts `.` in symbol names, and SEG identifiers can't contain one, so these
labels never collide with the name of another variable.)
"""

import dataclasses

from seg_types import Type
from typing import Iterator, Optional


@dataclasses.dataclass(frozen=True)
class Symbol:
  """A symbol table entry: one declared variable.

  Attributes:
    name: The variable's name in the SEG program.
    typeinfo: The variable's declared type.
    label: Assembly label for the variable's storage.
  """
  name: str
  typeinfo: Type
  label: str

  def __str__(self) -> str:
    return f'{self.name:12}{self.label:16}{self.typeinfo}'


class SymbolTable:
  """An append-only table of Symbols in which later entries shadow earlier ones.

  Iteration yields symbols most-recent first, i.e. in lookup order.
  """

  def __init__(self):
    self._symbols: list[Symbol] = []

  def add(self, name: str, typeinfo: Type) -> Symbol:
    """Declare a variable, shadowing any earlier one of the same name.

    Args:
      name: Name of the variable.
      typeinfo: Declared type of the variable.

    Returns:
      The new symbol, bearing a storage label unique within this table.
    """
    shadowed = sum(1 for s in self._symbols if s.name == name)
    label = name if not shadowed else f'{name}.{shadowed}'
    symbol = Symbol(name, typeinfo, label)
    self._symbols.insert(0, symbol)
    return symbol

  def lookup(self, name: str) -> Optional[Symbol]:
    """Find the most recent symbol called `name`, or None if there isn't one."""
    return next((s for s in self._symbols if s.name == name), None)

  def __getitem__(self, name: str) -> Symbol:
    symbol = self.lookup(name)
    if symbol is None: raise KeyError(f'Symbol {name} is unbound')
    return symbol

  def __contains__(self, name: str) -> bool:
    return self.lookup(name) is not None

  def __iter__(self) -> Iterator[Symbol]:
    return iter(self._symbols)

  def __len__(self) -> int:
    return len(self._symbols)


def symbol_table_text(symbols: SymbolTable) -> list[str]:
  """Produce a printable representation of a symbol table.

  Symbols are listed in declaration order, one per line, with name, storage
  label and type in columns. The format is meant for humans to read.

  Args:
    symbols: A symbol table.

  Returns:
    A sequence of strings (without newlines) that together represent the
    contents of the symbol table.
  """
  text = [f'{"Name":12}{"Label":16}Type']
  text.extend(str(s) for s in reversed(list(symbols)))
  return text
