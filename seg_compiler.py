#!/usr/bin/python3
"""The SEG compiler.

Forfeited into the public domain with NO WARRANTY. Read LICENSE for details.

This program compiles SEG, a tiny language of typed variable declarations and
if/else statements, into assembly language. A SEG program looks like this:

    int x = 5 + 3;
    float y = x * 2.5;         // Mixed arithmetic is promoted to float.
    bool big = y > 10.0;
    if (big) {
      string msg = "big";
    } else if (x == 8) {
      char c = 'e';
    }

There are five types (int, float, bool, char and string), no loops, no
functions, and no assignment besides declaration. Declaring a name a second
time shadows the earlier declaration. The compiled program's exit status is
the value of the last variable declared at top level.

The only target today is x86-64 (GNU assembler, Intel syntax). To add more,
write a target-specific subclass of `Compiler` and add it to the dict
returned by `_compiler_classes`.

If all you want to know is how to run the compiler, just execute this program
with the -h flag.
"""

import abc
import argparse
import dataclasses
import functools
import sys
import warnings

import seg_lexer
import seg_parser
import seg_symbols

from typing import Mapping, Optional, Sequence


__version__ = 'SEG compiler 0.1 circa October 2026'


def _define_flags():
  """Defines an `ArgumentParser` for command-line flags used by this program."""
  flags = argparse.ArgumentParser(
      prog='segc',
      description=(__version__),
      formatter_class=argparse.ArgumentDefaultsHelpFormatter)

  flags.add_argument('source', nargs='?',
                     help='Program source code file to compile',
                     type=str)

  flags.add_argument('-o', '--output', default='output.s',
                     help='Where to write the resulting assembly code',
                     metavar='FILENAME', type=str)

  flags.add_argument('-t', '--target', default='x86-64',
                     help='Compilation target: targets are described in -v',
                     choices=_compiler_classes().keys(),
                     type=str)

  flags.add_argument('--ast',
                     default=True, action=argparse.BooleanOptionalAction,
                     help='Print the syntax tree to standard output')

  flags.add_argument('--symbols',
                     default=False, action=argparse.BooleanOptionalAction,
                     help='Print the symbol table to standard output')

  flags.add_argument('-v', '--version',
                     default=False, action=argparse.BooleanOptionalAction,
                     help='Print version and target option listing, then exit')

  return flags


##########################
#### COMPILER CLASSES ####
##########################


@functools.cache
def _compiler_classes() -> Mapping[str, type['Compiler']]:
  """Construct mapping from target strings to Compiler subclasses.

  Keys in this dict are valid arguments to the -t flag.

  Returns:
    The mapping described.
  """
  return {
      'x86-64': X86_64Compiler,
  }


@dataclasses.dataclass
class Compilation:
  """Everything produced by compiling a program.

  Attributes:
    ast: Typed abstract syntax tree for the program.
    symbols: The program's symbol table, as populated by code generation.
    assembly: Target-specific assembly code, one line per item.
  """
  ast: seg_parser.Program
  symbols: seg_symbols.SymbolTable
  assembly: Sequence[str]


class Compiler(abc.ABC):
  """Base class for a SEG compiler.

  Subclasses of this class will fill in the abstract methods for specific
  architectures.

  Note that the first line of Compiler subclass docstrings will be used
  in the target listing output for the -v flag.
  """

  @classmethod
  @abc.abstractmethod
  def define_flags(cls, flags: argparse.ArgumentParser):
    """Add target-specific flags to the compiler's command-line flags."""

  @classmethod
  @abc.abstractmethod
  def from_flags(cls, FLAGS: argparse.Namespace) -> 'Compiler':
    """Construct a target-specific Compiler configured by command-line flags."""

  def compile(self, source_text: str) -> Compilation:
    """Compile a source text into a target-specific assembly format.

    Args:
      source_text: Complete source code for the program to compile.

    Returns:
      The program's syntax tree, symbol table, and target-specific assembly
      code.

    Raises:
      RuntimeError: the program has a syntax error or refers to an undeclared
          variable.
    """
    tokens = seg_lexer.tokenize(source_text)
    ast = seg_parser.parse(tokens)
    symbols, assembly = self._generate(ast)
    return Compilation(ast=ast, symbols=symbols, assembly=assembly)

  @abc.abstractmethod
  def _generate(
      self,
      ast: seg_parser.Program,
  ) -> tuple[seg_symbols.SymbolTable, Sequence[str]]:
    """Target-specific code generation for parsed SEG programs.

    Args:
      ast: Typed abstract syntax tree for a SEG program.

    Returns:
      - [0] The symbol table built during code generation.
      - [1] Target-specific assembly code.
    """


@dataclasses.dataclass
class X86_64Compiler(Compiler):
  """x86-64 GNU assembler, Intel syntax

  This compiler subclass generates assembly for 64-bit x86 processors in the
  dialect understood by GNU `as` after `.intel_syntax noprefix`.

  Attributes:
    entry_symbol: Global symbol that labels the start of the program's code.
    exit_with_last_variable: Whether the program returns the value of its last
        top-level variable (True) or always returns 0 (False).
  """
  entry_symbol: str = 'main'
  exit_with_last_variable: bool = True

  @classmethod
  def define_flags(cls, flags: argparse.ArgumentParser):
    """Add x86-64-specific flags to the compiler's command-line flags."""
    flags.add_argument('--x86-entry-symbol', default=cls.entry_symbol,
                       help=("<x86-64> Global symbol labelling the program's "
                             'code'),
                       metavar='SYMBOL', type=str)
    flags.add_argument('--x86-exit-with-last-variable',
                       default=cls.exit_with_last_variable,
                       action=argparse.BooleanOptionalAction,
                       help=('<x86-64> Return the value of the last top-level '
                             'variable as the exit status, rather than 0'))

  @classmethod
  def from_flags(cls, FLAGS: argparse.Namespace) -> Compiler:
    """Construct an X86_64Compiler configured by command-line flags."""
    return cls(entry_symbol=FLAGS.x86_entry_symbol,
               exit_with_last_variable=FLAGS.x86_exit_with_last_variable)

  def _generate(
      self,
      ast: seg_parser.Program,
  ) -> tuple[seg_symbols.SymbolTable, Sequence[str]]:
    """x86-64-specific code generation for parsed SEG programs."""
    import x86_generator
    session = x86_generator.Session(options=x86_generator.ProgramOptions(
        entry_symbol=self.entry_symbol,
        exit_with_last_variable=self.exit_with_last_variable))
    assembly = x86_generator.program(ast, session)
    return session.symbols, assembly


######################
#### MAIN PROGRAM ####
######################


def main(FLAGS: argparse.Namespace) -> int:
  """For when the compiler is run as a standalone executable.

  Returns:
    The program's exit status: 0 on success, 1 if the source couldn't be read
    or compiled, or the output couldn't be written.
  """
  # Print version and target information and exit, if requested.
  if FLAGS.version:
    print(__version__)
    print('Targets available:')
    for target, cls in _compiler_classes().items():
      detail = cls.__doc__.splitlines()[0] if cls.__doc__ is not None else ''
      print(f'\t{target:16}{detail}')
    return 0

  if FLAGS.source is None:
    print('segc: error: no source file given', file=sys.stderr)
    return 1

  # Prepare compiler object for the selected target.
  try:
    compiler = _compiler_classes()[FLAGS.target].from_flags(FLAGS)
  except KeyError:
    raise ValueError(f'Unrecognised target architecture {FLAGS.target}')

  # Read, compile, and write.
  try:
    with open(FLAGS.source, 'r') as f:
      source_text = f.read()
    # Every diagnostic is shown, even repeats of the same text.
    with warnings.catch_warnings():
      warnings.simplefilter('always')
      compilation = compiler.compile(source_text)
    with open(FLAGS.output, 'w') as f:
      f.write('\n'.join(compilation.assembly) + '\n')
  except (RuntimeError, OSError) as e:
    print(f'segc: error: {e}', file=sys.stderr)
    return 1

  if FLAGS.ast: print('\n'.join(seg_parser.ast_text(compilation.ast)))
  if FLAGS.symbols:
    print('\n'.join(seg_symbols.symbol_table_text(compilation.symbols)))
  print(f'Compilation successful. Assembly code generated in {FLAGS.output}')
  return 0


def cli(argv: Optional[Sequence[str]] = None) -> int:
  """Parse command-line flags (`sys.argv` if None) and run `main`."""
  # Define command-line flags, including target-specific ones.
  flags = _define_flags()
  for _, compiler_class in sorted(_compiler_classes().items()):
    compiler_class.define_flags(flags)
  return main(flags.parse_args(argv))


if __name__ == '__main__':
  sys.exit(cli())
