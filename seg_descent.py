"""Utilities for walking SEG syntax trees.

Forfeited into the public domain with NO WARRANTY. Read LICENSE for details.

The code generator needs a couple of whole-program passes before it emits any
instructions (gathering literals for the pool and declarations for the data
section), and both must see nodes in source order. `depth_first` provides
that: a pre-order traversal whose children are visited in the order their
fields are declared in `seg_parser`, which is also the order they appear in
the program text. `instances` is a convenience built on top of it.
"""

import seg_parser

from typing import Callable, TypeVar


TNode = TypeVar('TNode', bound=seg_parser.AstNode)
TState = TypeVar('TState')
TResult = TypeVar('TResult')


def depth_first(callback: Callable[[seg_parser.AstNode, TState], TResult],
                ast: seg_parser.AstNode, state: TState) -> TResult:
  """Pre-order, left-to-right traversal of a syntax tree.

  Calls `callback` on `ast` and then on each of its descendants, parents before
  children and earlier children (in source order) before later ones.

  Args:
    callback: Called for each node in the tree. The second argument is the
        `state` argument to this function.
    ast: Root of the tree to traverse.
    state: State object to pass to all calls of `callback`.

  Returns:
    Whatever the final call to `callback` returned.
  """
  todos = [ast]
  result = None
  while todos:
    node = todos.pop()
    result = callback(node, state)
    todos.extend(reversed(children(node)))
  return result  # type: ignore


def instances(ast: seg_parser.AstNode, node_type: type[TNode]) -> list[TNode]:
  """Collect all nodes of `node_type` in a tree, in source order."""
  found: list[TNode] = []

  def callback(node: seg_parser.AstNode, state: list[TNode]):
    if isinstance(node, node_type): state.append(node)

  depth_first(callback, ast, found)
  return found


def children(ast: seg_parser.AstNode) -> list[seg_parser.AstNode]:
  """Retrieve the child nodes of a syntax tree node, in source order."""
  kids: list[seg_parser.AstNode] = []
  for sub_ast in ast.__dict__.values():
    if isinstance(sub_ast, (tuple, list)):
      kids.extend(n for n in sub_ast if isinstance(n, seg_parser.AstNode))
    elif isinstance(sub_ast, seg_parser.AstNode):
      kids.append(sub_ast)
  return kids
