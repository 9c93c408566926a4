"""Tests for the x86_generator module.

Forfeited into the public domain with NO WARRANTY. Read LICENSE for details.

Most tests here compile small programs all the way from source text, so they
are as much integration tests for the front end as unit tests of the code
generator.
"""

import textwrap
import unittest
import warnings

import seg_lexer
import seg_parser
import x86_generator

from seg_types import Type
from typing import Optional, Sequence


###############
### Helpers ###
###############


def generate(source_text: str,
             session: Optional[x86_generator.Session] = None) -> list[str]:
  """Compile source text to assembly, ignoring any warnings."""
  with warnings.catch_warnings():
    warnings.simplefilter('ignore')
    ast = seg_parser.parse(seg_lexer.tokenize(source_text))
  return x86_generator.program(ast, session)


def section(code: Sequence[str], start: str, end: str) -> list[str]:
  """Lines strictly between the line `start` and the next line `end`."""
  begin = code.index(start) + 1
  return list(code[begin:code.index(end, begin)])


def rodata(code: Sequence[str]) -> list[str]:
  return section(code, '    .section .rodata', '    .data')


def data(code: Sequence[str]) -> list[str]:
  return section(code, '    .data', '    .text')


def text(code: Sequence[str]) -> list[str]:
  """Everything after the entry point label, epilogue included."""
  return list(code[code.index('main:') + 1:])


#############
### Tests ###
#############


class X86GeneratorTest(unittest.TestCase):
  """Test harness for testing the x86_generator module."""

  def test_integer_declaration(self):
    """A complete program with one integer declaration."""
    self.assertEqual(generate('int x = 5 + 3;'), [
        '    .intel_syntax noprefix',
        '    .section .rodata',
        '    .data',
        'x: .quad 0',
        '    .text',
        '    .global main',
        'main:',
        '    mov rax, 3',
        '    push rax',
        '    mov rax, 5',
        '    pop rbx',
        '    add rax, rbx',
        '    mov qword ptr [rip + x], rax',
        '    mov rax, qword ptr [rip + x]',
        '    ret',
    ])

  def test_float_promotion(self):
    """A promoted int literal is pooled and loaded as a float."""
    code = generate('float y = 1 + 2.0;')
    self.assertEqual(rodata(code), [
        'L_literal_0: .double 1',
        'L_literal_1: .double 2.0',
    ])
    self.assertEqual(data(code), ['y: .double 0.0'])
    self.assertEqual(text(code), [
        '    movsd xmm0, qword ptr [rip + L_literal_1]',
        '    sub rsp, 8',
        '    movsd qword ptr [rsp], xmm0',
        '    movsd xmm0, qword ptr [rip + L_literal_0]',
        '    movsd xmm1, qword ptr [rsp]',
        '    add rsp, 8',
        '    addsd xmm0, xmm1',
        '    movsd qword ptr [rip + y], xmm0',
        '    movsd xmm0, qword ptr [rip + y]',
        '    movq rax, xmm0',
        '    ret',
    ])

  def test_boolean_and(self):
    """Bool literals are pooled once each; && is a bitwise and."""
    code = generate('bool b = true && false;')
    self.assertEqual(rodata(code), [
        'L_literal_0: .quad 1',
        'L_literal_1: .quad 0',
    ])
    self.assertEqual(data(code), ['b: .byte 0'])
    self.assertEqual(text(code), [
        '    mov rax, qword ptr [rip + L_literal_1]',
        '    push rax',
        '    mov rax, qword ptr [rip + L_literal_0]',
        '    pop rbx',
        '    and rax, rbx',
        '    mov byte ptr [rip + b], al',
        '    movzx rax, byte ptr [rip + b]',
        '    ret',
    ])

  def test_if_else(self):
    """Compare and branch; each branch's declaration has its own storage."""
    code = generate(
        'int x = 5; if (x > 3) { int y = 1; } else { int y = 0; }')
    self.assertEqual(data(code), ['x: .quad 0', 'y: .quad 0', 'y.1: .quad 0'])
    self.assertEqual(text(code), [
        '    mov rax, 5',
        '    mov qword ptr [rip + x], rax',
        '    mov rax, 3',
        '    push rax',
        '    mov rax, qword ptr [rip + x]',
        '    pop rbx',
        '    cmp rax, rbx',
        '    setg al',
        '    movzx rax, al',
        '    cmp rax, 0',
        '    je L_else_0',
        '    mov rax, 1',
        '    mov qword ptr [rip + y], rax',
        '    jmp L_endif_0',
        'L_else_0:',
        '    mov rax, 0',
        '    mov qword ptr [rip + y.1], rax',
        'L_endif_0:',
        '    mov rax, qword ptr [rip + x]',
        '    ret',
    ])

  def test_if_without_else(self):
    code = generate('if (true) { int a = 1; }')
    self.assertEqual(text(code), [
        '    mov rax, qword ptr [rip + L_literal_0]',
        '    cmp rax, 0',
        '    je L_endif_0',
        '    mov rax, 1',
        '    mov qword ptr [rip + a], rax',
        '    jmp L_endif_0',
        'L_endif_0:',
        '    mov rax, 0',  # No top-level declarations.
        '    ret',
    ])

  def test_nested_if_labels_are_unique(self):
    code = generate(textwrap.dedent("""\
        if (true) {
          if (false) { int a = 1; } else { int a = 2; }
        } else if (true) {
          int b = 3;
        } else {
          int c = 4;
        }
        if (false) { }
        """))
    labels = [line for line in code
              if line.startswith('L_') and line.endswith(':')]
    self.assertEqual(labels, [
        'L_else_1:', 'L_endif_1:',  # Inner if.
        'L_else_0:',                # Outer else...
        'L_else_2:', 'L_endif_2:',  # ...which is an if of its own.
        'L_endif_0:',
        'L_endif_3:',
    ])
    self.assertEqual(len(labels), len(set(labels)))

  def test_slots_in_declaration_order(self):
    """One zeroed slot per declaration, sized by type, in source order."""
    code = generate(textwrap.dedent("""\
        int a = 1;
        if (a > 0) { float b = 1.0; }
        char c = 'x';
        string s = "s";
        bool d = true;
        int a = 2;
        """))
    self.assertEqual(data(code), [
        'a: .quad 0',
        'b: .double 0.0',
        'c: .byte 0',
        's: .quad 0',
        'd: .byte 0',
        'a.1: .quad 0',
    ])
    # The exit status is the last top-level variable, the second `a`.
    self.assertEqual(code[-2:],
                     ['    mov rax, qword ptr [rip + a.1]', '    ret'])

  def test_literal_pool(self):
    """Pooled literals are deduplicated by text and type, in source order."""
    code = generate(textwrap.dedent("""\
        float f = 1.5;
        float g = 1.5;
        bool b = 1.5;
        char c = '\\n';
        char d = 'A';
        string s = "hi\\tthere";
        bool t = false;
        int i = false;
        int j = 7;
        """))
    self.assertEqual(rodata(code), [
        'L_literal_0: .double 1.5',
        'L_literal_1: .quad 1',
        'L_literal_2: .byte 10',
        'L_literal_3: .byte 65',
        'L_literal_4: .string "hi\\tthere"',
        'L_literal_5: .quad 0',
    ])
    body = text(code)
    self.assertIn('    mov rax, 0', body)  # int i = false;
    self.assertIn('    mov rax, 7', body)
    self.assertIn('    lea rax, [rip + L_literal_4]', body)
    self.assertIn('    movzx rax, byte ptr [rip + L_literal_3]', body)

  def test_pool_is_deterministic(self):
    source_text = 'float a = 2.5 * 3; string s = "x"; float b = 3 * 2.5;'
    self.assertEqual(generate(source_text), generate(source_text))

  def test_register_class_conversions(self):
    """Integer values feeding float arithmetic are converted, and back."""
    code = generate('int i = 2; float f = i + 0.5; int k = f > i;')
    body = text(code)
    # `i + 0.5`: i is promoted, so its loaded value is converted.
    self.assertEqual(body[2:11], [
        '    movsd xmm0, qword ptr [rip + L_literal_0]',
        '    sub rsp, 8',
        '    movsd qword ptr [rsp], xmm0',
        '    mov rax, qword ptr [rip + i]',
        '    cvtsi2sd xmm0, rax',
        '    movsd xmm1, qword ptr [rsp]',
        '    add rsp, 8',
        '    addsd xmm0, xmm1',
        '    movsd qword ptr [rip + f], xmm0',
    ])
    # `f > i`: compared as floats, producing an integer.
    self.assertEqual(body[11:23], [
        '    mov rax, qword ptr [rip + i]',
        '    cvtsi2sd xmm0, rax',
        '    sub rsp, 8',
        '    movsd qword ptr [rsp], xmm0',
        '    movsd xmm0, qword ptr [rip + f]',
        '    movsd xmm1, qword ptr [rsp]',
        '    add rsp, 8',
        '    ucomisd xmm0, xmm1',
        '    seta al',
        '    movzx rax, al',
        '    mov qword ptr [rip + k], rax',
        '    mov rax, qword ptr [rip + k]',
    ])

  def test_float_condition_is_truncated(self):
    code = generate('float f = 0.5; if (f) { }')
    self.assertEqual(text(code)[2:5], [
        '    movsd xmm0, qword ptr [rip + f]',
        '    cvttsd2si rax, xmm0',
        '    cmp rax, 0',
    ])

  def test_integer_operations(self):
    for op_text, instructions in [
        ('-', ['    sub rax, rbx']),
        ('*', ['    imul rax, rbx']),
        ('/', ['    cqo', '    idiv rbx']),
        ('||', ['    or rax, rbx']),
        ('^', ['    xor rax, rbx']),
        ('==', ['    cmp rax, rbx', '    sete al', '    movzx rax, al']),
        ('!=', ['    cmp rax, rbx', '    setne al', '    movzx rax, al']),
        ('<', ['    cmp rax, rbx', '    setl al', '    movzx rax, al']),
        ('<=', ['    cmp rax, rbx', '    setle al', '    movzx rax, al']),
        ('>=', ['    cmp rax, rbx', '    setge al', '    movzx rax, al']),
    ]:
      with self.subTest(op=op_text):
        body = text(generate(f'int x = 9 {op_text} 4;'))
        self.assertEqual(body[:4], [
            '    mov rax, 4', '    push rax', '    mov rax, 9', '    pop rbx'])
        self.assertEqual(body[4:-3], instructions)

  def test_float_operations(self):
    for op_text, instructions in [
        ('-', ['    subsd xmm0, xmm1']),
        ('/', ['    divsd xmm0, xmm1']),
        ('<', ['    ucomisd xmm0, xmm1', '    setb al', '    movzx rax, al']),
        ('<=', ['    ucomisd xmm0, xmm1', '    setbe al', '    movzx rax, al']),
        ('>=', ['    ucomisd xmm0, xmm1', '    setae al', '    movzx rax, al']),
        ('==', ['    ucomisd xmm0, xmm1', '    sete al', '    movzx rax, al']),
        ('!=', ['    ucomisd xmm0, xmm1', '    setne al', '    movzx rax, al']),
    ]:
      with self.subTest(op=op_text):
        body = text(generate(f'float x = 9.0 {op_text} 4.0;'))
        self.assertEqual(body[6:-4], instructions)

  def test_not(self):
    code = generate('bool n = !true;')
    self.assertEqual(text(code), [
        '    mov rax, qword ptr [rip + L_literal_0]',
        '    cmp rax, 0',
        '    sete al',
        '    movzx rax, al',
        '    mov byte ptr [rip + n], al',
        '    movzx rax, byte ptr [rip + n]',
        '    ret',
    ])

  def test_string_declaration(self):
    code = generate('string s = "hi";')
    self.assertEqual(rodata(code), ['L_literal_0: .string "hi"'])
    self.assertEqual(text(code)[:2], [
        '    lea rax, [rip + L_literal_0]',
        '    mov qword ptr [rip + s], rax',
    ])

  def test_promoted_char_and_bool_literals(self):
    """Non-numeric literals promoted to float become numeric constants."""
    code = generate("float f = 'A' + 1.0; float g = true + 0.5;")
    self.assertEqual(rodata(code), [
        'L_literal_0: .double 65.0',
        'L_literal_1: .double 1.0',
        'L_literal_2: .double 1.0',
        'L_literal_3: .double 0.5',
    ])
    with self.assertRaisesRegex(RuntimeError, 'as a floating-point value'):
      generate('float h = "str" + 1.0;')

  def test_retyped_literals_keep_their_written_type(self):
    """Equal texts written as different types get separate pool entries."""
    code = generate("float f = '5' + 1.0; float g = 5 + 1.0;")
    self.assertEqual(rodata(code), [
        'L_literal_0: .double 53.0',
        'L_literal_1: .double 1.0',
        'L_literal_2: .double 5',
    ])
    code = generate('bool b = \'0\'; bool c = "0"; bool n = \'\\0\';')
    self.assertEqual(rodata(code), [
        'L_literal_0: .quad 1',
        'L_literal_1: .quad 1',
        'L_literal_2: .quad 0',
    ])

  def test_undefined_variable(self):
    with self.assertRaisesRegex(
        RuntimeError, r'Undefined variable: nope \(line 2\)'):
      generate('int x = 1;\nint y = nope + x;')

  def test_identifier_uses_last_declaration(self):
    """Storage is assigned before code, so lookups see the final shadow."""
    code = generate('int x = 1; int y = x; float x = 2.0;')
    self.assertIn('    movsd xmm0, qword ptr [rip + x.1]', text(code))

  def test_options_and_session(self):
    session = x86_generator.Session(options=x86_generator.ProgramOptions(
        entry_symbol='_start', exit_with_last_variable=False))
    ast = seg_parser.parse(seg_lexer.tokenize('int x = 1; char c = \'c\';'))
    code = x86_generator.program(ast, session)
    self.assertEqual(code[6:9], ['    .text', '    .global _start', '_start:'])
    self.assertEqual(code[-2:], ['    mov rax, 0', '    ret'])
    self.assertEqual([s.label for s in session.symbols], ['c', 'x'])
    self.assertEqual(dict(session.literals),
                     {('c', Type.CHAR, Type.CHAR): 'L_literal_0'})

  def test_empty_program(self):
    self.assertEqual(generate('')[-2:], ['    mov rax, 0', '    ret'])

  def test_literal_pool_miss(self):
    pool = x86_generator.LiteralPool()
    self.assertEqual(pool.add('1.0', Type.FLOAT), 'L_literal_0')
    self.assertEqual(pool.add('1.0', Type.FLOAT), 'L_literal_0')
    self.assertEqual(pool.label('1.0', Type.FLOAT), 'L_literal_0')
    with self.assertRaisesRegex(RuntimeError, 'not found in the literal pool'):
      pool.label('1.0', Type.BOOL)


if __name__ == '__main__':
  unittest.main()
