"""
Recognizes and classifies textual FLEX instruction tokens.

A token is matched once against the five instruction grammars and turned
into a frozen instruction object carrying its parsed index segments.
"""
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Tuple, Union

from flex.flex_datatypes import FlexError, ErrorKind


PUSH_EXPR = re.compile(r"^\$[a-z-]+(\.([0-9]+|\$[a-z-]+|[a-z-]+|&0))*$")
POP_EXPR = re.compile(r"^&[a-z-]+(\.(\$[a-z-]+|&0|[a-z-]+|[0-9]+))*$")
CLASS_EXPR = re.compile(r"^:\$[a-z-]+(\.([0-9]+|[a-z-]+|\$[a-z-]+|&0))*$")
CALL = re.compile(r"^[a-z-]+$")
VAR = re.compile(r"^\$[a-z-]+$")
INTEGER = re.compile(r"^[0-9]+$")

SHARP_OPS = ("nop", "return", "exit", "flush", "put", "clear")
ARITHMETIC_OPS = ("+", "-", "*", "/")


# =================================================================
# Index segments
# =================================================================

@dataclass(frozen=True)
class IndexSegment:
    """An array position, e.g. `2` in `$xs.2`."""
    value: int


@dataclass(frozen=True)
class KeySegment:
    """A literal dict key, e.g. `name` in `$user.name`."""
    key: str


@dataclass(frozen=True)
class VarSegment:
    """A variable whose current value is the index, e.g. `$i` in `$xs.$i`."""
    name: str


class _StackSegment:
    """The `&0` sentinel: pop the stack and use the value as the index."""
    def __repr__(self):
        return "StackSegment<&0>"


STACK_SEGMENT = _StackSegment()

Segment = Union[IndexSegment, KeySegment, VarSegment, _StackSegment]


# =================================================================
# Instructions
# =================================================================

@dataclass(frozen=True)
class PushExpr:
    text: str
    name: str
    segments: Tuple[Segment, ...] = ()


@dataclass(frozen=True)
class PopExpr:
    text: str
    name: str
    segments: Tuple[Segment, ...] = ()


@dataclass(frozen=True)
class ClassExpr:
    text: str
    name: str
    segments: Tuple[Segment, ...]


@dataclass(frozen=True)
class Call:
    text: str
    name: str


@dataclass(frozen=True)
class Control:
    text: str
    op: str  # 'nop', 'return', ..., or an arithmetic operator


Instruction = Union[PushExpr, PopExpr, ClassExpr, Call, Control]


def is_push_expr(token: str) -> bool:
    return bool(PUSH_EXPR.match(token))


def is_pop_expr(token: str) -> bool:
    return bool(POP_EXPR.match(token))


def is_class_expr(token: str) -> bool:
    return bool(CLASS_EXPR.match(token))


def is_call(token: str) -> bool:
    # A lone `-` is the subtraction operator, not a function name.
    return bool(CALL.match(token)) and token not in ARITHMETIC_OPS


def is_var(token: str) -> bool:
    return bool(VAR.match(token))


def is_control(token: str) -> bool:
    if token in ARITHMETIC_OPS:
        return True
    return len(token) > 1 and token[0] in "#~" and token[1:] in SHARP_OPS


def parse_segment(text: str) -> Segment:
    if text == "&0":
        return STACK_SEGMENT
    if text.startswith("$"):
        return VarSegment(text[1:])
    if INTEGER.match(text):
        return IndexSegment(int(text))
    return KeySegment(text)


def _split(token: str, sigil: str) -> Tuple[str, Tuple[Segment, ...]]:
    head, *rest = token[len(sigil):].split(".")
    return head, tuple(parse_segment(s) for s in rest)


@lru_cache(maxsize=1024)
def classify(token: str) -> Instruction:
    """Classifies a token against the instruction grammars, in priority order."""
    if is_push_expr(token):
        name, segments = _split(token, "$")
        return PushExpr(token, name, segments)
    if is_pop_expr(token):
        name, segments = _split(token, "&")
        return PopExpr(token, name, segments)
    if is_class_expr(token):
        name, segments = _split(token, ":$")
        if not segments:
            raise FlexError(ErrorKind.MALFORMED_INSTRUCTION,
                            "Invalid class expression: cannot use class expressions in non-class context")
        return ClassExpr(token, name, segments)
    if is_call(token):
        return Call(token, token)
    if is_control(token):
        op = token if token in ARITHMETIC_OPS else token[1:]
        return Control(token, op)
    raise FlexError(ErrorKind.MALFORMED_INSTRUCTION, "Malformed instruction")
