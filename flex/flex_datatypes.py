"""
Defines the core data types for the FLEX runtime.

This module provides the runtime value classes, the error taxonomy,
the evaluation Stack and the Context ("API") that bundles the Stack
with the variable and function tables.
"""

import collections.abc
import logging
from abc import ABC
from collections import UserDict
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

logger = logging.getLogger(__name__)


# =================================================================
# Errors
# =================================================================

class ErrorKind(Enum):
    STACK_UNDERFLOW = "StackUnderflow"
    UNDEFINED_VARIABLE = "UndefinedVariable"
    UNDEFINED_FUNCTION = "UndefinedFunction"
    NOT_A_FUNCTION = "NotAFunction"
    SHAPE_MISMATCH = "ShapeMismatch"
    INVALID_INDEX = "InvalidIndex"
    UNKNOWN_TYPE = "UnknownType"
    MALFORMED_INSTRUCTION = "MalformedInstruction"
    INVALID_API = "InvalidApi"
    UNSAFE_CONTEXT = "UnsafeContext"
    TYPE_MISMATCH = "TypeMismatch"
    DIVISION_BY_ZERO = "DivisionByZero"
    NUMBER_OVERFLOW = "NumberOverflow"
    RECURSION_LIMIT = "RecursionLimit"
    NATIVE_FAILURE = "NativeFailure"
    TERMINATED = "Terminated"


class FlexError(Exception):
    """An error raised while evaluating FLEX code.

    `kind` is what callers should branch on; `trace` lists the textual
    form of every instruction the error unwound through, innermost first.
    """
    def __init__(self, kind: ErrorKind, message: str, trace: Optional[List[str]] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.trace: List[str] = list(trace or [])

    def annotated(self, instruction: str) -> 'FlexError':
        """Returns a copy of this error prefixed with the instruction it escaped from."""
        return FlexError(self.kind, f"On `{instruction}': {self.message}", self.trace + [instruction])

    def __repr__(self) -> str:
        return f"FlexError({self.kind.value}, {self.message!r})"


class Termination(FlexError):
    """The `exit` signal. Never annotated, never recoverable from FLEX code."""
    def __init__(self):
        super().__init__(ErrorKind.TERMINATED, "dead")


# =================================================================
# Values
# =================================================================

class FlexNull:
    """FLEX's own null. Distinct from Python's None, which marks absence."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "FNULL"

    def __bool__(self) -> bool:
        return False


FNULL = FlexNull()


class FlexCallable(ABC):
    """Abstract base class for every function value in FLEX."""
    pass


class NativeFunction(FlexCallable):
    """A host-provided capability: `fn(context) -> context`."""
    def __init__(self, fn: Callable[['Context'], 'Context'], name: Optional[str] = None):
        if not callable(fn):
            raise TypeError(f"Native function must be callable, not {type(fn)}")
        self.fn = fn
        self.name = name or getattr(fn, '__name__', '<native>')

    def __call__(self, context: 'Context') -> Any:
        return self.fn(context)

    def __repr__(self) -> str:
        return f"<NativeFunction {self.name}>"

    def __eq__(self, other):
        if not isinstance(other, NativeFunction):
            return NotImplemented
        return self.fn == other.fn

    def __hash__(self):
        return hash(self.fn)


class Program(FlexCallable, collections.abc.Sequence):
    """An immutable, ordered sequence of FLEX instructions."""
    def __init__(self, instructions: Iterable[Any] = ()):
        self.instructions = tuple(instructions)

    def __getitem__(self, index):
        return self.instructions[index]

    def __len__(self) -> int:
        return len(self.instructions)

    def __repr__(self) -> str:
        return f"Program({list(self.instructions)!r})"

    def __eq__(self, other):
        if isinstance(other, Program):
            return self.instructions == other.instructions
        if isinstance(other, (list, tuple)):
            return self.instructions == tuple(other)
        return NotImplemented

    def __hash__(self):
        return hash(self.instructions)


class FlexArray(collections.abc.MutableSequence):
    """A FLEX array value."""
    def __init__(self, items: Iterable[Any] = ()):
        self.items = list(items)

    def __getitem__(self, index):
        return self.items[index]

    def __setitem__(self, index, value):
        self.items[index] = value

    def __delitem__(self, index):
        del self.items[index]

    def __len__(self) -> int:
        return len(self.items)

    def insert(self, index, value):
        self.items.insert(index, value)

    def __repr__(self) -> str:
        return f"FlexArray({self.items!r})"

    def __eq__(self, other):
        if isinstance(other, FlexArray):
            return self.items == other.items
        if isinstance(other, list):
            return self.items == other
        return NotImplemented

    __hash__ = None


class FlexDict(UserDict):
    """A FLEX dict value. Keys are always text."""
    def __setitem__(self, key, value):
        if not isinstance(key, str):
            raise TypeError(f"FlexDict key must be a str, not {type(key)}")
        super().__setitem__(key, value)

    def __repr__(self) -> str:
        return f"FlexDict({self.data!r})"


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def type_of(data: Any) -> str:
    """Structural classification of literal or runtime data."""
    if data is FNULL:
        return "null"
    if data is None:
        return "js-null"
    if isinstance(data, FlexCallable):
        return "function"
    if isinstance(data, FlexArray):
        return "array"
    if isinstance(data, FlexDict):
        return "dict"
    if isinstance(data, bool):
        return "boolean"
    if is_number(data):
        return "number"
    if isinstance(data, str):
        return "instr"
    if isinstance(data, (list, tuple)):
        if len(data) == 1 and isinstance(data[0], str):
            return "string"
        return "function"
    if isinstance(data, collections.abc.Mapping) and len(data) == 1:
        if "@" in data:
            return "array"
        if "!" in data:
            return "dict"
    return "unknown"


def value_type(value: Any) -> str:
    """Runtime type name of a FLEX value, as compared by the arithmetic operators."""
    if isinstance(value, str):
        return "string"
    kind = type_of(value)
    if kind in ("null", "boolean", "number", "function", "array", "dict"):
        return kind
    return "unknown"


# =================================================================
# Stack and Context
# =================================================================

class Stack:
    """The FLEX operand stack."""
    def __init__(self, items: Iterable[Any] = ()):
        self._items: List[Any] = list(items)

    def push(self, value: Any):
        self._items.append(value)

    def pop(self) -> Any:
        if not self._items:
            raise FlexError(ErrorKind.STACK_UNDERFLOW, "stack underflow (trying to pop an empty stack)")
        return self._items.pop()

    def flush(self):
        self._items = []

    def snapshot(self) -> tuple:
        """Read-only view of the stack, bottom first."""
        return tuple(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"<Stack depth={len(self._items)}>"


class Context:
    """The unit of interpreter state: Stack + Vars + Functions."""
    def __init__(self, stack: Stack, vars: Dict[str, Any], functions: Dict[str, FlexCallable]):
        self.stack = stack
        self.vars = vars
        self.functions = functions

    def register(self, name: str, fn: Any):
        """Binds a host callable (or Program literal) into the function table."""
        self.functions[name] = as_callable(fn, name)

    def __repr__(self) -> str:
        funcs = ', '.join(self.functions.keys())
        return f"<Context depth={len(self.stack)} vars=[{', '.join(self.vars.keys())}] functions=[{funcs}]>"


def as_callable(fn: Any, name: Optional[str] = None) -> FlexCallable:
    if isinstance(fn, FlexCallable):
        return fn
    if isinstance(fn, (list, tuple)):
        return Program(fn)
    return NativeFunction(fn, name)


UNSAFE_MESSAGE = "Unsafe: unknown api alteration"


def _check_context(candidate: Any):
    for key in ("stack", "vars", "functions"):
        if not hasattr(candidate, key):
            raise ValueError(f"missing `{key}'")
    if not isinstance(candidate.stack, Stack):
        raise TypeError("invalid stack")
    for key in ("vars", "functions"):
        table = getattr(candidate, key)
        if not isinstance(table, collections.abc.MutableMapping):
            raise TypeError(f"invalid {key}")


def ensure_safe(candidate: Any) -> Context:
    """Admits `candidate` as a Context or raises a single opaque UnsafeContext error."""
    try:
        _check_context(candidate)
    except (ValueError, TypeError) as e:
        logger.debug("rejected context %r: %s", candidate, e)
        raise FlexError(ErrorKind.UNSAFE_CONTEXT, UNSAFE_MESSAGE) from e
    return candidate


def new_context(stack: Iterable[Any] = (), vars: Optional[Mapping[str, Any]] = None,
                functions: Optional[Mapping[str, Any]] = None) -> Context:
    """Builds a fresh, validated Context. Plain callables become NativeFunctions."""
    table = {name: as_callable(fn, name) for name, fn in (functions or {}).items()}
    return ensure_safe(Context(Stack(stack), dict(vars or {}), table))
