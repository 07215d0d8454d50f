"""
The core FLEX interpreter, containing the Evaluator and the Indexer.
"""
import collections.abc
import logging
from typing import Any, Iterable, Optional

from flex.flex_datatypes import (
    Context, FlexError, ErrorKind, Termination, FNULL,
    FlexArray, FlexDict, FlexCallable, NativeFunction, Program,
    type_of, value_type, is_number, as_callable, ensure_safe
)
from flex.flex_grammar import (
    PushExpr, PopExpr, ClassExpr, Call, Control,
    IndexSegment, KeySegment, VarSegment, STACK_SEGMENT, INTEGER,
    classify, is_push_expr
)
from flex.flex_io import OutputSink, RecordingSink
from flex.flex_printer import Printer

logger = logging.getLogger(__name__)

# Nested Program calls allowed before evaluation fails with RECURSION_LIMIT.
DEFAULT_MAX_DEPTH = 100


class Indexer:
    """Reads and writes nested Array/Dict values along an index path."""

    def __init__(self, evaluator: 'Evaluator'):
        self.evaluator = evaluator

    def resolve_segment(self, segment: Any, context: Context) -> Any:
        """Turns one path segment into a concrete index. `&0` pops the stack now."""
        if segment is STACK_SEGMENT:
            return context.stack.pop()
        match segment:
            case IndexSegment(value=v):
                return v
            case KeySegment(key=k):
                return k
            case VarSegment(name=n):
                return self.evaluator.lookup_var(context, n)
            case int() | str():
                return segment
        raise FlexError(ErrorKind.INVALID_INDEX, f"Invalid index segment: {segment!r}")

    def _require_container(self, container: Any):
        if not isinstance(container, (FlexArray, FlexDict)):
            raise FlexError(ErrorKind.SHAPE_MISMATCH,
                            f"Cannot index into a value of type {value_type(container)}")

    def _key_for(self, container: Any, index: Any) -> Any:
        if is_number(index):
            if isinstance(index, float):
                if not index.is_integer():
                    raise FlexError(ErrorKind.INVALID_INDEX, f"Invalid index: `{index}'")
                index = int(index)
            if index < 0:
                raise FlexError(ErrorKind.INVALID_INDEX, f"Invalid index: `{index}'")
        elif not isinstance(index, str):
            raise FlexError(ErrorKind.INVALID_INDEX,
                            f"Invalid index of type {value_type(index)}")

        if isinstance(container, FlexArray):
            if isinstance(index, str):
                if not INTEGER.match(index):
                    raise FlexError(ErrorKind.SHAPE_MISMATCH,
                                    f"Expected array index not dict key: `{index}'")
                index = int(index)
            return index
        return str(index)

    def _read(self, container: Any, key: Any) -> Any:
        if isinstance(container, FlexArray):
            return container[key] if key < len(container) else None
        return container.get(key)

    def _write(self, container: Any, key: Any, value: Any):
        if isinstance(container, FlexArray):
            if key < len(container):
                container[key] = value
                return
            container.extend([FNULL] * (key - len(container)))
            container.append(value)
            return
        container[key] = value

    def _descends(self, outer_is_array: bool, slot: Any) -> bool:
        if outer_is_array:
            if isinstance(slot, FlexDict):
                raise FlexError(ErrorKind.SHAPE_MISMATCH, "Expected array but found dict")
            return isinstance(slot, FlexArray)
        return isinstance(slot, (FlexArray, FlexDict))

    def get(self, container: Any, path: Iterable[Any], context: Context) -> Any:
        """Returns the value at `path`, or None when the slot is absent."""
        self._require_container(container)
        outer_is_array = isinstance(container, FlexArray)
        segments = list(path)
        for i, segment in enumerate(segments):
            key = self._key_for(container, self.resolve_segment(segment, context))
            slot = self._read(container, key)
            if i < len(segments) - 1 and self._descends(outer_is_array, slot):
                container = slot
                continue
            return slot
        return container

    def set(self, container: Any, value: Any, path: Iterable[Any], context: Context) -> Any:
        """Overwrites the slot at `path` with `value` and returns the root container."""
        self._require_container(container)
        root = container
        outer_is_array = isinstance(container, FlexArray)
        segments = list(path)
        if not segments:
            raise FlexError(ErrorKind.INVALID_INDEX, "Empty index path")
        for i, segment in enumerate(segments):
            key = self._key_for(container, self.resolve_segment(segment, context))
            slot = self._read(container, key)
            if i < len(segments) - 1 and self._descends(outer_is_array, slot):
                container = slot
                continue
            self._write(container, key, value)
            break
        return root


class Evaluator:
    """The FLEX execution engine."""

    def __init__(self, output: Optional[OutputSink] = None, max_depth: int = DEFAULT_MAX_DEPTH):
        self.indexer = Indexer(self)
        self.output = output if output is not None else RecordingSink()
        self.printer = Printer()
        self.max_depth = max_depth
        self._depth = 0

    # -----------------------------------------------------------------
    # Entry point
    # -----------------------------------------------------------------

    def evaluate(self, context: Context, program: Any) -> Context:
        """Runs `program` against `context` and returns the context to use afterwards."""
        try:
            ensure_safe(context)
        except FlexError as e:
            raise FlexError(ErrorKind.INVALID_API, "Invalid API") from e

        if isinstance(program, Program):
            instructions = program
        elif isinstance(program, (list, tuple)):
            instructions = Program(program)
        else:
            raise FlexError(ErrorKind.MALFORMED_INSTRUCTION,
                            f"Expected a sequence of instructions, got {type(program).__name__}")

        if context.functions.get("main") is None:
            context.functions["main"] = instructions

        if self._depth >= self.max_depth:
            raise FlexError(ErrorKind.RECURSION_LIMIT,
                            f"Maximum call depth exceeded ({self.max_depth})")
        self._depth += 1
        try:
            return self._run_sequence(context, instructions)
        finally:
            self._depth -= 1

    def _run_sequence(self, context: Context, instructions: Program) -> Context:
        for instr in instructions:
            try:
                op = classify(instr) if type_of(instr) == "instr" else None
                if isinstance(op, Control) and op.op == "return":
                    return context
                context = self._execute(context, instr, op)
            except Termination:
                raise
            except FlexError as e:
                raise e.annotated(self.printer.pformat_instruction(instr)) from e
        return context

    def _execute(self, context: Context, instr: Any, op: Any) -> Context:
        match type_of(instr):
            case "boolean" | "number" | "null":
                context.stack.push(instr)
            case "function":
                context.stack.push(as_callable(instr))
            case "string" | "array" | "dict" | "js-null":
                context.stack.push(self.to_native(context, instr))
            case "instr":
                return self._execute_token(context, op)
            case _:
                raise FlexError(ErrorKind.UNKNOWN_TYPE, "Unknown instruction")
        return context

    def _execute_token(self, context: Context, op: Any) -> Context:
        match op:
            case PushExpr():
                self.push_expr(context, op)
            case PopExpr():
                self.pop_expr(context, op)
            case ClassExpr():
                return self.class_expr(context, op)
            case Call(name=name):
                return self.call(context, name)
            case Control():
                self.control(context, op)
            case _:
                raise FlexError(ErrorKind.MALFORMED_INSTRUCTION, "Malformed instruction")
        return context

    # -----------------------------------------------------------------
    # Expressions
    # -----------------------------------------------------------------

    def lookup_var(self, context: Context, name: str) -> Any:
        if name not in context.vars:
            raise FlexError(ErrorKind.UNDEFINED_VARIABLE, f"Undefined variable: `{name}'")
        return context.vars[name]

    def resolve_push(self, context: Context, op: PushExpr) -> Any:
        """Computes the value a push expression stands for, without pushing it."""
        if op.name not in context.vars:
            raise FlexError(ErrorKind.UNDEFINED_VARIABLE,
                            f"Invalid push expression: Undefined master variable: `{op.name}'")
        value = context.vars[op.name]
        if op.segments:
            value = self.indexer.get(value, op.segments, context)
            if value is None:
                raise FlexError(ErrorKind.UNDEFINED_VARIABLE,
                                f"Invalid push expression: Undefined variable: `{op.text}'")
        return value

    def push_expr(self, context: Context, op: PushExpr):
        context.stack.push(self.resolve_push(context, op))

    def pop_expr(self, context: Context, op: PopExpr):
        """Pops the top of the stack into a variable or one of its slots.

        With segments, the value is popped first and any `&0` index is popped
        after it, so `[0, ["v"], "&xs.&0"]` stores `"v"` at index `0`.
        """
        if not op.segments:
            context.vars[op.name] = context.stack.pop()
            return
        if op.name not in context.vars:
            raise FlexError(ErrorKind.UNDEFINED_VARIABLE,
                            f"Invalid pop expression: Cannot set index/key on undefined variable: `{op.name}'")
        value = context.stack.pop()
        self.indexer.set(context.vars[op.name], value, op.segments, context)

    def class_expr(self, context: Context, op: ClassExpr) -> Context:
        receiver = self.lookup_var(context, op.name)
        target = self.indexer.get(receiver, op.segments, context)
        if not isinstance(target, FlexCallable):
            raise FlexError(ErrorKind.NOT_A_FUNCTION, f"Invalid class expr: Invalid function: `{op.text}'")
        context.stack.push(receiver)
        return self.run_function(context, target)

    def call(self, context: Context, name: str) -> Context:
        fn = context.functions.get(name)
        if fn is None:
            raise FlexError(ErrorKind.UNDEFINED_FUNCTION, f"Undefined function: `{name}'")
        if not isinstance(fn, FlexCallable):
            if not (isinstance(fn, (list, tuple)) or callable(fn)):
                raise FlexError(ErrorKind.NOT_A_FUNCTION,
                                f"Unknown function, expected native or flex function: `{name}'")
            fn = as_callable(fn, name)
        return self.run_function(context, fn)

    def run_function(self, context: Context, fn: FlexCallable) -> Context:
        if isinstance(fn, Program):
            return self.evaluate(context, fn)
        return self.invoke_native(context, fn)

    def invoke_native(self, context: Context, fn: NativeFunction) -> Context:
        logger.debug("calling native %s", fn.name)
        try:
            returned = fn(context)
        except FlexError:
            raise
        except Exception as e:
            raise FlexError(ErrorKind.NATIVE_FAILURE, f"{type(e).__name__}: {e}") from e
        return ensure_safe(returned)

    # -----------------------------------------------------------------
    # Control tokens
    # -----------------------------------------------------------------

    def control(self, context: Context, op: Control):
        match op.op:
            case "nop":
                pass
            case "flush":
                context.stack.flush()
            case "exit":
                logger.debug("exit requested")
                raise Termination()
            case "put":
                self.output.emit(self.printer.pformat(context.stack.pop()))
            case "clear":
                self.output.clear()
            case "+" | "-" | "*" | "/":
                self.arithmetic(context, op.op)
            case _:
                raise FlexError(ErrorKind.MALFORMED_INSTRUCTION, "Malformed instruction")

    def arithmetic(self, context: Context, operator: str):
        # The first value popped is the left operand.
        a = context.stack.pop()
        b = context.stack.pop()
        if value_type(a) != value_type(b):
            raise FlexError(ErrorKind.TYPE_MISMATCH, "Values must be of equal type")
        if operator == "+":
            if value_type(a) not in ("number", "string"):
                raise FlexError(ErrorKind.TYPE_MISMATCH, "Expected number or string")
        elif value_type(a) != "number":
            raise FlexError(ErrorKind.TYPE_MISMATCH, "Expected number")

        try:
            match operator:
                case "+":
                    result = a + b
                case "-":
                    result = a - b
                case "*":
                    result = a * b
                case "/":
                    if b == 0:
                        raise FlexError(ErrorKind.DIVISION_BY_ZERO, "Division by zero")
                    result = a / b
        except OverflowError as e:
            raise FlexError(ErrorKind.NUMBER_OVERFLOW, f"Number out of range: {e}") from e
        context.stack.push(result)

    # -----------------------------------------------------------------
    # Materializer
    # -----------------------------------------------------------------

    def _push_expr_for(self, text: str) -> PushExpr:
        if not is_push_expr(text):
            raise FlexError(ErrorKind.MALFORMED_INSTRUCTION,
                            f"Expected push expression-like syntax: `{text}'")
        return classify(text)

    def to_native(self, context: Context, data: Any) -> Any:
        """Converts literal data into a runtime value, resolving embedded push expressions."""
        match type_of(data):
            case "boolean" | "number" | "null" | "instr":
                return data
            case "function":
                return as_callable(data)
            case "js-null":
                return FNULL
            case "string":
                return data[0]
            case "array":
                if isinstance(data, FlexArray):
                    return data
                items = data["@"]
                if items is None:
                    items = []
                if not isinstance(items, (list, tuple)):
                    raise FlexError(ErrorKind.UNKNOWN_TYPE, "Unknown type: array literal must hold a sequence")
                parsed = FlexArray()
                for value in items:
                    if isinstance(value, str):
                        parsed.append(self.resolve_push(context, self._push_expr_for(value)))
                    else:
                        parsed.append(self.to_native(context, value))
                return parsed
            case "dict":
                if isinstance(data, FlexDict):
                    return data
                entries = data["!"]
                if entries is None:
                    entries = {}
                if not isinstance(entries, collections.abc.Mapping):
                    raise FlexError(ErrorKind.UNKNOWN_TYPE, "Unknown type: dict literal must hold a mapping")
                parsed = FlexDict()
                for key, value in entries.items():
                    if isinstance(value, str):
                        # Resolved through the shared stack, unlike array elements.
                        self.push_expr(context, self._push_expr_for(value))
                        parsed[str(key)] = context.stack.pop()
                    else:
                        parsed[str(key)] = self.to_native(context, value)
                return parsed
        raise FlexError(ErrorKind.UNKNOWN_TYPE, f"Unknown type: `{self.printer.pformat_instruction(data)}'")


def evaluate(context: Context, program: Any, output: Optional[OutputSink] = None) -> Context:
    """Convenience wrapper: evaluates `program` with a fresh Evaluator."""
    return Evaluator(output).evaluate(context, program)
