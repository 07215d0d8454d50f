from flex.flex_datatypes import (
    FNULL, FlexArray, FlexDict, FlexCallable, NativeFunction, Program,
    Stack, Context, FlexError, ErrorKind, Termination,
    new_context, ensure_safe, type_of, value_type
)
from flex.flex_interpreter import Evaluator, Indexer, evaluate
from flex.flex_runtime import Session, ExecutionResult, HostLib

__all__ = [
    "FNULL", "FlexArray", "FlexDict", "FlexCallable", "NativeFunction", "Program",
    "Stack", "Context", "FlexError", "ErrorKind", "Termination",
    "new_context", "ensure_safe", "type_of", "value_type",
    "Evaluator", "Indexer", "evaluate",
    "Session", "ExecutionResult", "HostLib",
]
