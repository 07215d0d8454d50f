# flex_runtime.py

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional

from flex.flex_datatypes import Context, FlexError, ErrorKind, Termination, new_context
from flex.flex_interpreter import Evaluator
from flex.flex_io import OutputSink, RecordingSink
from flex.flex_serialize import deserialize

logger = logging.getLogger(__name__)

VERSION = "1.1.0"

HELP_TEXT = (
    f"*** flex-int help v{VERSION} ***",
    "Type your expression in YAML, expressions must include [ and ]",
    "This FLEX implementation has a library set to do almost every operation",
    "Use sharp function `clear' to clear and sharp function `put' to print something",
)


# ===================================================================
# 1. Host natives
# ===================================================================

class HostLib:
    """Native functions preloaded into every session.

    Each `_snake_name` method becomes the FLEX function `kebab-name`.
    """

    def __init__(self, evaluator: Evaluator):
        self.evaluator = evaluator

    def _stack_dump(self, context: Context) -> Context:
        pf = self.evaluator.printer.pformat
        self.evaluator.output.emit("; ".join(pf(v) for v in context.stack.snapshot()))
        return context

    def _help(self, context: Context) -> Context:
        for line in HELP_TEXT:
            self.evaluator.output.emit(line)
        return context

    def _read_line(self, context: Context) -> Context:
        message = context.stack.pop()
        if not isinstance(message, str):
            raise FlexError(ErrorKind.TYPE_MISMATCH, "read-line expects a text prompt")
        context.stack.push(self.evaluator.output.prompt_for_text(message))
        return context


def host_natives(evaluator: Evaluator) -> Dict[str, Callable[[Context], Context]]:
    natives = {}
    for name, member in inspect.getmembers(HostLib(evaluator)):
        if name.startswith('_') and not name.startswith('__') and callable(member):
            natives[name[1:].replace('_', '-')] = member
    return natives


# ===================================================================
# 2. Script Execution
# ===================================================================

@dataclass
class ExecutionResult:
    """The structured result of running one program in a session."""
    status: Literal['success', 'error', 'terminated']
    value: Any = None
    error_message: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    side_effects: List[Dict] = field(default_factory=list)

    def format_error(self) -> str:
        if self.status == 'success':
            return ""
        return str(self.error_message or "Unknown error")


class Session:
    """Owns one Context and feeds it every submitted program in turn."""

    def __init__(self, natives: Optional[Mapping[str, Any]] = None,
                 sink: Optional[OutputSink] = None, fmt: str = 'yaml', load_host: bool = True):
        self.sink = sink if sink is not None else RecordingSink()
        self.fmt = fmt
        self.evaluator = Evaluator(self.sink)
        functions: Dict[str, Any] = host_natives(self.evaluator) if load_host else {}
        functions.update(natives or {})
        self.context = new_context(functions=functions)

    @property
    def side_effects(self) -> List[Dict]:
        return getattr(self.sink, 'side_effects', [])

    def handle_script(self, source_code: str) -> ExecutionResult:
        """Decodes one program from text and runs it."""
        self.side_effects.clear()
        try:
            program = deserialize(source_code, fmt=self.fmt)
        except ValueError as e:
            logger.debug("decode failed: %s", e)
            return ExecutionResult(
                status='error',
                error_message=f"Provide valid {self.fmt.upper()}!",
                side_effects=list(self.side_effects),
            )
        return self.run(program)

    def run(self, program: Any) -> ExecutionResult:
        """Evaluates an already decoded program against the session context."""
        try:
            self.context = self.evaluator.evaluate(self.context, program)
        except Termination:
            return ExecutionResult(
                status='terminated',
                error_message="dead",
                error_kind=ErrorKind.TERMINATED,
                side_effects=list(self.side_effects),
            )
        except FlexError as e:
            logger.debug("evaluation failed (%s): %s", e.kind.value, e.message)
            return ExecutionResult(
                status='error',
                error_message=e.message,
                error_kind=e.kind,
                side_effects=list(self.side_effects),
            )
        except Exception as e:
            logger.debug("evaluation crashed", exc_info=True)
            return ExecutionResult(
                status='error',
                error_message=f"InternalError: {type(e).__name__}: {e}",
                side_effects=list(self.side_effects),
            )
        snapshot = self.context.stack.snapshot()
        return ExecutionResult(
            status='success',
            value=snapshot[-1] if snapshot else None,
            side_effects=list(self.side_effects),
        )
