"""
Output sinks: where `#put`, `#clear` and prompts go.
"""
import sys
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, TextIO

CLEAR_SCREEN = "\033[2J\033[H"


class OutputSink(ABC):
    """The three capabilities the evaluator calls synchronously."""

    @abstractmethod
    def emit(self, text: str):
        raise NotImplementedError

    @abstractmethod
    def clear(self):
        raise NotImplementedError

    @abstractmethod
    def prompt(self, message: str) -> Optional[str]:
        raise NotImplementedError

    def prompt_for_text(self, message: str) -> str:
        """Asks until a non-empty answer comes back."""
        answer = None
        while not answer:
            answer = self.prompt(message)
        return answer


class RecordingSink(OutputSink):
    """Collects output as side-effect records instead of writing it anywhere.

    Records use the shape `{'topics': [...], 'message': ...}`. A `#clear`
    drops the stdout records gathered so far and leaves a `clear` marker so a
    host replaying the records knows to wipe its own screen.
    """
    def __init__(self, responses: Iterable[str] = ()):
        self.side_effects: List[Dict[str, Any]] = []
        self._responses = iter(responses)

    def emit(self, text: str):
        self.side_effects.append({'topics': ['stdout'], 'message': text})

    def clear(self):
        self.side_effects[:] = [e for e in self.side_effects if e.get('topics') != ['stdout']]
        self.side_effects.append({'topics': ['clear']})

    def prompt(self, message: str) -> Optional[str]:
        self.side_effects.append({'topics': ['prompt'], 'message': message})
        try:
            return next(self._responses)
        except StopIteration:
            raise EOFError(f"no input available for prompt {message!r}") from None

    @property
    def output(self) -> List[str]:
        """The stdout messages recorded so far."""
        return [e['message'] for e in self.side_effects if e.get('topics') == ['stdout']]


class ConsoleSink(OutputSink):
    """Writes straight to a terminal stream."""
    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream

    def _out(self) -> TextIO:
        return self.stream or sys.stdout

    def emit(self, text: str):
        print(text, file=self._out())

    def clear(self):
        self._out().write(CLEAR_SCREEN)
        self._out().flush()

    def prompt(self, message: str) -> Optional[str]:
        return input(message)

    def replay(self, side_effects: Iterable[Dict[str, Any]]):
        """Re-emits records gathered by a RecordingSink."""
        for effect in side_effects:
            topics = effect.get('topics')
            if topics == ['stdout']:
                self.emit(effect.get('message', ''))
            elif topics == ['clear']:
                self.clear()
