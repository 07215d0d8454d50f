"""
A printer for FLEX values and instructions.
"""
import collections.abc
import math

from flex.flex_datatypes import (
    FlexNull, FlexArray, FlexDict, NativeFunction, Program
)
from flex.flex_serialize import serialize


class Printer:
    """Formats FLEX values the way `#put` and `stack-dump` show them."""

    def __init__(self):
        self._handlers = self._create_handlers()

    def pformat(self, obj):
        """Public entry point to format a value."""
        handler = self._get_handler(obj)
        return handler(obj)

    def pformat_instruction(self, instr):
        """Literal textual form of an instruction, used in error annotations."""
        if isinstance(instr, str):
            return instr
        return self._pformat_composite(instr)

    def _get_handler(self, obj):
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        if isinstance(obj, (collections.abc.Mapping, list, tuple)):
            return self._pformat_composite
        return lambda o: str(o)

    def _create_handlers(self):
        return {
            str: self._pformat_str,
            int: self._pformat_int,
            float: self._pformat_float,
            bool: self._pformat_bool,
            FlexNull: self._pformat_null,
            type(None): self._pformat_null,
            FlexArray: self._pformat_composite,
            FlexDict: self._pformat_composite,
            Program: self._pformat_composite,
            NativeFunction: self._pformat_composite,
        }

    def _pformat_str(self, obj):
        return obj

    def _pformat_int(self, obj):
        return str(obj)

    def _pformat_float(self, obj):
        if math.isnan(obj):
            return 'NaN'
        if math.isinf(obj):
            return 'Infinity' if obj > 0 else '-Infinity'
        if obj.is_integer():
            return str(int(obj))
        return repr(obj)

    def _pformat_bool(self, obj):
        return 'true' if obj else 'false'

    def _pformat_null(self, obj):
        return 'null'

    def _pformat_composite(self, obj):
        return serialize(obj, fmt='json')
