"""
Program decoding (YAML core schema or JSON) and value encoding.
"""
from __future__ import annotations

import collections.abc
import json
import math
import re
from pathlib import Path
from typing import Any, Optional

import yaml

from flex.flex_datatypes import FNULL, FlexArray, FlexDict, NativeFunction, Program


# --------------------------
# Helpers
# --------------------------

def _norm_text(data: bytes | bytearray | str, *, encoding: Optional[str] = None) -> str:
    if isinstance(data, (bytes, bytearray)):
        return data.decode(encoding or 'utf-8', errors='replace')
    if isinstance(data, str):
        return data
    return str(data)


def _to_builtin(obj: Any) -> Any:
    # Convert FLEX runtime values to plain JSON/YAML-friendly structures recursively
    if obj is FNULL:
        return None
    if isinstance(obj, NativeFunction):
        return f"<native {obj.name}>"
    if isinstance(obj, (FlexArray, Program, list, tuple)):
        return [_to_builtin(x) for x in obj]
    if isinstance(obj, (FlexDict, collections.abc.Mapping)):
        return {str(k): _to_builtin(v) for k, v in obj.items()}
    if isinstance(obj, float) and math.isfinite(obj) and obj.is_integer():
        return int(obj)
    return obj


class _CoreSchemaLoader(yaml.SafeLoader):
    """Safe loader resolving plain scalars by the YAML 1.2 core schema.

    Only null, bool, int and float are implicit; `on`, `yes`, dates and
    base-60 numbers stay plain strings.
    """


def _construct_core_int(loader, node):
    value = loader.construct_scalar(node)
    if value.startswith('0o'):
        return int(value[2:], 8)
    if value.startswith('0x'):
        return int(value[2:], 16)
    return int(value)


def _construct_core_float(loader, node):
    value = loader.construct_scalar(node)
    lowered = value.lower()
    if lowered in ('.inf', '+.inf'):
        return math.inf
    if lowered == '-.inf':
        return -math.inf
    if lowered == '.nan':
        return math.nan
    return float(value)


_CoreSchemaLoader.yaml_implicit_resolvers = {}
_CoreSchemaLoader.add_implicit_resolver(
    'tag:yaml.org,2002:null',
    re.compile(r'^(?:~|null|Null|NULL|)$'),
    ['~', 'n', 'N', ''])
_CoreSchemaLoader.add_implicit_resolver(
    'tag:yaml.org,2002:bool',
    re.compile(r'^(?:true|True|TRUE|false|False|FALSE)$'),
    list('tTfF'))
# int is registered before float so plain digits stay integers.
_CoreSchemaLoader.add_implicit_resolver(
    'tag:yaml.org,2002:int',
    re.compile(r'^(?:[-+]?[0-9]+|0o[0-7]+|0x[0-9a-fA-F]+)$'),
    list('-+0123456789'))
_CoreSchemaLoader.add_implicit_resolver(
    'tag:yaml.org,2002:float',
    re.compile(r'''^(?:[-+]?(?:\.[0-9]+|[0-9]+(?:\.[0-9]*)?)(?:[eE][-+]?[0-9]+)?
                |[-+]?\.(?:inf|Inf|INF)
                |\.(?:nan|NaN|NAN))$''', re.X),
    list('-+0123456789.'))
_CoreSchemaLoader.add_constructor('tag:yaml.org,2002:int', _construct_core_int)
_CoreSchemaLoader.add_constructor('tag:yaml.org,2002:float', _construct_core_float)


def detect_format(path: Optional[str] = None, data_hint: Optional[str] = None) -> Optional[str]:
    """
    Returns a canonical format name among: 'json', 'yaml'.
    Uses the file suffix first; falls back to simple data sniffing if provided.
    """
    suffix = Path(path).suffix.lower() if path else ""
    if suffix == '.json':
        return 'json'
    if suffix in ('.yaml', '.yml', '.flex'):
        return 'yaml'
    if data_hint is not None:
        s = data_hint.lstrip()
        if s.startswith('{'):
            return 'json'
        return 'yaml'
    return None


# --------------------------
# Public API
# --------------------------

def deserialize(data: bytes | bytearray | str, *, fmt: Optional[str] = None) -> Any:
    """
    Decode program text into FLEX literal data.
    Supported fmt: 'json', 'yaml'. YAML is the default since it is a superset of JSON.
    Raises ValueError when the text is not valid in the chosen format.
    """
    text = _norm_text(data)
    f = (fmt or detect_format(data_hint=text) or 'yaml').lower()
    if f == 'json':
        try:
            return json.loads(text)
        except ValueError as e:
            raise ValueError(f"invalid JSON: {e}") from e
    if f == 'yaml':
        try:
            return yaml.load(text, Loader=_CoreSchemaLoader)
        except (yaml.YAMLError, ValueError) as e:
            raise ValueError(f"invalid YAML: {e}") from e
    raise ValueError(f"Unsupported program format: {fmt!r}")


def serialize(value: Any, *, fmt: str = 'json', pretty: bool = False) -> str:
    """
    Convert a FLEX value into a textual representation.
    - fmt: 'json' | 'yaml'
    Compact JSON is what `#put` prints for arrays, dicts and functions.
    """
    f = (fmt or '').lower()
    built = _to_builtin(value)
    if f == 'json':
        if pretty:
            return json.dumps(built, ensure_ascii=False, indent=2, default=str)
        return json.dumps(built, ensure_ascii=False, separators=(',', ':'), default=str)
    if f == 'yaml':
        return yaml.safe_dump(built, sort_keys=False, default_flow_style=not pretty)
    raise ValueError(f"Unsupported serialization format: {fmt!r}")


__all__ = [
    "deserialize",
    "serialize",
    "detect_format",
]
