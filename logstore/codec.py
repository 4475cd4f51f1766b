"""
Codecs for the `data` column of log entries.

CircularJSONCodec keeps object identity through a JSON round trip: the first
time a dict or list is seen it is written normally, every later occurrence of
the same object (a cycle or a shared reference) is written as
{"$ref": "<path>"} where <path> is a JSONPath-style locator of the first
occurrence, e.g. $["user"]["friends"][0]. decode() rebuilds those references,
so self-references come back as real self-references. A user dict whose only
key is "$ref" or "$literal" is written wrapped as {"$literal": {...}} so it is
never mistaken for a marker.

Backends take any object with encode()/decode() so the storage format can be
swapped without touching CRUD code.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Protocol, Union

REF_KEY = "$ref"
LITERAL_KEY = "$literal"
_RESERVED_KEYS = (REF_KEY, LITERAL_KEY)
_PATH_RE = re.compile(r'^\$(?:\[(?:\d+|"(?:[^"\\]|\\.)*")\])*$')
_SEGMENT_RE = re.compile(r'\[(\d+)\]|\[("(?:[^"\\]|\\.)*")\]')


class DataCodec(Protocol):
    def encode(self, value: Any) -> str: ...

    def decode(self, text: str) -> Any: ...


class JSONCodec:
    """Plain JSON. Raises ValueError on circular data."""

    def encode(self, value: Any) -> str:
        return json.dumps(value, ensure_ascii=False, default=str)

    def decode(self, text: str) -> Any:
        if text is None:
            return None
        return json.loads(text)


def _json_key(key: Any) -> str:
    """Coerce a mapping key the same way json.dumps does."""
    if isinstance(key, str):
        return key
    if key is True:
        return "true"
    if key is False:
        return "false"
    if key is None:
        return "null"
    return str(key)


def decycle(value: Any) -> Any:
    """Return a JSON-safe copy of value with repeated containers replaced by $ref markers."""
    seen: Dict[int, str] = {}

    def walk(obj: Any, path: str) -> Any:
        if isinstance(obj, (dict, list, tuple)):
            existing = seen.get(id(obj))
            if existing is not None:
                return {REF_KEY: existing}
            seen[id(obj)] = path
            if isinstance(obj, dict):
                out: Dict[str, Any] = {}
                for k, v in obj.items():
                    key = _json_key(k)
                    out[key] = walk(v, f"{path}[{json.dumps(key, ensure_ascii=False)}]")
                if len(out) == 1 and next(iter(out)) in _RESERVED_KEYS:
                    return {LITERAL_KEY: out}
                return out
            return [walk(v, f"{path}[{i}]") for i, v in enumerate(obj)]
        return obj

    return walk(value, "$")


def _resolve(root: Any, path: str) -> Any:
    node = root
    for index, key in _SEGMENT_RE.findall(path[1:]):
        node = node[int(index)] if index else node[json.loads(key)]
    return node


def _is_ref(obj: Any) -> bool:
    return (
        isinstance(obj, dict)
        and len(obj) == 1
        and isinstance(obj.get(REF_KEY), str)
        and _PATH_RE.match(obj[REF_KEY]) is not None
    )


def _is_literal(obj: Any) -> bool:
    return isinstance(obj, dict) and len(obj) == 1 and isinstance(obj.get(LITERAL_KEY), dict)


def _children(node: Union[dict, list]):
    return list(node.items() if isinstance(node, dict) else enumerate(node))


def retrocycle(root: Any) -> Any:
    """Replace $ref markers in a decoded structure with the objects they point to (in place)."""
    if _is_ref(root):
        return root

    # Unwrap escaped user dicts first so every $ref path resolves against the final shape.
    literals = set()
    if _is_literal(root):
        root = root[LITERAL_KEY]
        literals.add(id(root))
    stack: List[Union[dict, list]] = [root] if isinstance(root, (dict, list)) else []
    while stack:
        node = stack.pop()
        for k, v in _children(node):
            if _is_literal(v):
                v = node[k] = v[LITERAL_KEY]
                literals.add(id(v))
            if isinstance(v, (dict, list)):
                stack.append(v)

    stack = [root] if isinstance(root, (dict, list)) else []
    visited = set()
    while stack:
        node = stack.pop()
        if id(node) in visited:
            continue
        visited.add(id(node))
        for k, v in _children(node):
            if id(v) not in literals and _is_ref(v):
                node[k] = _resolve(root, v[REF_KEY])
            elif isinstance(v, (dict, list)):
                stack.append(v)
    return root


class CircularJSONCodec:
    """JSON codec that survives circular and shared references."""

    def encode(self, value: Any) -> str:
        return json.dumps(decycle(value), ensure_ascii=False, default=str)

    def decode(self, text: str) -> Any:
        if text is None:
            return None
        return retrocycle(json.loads(text))


DEFAULT_CODEC = CircularJSONCodec()
