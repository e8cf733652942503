"""
Explicit decoding of provider response envelopes.

Providers move the announcement array between deployments
(`data.articles`, `data`, `list`, a bare list, ...). Each parser declares
the paths it knows about; `decode_first` tries them in order and reports
which one matched, or why none did.
"""
from dataclasses import dataclass
from typing import Any, Iterable, List, Sequence, Tuple, Union

Path = Tuple[str, ...]


@dataclass(frozen=True)
class Ok:
    value: List[Any]
    path: Path = ()


@dataclass(frozen=True)
class Err:
    reason: str


DecodeResult = Union[Ok, Err]


def decode_path(data: Any, path: Path) -> DecodeResult:
    """Follow `path` through nested dicts; succeed only if it ends on a list"""
    node = data
    for key in path:
        if not isinstance(node, dict):
            return Err(f"{'.'.join(path)}: expected object before '{key}', got {type(node).__name__}")
        if key not in node or node[key] is None:
            return Err(f"{'.'.join(path)}: missing '{key}'")
        node = node[key]

    if not isinstance(node, list):
        return Err(f"{'.'.join(path) or '<root>'}: expected list, got {type(node).__name__}")
    return Ok(node, path)


def decode_first(data: Any, paths: Sequence[Path]) -> DecodeResult:
    """Try each known envelope in order, first list wins (even an empty one)"""
    reasons = []
    for path in paths:
        result = decode_path(data, path)
        if isinstance(result, Ok):
            return result
        reasons.append(result.reason)
    return Err("; ".join(reasons) or "no envelope paths declared")


def dict_items(items: Iterable[Any]) -> List[dict]:
    return [item for item in items if isinstance(item, dict)]
