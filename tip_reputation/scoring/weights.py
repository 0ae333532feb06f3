from __future__ import annotations

from typing import Any, Callable, Iterable, Mapping, TypeVar

T = TypeVar("T")


def weighted_sum(components: Mapping[str, float], weights: Mapping[str, float]) -> float:
    missing = set(weights) - set(components)
    if missing:
        raise KeyError(f"missing score components: {sorted(missing)}")
    return sum(components[name] * weight for name, weight in weights.items())


def stable_sorted(
    items: Iterable[T],
    key: Callable[[T], Any],
    reverse: bool = False,
    tie_breaker: Callable[[T], Any] | None = None,
) -> list[T]:
    """Sort by ``key``; equal keys always come out in ascending tie-breaker order."""
    by_identity = sorted(items, key=tie_breaker or _identity)
    return sorted(by_identity, key=key, reverse=reverse)


def _identity(item: Any) -> str:
    if isinstance(item, Mapping):
        for field in ("creator_id", "tip_id", "id"):
            if item.get(field) is not None:
                return str(item[field])
        return repr(sorted(item.items(), key=repr))
    for attr in ("id", "creator_id"):
        value = getattr(item, attr, None)
        if value is not None:
            return str(value)
    return repr(item)
