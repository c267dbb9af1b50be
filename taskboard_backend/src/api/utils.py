from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Union


# PUBLIC_INTERFACE
def collection_envelope(
    items: Union[Sequence[Any], Iterable[Any]],
    **aggregates: Any,
) -> Dict[str, Any]:
    """
    Build the standard envelope for list endpoints.

    Args:
        items: The list/iterable of items to return.
        **aggregates: Derived values reported next to the items (counts, unread totals).

    Returns:
        Dict with keys: items, total, plus every aggregate.
    """
    # Ensure items is materialized as a list (in case an iterator is passed)
    materialized: List[Any] = list(items) if not isinstance(items, list) else items
    envelope: Dict[str, Any] = {"items": materialized, "total": len(materialized)}
    envelope.update(aggregates)
    return envelope


def enum_keys(counts: Mapping[Any, int]) -> Dict[str, int]:
    """Turn enum-keyed counters into plain string keys for JSON."""
    return {(k.value if isinstance(k, Enum) else str(k)): int(v) for k, v in counts.items()}
