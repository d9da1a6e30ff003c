"""
Query shape understood by every document store, and the in-process
evaluator shared by the bundled store implementations.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

RANGE_OPERATORS = (">", ">=", "<", "<=")


@dataclass(frozen=True)
class DocumentSnapshot:
    """A document as read from the store: its id plus a copy of its fields."""
    id: str
    data: Dict[str, Any]


@dataclass(frozen=True)
class RangeFilter:
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in RANGE_OPERATORS:
            raise ValueError(f"Unsupported range operator: {self.op}")

    def matches(self, candidate: Any) -> bool:
        if candidate is None:
            return False
        if self.op == ">":
            return candidate > self.value
        if self.op == ">=":
            return candidate >= self.value
        if self.op == "<":
            return candidate < self.value
        return candidate <= self.value


@dataclass(frozen=True)
class StartAfter:
    """Position in an ordered result set: the order-field value and the document id."""
    value: Any
    document_id: str


@dataclass(frozen=True)
class QuerySpec:
    """
    Equality and range constraints, a single ordering field, a limit and
    an optional start-after position. Ties on the ordering field are broken
    by document id in the same direction.
    """
    equals: Dict[str, Any] = field(default_factory=dict)
    ranges: Tuple[RangeFilter, ...] = ()
    order_by: Optional[str] = None
    descending: bool = False
    limit: Optional[int] = None
    start_after: Optional[StartAfter] = None


def _sort_key(snapshot: DocumentSnapshot, order_by: str) -> tuple:
    value = snapshot.data.get(order_by)
    if value is None:
        # Missing values sort before every present value
        return (False, 0, snapshot.id)
    return (True, value, snapshot.id)


def _after(snapshot: DocumentSnapshot, spec: QuerySpec) -> bool:
    cursor = spec.start_after
    position = (cursor.value, cursor.document_id)
    current = (snapshot.data.get(spec.order_by), snapshot.id)
    if spec.descending:
        return current < position
    return current > position


def run_query(documents: Iterable[DocumentSnapshot], spec: QuerySpec) -> List[DocumentSnapshot]:
    """Apply a QuerySpec to already-loaded documents."""
    results = [
        snapshot for snapshot in documents
        if all(snapshot.data.get(name) == value for name, value in spec.equals.items())
        and all(rng.matches(snapshot.data.get(rng.field)) for rng in spec.ranges)
    ]

    if spec.order_by:
        results.sort(key=lambda s: _sort_key(s, spec.order_by), reverse=spec.descending)
        if spec.start_after is not None:
            results = [
                s for s in results
                if s.data.get(spec.order_by) is not None and _after(s, spec)
            ]
    elif spec.start_after is not None:
        raise ValueError("start_after requires order_by")

    if spec.limit is not None:
        results = results[:spec.limit]

    return results
