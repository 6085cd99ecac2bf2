"""
In-memory types for normalized records, deltas and consolidated profiles.

All of them are built fresh per run and discarded once the run completes.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, NamedTuple, Optional, Tuple

RawRow = Dict[str, str]


class CompositeKey(NamedTuple):
    """Identity and product id pair used for set membership and dedup."""

    identity: str
    product_id: str

    def __str__(self) -> str:
        return f"{self.identity}_{self.product_id}"


@dataclass(frozen=True)
class CanonicalRecord:
    """A raw row resolved to the fields the pipeline works with."""

    identity: str
    product_id: str
    price: Optional[str] = None
    title: Optional[str] = None
    image_url: Optional[str] = None
    view_count: Optional[int] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    raw: RawRow = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self):
        if not self.identity or not self.identity.strip():
            raise ValueError("CanonicalRecord requires a non-empty identity")
        if not self.product_id or not self.product_id.strip():
            raise ValueError("CanonicalRecord requires a non-empty product_id")

    @property
    def key(self) -> CompositeKey:
        return CompositeKey(self.identity, self.product_id)


@dataclass(frozen=True)
class DroppedRow:
    """A primary row that failed normalization."""

    index: int
    reason: str
    message: str


@dataclass
class DeltaSet:
    """
    Ordered primary records absent from the exclusion set.

    No two records share a CompositeKey. Iterating yields the records.
    """

    records: List[CanonicalRecord] = field(default_factory=list)
    dropped: List[DroppedRow] = field(default_factory=list)
    excluded_count: int = 0
    duplicate_count: int = 0

    def __iter__(self) -> Iterator[CanonicalRecord]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def keys(self) -> List[CompositeKey]:
        return [record.key for record in self.records]


class OrderMode(Enum):
    INSERTION_ORDER = "insertion"
    REVERSE_INSERTION = "reverse"
    VIEW_COUNT_DESCENDING = "view_count_desc"


@dataclass(frozen=True)
class ConsolidationConfig:
    """
    Per-call consolidation settings.

    Args:
        max_items_per_profile: Upper bound on items kept per identity (>= 1)
        order_mode: Ordering applied to each identity's items before truncation
        event_name: Event name attached to every profile
        timestamp: Optional epoch seconds stamped onto every profile
    """

    max_items_per_profile: int = 5
    order_mode: OrderMode = OrderMode.INSERTION_ORDER
    event_name: str = ""
    timestamp: Optional[int] = None

    def __post_init__(self):
        if self.max_items_per_profile < 1:
            raise ValueError("max_items_per_profile must be at least 1")


@dataclass(frozen=True)
class ItemSlot:
    product_id: str
    price: Optional[str] = None
    title: Optional[str] = None
    view_count: Optional[int] = None


@dataclass(frozen=True)
class ConsolidatedProfile:
    """Per-identity summary of up to N items, ready for ingestion."""

    identity: str
    items: Tuple[ItemSlot, ...]
    event_name: str
    timestamp: Optional[int] = None
    include_view_count: bool = False

    def __post_init__(self):
        if not self.items:
            raise ValueError(f"Profile {self.identity} has no items")

    def attributes(self) -> Dict[str, Any]:
        """
        Build the indexed event attributes for this profile.

        Unset optional values are left out rather than sent as empty strings.

        Returns:
            Dict such as {"product_id_0": ..., "price_0": ..., "title_0": ...}
        """
        attributes: Dict[str, Any] = {}
        for index, item in enumerate(self.items):
            attributes[f"product_id_{index}"] = item.product_id
            if item.price is not None:
                attributes[f"price_{index}"] = item.price
            if item.title is not None:
                attributes[f"title_{index}"] = item.title
            if self.include_view_count and item.view_count is not None:
                attributes[f"view_count_{index}"] = item.view_count
        return attributes
