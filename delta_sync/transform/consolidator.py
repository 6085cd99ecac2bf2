"""
Profile consolidation.

Groups delta records per identity, orders and truncates each group, and
builds the ConsolidatedProfile sent to the ingestion API.
"""

from typing import Dict, Iterable, List

from delta_sync.transform.models import (
    CanonicalRecord,
    ConsolidatedProfile,
    ConsolidationConfig,
    ItemSlot,
    OrderMode,
)
from delta_sync.utils.logging_utils import log_debug, log_progress

_ORDER_DESCRIPTIONS = {
    OrderMode.INSERTION_ORDER: "oldest to newest",
    OrderMode.REVERSE_INSERTION: "newest to oldest",
    OrderMode.VIEW_COUNT_DESCENDING: "most viewed first",
}


def order_items(
    records: List[CanonicalRecord], order_mode: OrderMode
) -> List[CanonicalRecord]:
    """Return a new list ordered by order_mode. Sorting is stable."""
    if order_mode is OrderMode.REVERSE_INSERTION:
        return list(reversed(records))
    if order_mode is OrderMode.VIEW_COUNT_DESCENDING:
        return sorted(records, key=lambda record: -(record.view_count or 0))
    return list(records)


def group_by_identity(
    records: Iterable[CanonicalRecord],
) -> Dict[str, List[CanonicalRecord]]:
    """Group records by identity; dict order is first-seen identity order."""
    groups: Dict[str, List[CanonicalRecord]] = {}
    for record in records:
        groups.setdefault(record.identity, []).append(record)
    return groups


class ProfileConsolidator:
    def consolidate(
        self, delta: Iterable[CanonicalRecord], config: ConsolidationConfig
    ) -> List[ConsolidatedProfile]:
        """
        Build one profile per identity from the delta records.

        Args:
            delta: Delta records (a DeltaSet or any iterable of records)
            config: Ordering, truncation and event settings

        Returns:
            Profiles in first-seen identity order; identities without items are omitted
        """
        groups = group_by_identity(delta)
        include_view_count = config.order_mode is OrderMode.VIEW_COUNT_DESCENDING

        profiles: List[ConsolidatedProfile] = []
        truncated = 0
        for identity, records in groups.items():
            ordered = order_items(records, config.order_mode)
            limited = ordered[: config.max_items_per_profile]
            if not limited:
                continue

            if len(ordered) > config.max_items_per_profile:
                truncated += 1
                log_debug(
                    "Profile Consolidator",
                    f"Profile {identity} had {len(ordered)} items, truncated to "
                    f"{config.max_items_per_profile} ({_ORDER_DESCRIPTIONS[config.order_mode]})",
                )

            items = tuple(
                ItemSlot(
                    product_id=record.product_id,
                    price=record.price,
                    title=record.title,
                    view_count=record.view_count,
                )
                for record in limited
            )
            profiles.append(
                ConsolidatedProfile(
                    identity=identity,
                    items=items,
                    event_name=config.event_name,
                    timestamp=config.timestamp,
                    include_view_count=include_view_count,
                )
            )

        log_progress(
            "Profile Consolidator",
            f"Grouped records into {len(profiles)} profiles, {truncated} truncated "
            f"to {config.max_items_per_profile} items",
        )
        return profiles
