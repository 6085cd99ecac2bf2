"""
Delta computation.

Builds the ordered, deduplicated set of primary records whose composite key
does not appear anywhere in the exclusion rows (e.g. cart-abandon rows for
products the user has since bought).
"""

from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Set

from delta_sync.exceptions import NormalizationError, SourceReadError
from delta_sync.transform.models import (
    CanonicalRecord,
    CompositeKey,
    DeltaSet,
    DroppedRow,
    RawRow,
)
from delta_sync.transform.normalizer import RecordNormalizer
from delta_sync.utils.logging_utils import log_debug, log_error, log_progress


def _materialize(rows: Iterable[RawRow], label: str) -> List[RawRow]:
    """
    Pull every row out of a row source.

    Raises:
        SourceReadError: If the underlying source fails while being iterated
    """
    try:
        return list(rows)
    except SourceReadError:
        raise
    except Exception as e:
        log_error("Delta Computer", f"Failed to read {label} rows: {e}")
        raise SourceReadError(f"Failed to read {label} rows: {e}") from e


class DeltaComputer:
    """Computes deltas between a primary and an exclusion row collection."""

    def __init__(self, normalizer: Optional[RecordNormalizer] = None):
        self.normalizer = normalizer or RecordNormalizer()

    def exclusion_keys(self, exclusion_rows: Iterable[RawRow]) -> Set[CompositeKey]:
        """Union of composite keys over all exclusion rows, nested sub-items included."""
        keys: Set[CompositeKey] = set()
        for row in _materialize(exclusion_rows, "exclusion"):
            keys.update(self.normalizer.composite_keys(row))
        return keys

    def _primary_records(
        self, primary_rows: Iterable[RawRow], dropped: List[DroppedRow]
    ) -> List[CanonicalRecord]:
        records: List[CanonicalRecord] = []
        for index, row in enumerate(_materialize(primary_rows, "primary")):
            try:
                records.extend(self.normalizer.expand(row))
            except NormalizationError as e:
                dropped.append(DroppedRow(index=index, reason=e.reason, message=str(e)))
                log_debug("Delta Computer", f"Skipping primary row {index}: {e}")
        return records

    def compute_delta(
        self, primary_rows: Iterable[RawRow], exclusion_rows: Iterable[RawRow]
    ) -> DeltaSet:
        """
        Compute the primary records not present in the exclusion rows.

        Args:
            primary_rows: Rows to take records from, in order
            exclusion_rows: Rows whose keys remove matching primary records

        Returns:
            DeltaSet with first-occurrence records in primary row order

        Raises:
            SourceReadError: If either row collection cannot be read
        """
        excluded = self.exclusion_keys(exclusion_rows)
        log_progress("Delta Computer", f"Collected {len(excluded)} exclusion keys")

        delta = DeltaSet()
        records = self._primary_records(primary_rows, delta.dropped)

        seen: Set[CompositeKey] = set()
        for record in records:
            key = record.key
            if key in excluded:
                delta.excluded_count += 1
                log_debug("Delta Computer", f"Excluding matching combination: {key}")
                continue
            if key in seen:
                delta.duplicate_count += 1
                continue
            seen.add(key)
            delta.records.append(record)

        log_progress(
            "Delta Computer",
            f"{len(records)} primary records, {len(delta.dropped)} rows dropped, "
            f"{delta.excluded_count} excluded, {delta.duplicate_count} duplicates, "
            f"{len(delta)} delta records",
        )
        return delta

    def compute_view_delta(
        self,
        primary_rows: Iterable[RawRow],
        exclusion_rows: Iterable[RawRow],
        min_view_count: int = 1,
    ) -> DeltaSet:
        """
        Compute a delta of frequently viewed products.

        Each primary occurrence of a key counts as one view. Keys viewed at
        least min_view_count times and absent from the exclusion rows are kept,
        one record per key, carrying the first occurrence's attributes and the
        view count.

        Args:
            primary_rows: Product view rows
            exclusion_rows: Rows whose keys remove matching products
            min_view_count: Minimum number of views for a key to be kept

        Returns:
            DeltaSet ordered by first view

        Raises:
            SourceReadError: If either row collection cannot be read
        """
        excluded = self.exclusion_keys(exclusion_rows)

        delta = DeltaSet()
        records = self._primary_records(primary_rows, delta.dropped)

        first_seen: Dict[CompositeKey, CanonicalRecord] = {}
        counts: Dict[CompositeKey, int] = {}
        for record in records:
            key = record.key
            if key not in first_seen:
                first_seen[key] = record
                counts[key] = 0
            counts[key] += 1
        delta.duplicate_count = len(records) - len(first_seen)

        below_threshold = 0
        for key, record in first_seen.items():
            if key in excluded:
                delta.excluded_count += 1
            elif counts[key] < min_view_count:
                below_threshold += 1
            else:
                delta.records.append(replace(record, view_count=counts[key]))

        log_progress(
            "Delta Computer",
            f"{len(first_seen)} unique user-product views, {delta.excluded_count} excluded, "
            f"{below_threshold} below {min_view_count} views, {len(delta)} delta records",
        )
        return delta
