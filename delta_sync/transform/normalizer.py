"""
Record normalization.

Resolves the identity, product id and optional attributes of a raw export row
using the ordered candidate tables in fields.py, and expands rows that embed a
serialized list of sub-items into one record per sub-item.
"""

import json
from typing import Any, Dict, List, Mapping, Optional, Sequence

from delta_sync.exceptions import (
    MissingIdentity,
    MissingProductId,
    NestedFieldParseError,
    NormalizationError,
)
from delta_sync.transform import fields
from delta_sync.transform.models import CanonicalRecord, CompositeKey, RawRow
from delta_sync.utils.logging_utils import log_warning


def first_non_empty(row: Mapping[str, Any], candidates: Sequence[str]) -> Optional[str]:
    """
    Return the first candidate field holding a non-blank value, trimmed.

    Args:
        row: Raw row mapping
        candidates: Field names in priority order

    Returns:
        The trimmed value, or None when every candidate is missing or blank
    """
    for name in candidates:
        value = row.get(name)
        if value is None:
            continue
        value = str(value).strip()
        if value:
            return value
    return None


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None


class RecordNormalizer:
    """
    Turns raw rows into CanonicalRecords.

    The same instance must be used for both sides of a delta computation so
    that identical row shapes resolve identically.
    """

    def __init__(
        self,
        identity_field: str = fields.IDENTITY_FIELD,
        product_id_fields: Sequence[str] = fields.PRODUCT_ID_FIELDS,
        price_fields: Sequence[str] = fields.PRICE_FIELDS,
        title_fields: Sequence[str] = fields.TITLE_FIELDS,
        image_url_fields: Sequence[str] = fields.IMAGE_URL_FIELDS,
        view_count_fields: Sequence[str] = fields.VIEW_COUNT_FIELDS,
        nested_items_field: Optional[str] = fields.NESTED_ITEMS_FIELD,
    ):
        self.identity_field = identity_field
        self.product_id_fields = tuple(product_id_fields)
        self.price_fields = tuple(price_fields)
        self.title_fields = tuple(title_fields)
        self.image_url_fields = tuple(image_url_fields)
        self.view_count_fields = tuple(view_count_fields)
        self.nested_items_field = nested_items_field

    def resolve_identity(self, row: RawRow) -> str:
        identity = first_non_empty(row, (self.identity_field,))
        if identity is None:
            raise MissingIdentity(f"Row has no value for {self.identity_field}")
        return identity

    def normalize(self, row: RawRow) -> CanonicalRecord:
        """
        Resolve a single canonical record from the row's flat fields.

        Args:
            row: Raw row mapping

        Returns:
            CanonicalRecord built from the first matching candidate fields

        Raises:
            MissingIdentity: If the identity field is missing or blank
            MissingProductId: If no product id candidate holds a value
        """
        identity = self.resolve_identity(row)
        product_id = first_non_empty(row, self.product_id_fields)
        if product_id is None:
            raise MissingProductId(
                f"Row for {identity} has none of {', '.join(self.product_id_fields)}"
            )
        return self._build(identity, product_id, row, row)

    def expand(self, row: RawRow) -> List[CanonicalRecord]:
        """
        Resolve every record a row contributes.

        The flat-field record comes first, followed by one record per nested
        sub-item. A row with only nested sub-items is still valid.

        Args:
            row: Raw row mapping

        Returns:
            Non-empty list of CanonicalRecords

        Raises:
            MissingIdentity: If the identity field is missing or blank
            MissingProductId: If neither flat fields nor sub-items yield a product id
        """
        identity = self.resolve_identity(row)
        records: List[CanonicalRecord] = []

        try:
            records.append(self.normalize(row))
        except MissingProductId:
            pass

        try:
            for sub_item in self._nested_items(row):
                product_id = first_non_empty(sub_item, fields.SUB_ITEM_PRODUCT_ID_FIELDS)
                if product_id is not None:
                    records.append(self._build(identity, product_id, sub_item, row))
        except NestedFieldParseError as e:
            log_warning("Record Normalizer", f"Skipping nested items for {identity}: {e}")

        if not records:
            raise MissingProductId(f"Row for {identity} has no product id")
        return records

    def composite_keys(self, row: RawRow) -> List[CompositeKey]:
        """Keys contributed by a row; a row that fails normalization contributes none."""
        try:
            return [record.key for record in self.expand(row)]
        except NormalizationError:
            return []

    def _nested_items(self, row: RawRow) -> List[Dict[str, Any]]:
        if not self.nested_items_field:
            return []
        payload = row.get(self.nested_items_field)
        if payload is None or not str(payload).strip():
            return []
        try:
            parsed = json.loads(payload)
        except (TypeError, ValueError, RecursionError) as e:
            raise NestedFieldParseError(self.nested_items_field, f"invalid JSON ({e})")
        if not isinstance(parsed, list):
            raise NestedFieldParseError(
                self.nested_items_field, f"expected a list, got {type(parsed).__name__}"
            )
        return [item for item in parsed if isinstance(item, dict)]

    def _build(
        self,
        identity: str,
        product_id: str,
        source: Mapping[str, Any],
        row: RawRow,
    ) -> CanonicalRecord:
        if source is row:
            price = first_non_empty(row, self.price_fields)
            title = first_non_empty(row, self.title_fields)
            image_url = first_non_empty(row, self.image_url_fields)
        else:
            price = first_non_empty(source, fields.SUB_ITEM_PRICE_FIELDS)
            title = first_non_empty(source, fields.SUB_ITEM_TITLE_FIELDS)
            image_url = None

        return CanonicalRecord(
            identity=identity,
            product_id=product_id,
            price=price,
            title=title,
            image_url=image_url,
            view_count=_parse_int(first_non_empty(row, self.view_count_fields)),
            email=first_non_empty(row, fields.EMAIL_FIELDS),
            phone=first_non_empty(row, fields.PHONE_FIELDS),
            raw=row,
        )
