"""
Unit tests for record normalization.
"""

import json

import pytest

from delta_sync.exceptions import MissingIdentity, MissingProductId
from delta_sync.transform.models import CanonicalRecord, CompositeKey
from delta_sync.transform.normalizer import RecordNormalizer, first_non_empty


class TestFirstNonEmpty:
    """Test ordered candidate lookup."""

    def test_first_candidate_wins(self):
        """Test the earliest non-empty candidate is returned."""
        row = {"a": "", "b": " 2 ", "c": "3"}
        assert first_non_empty(row, ("a", "b", "c")) == "2"

    def test_all_missing(self):
        """Test None is returned when every candidate is blank or absent."""
        assert first_non_empty({"a": "   "}, ("a", "b")) is None


class TestNormalize:
    """Test flat-field normalization."""

    def setup_method(self):
        self.normalizer = RecordNormalizer()

    def test_cart_abandon_row(self):
        """Test a cart-abandon export row resolves every attribute."""
        row = {
            "profile.identity": " u1 ",
            "eventProps.Product ID": "p1",
            "eventProps.Price": "499",
            "eventProps.Title": "Kettle",
            "eventProps.Image Url": "https://cdn.example.com/p1.jpg",
            "profile.email": "u1@example.com",
        }
        record = self.normalizer.normalize(row)
        assert record.identity == "u1"
        assert record.product_id == "p1"
        assert record.price == "499"
        assert record.title == "Kettle"
        assert record.image_url == "https://cdn.example.com/p1.jpg"
        assert record.email == "u1@example.com"
        assert record.phone is None
        assert record.raw is row

    def test_product_id_fallback_order(self):
        """Test product id candidates are tried in table order."""
        row = {
            "profile.identity": "u1",
            "eventProps.Product ID": "",
            "eventProps.Items|product id": "p-space",
            "eventProps.product_id": "p-view",
        }
        assert self.normalizer.normalize(row).product_id == "p-space"

    def test_same_pair_same_key_regardless_of_field(self):
        """Test equal identity and product id give equal keys whatever the source column."""
        cart = self.normalizer.normalize({"profile.identity": "u1", "eventProps.Product ID": "p1"})
        charged = self.normalizer.normalize(
            {"profile.identity": "u1", "eventProps.Items|product_id": " p1"}
        )
        assert cart.key == charged.key == CompositeKey("u1", "p1")

    def test_missing_identity(self):
        """Test rows without identity fail with MissingIdentity."""
        with pytest.raises(MissingIdentity):
            self.normalizer.normalize({"profile.identity": " ", "eventProps.Product ID": "p1"})

    def test_missing_product_id(self):
        """Test rows without any product id fail with MissingProductId."""
        with pytest.raises(MissingProductId):
            self.normalizer.normalize({"profile.identity": "u1", "eventProps.Price": "10"})

    def test_view_count_parsed(self):
        """Test view counts are parsed to int and garbage is left unset."""
        row = {"profile.identity": "u1", "eventProps.ID": "p1", "eventProps.view_count": "7"}
        assert self.normalizer.normalize(row).view_count == 7

        row["eventProps.view_count"] = "many"
        assert self.normalizer.normalize(row).view_count is None

    @pytest.mark.parametrize("value", ["inf", "-inf", "Infinity", "nan", "1e400"])
    def test_non_finite_view_count_left_unset(self, value):
        """Test non-finite view counts leave the record intact with no count."""
        row = {"profile.identity": "u1", "eventProps.ID": "p1", "eventProps.view_count": value}
        record = self.normalizer.normalize(row)
        assert record.product_id == "p1"
        assert record.view_count is None
        assert self.normalizer.composite_keys(row) == [CompositeKey("u1", "p1")]

    def test_record_requires_identity_and_product(self):
        """Test CanonicalRecord cannot be built with blank fields."""
        with pytest.raises(ValueError):
            CanonicalRecord(identity="", product_id="p1")
        with pytest.raises(ValueError):
            CanonicalRecord(identity="u1", product_id="  ")


class TestExpand:
    """Test nested sub-item expansion."""

    def setup_method(self):
        self.normalizer = RecordNormalizer()

    def test_nested_items_add_keys(self):
        """Test each sub-item contributes its own record after the flat record."""
        row = {
            "profile.identity": "u1",
            "eventProps.Product ID": "p1",
            "eventProps.Items": json.dumps(
                [{"product_id": "p2", "price": 10, "item_name": "Mug"}, {"id": "p3"}]
            ),
        }
        records = self.normalizer.expand(row)
        assert [r.product_id for r in records] == ["p1", "p2", "p3"]
        assert records[1].price == "10"
        assert records[1].title == "Mug"

    def test_nested_items_only(self):
        """Test a row with only sub-items is still valid."""
        row = {
            "profile.identity": "u1",
            "eventProps.Items": json.dumps([{"product id": "p9"}]),
        }
        assert self.normalizer.composite_keys(row) == [CompositeKey("u1", "p9")]

    def test_malformed_nested_items(self, capsys):
        """Test malformed JSON is logged and the flat record is kept."""
        row = {
            "profile.identity": "u1",
            "eventProps.Product ID": "p1",
            "eventProps.Items": "[{not json",
        }
        records = self.normalizer.expand(row)
        assert [r.product_id for r in records] == ["p1"]
        assert "Skipping nested items for u1" in capsys.readouterr().out

    def test_deeply_nested_items(self, capsys):
        """Test nesting too deep to decode is logged and the flat record is kept."""
        row = {
            "profile.identity": "u1",
            "eventProps.Product ID": "p1",
            "eventProps.Items": "[" * 100000 + "]" * 100000,
        }
        records = self.normalizer.expand(row)
        assert [r.product_id for r in records] == ["p1"]
        assert "Skipping nested items for u1" in capsys.readouterr().out

    def test_nested_non_list(self):
        """Test a JSON object instead of a list contributes nothing."""
        row = {
            "profile.identity": "u1",
            "eventProps.Items": json.dumps({"product_id": "p2"}),
        }
        with pytest.raises(MissingProductId):
            self.normalizer.expand(row)

    def test_composite_keys_failed_row(self):
        """Test rows that fail normalization contribute no keys."""
        assert self.normalizer.composite_keys({"eventProps.Product ID": "p1"}) == []
