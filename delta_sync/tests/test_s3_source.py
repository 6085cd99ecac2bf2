"""
Unit tests for the S3 row source.
"""

import gzip
from datetime import date, datetime
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from delta_sync.exceptions import SourceReadError
from delta_sync.extract.s3_source import S3RowSource, export_selector

CSV_TEXT = (
    "profile.identity,eventProps.Product ID,eventProps.Title\n"
    'u1,p1,"Kettle, steel"\n'
    "u2,,Mug\n"
)


def _mock_client(objects=None, body=b""):
    client = MagicMock()
    paginator = MagicMock()
    paginator.paginate.return_value = [{"Contents": objects or []}]
    client.get_paginator.return_value = paginator
    client.get_object.return_value = {"Body": MagicMock(read=MagicMock(return_value=body))}
    return client


class TestExportSelector:
    """Test export file selection."""

    def test_lookback_dates(self):
        """Test the selector covers the run date and the previous days."""
        selector = export_selector("bucket", date(2025, 3, 1), lookback_days=3)
        assert selector.dates == ("20250301", "20250228", "20250227")

    def test_matches_export_pattern(self):
        """Test only dated .csv.gz exports match."""
        selector = export_selector("bucket", date(2025, 6, 4))
        assert selector.matches("cart-abandon-20250604-000123-.csv.gz")
        assert not selector.matches("cart-abandon-20250603-000123-.csv.gz")
        assert not selector.matches("cart-abandon-20250604-000123.csv")

    def test_lookback_must_be_positive(self):
        """Test zero lookback days is rejected."""
        with pytest.raises(ValueError):
            export_selector("bucket", date(2025, 6, 4), lookback_days=0)


class TestS3RowSource:
    """Test listing, downloading and parsing."""

    def test_fetch_gzip_csv(self):
        """Test gzipped exports are decompressed and parsed as strings."""
        client = _mock_client(body=gzip.compress(CSV_TEXT.encode("utf-8")))
        rows = S3RowSource(client=client).fetch("bucket", "export-20250604-1-.csv.gz")

        assert rows == [
            {"profile.identity": "u1", "eventProps.Product ID": "p1", "eventProps.Title": "Kettle, steel"},
            {"profile.identity": "u2", "eventProps.Product ID": "", "eventProps.Title": "Mug"},
        ]

    def test_fetch_plain_csv(self):
        """Test uncompressed delta files are parsed directly."""
        client = _mock_client(body=CSV_TEXT.encode("utf-8"))
        rows = S3RowSource(client=client).fetch("bucket", "delta_2025-06-04T01-00-00-000Z.csv")
        assert len(rows) == 2

    def test_fetch_empty_object(self):
        """Test an empty object yields no rows."""
        client = _mock_client(body=b"")
        assert S3RowSource(client=client).fetch("bucket", "delta_x.csv") == []

    def test_fetch_client_error(self):
        """Test download failures raise SourceReadError."""
        client = _mock_client()
        client.get_object.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied"}}, "GetObject"
        )
        with pytest.raises(SourceReadError):
            S3RowSource(client=client).fetch("bucket", "export-20250604-1-.csv.gz")

    def test_list_error(self):
        """Test listing failures raise SourceReadError."""
        client = _mock_client()
        client.get_paginator.return_value.paginate.side_effect = ClientError(
            {"Error": {"Code": "NoSuchBucket"}}, "ListObjectsV2"
        )
        with pytest.raises(SourceReadError):
            S3RowSource(client=client).list_available(export_selector("bucket", date(2025, 6, 4)))

    def test_read_rows_concatenates_matching_files(self):
        """Test read_rows fetches every matching export and skips the rest."""
        objects = [
            {"Key": "charged-20250604-2-.csv.gz"},
            {"Key": "charged-20250604-1-.csv.gz"},
            {"Key": "charged-20250101-1-.csv.gz"},
        ]
        client = _mock_client(objects, body=gzip.compress(CSV_TEXT.encode("utf-8")))
        rows = S3RowSource(client=client).read_rows(export_selector("charged", date(2025, 6, 4)))

        assert len(rows) == 4
        fetched = [call.kwargs["Key"] for call in client.get_object.call_args_list]
        assert fetched == ["charged-20250604-1-.csv.gz", "charged-20250604-2-.csv.gz"]

    def test_latest_delta_picks_newest_with_prefix(self):
        """Test the newest artifact of the day with the exact prefix is chosen."""
        objects = [
            {"Key": "delta_2025-06-04T01-00-00-000Z.csv", "LastModified": datetime(2025, 6, 4, 1)},
            {"Key": "delta_2025-06-04T05-00-00-000Z.csv", "LastModified": datetime(2025, 6, 4, 5)},
            {
                "Key": "most_viewed_delta_2025-06-04T09-00-00-000Z.csv",
                "LastModified": datetime(2025, 6, 4, 9),
            },
            {"Key": "delta_2025-06-03T23-00-00-000Z.csv", "LastModified": datetime(2025, 6, 3, 23)},
        ]
        source = S3RowSource(client=_mock_client(objects))

        assert source.latest_delta("delta", "delta_", date(2025, 6, 4)) == (
            "delta_2025-06-04T05-00-00-000Z.csv"
        )
        assert source.latest_delta("delta", "most_viewed_delta_", date(2025, 6, 4)) == (
            "most_viewed_delta_2025-06-04T09-00-00-000Z.csv"
        )
        assert source.latest_delta("delta", "delta_", date(2025, 6, 5)) is None
