"""
S3 row source.

Lists the daily event exports in a bucket, downloads them, decompresses
gzipped files and tokenizes the CSV into string-keyed rows.
"""

import re
from dataclasses import dataclass
from datetime import date, timedelta
from io import BytesIO
from typing import Any, Dict, List, Optional, Tuple

import boto3
import pandas as pd
from botocore.exceptions import BotoCoreError, ClientError

from delta_sync.exceptions import SourceReadError
from delta_sync.utils.logging_utils import log_error, log_progress, log_warning


@dataclass(frozen=True)
class ObjectSelector:
    """
    Which objects of a bucket belong to one logical input.

    Args:
        bucket: Bucket name
        dates: Dates (YYYYMMDD) the export file names must carry
    """

    bucket: str
    dates: Tuple[str, ...]

    def matches(self, key: str) -> bool:
        # Export files are named like <prefix>-<yyyymmdd>-<suffix>.csv.gz
        return any(
            re.search(rf"-{day}-.*\.csv\.gz$", key) is not None for day in self.dates
        )


def export_selector(bucket: str, run_date: date, lookback_days: int = 1) -> ObjectSelector:
    """
    Select the exports of the last lookback_days days, run_date included.

    Args:
        bucket: Bucket name
        run_date: Date of the current run (UTC)
        lookback_days: Number of days to include (>= 1)

    Returns:
        ObjectSelector matching those days' .csv.gz exports
    """
    if lookback_days < 1:
        raise ValueError("Number of days must be at least 1")
    dates = tuple(
        (run_date - timedelta(days=offset)).strftime("%Y%m%d")
        for offset in range(lookback_days)
    )
    return ObjectSelector(bucket=bucket, dates=dates)


class S3RowSource:
    """Reads CSV exports from S3 as lists of row dicts."""

    def __init__(self, client: Optional[Any] = None, region: Optional[str] = None):
        self.client = client or boto3.client("s3", region_name=region or None)

    def _list_objects(self, bucket: str) -> List[Dict[str, Any]]:
        if not bucket:
            raise SourceReadError("Bucket name is required")
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            objects: List[Dict[str, Any]] = []
            for page in paginator.paginate(Bucket=bucket):
                objects.extend(page.get("Contents", []))
        except (ClientError, BotoCoreError) as e:
            log_error(f"S3 Source - {bucket}", f"Failed to list objects: {e}")
            raise SourceReadError(f"Failed to list objects in {bucket}: {e}") from e
        return objects

    def list_available(self, selector: ObjectSelector) -> List[Dict[str, Any]]:
        """
        List the objects matching a selector.

        Args:
            selector: Bucket and dates to match

        Returns:
            Object descriptors ({"Key", "LastModified", ...}) sorted by key

        Raises:
            SourceReadError: If the bucket cannot be listed
        """
        objects = [
            obj for obj in self._list_objects(selector.bucket) if selector.matches(obj["Key"])
        ]
        if not objects:
            log_warning(
                f"S3 Source - {selector.bucket}",
                f"No .csv.gz files found for dates ({', '.join(selector.dates)})",
            )
        else:
            log_progress(
                f"S3 Source - {selector.bucket}", f"Found {len(objects)} matching files"
            )
        return sorted(objects, key=lambda obj: obj["Key"])

    def fetch(self, bucket: str, key: str) -> List[Dict[str, str]]:
        """
        Download and parse one CSV object. Keys ending in .gz are gunzipped.

        Args:
            bucket: Bucket name
            key: Object key

        Returns:
            Rows as dicts of column name to string value; missing values are ""

        Raises:
            SourceReadError: If the object cannot be downloaded or parsed
        """
        section = f"S3 Source - {bucket}"
        try:
            response = self.client.get_object(Bucket=bucket, Key=key)
            body = response["Body"].read()
        except (ClientError, BotoCoreError) as e:
            log_error(section, f"Failed to download {key}: {e}")
            raise SourceReadError(f"Failed to download s3://{bucket}/{key}: {e}") from e

        try:
            df = pd.read_csv(
                BytesIO(body),
                dtype=str,
                keep_default_na=False,
                compression="gzip" if key.endswith(".gz") else None,
            )
        except pd.errors.EmptyDataError:
            log_warning(section, f"{key} is empty")
            return []
        except Exception as e:
            log_error(section, f"Failed to parse {key}: {e}")
            raise SourceReadError(f"Failed to parse s3://{bucket}/{key}: {e}") from e

        rows = df.to_dict(orient="records")
        log_progress(section, f"Successfully processed {len(rows)} rows from {key}")
        return rows

    def read_rows(self, selector: ObjectSelector) -> List[Dict[str, str]]:
        """Fetch and concatenate every object matching the selector."""
        rows: List[Dict[str, str]] = []
        for obj in self.list_available(selector):
            rows.extend(self.fetch(selector.bucket, obj["Key"]))
        log_progress(
            f"S3 Source - {selector.bucket}", f"Total records read: {len(rows)}"
        )
        return rows

    def latest_delta(self, bucket: str, prefix: str, run_date: date) -> Optional[str]:
        """
        Find the newest delta artifact written on run_date.

        Args:
            bucket: Delta bucket name
            prefix: Artifact prefix ('delta_' or 'most_viewed_delta_')
            run_date: Date the artifact name must contain

        Returns:
            Object key, or None when no artifact exists for that day
        """
        day = run_date.strftime("%Y-%m-%d")
        candidates = [
            obj
            for obj in self._list_objects(bucket)
            if obj["Key"].startswith(prefix)
            and obj["Key"].endswith(".csv")
            and day in obj["Key"]
        ]
        if not candidates:
            log_warning(f"S3 Source - {bucket}", f"No {prefix}*.csv files found for {day}")
            return None
        latest = max(candidates, key=lambda obj: obj["LastModified"])
        log_progress(f"S3 Source - {bucket}", f"Latest delta file: {latest['Key']}")
        return latest["Key"]
