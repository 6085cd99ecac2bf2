"""
Delta hand-off writer.

Serializes a delta to CSV and uploads it to the delta bucket, where the
dispatch stage of the same job picks it up.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import boto3
from botocore.exceptions import ClientError

from delta_sync.config import Config
from delta_sync.transform.fields import VIEW_COUNT_FIELDS
from delta_sync.transform.models import DeltaSet
from delta_sync.utils.logging_utils import log_error, log_progress


def delta_rows(delta: DeltaSet) -> List[Dict[str, Any]]:
    """
    Turn delta records back into export-shaped rows.

    Each row is the record's original raw row; records with a view count also
    carry it under the view count column.
    """
    rows = []
    for record in delta:
        row: Dict[str, Any] = dict(record.raw)
        if record.view_count is not None:
            row[VIEW_COUNT_FIELDS[0]] = record.view_count
        rows.append(row)
    return rows


def _csv_value(value: Any) -> str:
    text = "" if value is None else str(value)
    if "," in text or '"' in text:
        return '"' + text.replace('"', '""') + '"'
    return text


def serialize_csv(rows: Sequence[Dict[str, Any]]) -> str:
    """
    Serialize rows to CSV text.

    The header comes from the first row's field names. Values containing a
    comma or double quote are quoted with inner quotes doubled; everything else
    is written as is.

    Args:
        rows: Rows to serialize

    Returns:
        CSV text, or an empty string when there are no rows
    """
    if not rows:
        return ""
    headers = list(rows[0].keys())
    lines = [",".join(_csv_value(header) for header in headers)]
    for row in rows:
        lines.append(",".join(_csv_value(row.get(header)) for header in headers))
    return "\n".join(lines) + "\n"


def write_delta(
    bucket: str,
    prefix: str,
    delta: DeltaSet,
    run_timestamp: datetime,
    client: Optional[Any] = None,
) -> Optional[Dict[str, Any]]:
    """
    Upload a delta artifact to S3.

    Args:
        bucket: Delta bucket name
        prefix: Artifact prefix ('delta_' or 'most_viewed_delta_')
        delta: Delta to write
        run_timestamp: UTC timestamp of the run, used in the file name
        client: Optional boto3 S3 client

    Returns:
        Dict with bucket, key and record_count, or None when the delta is empty
    """
    section = f"Delta Writer - {prefix.rstrip('_')}"
    if not len(delta):
        log_progress(section, "No delta data to write")
        return None

    key = Config.get_delta_key(prefix, run_timestamp)
    body = serialize_csv(delta_rows(delta))

    try:
        s3_client = client or boto3.client("s3")
        log_progress(section, f"Uploading {len(delta)} records to {bucket}/{key}")
        s3_client.put_object(
            Bucket=bucket,
            Key=key,
            Body=body.encode("utf-8"),
            ContentType="text/csv",
        )
    except ClientError as e:
        log_error(section, f"Failed to upload {bucket}/{key}: {e}")
        raise

    log_progress(section, f"Successfully uploaded CSV to {bucket}/{key}")
    return {"bucket": bucket, "key": key, "record_count": len(delta)}
