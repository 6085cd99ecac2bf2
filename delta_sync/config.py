"""
Configuration module for the delta pipeline.

Reads environment variables and provides configuration values for the S3
export buckets, ingestion API credentials, dispatch tuning and the built-in
job definitions.
"""

import json
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from dotenv import load_dotenv

from delta_sync.dispatch.models import DispatchConfig
from delta_sync.transform.models import ConsolidationConfig, OrderMode


def _load_dotenv_if_present(dotenv_path: Path) -> None:
    """
    Load a local .env file when running outside AWS.

    Existing environment variables are never overwritten.

    Args:
        dotenv_path (Path): Path to the .env file.
    """
    for aws_indicator in (
        "AWS_EXECUTION_ENV",
        "AWS_LAMBDA_FUNCTION_NAME",
        "ECS_CONTAINER_METADATA_URI",
    ):
        if os.getenv(aws_indicator):
            return
    if dotenv_path.exists():
        load_dotenv(dotenv_path=dotenv_path, override=False)


_load_dotenv_if_present(Path(__file__).parent.parent / ".env")


@dataclass(frozen=True)
class JobConfig:
    """
    Immutable description of one delta job.

    Args:
        name: Job name used in the Lambda event and in logs
        source_bucket_var: Config attribute holding the primary export bucket
        exclusion_bucket_var: Config attribute holding the exclusion export bucket
        delta_prefix: File name prefix of the delta hand-off artifact
        event_name: Event name sent to the ingestion API
        order_mode: Item ordering per profile
        max_items_per_profile: Items kept per profile
        lookback_days: Number of daily exports read, today included
        min_view_count: When set, the delta counts views and keeps keys seen this often
        stamp_timestamp: Whether profiles carry the dispatch time as ts
    """

    name: str
    source_bucket_var: str
    exclusion_bucket_var: str
    delta_prefix: str
    event_name: str
    order_mode: OrderMode = OrderMode.INSERTION_ORDER
    max_items_per_profile: int = 5
    lookback_days: int = 1
    min_view_count: Optional[int] = None
    stamp_timestamp: bool = False

    def __post_init__(self):
        if self.lookback_days < 1:
            raise ValueError("Number of days must be at least 1")

    def consolidation_config(self, run_timestamp: datetime) -> ConsolidationConfig:
        return ConsolidationConfig(
            max_items_per_profile=self.max_items_per_profile,
            order_mode=self.order_mode,
            event_name=self.event_name,
            timestamp=int(run_timestamp.timestamp()) if self.stamp_timestamp else None,
        )


JOBS: Dict[str, JobConfig] = {
    "cart_abandon": JobConfig(
        name="cart_abandon",
        source_bucket_var="S3_CART_ABANDON_BUCKET",
        exclusion_bucket_var="S3_CHARGED_EVENTS_BUCKET",
        delta_prefix="delta_",
        event_name="TotalItemsInCart",
        order_mode=OrderMode.REVERSE_INSERTION,
    ),
    "most_viewed": JobConfig(
        name="most_viewed",
        source_bucket_var="S3_PRODUCT_VIEW_BUCKET",
        exclusion_bucket_var="S3_CHARGED_EVENTS_BUCKET",
        delta_prefix="most_viewed_delta_",
        event_name="MostViewedItem",
        order_mode=OrderMode.VIEW_COUNT_DESCENDING,
        min_view_count=5,
        stamp_timestamp=True,
    ),
}


class Config:
    """
    Configuration class that reads environment variables for the delta pipeline.
    """

    # AWS / S3 Configuration
    AWS_REGION: str = os.getenv("AWS_REGION", "")
    S3_CART_ABANDON_BUCKET: str = os.getenv("S3_CART_ABANDON_BUCKET", "")
    S3_CHARGED_EVENTS_BUCKET: str = os.getenv("S3_CHARGED_EVENTS_BUCKET", "")
    S3_PRODUCT_VIEW_BUCKET: str = os.getenv("S3_PRODUCT_VIEW_BUCKET", "")
    S3_DELTA_EVENTS_BUCKET: str = os.getenv("S3_DELTA_EVENTS_BUCKET", "")

    # Ingestion API Configuration
    INGESTION_API_URL: str = os.getenv(
        "INGESTION_API_URL", "https://api.clevertap.com/1/upload"
    )
    INGESTION_TIMEOUT_SECONDS: float = float(os.getenv("INGESTION_TIMEOUT_SECONDS", "10"))
    CLEVERTAP_ACCOUNT_ID: str = os.getenv("CLEVERTAP_ACCOUNT_ID", "")
    CLEVERTAP_PASSCODE: str = os.getenv("CLEVERTAP_PASSCODE", "")
    CLEVERTAP_SECRET_ARN: str = os.getenv("CLEVERTAP_SECRET_ARN", "")

    # Dispatch Configuration
    DISPATCH_BATCH_SIZE: int = int(os.getenv("DISPATCH_BATCH_SIZE", "500"))
    DISPATCH_CONCURRENCY_LIMIT: int = int(os.getenv("DISPATCH_CONCURRENCY_LIMIT", "5"))
    DISPATCH_MAX_RETRIES: int = int(os.getenv("DISPATCH_MAX_RETRIES", "3"))
    DISPATCH_BASE_DELAY_MS: int = int(os.getenv("DISPATCH_BASE_DELAY_MS", "1000"))

    # Lazy-loaded secret cache
    _credentials_cache: Dict[str, Any] = {}

    @classmethod
    def _load_credentials_secret(cls) -> Dict[str, Any]:
        """
        Retrieve and cache the ingestion credentials secret from Secrets Manager.

        Returns:
            Dict containing account_id and passcode.
        """
        if not cls._credentials_cache:
            import boto3

            secrets_client = boto3.client("secretsmanager")
            try:
                response = secrets_client.get_secret_value(
                    SecretId=cls.CLEVERTAP_SECRET_ARN
                )
                cls._credentials_cache = json.loads(response["SecretString"])
            except Exception as e:
                raise ValueError(
                    f"Failed to retrieve ingestion credentials from Secrets Manager: {e}"
                )
        return cls._credentials_cache

    @classmethod
    def get_ingestion_credentials(cls) -> Tuple[str, str]:
        """
        Get the ingestion API account id and passcode.

        Environment variables win; otherwise both come from CLEVERTAP_SECRET_ARN.

        Returns:
            Tuple of (account_id, passcode)
        """
        if cls.CLEVERTAP_ACCOUNT_ID and cls.CLEVERTAP_PASSCODE:
            return cls.CLEVERTAP_ACCOUNT_ID, cls.CLEVERTAP_PASSCODE

        secret = cls._load_credentials_secret()
        missing_keys = [key for key in ("account_id", "passcode") if key not in secret]
        if missing_keys:
            raise ValueError(
                f"Ingestion secret missing required keys: {', '.join(missing_keys)}"
            )
        return secret["account_id"], secret["passcode"]

    @classmethod
    def get_dispatch_config(cls) -> DispatchConfig:
        return DispatchConfig(
            batch_size=cls.DISPATCH_BATCH_SIZE,
            concurrency_limit=cls.DISPATCH_CONCURRENCY_LIMIT,
            max_retries=cls.DISPATCH_MAX_RETRIES,
            base_delay=cls.DISPATCH_BASE_DELAY_MS / 1000.0,
        )

    @classmethod
    def get_job(cls, name: str) -> JobConfig:
        if name not in JOBS:
            raise ValueError(
                f"Unsupported job: {name} (expected one of {', '.join(JOBS)})"
            )
        return JOBS[name]

    @classmethod
    def get_bucket(cls, bucket_var: str) -> str:
        bucket = getattr(cls, bucket_var, "")
        if not bucket:
            raise ValueError(f"{bucket_var} environment variable is required")
        return bucket

    @classmethod
    def validate(cls, job: Optional[JobConfig] = None) -> None:
        """
        Validate that required configuration values are present.

        Args:
            job: When given, only the buckets this job reads are required

        Raises:
            ValueError: If any required configuration is missing.
        """
        if job is not None:
            bucket_vars = [job.source_bucket_var, job.exclusion_bucket_var]
        else:
            bucket_vars = sorted(
                {
                    var
                    for j in JOBS.values()
                    for var in (j.source_bucket_var, j.exclusion_bucket_var)
                }
            )
        bucket_vars.append("S3_DELTA_EVENTS_BUCKET")

        required_vars = [("AWS_REGION", cls.AWS_REGION)]
        required_vars += [(var, getattr(cls, var)) for var in bucket_vars]

        missing = [name for name, value in required_vars if not value]
        if not cls.CLEVERTAP_SECRET_ARN:
            if not cls.CLEVERTAP_ACCOUNT_ID:
                missing.append("CLEVERTAP_ACCOUNT_ID")
            if not cls.CLEVERTAP_PASSCODE:
                missing.append("CLEVERTAP_PASSCODE")
        if missing:
            raise ValueError(
                f"Missing required environment variables: {', '.join(missing)}"
            )

        if cls.DISPATCH_BATCH_SIZE < 1 or cls.DISPATCH_CONCURRENCY_LIMIT < 1:
            raise ValueError(
                "DISPATCH_BATCH_SIZE and DISPATCH_CONCURRENCY_LIMIT must be at least 1"
            )
        if cls.DISPATCH_MAX_RETRIES < 1:
            raise ValueError("DISPATCH_MAX_RETRIES must be at least 1")

    @classmethod
    def get_delta_key(cls, prefix: str, run_timestamp: datetime) -> str:
        """
        Generate the file name of a delta hand-off artifact.

        Args:
            prefix: Artifact prefix ('delta_' or 'most_viewed_delta_')
            run_timestamp: UTC timestamp when the run started

        Returns:
            str: e.g. delta_2025-06-04T12-44-02-619Z.csv
        """
        iso = run_timestamp.strftime("%Y-%m-%dT%H:%M:%S.")
        iso += f"{run_timestamp.microsecond // 1000:03d}Z"
        return f"{prefix}{iso.replace(':', '-').replace('.', '-')}.csv"
