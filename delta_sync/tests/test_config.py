"""
Unit tests for pipeline configuration.
"""

import importlib
import json
import os
from datetime import datetime, UTC
from unittest.mock import MagicMock, patch

import pytest

import delta_sync.config as config_module

FULL_ENV = {
    "AWS_REGION": "ap-south-1",
    "S3_CART_ABANDON_BUCKET": "cart-abandon-exports",
    "S3_CHARGED_EVENTS_BUCKET": "charged-exports",
    "S3_PRODUCT_VIEW_BUCKET": "product-view-exports",
    "S3_DELTA_EVENTS_BUCKET": "delta-events",
    "CLEVERTAP_ACCOUNT_ID": "ACC-123",
    "CLEVERTAP_PASSCODE": "secret-passcode",
}


def _reload_config():
    """
    Reload the delta_sync.config module to ensure environment changes are picked up.
    """
    importlib.reload(config_module)
    return config_module.Config


class TestConfig:
    """Test configuration validation, credentials and naming helpers."""

    def test_get_delta_key(self):
        """Test delta artifact naming replaces ':' and '.' with '-'."""
        Config = _reload_config()
        run_time = datetime(2025, 6, 4, 12, 44, 2, 619000, tzinfo=UTC)
        assert Config.get_delta_key("delta_", run_time) == "delta_2025-06-04T12-44-02-619Z.csv"

    def test_get_most_viewed_delta_key(self):
        """Test most viewed artifact naming pads milliseconds."""
        Config = _reload_config()
        run_time = datetime(2025, 1, 2, 3, 4, 5, 7000, tzinfo=UTC)
        key = Config.get_delta_key("most_viewed_delta_", run_time)
        assert key == "most_viewed_delta_2025-01-02T03-04-05-007Z.csv"

    @patch.dict(os.environ, FULL_ENV, clear=True)
    def test_validate_config_success(self):
        """Test successful config validation."""
        Config = _reload_config()
        Config.validate()

    @patch.dict(os.environ, {}, clear=True)
    def test_validate_config_missing_required(self):
        """Test config validation with missing required variables."""
        Config = _reload_config()
        with pytest.raises(ValueError) as exc_info:
            Config.validate()

        error_msg = str(exc_info.value)
        assert "S3_DELTA_EVENTS_BUCKET" in error_msg
        assert "S3_CART_ABANDON_BUCKET" in error_msg
        assert "CLEVERTAP_PASSCODE" in error_msg

    @patch.dict(
        os.environ,
        {
            "AWS_REGION": "ap-south-1",
            "S3_CART_ABANDON_BUCKET": "cart-abandon-exports",
            "S3_CHARGED_EVENTS_BUCKET": "charged-exports",
            "S3_DELTA_EVENTS_BUCKET": "delta-events",
            "CLEVERTAP_SECRET_ARN": "arn:aws:secretsmanager:ap-south-1:123456789012:secret:ct",
        },
        clear=True,
    )
    def test_validate_for_job_only_requires_its_buckets(self):
        """Test job-scoped validation ignores other jobs' buckets and accepts a secret ARN."""
        Config = _reload_config()
        Config.validate(config_module.JOBS["cart_abandon"])

        with pytest.raises(ValueError) as exc_info:
            Config.validate(config_module.JOBS["most_viewed"])
        assert "S3_PRODUCT_VIEW_BUCKET" in str(exc_info.value)

    @patch.dict(os.environ, {**FULL_ENV, "DISPATCH_MAX_RETRIES": "0"}, clear=True)
    def test_validate_config_invalid_retries(self):
        """Test config validation rejects a zero retry budget."""
        Config = _reload_config()
        with pytest.raises(ValueError) as exc_info:
            Config.validate()
        assert "DISPATCH_MAX_RETRIES" in str(exc_info.value)

    @patch.dict(
        os.environ,
        {**FULL_ENV, "DISPATCH_BATCH_SIZE": "100", "DISPATCH_BASE_DELAY_MS": "250"},
        clear=True,
    )
    def test_get_dispatch_config(self):
        """Test dispatch settings are read from the environment."""
        Config = _reload_config()
        dispatch_config = Config.get_dispatch_config()
        assert dispatch_config.batch_size == 100
        assert dispatch_config.concurrency_limit == 5
        assert dispatch_config.max_retries == 3
        assert dispatch_config.base_delay == 0.25

    @patch.dict(os.environ, FULL_ENV, clear=True)
    def test_get_ingestion_credentials_from_env(self):
        """Test credentials come from environment variables when set."""
        Config = _reload_config()
        assert Config.get_ingestion_credentials() == ("ACC-123", "secret-passcode")

    @patch.dict(
        os.environ,
        {"CLEVERTAP_SECRET_ARN": "arn:aws:secretsmanager:ap-south-1:123456789012:secret:ct"},
        clear=True,
    )
    @patch("boto3.client")
    def test_get_ingestion_credentials_from_secret(self, mock_client):
        """Test credentials are read once from Secrets Manager and cached."""
        mock_secrets = MagicMock()
        mock_secrets.get_secret_value.return_value = {
            "SecretString": json.dumps({"account_id": "ACC-9", "passcode": "pc-9"})
        }
        mock_client.return_value = mock_secrets

        Config = _reload_config()
        assert Config.get_ingestion_credentials() == ("ACC-9", "pc-9")
        assert Config.get_ingestion_credentials() == ("ACC-9", "pc-9")
        mock_secrets.get_secret_value.assert_called_once()

    def test_get_job_unknown(self):
        """Test unknown job names are rejected."""
        Config = _reload_config()
        with pytest.raises(ValueError) as exc_info:
            Config.get_job("abandoned_wishlist")
        assert "Unsupported job" in str(exc_info.value)

    def test_job_lookback_days_must_be_positive(self):
        """Test a job cannot look back less than one day."""
        _reload_config()
        with pytest.raises(ValueError):
            config_module.JobConfig(
                name="x",
                source_bucket_var="S3_CART_ABANDON_BUCKET",
                exclusion_bucket_var="S3_CHARGED_EVENTS_BUCKET",
                delta_prefix="delta_",
                event_name="X",
                lookback_days=0,
            )

    def test_consolidation_config_timestamp(self):
        """Test only stamping jobs carry the run timestamp."""
        _reload_config()
        run_time = datetime(2025, 6, 4, 12, 0, 0, tzinfo=UTC)
        most_viewed = config_module.JOBS["most_viewed"].consolidation_config(run_time)
        cart_abandon = config_module.JOBS["cart_abandon"].consolidation_config(run_time)
        assert most_viewed.timestamp == int(run_time.timestamp())
        assert most_viewed.event_name == "MostViewedItem"
        assert cart_abandon.timestamp is None
        assert cart_abandon.max_items_per_profile == 5
