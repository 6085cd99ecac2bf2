"""
AWS Lambda handler for the daily event delta jobs.

The scheduler invokes this function with {"job": ..., "stage": ...}. The
function computes the delta between two event exports, consolidates it per
identity and pushes the profiles to the ingestion API.
"""

import json
import sys
from datetime import datetime, UTC
from typing import Any, Dict, Optional

from delta_sync.config import Config
from delta_sync.dispatch.dispatcher import BatchDispatcher
from delta_sync.dispatch.ingestion_client import IngestionClient
from delta_sync.extract.s3_source import S3RowSource
from delta_sync.jobs import JobRunner
from delta_sync.utils.logging_utils import (
    log_error,
    log_progress,
    log_section_complete,
    log_section_start,
)

STAGES = ("delta", "dispatch", "full")


def build_runner() -> JobRunner:
    """
    Construct a JobRunner from the environment configuration.

    Returns:
        JobRunner wired to S3 and the ingestion API
    """
    account_id, passcode = Config.get_ingestion_credentials()
    client = IngestionClient(
        url=Config.INGESTION_API_URL,
        account_id=account_id,
        passcode=passcode,
        timeout=Config.INGESTION_TIMEOUT_SECONDS,
    )
    return JobRunner(
        source=S3RowSource(region=Config.AWS_REGION),
        dispatcher=BatchDispatcher(client),
        dispatch_config=Config.get_dispatch_config(),
    )


def run_job(
    job_name: str,
    stage: str,
    run_timestamp: datetime,
    runner: Optional[JobRunner] = None,
) -> Dict[str, Any]:
    """
    Run one stage of one job.

    Args:
        job_name: 'cart_abandon' or 'most_viewed'
        stage: 'delta', 'dispatch' or 'full'
        run_timestamp: UTC timestamp of the run
        runner: Optional pre-built runner

    Returns:
        Run summary as a dict
    """
    if stage not in STAGES:
        raise ValueError(f"Unsupported stage: {stage} (expected one of {', '.join(STAGES)})")
    job = Config.get_job(job_name)

    log_section_start("Configuration Validation")
    Config.validate(job)
    log_section_complete("Configuration Validation")

    runner = runner or build_runner()
    if stage == "delta":
        summary = runner.run_delta_stage(job, run_timestamp)
    elif stage == "dispatch":
        summary = runner.run_dispatch_stage(job, run_timestamp)
    else:
        summary = runner.run_full(job, run_timestamp)
    return summary.to_dict()


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler.

    Args:
        event: {"job": "cart_abandon" | "most_viewed", "stage": "delta" | "dispatch" | "full"}
        context: Lambda context object

    Returns:
        Dict containing statusCode and a JSON body with the run summary
    """
    run_timestamp = datetime.now(UTC)
    event = event or {}
    job_name = event.get("job", "cart_abandon")
    stage = event.get("stage", "full")

    try:
        log_section_start(f"Delta Job - {job_name} ({stage})")
        summary = run_job(job_name, stage, run_timestamp)
        dispatch = summary["dispatch"]
        log_section_complete(
            f"Delta Job - {job_name} ({stage})",
            f"{summary['delta_records']} delta records, {summary['profiles']} profiles, "
            f"{dispatch['successful']} successful, {dispatch['failed']} failed",
        )
        return {
            "statusCode": 200,
            "body": json.dumps(
                {"run_timestamp": run_timestamp.isoformat(), "summary": summary}
            ),
        }
    except Exception as e:
        log_error(f"Delta Job - {job_name} ({stage})", str(e))
        return {
            "statusCode": 500,
            "body": json.dumps(
                {"error": str(e), "run_timestamp": run_timestamp.isoformat()}
            ),
        }


def main() -> None:
    """
    Run a job locally: python -m delta_sync.lambda_handler <job> [stage]
    """
    if len(sys.argv) < 2:
        print("Usage: python -m delta_sync.lambda_handler <job> [delta|dispatch|full]")
        sys.exit(2)
    event = {"job": sys.argv[1], "stage": sys.argv[2] if len(sys.argv) > 2 else "full"}
    response = lambda_handler(event, None)
    log_progress("Delta Job", response["body"])
    if response["statusCode"] != 200:
        sys.exit(1)


if __name__ == "__main__":
    main()
