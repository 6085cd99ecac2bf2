"""
Job runner tying the pipeline stages together.

A job runs in two stages that can also be chained in a single invocation:
the delta stage reads both exports, computes the delta and writes the
hand-off artifact; the dispatch stage consolidates the delta per identity and
sends the profiles to the ingestion API.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from delta_sync.config import Config, JobConfig
from delta_sync.delta.writer import write_delta
from delta_sync.dispatch.dispatcher import BatchDispatcher
from delta_sync.dispatch.models import DispatchConfig, DispatchResult
from delta_sync.extract.s3_source import S3RowSource, export_selector
from delta_sync.transform.consolidator import ProfileConsolidator
from delta_sync.transform.delta import DeltaComputer
from delta_sync.transform.models import ConsolidatedProfile, DeltaSet, RawRow
from delta_sync.utils.logging_utils import (
    log_progress,
    log_section_complete,
    log_section_start,
)


@dataclass
class RunSummary:
    job: str
    stage: str
    delta_records: int = 0
    dropped_rows: int = 0
    profiles: int = 0
    artifact: Optional[Dict[str, Any]] = None
    dispatch: DispatchResult = field(default_factory=DispatchResult)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job": self.job,
            "stage": self.stage,
            "delta_records": self.delta_records,
            "dropped_rows": self.dropped_rows,
            "profiles": self.profiles,
            "artifact": self.artifact,
            "dispatch": self.dispatch.to_dict(),
        }


class JobRunner:
    """
    Runs delta jobs with explicitly injected components.

    Args:
        source: Row source used to read exports and delta artifacts
        dispatcher: Dispatcher for consolidated profiles
        dispatch_config: Batch, concurrency and retry settings
        delta_computer: Delta computer; a default one is built when omitted
        consolidator: Profile consolidator; a default one is built when omitted
        s3_client: Optional boto3 client used to upload delta artifacts
    """

    def __init__(
        self,
        source: S3RowSource,
        dispatcher: BatchDispatcher,
        dispatch_config: Optional[DispatchConfig] = None,
        delta_computer: Optional[DeltaComputer] = None,
        consolidator: Optional[ProfileConsolidator] = None,
        s3_client: Optional[Any] = None,
    ):
        self.source = source
        self.dispatcher = dispatcher
        self.dispatch_config = dispatch_config or DispatchConfig()
        self.delta_computer = delta_computer or DeltaComputer()
        self.consolidator = consolidator or ProfileConsolidator()
        self.s3_client = s3_client

    def compute(
        self,
        job: JobConfig,
        primary_rows: Iterable[RawRow],
        exclusion_rows: Iterable[RawRow],
    ) -> DeltaSet:
        if job.min_view_count is not None:
            return self.delta_computer.compute_view_delta(
                primary_rows, exclusion_rows, job.min_view_count
            )
        return self.delta_computer.compute_delta(primary_rows, exclusion_rows)

    def deliver(
        self, job: JobConfig, delta: DeltaSet, run_timestamp: datetime
    ) -> Tuple[List[ConsolidatedProfile], DispatchResult]:
        """Consolidate a delta and dispatch the resulting profiles."""
        profiles = self.consolidator.consolidate(
            delta, job.consolidation_config(run_timestamp)
        )
        result = self.dispatcher.dispatch(profiles, job.event_name, self.dispatch_config)
        return profiles, result

    def run_pipeline(
        self,
        job: JobConfig,
        primary_rows: Iterable[RawRow],
        exclusion_rows: Iterable[RawRow],
        run_timestamp: datetime,
    ) -> RunSummary:
        """
        Run delta, consolidation and dispatch over in-memory rows.

        Args:
            job: Job definition
            primary_rows: Primary export rows
            exclusion_rows: Exclusion export rows
            run_timestamp: UTC timestamp of the run

        Returns:
            RunSummary with the dispatch result

        Raises:
            SourceReadError: If either row collection cannot be read
        """
        delta = self.compute(job, primary_rows, exclusion_rows)
        summary = RunSummary(
            job=job.name,
            stage="pipeline",
            delta_records=len(delta),
            dropped_rows=len(delta.dropped),
        )
        profiles, summary.dispatch = self.deliver(job, delta, run_timestamp)
        summary.profiles = len(profiles)
        return summary

    def _read_inputs(self, job: JobConfig, run_timestamp: datetime):
        run_date = run_timestamp.date()
        primary = self.source.read_rows(
            export_selector(Config.get_bucket(job.source_bucket_var), run_date, job.lookback_days)
        )
        exclusion = self.source.read_rows(
            export_selector(
                Config.get_bucket(job.exclusion_bucket_var), run_date, job.lookback_days
            )
        )
        log_progress(
            f"Job - {job.name}",
            f"Read {len(primary)} primary rows and {len(exclusion)} exclusion rows",
        )
        return primary, exclusion

    def run_delta_stage(self, job: JobConfig, run_timestamp: datetime) -> RunSummary:
        """Read both exports, compute the delta and upload the hand-off artifact."""
        section = f"Delta Stage - {job.name}"
        log_section_start(section)

        primary, exclusion = self._read_inputs(job, run_timestamp)
        delta = self.compute(job, primary, exclusion)
        artifact = write_delta(
            Config.get_bucket("S3_DELTA_EVENTS_BUCKET"),
            job.delta_prefix,
            delta,
            run_timestamp,
            client=self.s3_client,
        )

        log_section_complete(section, f"Processed {len(delta)} delta records")
        return RunSummary(
            job=job.name,
            stage="delta",
            delta_records=len(delta),
            dropped_rows=len(delta.dropped),
            artifact=artifact,
        )

    def run_dispatch_stage(self, job: JobConfig, run_timestamp: datetime) -> RunSummary:
        """Read today's latest delta artifact and dispatch its profiles."""
        section = f"Dispatch Stage - {job.name}"
        log_section_start(section)

        bucket = Config.get_bucket("S3_DELTA_EVENTS_BUCKET")
        key = self.source.latest_delta(bucket, job.delta_prefix, run_timestamp.date())
        summary = RunSummary(job=job.name, stage="dispatch")
        if key is None:
            log_section_complete(section, "No delta data found for upload")
            return summary

        # Artifact rows are already a delta; this only normalizes and dedups them
        delta = self.delta_computer.compute_delta(self.source.fetch(bucket, key), [])
        summary.delta_records = len(delta)
        summary.dropped_rows = len(delta.dropped)
        summary.artifact = {"bucket": bucket, "key": key, "record_count": len(delta)}

        profiles, summary.dispatch = self.deliver(job, delta, run_timestamp)
        summary.profiles = len(profiles)

        log_section_complete(
            section,
            f"{summary.profiles} profiles, {summary.dispatch.success_count} successful, "
            f"{summary.dispatch.failed_count} failed",
        )
        return summary

    def run_full(self, job: JobConfig, run_timestamp: datetime) -> RunSummary:
        """Run both stages, dispatching the delta straight from memory."""
        section = f"Full Run - {job.name}"
        log_section_start(section)

        primary, exclusion = self._read_inputs(job, run_timestamp)
        delta = self.compute(job, primary, exclusion)
        artifact = write_delta(
            Config.get_bucket("S3_DELTA_EVENTS_BUCKET"),
            job.delta_prefix,
            delta,
            run_timestamp,
            client=self.s3_client,
        )
        summary = RunSummary(
            job=job.name,
            stage="full",
            delta_records=len(delta),
            dropped_rows=len(delta.dropped),
            artifact=artifact,
        )
        profiles, summary.dispatch = self.deliver(job, delta, run_timestamp)
        summary.profiles = len(profiles)

        log_section_complete(
            section,
            f"{summary.delta_records} delta records, {summary.profiles} profiles, "
            f"{summary.dispatch.success_count} successful, {summary.dispatch.failed_count} failed",
        )
        return summary
