"""
Batch dispatch of consolidated profiles to the ingestion API.

Profiles are split into contiguous batches which are sent in waves of at most
concurrency_limit concurrent requests. A wave must fully settle before the
next one starts. Each batch is retried as a whole with linear backoff, and is
counted either entirely as success or entirely as failure.
"""

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional, Sequence

from delta_sync.dispatch.ingestion_client import IngestionClient, build_event_record
from delta_sync.dispatch.models import DispatchConfig, DispatchError, DispatchResult
from delta_sync.exceptions import IngestionError
from delta_sync.transform.models import ConsolidatedProfile
from delta_sync.utils.logging_utils import log_error, log_progress


def make_batches(
    profiles: Sequence[ConsolidatedProfile], batch_size: int
) -> List[List[ConsolidatedProfile]]:
    """Split profiles into order-preserving chunks of at most batch_size."""
    return [
        list(profiles[i : i + batch_size]) for i in range(0, len(profiles), batch_size)
    ]


def make_waves(batches: List[List[ConsolidatedProfile]], concurrency_limit: int):
    """Yield (first_batch_index, batches) for each wave of concurrency_limit batches."""
    for i in range(0, len(batches), concurrency_limit):
        yield i, batches[i : i + concurrency_limit]


class BatchDispatcher:
    """
    Sends consolidated profiles to the ingestion API.

    Args:
        client: Ingestion client; anything with a send(records) method works
        sleep: Called with the backoff delay in seconds between attempts
    """

    def __init__(
        self,
        client: IngestionClient,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.client = client
        self.sleep = sleep or time.sleep

    def send_batch(
        self,
        batch: List[ConsolidatedProfile],
        batch_number: int,
        event_name: str,
        config: DispatchConfig,
    ) -> Optional[str]:
        """
        Send one batch, retrying the whole batch on failure.

        Args:
            batch: Profiles in this batch
            batch_number: 1-based batch index, used in logs and error descriptors
            event_name: Event name for every record in the batch
            config: Retry settings

        Returns:
            The error message of the last attempt, or None on success
        """
        section = f"Batch Dispatcher - {event_name}"
        records = [build_event_record(profile, event_name) for profile in batch]
        last_error: Optional[IngestionError] = None

        for attempt in range(1, config.max_retries + 1):
            try:
                self.client.send(records)
                log_progress(
                    section,
                    f"Batch {batch_number} sent {len(batch)} profiles (attempt {attempt})",
                )
                return None
            except IngestionError as e:
                last_error = e
                log_error(
                    section,
                    f"Batch {batch_number} attempt {attempt}/{config.max_retries} failed: {e}",
                )
                if attempt < config.max_retries:
                    wait_time = config.base_delay * attempt
                    log_progress(
                        section, f"Retrying batch {batch_number} in {wait_time}s"
                    )
                    self.sleep(wait_time)

        return str(last_error)

    def dispatch(
        self,
        profiles: Sequence[ConsolidatedProfile],
        event_name: str,
        config: Optional[DispatchConfig] = None,
    ) -> DispatchResult:
        """
        Send every profile and account for each one exactly once.

        Args:
            profiles: Consolidated profiles, in order
            event_name: Event name for every record
            config: Batch, concurrency and retry settings

        Returns:
            DispatchResult where success_count + failed_count == len(profiles)
        """
        config = config or DispatchConfig()
        result = DispatchResult()
        if not profiles:
            log_progress(f"Batch Dispatcher - {event_name}", "No profiles to send")
            return result

        section = f"Batch Dispatcher - {event_name}"
        batches = make_batches(profiles, config.batch_size)
        log_progress(
            section,
            f"Created {len(batches)} batches of profiles (max {config.batch_size} per batch)",
        )

        for wave_start, wave in make_waves(batches, config.concurrency_limit):
            with ThreadPoolExecutor(max_workers=len(wave)) as executor:
                future_to_batch = {
                    executor.submit(
                        self.send_batch, batch, wave_start + offset + 1, event_name, config
                    ): (wave_start + offset + 1, batch)
                    for offset, batch in enumerate(wave)
                }

                # Results are reduced here, on the submitting thread only
                for future in as_completed(future_to_batch):
                    batch_number, batch = future_to_batch[future]
                    try:
                        error = future.result()
                    except Exception as e:
                        log_error(section, f"Batch {batch_number} raised unexpectedly: {e}")
                        error = f"Unexpected error: {e}"
                    if error is None:
                        result.success_count += len(batch)
                    else:
                        result.failed_count += len(batch)
                        result.errors.append(
                            DispatchError(
                                batch=f"Batch {batch_number} of {len(batch)} profiles",
                                message=error,
                            )
                        )

        log_progress(
            section,
            f"Dispatch finished: {result.success_count} successful, "
            f"{result.failed_count} failed of {result.total} profiles "
            f"across {len(batches)} batches",
        )
        return result
