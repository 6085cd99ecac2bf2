"""
HTTP client for the event ingestion API.

Sends one JSON request per batch of event records with the two static
credential headers the API requires. Every failure is raised as an
IngestionError subclass so the dispatcher can retry it.
"""

from typing import Any, Dict, List, Optional

import requests

from delta_sync.exceptions import NetworkError, NonSuccessStatus, RequestTimeout
from delta_sync.transform.models import ConsolidatedProfile

DEFAULT_TIMEOUT_SECONDS = 10.0


def build_event_record(profile: ConsolidatedProfile, event_name: str) -> Dict[str, Any]:
    """
    Build the ingestion record for one profile.

    Args:
        profile: Consolidated profile
        event_name: Event name; falls back to the profile's own event name when empty

    Returns:
        Dict with identity, type, evtName, evtData and, when stamped, ts
    """
    record: Dict[str, Any] = {
        "identity": profile.identity,
        "type": "event",
        "evtName": event_name or profile.event_name,
        "evtData": profile.attributes(),
    }
    if profile.timestamp is not None:
        record["ts"] = profile.timestamp
    return record


class IngestionClient:
    """Posts event record batches to the ingestion endpoint."""

    def __init__(
        self,
        url: str,
        account_id: str,
        passcode: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        envelope_key: str = "records",
    ):
        self.url = url
        self.account_id = account_id
        self.passcode = passcode
        self.timeout = timeout
        self.envelope_key = envelope_key

    def _headers(self) -> Dict[str, str]:
        return {
            "X-CleverTap-Account-Id": self.account_id,
            "X-CleverTap-Passcode": self.passcode,
            "Content-Type": "application/json",
        }

    def send(self, records: List[Dict[str, Any]]) -> Optional[Any]:
        """
        Send one batch of event records.

        Args:
            records: Event records as built by build_event_record

        Returns:
            Decoded JSON response body, or None when the body is not JSON

        Raises:
            RequestTimeout: If the call exceeds the configured timeout
            NetworkError: On any transport level failure
            NonSuccessStatus: If the API answers with a non-2xx status
        """
        # One session per call; sessions are never shared between worker threads
        session = requests.Session()
        session.headers.update(self._headers())
        try:
            response = session.post(
                self.url, json={self.envelope_key: records}, timeout=self.timeout
            )
        except requests.exceptions.Timeout as e:
            raise RequestTimeout(f"Ingestion API timed out after {self.timeout}s: {e}") from e
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Ingestion API request failed: {e}") from e
        finally:
            session.close()

        if not 200 <= response.status_code < 300:
            raise NonSuccessStatus(response.status_code, response.text)

        try:
            return response.json()
        except ValueError:
            return None
