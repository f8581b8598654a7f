"""
HTTP client for the external applicant tracking system (system of record).

Wraps the ATS REST endpoints the pipeline needs:

- stage updates for a (job, candidate) pair
- free-text notes on a (job, candidate) pair
- conversation history blobs for the candidate engagement session, stored as
  tagged notes

All transport and HTTP status failures are raised as ``AtsClientError`` so
callers can translate them into the pipeline's error taxonomy.
"""

import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

CONVERSATION_HISTORY_TAG = "conversation_history"


class AtsClientError(Exception):
    """Raised when an ATS request fails (transport error or non-2xx status)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AtsClient:
    """
    Synchronous ATS REST client.

    Usage:
        with AtsClient("https://ats.example.com/v1", api_key="...") as client:
            client.push_stage("J-9", "C-3", "Screening", note="Consent captured")
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 15.0,
        actor: str = "recruitflow-agent",
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: ATS API base URL
            api_key: Bearer token; omitted from headers when None
            timeout: Per-request timeout in seconds
            actor: Default ``updated_by`` / ``created_by`` value
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.actor = actor
        self._client = httpx.Client(
            base_url=base_url, headers=headers, timeout=timeout, transport=transport
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, url, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            logger.error(
                "ATS request failed: %s %s -> %s", method, url, e.response.status_code
            )
            raise AtsClientError(
                f"ATS returned {e.response.status_code} for {method} {url}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.error("ATS request error: %s %s: %s", method, url, e)
            raise AtsClientError(f"ATS request error for {method} {url}: {e}") from e

    def push_stage(
        self,
        job_ref: str,
        candidate_ref: str,
        stage_label: str,
        note: Optional[str] = None,
        updated_by: Optional[str] = None,
    ) -> None:
        """Set the ATS stage of a candidate on a job."""
        payload: Dict[str, Any] = {"stage": stage_label, "updated_by": updated_by or self.actor}
        if note is not None:
            payload["notes"] = note
        self._request("PATCH", f"/jobs/{job_ref}/candidates/{candidate_ref}/stage", json=payload)

    def add_note(
        self,
        job_ref: str,
        candidate_ref: str,
        note: str,
        tag: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> None:
        """Attach a note to a candidate on a job."""
        payload: Dict[str, Any] = {"note": note, "created_by": created_by or self.actor}
        if tag is not None:
            payload["tag"] = tag
        self._request("POST", f"/jobs/{job_ref}/candidates/{candidate_ref}/notes", json=payload)

    def fetch_conversation_history(self, candidate_ref: str, job_ref: str) -> str:
        """
        Return the latest stored conversation blob, or "" when none exists.

        Raises:
            AtsClientError: If the request fails or the response is malformed
        """
        url = f"/jobs/{job_ref}/candidates/{candidate_ref}/notes"
        response = self._request(
            "GET", url, params={"tag": CONVERSATION_HISTORY_TAG, "limit": 1}
        )
        try:
            body = response.json()
        except ValueError as e:
            logger.error("ATS returned a non-JSON body for GET %s", url)
            raise AtsClientError(f"ATS returned a non-JSON body for GET {url}") from e

        items = body.get("data", []) if isinstance(body, dict) else body
        if not items:
            return ""
        if not isinstance(items, list) or not isinstance(items[0], dict):
            raise AtsClientError(f"ATS returned malformed notes for GET {url}")
        note = items[0].get("note")
        if note is not None and not isinstance(note, str):
            raise AtsClientError(f"ATS returned a non-text note for GET {url}")
        return note or ""

    def save_conversation_history(self, candidate_ref: str, job_ref: str, history: str) -> None:
        """Store a new conversation blob as a tagged note."""
        self.add_note(job_ref, candidate_ref, history, tag=CONVERSATION_HISTORY_TAG)
