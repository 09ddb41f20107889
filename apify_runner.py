"""
Apify Runner — platform-agnostic actor run lifecycle.

submit → poll → fetch results, modelled as a small state machine so the
retry/timeout policy can be tested without any platform's payload quirks:

    submitted → polling → succeeded | failed | aborted | timed_out | local_timeout

`timed_out` is Apify reporting its own run timeout; `local_timeout` means we
ran out of poll attempts while the run was still going.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import requests

import config

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    """Remote run status as reported by one poll."""
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"
    TIMED_OUT = "timed_out"


class JobState(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"
    TIMED_OUT = "timed_out"
    LOCAL_TIMEOUT = "local_timeout"


TERMINAL_STATES = {
    JobState.SUCCEEDED, JobState.FAILED, JobState.ABORTED,
    JobState.TIMED_OUT, JobState.LOCAL_TIMEOUT,
}

_ALLOWED_TRANSITIONS = {
    JobState.SUBMITTED: {JobState.POLLING, JobState.LOCAL_TIMEOUT} | TERMINAL_STATES,
    JobState.POLLING: {JobState.POLLING} | TERMINAL_STATES,
}

_STATUS_TO_STATE = {
    JobStatus.RUNNING: JobState.POLLING,
    JobStatus.SUCCEEDED: JobState.SUCCEEDED,
    JobStatus.FAILED: JobState.FAILED,
    JobStatus.ABORTED: JobState.ABORTED,
    JobStatus.TIMED_OUT: JobState.TIMED_OUT,
}

# Apify run statuses → our status. Transitional ones still count as running.
_APIFY_STATUSES = {
    "READY": JobStatus.RUNNING,
    "RUNNING": JobStatus.RUNNING,
    "TIMING-OUT": JobStatus.RUNNING,
    "ABORTING": JobStatus.RUNNING,
    "SUCCEEDED": JobStatus.SUCCEEDED,
    "FAILED": JobStatus.FAILED,
    "ABORTED": JobStatus.ABORTED,
    "TIMED-OUT": JobStatus.TIMED_OUT,
}


class ApifyError(Exception):
    """Any failure talking to Apify or running an actor."""
    pass


class ApifyRunFailed(ApifyError):
    """The run reached a terminal, unsuccessful status on Apify's side."""

    def __init__(self, run_id: str, status: JobStatus, detail: str = ""):
        self.run_id = run_id
        self.status = status
        message = f"Apify run {run_id} ended with status {status.value}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class ApifyPollTimeout(ApifyError):
    """We gave up polling before the run reached a terminal status."""

    def __init__(self, run_id: str, attempts: int, waited_seconds: float):
        self.run_id = run_id
        self.attempts = attempts
        super().__init__(
            f"Apify run {run_id} still running after {attempts} status checks "
            f"(~{waited_seconds:.0f}s), giving up"
        )


@dataclass(frozen=True)
class JobSpec:
    """What to run: an actor and its input."""
    actor_id: str
    run_input: Dict[str, Any]


@dataclass
class ApifyJob:
    """Tracks one run through the state machine."""
    run_id: str
    state: JobState = JobState.SUBMITTED
    attempts: int = 0
    history: List[JobState] = field(default_factory=lambda: [JobState.SUBMITTED])

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, new_state: JobState) -> None:
        allowed = _ALLOWED_TRANSITIONS.get(self.state, set())
        if new_state not in allowed:
            raise ApifyError(
                f"Invalid job transition {self.state.value} -> {new_state.value}"
            )
        self.state = new_state
        self.history.append(new_state)

    def record_poll(self, status: JobStatus) -> None:
        self.attempts += 1
        self.transition(_STATUS_TO_STATE[status])


def parse_apify_status(raw_status: Optional[str]) -> JobStatus:
    """Map an Apify run status string onto JobStatus."""
    status = _APIFY_STATUSES.get((raw_status or "").upper())
    if status is None:
        raise ApifyError(f"Unknown Apify run status: {raw_status!r}")
    return status


class ApifyRunner:
    """Submits actor runs and waits for them under a bounded poll policy."""

    def __init__(self, api_token: str, poll_interval: float = 5,
                 max_poll_attempts: int = 60, base_url: Optional[str] = None,
                 session: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep):
        if not api_token:
            raise ValueError(
                "APIFY_API_TOKEN is required. Get one at https://apify.com"
            )
        self.api_token = api_token
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self.base_url = (base_url or config.APIFY_BASE_URL).rstrip("/")
        self.session = session or requests.Session()
        self.sleep = sleep
        self._last_status_message = {}

    # ── Single operations ──

    def submit(self, spec: JobSpec) -> str:
        """Start an actor run. Returns the run id."""
        try:
            resp = self.session.post(
                f"{self.base_url}/acts/{spec.actor_id}/runs",
                params={"token": self.api_token},
                json=spec.run_input,
                timeout=config.APIFY_REQUEST_TIMEOUT,
            )
        except requests.exceptions.RequestException as e:
            raise ApifyError(f"Apify actor {spec.actor_id} start request failed: {e}") from e

        if resp.status_code not in (200, 201):
            raise ApifyError(
                f"Apify actor {spec.actor_id} start failed: HTTP {resp.status_code}"
            )

        payload = self._json(resp)
        run_data = payload.get("data") if isinstance(payload, dict) else None
        run_id = run_data.get("id") if isinstance(run_data, dict) else None
        if not run_id:
            raise ApifyError(f"Unexpected Apify response: {resp.text[:200]}")

        logger.info(f"Apify run started for {spec.actor_id} (ID: {run_id})")
        return run_id

    def poll(self, run_id: str) -> JobStatus:
        """Check a run once."""
        try:
            resp = self.session.get(
                f"{self.base_url}/actor-runs/{run_id}",
                params={"token": self.api_token},
                timeout=config.APIFY_REQUEST_TIMEOUT,
            )
        except requests.exceptions.RequestException as e:
            raise ApifyError(f"Run status check failed for {run_id}: {e}") from e

        if resp.status_code != 200:
            raise ApifyError(
                f"Run status check failed: HTTP {resp.status_code}"
            )

        payload = self._json(resp)
        run_info = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(run_info, dict):
            raise ApifyError("Unexpected status response (no data)")

        self._last_status_message[run_id] = run_info.get("statusMessage") or ""
        return parse_apify_status(run_info.get("status"))

    def fetch_results(self, run_id: str) -> List[dict]:
        """Fetch the default dataset items of a finished run."""
        try:
            resp = self.session.get(
                f"{self.base_url}/actor-runs/{run_id}/dataset/items",
                params={"token": self.api_token, "format": "json"},
                timeout=config.APIFY_REQUEST_TIMEOUT,
            )
        except requests.exceptions.RequestException as e:
            raise ApifyError(f"Dataset fetch failed for {run_id}: {e}") from e

        if resp.status_code != 200:
            raise ApifyError(
                f"Dataset fetch failed: HTTP {resp.status_code}"
            )

        payload = self._json(resp)
        # Items usually come back as a bare list, occasionally wrapped
        if isinstance(payload, dict):
            payload = payload.get("data") or payload.get("items") or []
        if not isinstance(payload, list):
            raise ApifyError(f"Unexpected dataset payload type: {type(payload).__name__}")

        items = [item for item in payload if isinstance(item, dict)]
        logger.info(f"Apify run {run_id}: fetched {len(items)} items")
        return items

    # ── Lifecycle ──

    def wait_for_completion(self, run_id: str) -> ApifyJob:
        """
        Poll until the run is terminal or attempts run out.

        Raises ApifyRunFailed for failed/aborted/timed_out runs and
        ApifyPollTimeout when max_poll_attempts is exhausted.
        """
        job = ApifyJob(run_id=run_id)

        while not job.is_terminal:
            if job.attempts >= self.max_poll_attempts:
                job.transition(JobState.LOCAL_TIMEOUT)
                break
            self.sleep(self.poll_interval)
            status = self.poll(run_id)
            job.record_poll(status)
            logger.debug(f"Apify run {run_id} status (attempt {job.attempts}): {status.value}")

        if job.state == JobState.SUCCEEDED:
            logger.info(f"Apify run {run_id} completed after {job.attempts} checks")
            return job

        if job.state == JobState.LOCAL_TIMEOUT:
            raise ApifyPollTimeout(
                run_id, job.attempts, job.attempts * self.poll_interval
            )

        raise ApifyRunFailed(
            run_id, JobStatus(job.state.value),
            self._last_status_message.get(run_id, ""),
        )

    def run(self, spec: JobSpec) -> List[dict]:
        """Submit, wait, and fetch results for one job."""
        run_id = self.submit(spec)
        self.wait_for_completion(run_id)
        return self.fetch_results(run_id)

    @staticmethod
    def _json(resp):
        try:
            return resp.json() or {}
        except ValueError as e:
            raise ApifyError(f"Apify returned invalid JSON: {e}") from e


def create_apify_runner(settings: config.AnalysisSettings = config.DEFAULT_SETTINGS,
                        api_token: Optional[str] = None) -> ApifyRunner:
    """Create a runner using the configured Apify token."""
    api_token = api_token or config.get_api_key('apify')
    if not api_token:
        raise ValueError(
            "APIFY_API_TOKEN not set in database or environment. "
            "Set APIFY_API_TOKEN in .env or add it to the api_credentials table."
        )
    return ApifyRunner(
        api_token=api_token,
        poll_interval=settings.poll_interval_seconds,
        max_poll_attempts=settings.max_poll_attempts,
    )
