"""Readiness polling and pre-flight checks.

Kubernetes controllers converge asynchronously and expose no blocking
"done" signal, so readiness is established by polling a status probe:
- ReadinessCheck describes what to poll and what counts as ready/failed
- wait_for() runs the bounded polling loop

Pre-flight checks validate the environment before any stage runs:
- kubectl binary on PATH
- API server reachable
"""

import enum
import logging
import shutil
import time
from dataclasses import dataclass
from typing import Callable, Optional

from common import PrerequisiteError

logger = logging.getLogger(__name__)

Probe = Callable[[], Optional[str]]
Predicate = Callable[[Optional[str]], bool]


class PollOutcome(enum.Enum):
    READY = 'ready'
    TIMED_OUT = 'timed-out'
    FAILED = 'failed'


@dataclass(frozen=True)
class ReadinessCheck:
    """What to poll and how long for.

    Attributes:
        description: Human-readable target (e.g. "FeatureStore 'example'")
        probe: Returns the observed status, or None if the target does not exist yet
        is_ready: Success predicate over the observed status
        is_failed: Optional failure predicate; a match stops polling immediately
        interval: Seconds between attempts
        max_attempts: Attempt budget
    """
    description: str
    probe: Probe
    is_ready: Predicate
    is_failed: Optional[Predicate] = None
    interval: float = 10
    max_attempts: int = 30

    @classmethod
    def from_timeout(cls, description: str, probe: Probe, is_ready: Predicate,
                     timeout: int, interval: float,
                     is_failed: Optional[Predicate] = None) -> 'ReadinessCheck':
        """Build a check whose attempt budget covers timeout seconds."""
        attempts = max(1, int(timeout // interval))
        return cls(
            description=description,
            probe=probe,
            is_ready=is_ready,
            is_failed=is_failed,
            interval=interval,
            max_attempts=attempts,
        )


@dataclass
class PollResult:
    """Result of wait_for()."""
    outcome: PollOutcome
    attempts: int
    last_status: Optional[str] = None

    @property
    def ready(self) -> bool:
        return self.outcome is PollOutcome.READY


def wait_for(check: ReadinessCheck) -> PollResult:
    """Poll check.probe until ready, failed or out of attempts.

    Probe exceptions (e.g. ConnectivityError) propagate.
    """
    status: Optional[str] = None
    for attempt in range(1, check.max_attempts + 1):
        status = check.probe()

        if check.is_failed is not None and check.is_failed(status):
            logger.warning(f"{check.description} reported failure: {status}")
            return PollResult(PollOutcome.FAILED, attempt, status)

        if check.is_ready(status):
            logger.debug(f"{check.description} ready after {attempt} attempt(s)")
            return PollResult(PollOutcome.READY, attempt, status)

        logger.info(f"  {check.description}: {status or 'Pending'} (attempt {attempt}/{check.max_attempts})")
        if attempt < check.max_attempts:
            time.sleep(check.interval)

    return PollResult(PollOutcome.TIMED_OUT, check.max_attempts, status)


# -----------------------------------------------------------------------------
# Status predicates
# -----------------------------------------------------------------------------

def equals(expected: str) -> Predicate:
    """Predicate: status equals expected."""
    return lambda status: status == expected


def count_words(status: Optional[str], word: Optional[str] = None) -> int:
    """Count space-separated jsonpath items, optionally only those equal to word."""
    items = (status or '').split()
    if word is None:
        return len(items)
    return sum(1 for item in items if item == word)


def any_running(status: Optional[str]) -> bool:
    """Predicate over '{.items[*].status.phase}': at least one Running pod."""
    return count_words(status, 'Running') > 0


def none_left(status: Optional[str]) -> bool:
    """Predicate over '{.items[*].metadata.name}': no matching objects."""
    return count_words(status) == 0


def has_word(word: str) -> Predicate:
    """Predicate: word appears among the space-separated items."""
    return lambda status: count_words(status, word) > 0


# -----------------------------------------------------------------------------
# Pre-flight checks
# -----------------------------------------------------------------------------

def check_kubectl(kubectl: str) -> str:
    """Verify the kubectl binary is available.

    Returns:
        Resolved path of the binary

    Raises:
        PrerequisiteError: If it is not on PATH
    """
    path = shutil.which(kubectl)
    if not path:
        raise PrerequisiteError(f"{kubectl} is not installed or not in PATH")
    return path


def check_cluster(kube) -> None:
    """Verify the API server answers. Raises ConnectivityError if not."""
    kube.cluster_info()
