"""Common utilities and types for feature-store rollout automation."""

import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class DriverError(Exception):
    """Base class for driver errors."""


class FatalError(DriverError):
    """Error that aborts the whole run."""


class ConnectivityError(FatalError):
    """Cluster API is unreachable."""


class ApplyError(FatalError):
    """Cluster rejected an apply or delete request."""


class PrerequisiteError(FatalError):
    """A required tool, artifact or namespace is missing."""


class RenderError(FatalError):
    """Manifest templates could not be rendered."""


# Stage outcomes
APPLIED = 'applied'
SKIPPED = 'skipped'
READY = 'ready'
TIMED_OUT = 'timed-out'
FAILED = 'failed'
DEGRADED = 'degraded'
REMOVED = 'removed'

SOFT_OUTCOMES = (TIMED_OUT, DEGRADED)


@dataclass
class ActionResult:
    """Result returned by an action.

    continue_on_failure marks a failed result as soft: the sequencer
    records it and moves on to the next stage.
    """
    success: bool
    message: str = ''
    duration: float = 0.0
    context_updates: dict = field(default_factory=dict)
    continue_on_failure: bool = False
    outcome: str = APPLIED
    follow_up: list[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return self.outcome in SOFT_OUTCOMES or (not self.success and self.continue_on_failure)


def run_command(
    cmd: list[str],
    cwd: Optional[Path] = None,
    timeout: int = 600,
    capture: bool = True,
    env: Optional[dict] = None
) -> tuple[int, str, str]:
    """Run a command and return (returncode, stdout, stderr)."""
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=capture,
            text=True,
            timeout=timeout,
            env=env,
            check=False  # We handle return codes explicitly
        )
        return result.returncode, result.stdout, result.stderr
    except subprocess.TimeoutExpired:
        return -1, '', f'Command timed out after {timeout}s'
    except OSError as e:
        return -1, '', str(e)
