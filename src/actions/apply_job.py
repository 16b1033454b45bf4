"""Post-deployment 'feast apply' trigger.

The operator creates a CronJob (labelled feast.dev/name=<store>) that runs
'feast apply'. A one-off Job is instantiated from it so the registry is
populated right after rollout instead of at the next schedule.
"""

import logging
import time
from dataclasses import dataclass

from actions.feature_store import resolve_feature_store_name
from common import DEGRADED, FAILED, READY, TIMED_OUT, ActionResult
from config import DriverConfig
from kube import ClusterClient
from readiness import PollOutcome, ReadinessCheck, has_word, wait_for

logger = logging.getLogger(__name__)

JOB_POLL_INTERVAL = 10
# Types of the conditions currently True, e.g. "Complete" or "Failed"
JOB_CONDITIONS_JSONPATH = '{.status.conditions[?(@.status=="True")].type}'


def make_job_name(prefix: str = 'feast-apply') -> str:
    """Timestamp-suffixed Job name, unique per second."""
    return f"{prefix}-{int(time.time())}"


@dataclass
class TriggerApplyJobAction:
    """Run the feast-apply CronJob once and wait for the Job to complete."""
    name: str
    kube: ClusterClient
    interval: float = JOB_POLL_INTERVAL

    def run(self, config: DriverConfig, context: dict) -> ActionResult:
        start = time.time()
        ns = config.namespace
        fs_name = resolve_feature_store_name(config, context)
        label = f'feast.dev/name={fs_name}'

        logger.info(f"[{self.name}] Looking for the feast-apply CronJob...")
        cronjob = self.kube.get('cronjobs', '{.items[0].metadata.name}', namespace=ns, selector=label)
        if not cronjob:
            logger.warning(f"[{self.name}] No feast-apply CronJob found. You may need to trigger 'feast apply' manually.")
            return ActionResult(
                success=True,
                message="No feast-apply CronJob found; run 'feast apply' manually",
                duration=time.time() - start,
                outcome=DEGRADED,
                follow_up=[f"{config.kubectl} exec deploy/feast-{fs_name} -n {ns} -- bash -c 'feast apply'"],
            )

        job_name = make_job_name()
        logger.info(f"[{self.name}] Creating one-off Job '{job_name}' from CronJob '{cronjob}'...")
        self.kube.create_job_from(cronjob, job_name, ns)

        logger.info(f"[{self.name}] Waiting for feast-apply Job to complete (timeout: {config.apply_timeout}s)...")
        check = ReadinessCheck.from_timeout(
            description=f"Job '{job_name}'",
            probe=lambda: self.kube.get('job', JOB_CONDITIONS_JSONPATH, name=job_name, namespace=ns),
            is_ready=has_word('Complete'),
            is_failed=has_word('Failed'),
            timeout=config.apply_timeout,
            interval=self.interval,
        )
        result = wait_for(check)
        updates = {'apply_job': job_name}
        inspect = [
            f"{config.kubectl} get job {job_name} -n {ns}",
            f"{config.kubectl} logs job/{job_name} -n {ns}",
        ]

        if result.outcome is PollOutcome.FAILED:
            return ActionResult(
                success=False,
                message=f"feast-apply Job '{job_name}' failed",
                duration=time.time() - start,
                context_updates=updates,
                continue_on_failure=True,
                outcome=FAILED,
                follow_up=inspect,
            )

        if result.outcome is PollOutcome.TIMED_OUT:
            return ActionResult(
                success=True,
                message=f"feast-apply Job did not complete within {config.apply_timeout}s",
                duration=time.time() - start,
                context_updates=updates,
                outcome=TIMED_OUT,
                follow_up=inspect,
            )

        return ActionResult(
            success=True,
            message="feast apply completed successfully",
            duration=time.time() - start,
            context_updates=updates,
            outcome=READY,
        )
