"""PostgreSQL registry and Redis online store actions."""

import logging
import time
from dataclasses import dataclass

from applier import ResourceApplier
from actions.staging import require_manifest, staged_manifests
from common import READY, REMOVED, TIMED_OUT, ActionResult
from config import DriverConfig
from kube import ClusterClient, ResourceRef
from readiness import ReadinessCheck, any_running, wait_for

logger = logging.getLogger(__name__)

# (manifest name, display name) in apply order
DATASTORES = (
    ('postgres', 'PostgreSQL'),
    ('redis', 'Redis'),
)
DATASTORE_SECRETS = ('postgres-secret',)
POD_POLL_INTERVAL = 5


def pod_phase_check(kube: ClusterClient, config: DriverConfig, app: str, label: str) -> ReadinessCheck:
    """Poll until at least one pod labelled app=<app> is Running."""
    def probe():
        return kube.get('pods', '{.items[*].status.phase}',
                        namespace=config.namespace, selector=f'app={app}')

    return ReadinessCheck.from_timeout(
        description=f"{label} pod",
        probe=probe,
        is_ready=any_running,
        timeout=config.wait_timeout,
        interval=POD_POLL_INTERVAL,
    )


@dataclass
class DeployDatastoresAction:
    """Apply the datastore manifests back-to-back, then wait for each in turn."""
    name: str
    kube: ClusterClient

    def run(self, config: DriverConfig, context: dict) -> ActionResult:
        start = time.time()
        applier = ResourceApplier(self.kube)

        for app, label in DATASTORES:
            manifest = require_manifest(config, context, app)
            logger.info(f"[{self.name}] Deploying {label}...")
            applier.apply(manifest)

        not_ready = []
        for app, label in DATASTORES:
            logger.info(f"[{self.name}] Waiting for {label} pod to be ready (timeout: {config.wait_timeout}s)...")
            result = wait_for(pod_phase_check(self.kube, config, app, label))
            if not result.ready:
                logger.warning(f"[{self.name}] {label} readiness check timed out")
                not_ready.append(app)

        if not_ready:
            return ActionResult(
                success=True,
                message=f"Datastores applied; not ready within {config.wait_timeout}s: {', '.join(not_ready)}",
                duration=time.time() - start,
                outcome=TIMED_OUT,
                follow_up=[
                    f"{config.kubectl} get pods -n {config.namespace} -l app={app}" for app in not_ready
                ],
            )

        return ActionResult(
            success=True,
            message="Datastores are ready",
            duration=time.time() - start,
            outcome=READY,
        )


@dataclass
class RemoveDatastoresAction:
    """Delete the datastores and their secrets.

    Uses the staged manifests when present; otherwise deletes the
    Deployment and Service of each datastore by name.
    """
    name: str
    kube: ClusterClient

    def run(self, config: DriverConfig, context: dict) -> ActionResult:
        start = time.time()
        applier = ResourceApplier(self.kube)
        manifests = staged_manifests(config, context)
        ns = config.namespace

        for app, label in reversed(DATASTORES):
            if app in manifests:
                logger.info(f"[{self.name}] Removing {label}...")
                applier.delete(manifests[app])
            else:
                logger.info(f"[{self.name}] Removing {label} by name...")
                applier.delete(ResourceRef('deployment', app, ns))
                applier.delete(ResourceRef('service', app, ns))

        for secret in DATASTORE_SECRETS:
            applier.delete(ResourceRef('secret', secret, ns))

        return ActionResult(
            success=True,
            message="Datastores removed",
            duration=time.time() - start,
            outcome=REMOVED,
        )
