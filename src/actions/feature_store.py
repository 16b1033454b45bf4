"""FeatureStore custom resource actions."""

import logging
import time
from dataclasses import dataclass

from applier import ResourceApplier
from actions.staging import require_manifest, staged_manifests
from common import FAILED, READY, REMOVED, TIMED_OUT, ActionResult
from config import DEFAULT_FEATURE_STORE_NAME, DriverConfig
from kube import ClusterClient, ResourceRef
from readiness import PollOutcome, ReadinessCheck, equals, none_left, wait_for
from renderer import feature_store_name

logger = logging.getLogger(__name__)

MANAGED_BY_SELECTOR = 'app.kubernetes.io/managed-by=feast-operator'
FEATURE_STORE_SECRET = 'feast-data-stores'
PHASE_POLL_INTERVAL = 10


def resolve_feature_store_name(config: DriverConfig, context: dict) -> str:
    """FeatureStore name: explicit setting, then rendered feast.yaml, then the default."""
    if config.feature_store_name:
        return config.feature_store_name
    if name := context.get('feature_store_name'):
        return name
    manifest = staged_manifests(config, context).get('feast')
    if manifest is not None:
        if name := feature_store_name(manifest):
            return name
    return DEFAULT_FEATURE_STORE_NAME


@dataclass
class DeployFeatureStoreAction:
    """Apply the FeatureStore CR and poll its phase until Ready or Failed."""
    name: str
    kube: ClusterClient
    interval: float = PHASE_POLL_INTERVAL

    def run(self, config: DriverConfig, context: dict) -> ActionResult:
        start = time.time()
        ns = config.namespace
        fs_name = resolve_feature_store_name(config, context)
        manifest = require_manifest(config, context, 'feast')

        logger.info(f"[{self.name}] Deploying Feast FeatureStore CR...")
        ResourceApplier(self.kube).apply(manifest)

        logger.info(f"[{self.name}] Waiting for FeatureStore CR '{fs_name}' to be ready (this may take a few minutes)...")
        check = ReadinessCheck.from_timeout(
            description=f"FeatureStore '{fs_name}' phase",
            probe=lambda: self.kube.get('featurestore', '{.status.phase}', name=fs_name, namespace=ns),
            is_ready=equals('Ready'),
            is_failed=equals('Failed'),
            timeout=config.feast_timeout,
            interval=self.interval,
        )
        result = wait_for(check)
        updates = {'feature_store_name': fs_name}

        if result.outcome is PollOutcome.FAILED:
            return ActionResult(
                success=False,
                message=f"FeatureStore CR '{fs_name}' is in Failed state",
                duration=time.time() - start,
                context_updates=updates,
                outcome=FAILED,
                follow_up=[f"{config.kubectl} describe featurestore {fs_name} -n {ns}"],
            )

        if result.outcome is PollOutcome.TIMED_OUT:
            return ActionResult(
                success=True,
                message=f"FeatureStore CR did not reach Ready state within {config.feast_timeout}s "
                        f"(last phase: {result.last_status or 'Pending'})",
                duration=time.time() - start,
                context_updates=updates,
                outcome=TIMED_OUT,
                follow_up=[
                    f"{config.kubectl} get featurestore {fs_name} -n {ns}",
                    f"{config.kubectl} describe featurestore {fs_name} -n {ns}",
                ],
            )

        return ActionResult(
            success=True,
            message=f"FeatureStore CR '{fs_name}' is Ready",
            duration=time.time() - start,
            context_updates=updates,
            outcome=READY,
        )


@dataclass
class RemoveFeatureStoreAction:
    """Delete the FeatureStore CR and its data-store secret."""
    name: str
    kube: ClusterClient

    def run(self, config: DriverConfig, context: dict) -> ActionResult:
        start = time.time()
        applier = ResourceApplier(self.kube)
        manifest = staged_manifests(config, context).get('feast')

        if manifest is not None:
            logger.info(f"[{self.name}] Removing FeatureStore CR and secrets...")
            applier.delete(manifest)
        else:
            fs_name = resolve_feature_store_name(config, context)
            logger.info(f"[{self.name}] Removing FeatureStore CR '{fs_name}' by name...")
            applier.delete(ResourceRef('featurestore', fs_name, config.namespace))
            applier.delete(ResourceRef('secret', FEATURE_STORE_SECRET, config.namespace))

        return ActionResult(
            success=True,
            message="FeatureStore CR removed",
            duration=time.time() - start,
            outcome=REMOVED,
        )


@dataclass
class WaitForPodsGoneAction:
    """Wait for operator-managed pods to terminate. Never fails the run."""
    name: str
    kube: ClusterClient
    selector: str = MANAGED_BY_SELECTOR
    interval: float = 5
    max_attempts: int = 6

    def run(self, config: DriverConfig, _context: dict) -> ActionResult:
        start = time.time()
        logger.info(f"[{self.name}] Waiting for operator-managed pods to terminate...")
        check = ReadinessCheck(
            description="operator-managed pods",
            probe=lambda: self.kube.get('pods', '{.items[*].metadata.name}',
                                        namespace=config.namespace, selector=self.selector),
            is_ready=none_left,
            interval=self.interval,
            max_attempts=self.max_attempts,
        )
        result = wait_for(check)

        if not result.ready:
            return ActionResult(
                success=True,
                message=f"Pods still terminating: {result.last_status}",
                duration=time.time() - start,
                outcome=TIMED_OUT,
                follow_up=[f"{config.kubectl} get pods -n {config.namespace} -l {self.selector}"],
            )

        return ActionResult(
            success=True,
            message="Operator-managed pods terminated",
            duration=time.time() - start,
            outcome=REMOVED,
        )
