"""Pre-flight, rendering and staging-directory actions."""

import logging
import shutil
import time
from dataclasses import dataclass

from common import REMOVED, READY, APPLIED, SKIPPED, ActionResult, PrerequisiteError
from config import DriverConfig
from kube import ClusterClient
from readiness import check_cluster
from renderer import Manifest, feature_store_name, load_rendered, render_templates

logger = logging.getLogger(__name__)


def _foreign(manifests: dict[str, Manifest], namespace: str) -> list[str]:
    """Names of staged manifests that target a namespace other than namespace."""
    return sorted(name for name, m in manifests.items()
                  if m.namespace is not None and m.namespace != namespace)


def staged_manifests(config: DriverConfig, context: dict) -> dict[str, Manifest]:
    """Manifests rendered earlier in this run, else whatever is staged on disk.

    Staged files rendered for another namespace are ignored, so callers fall
    back to deleting by name in config.namespace.
    """
    manifests = context.get('manifests')
    if manifests:
        return manifests
    staged = load_rendered(config.generated_dir)
    foreign = _foreign(staged, config.namespace)
    if foreign:
        logger.warning(
            f"Ignoring manifests staged for another namespace in {config.generated_dir}: "
            f"{', '.join(foreign)}"
        )
        staged = {name: m for name, m in staged.items() if name not in foreign}
    return staged


def require_manifest(config: DriverConfig, context: dict, name: str) -> Manifest:
    """Look up a rendered manifest by template name.

    Raises:
        PrerequisiteError: If the template set has no such manifest
    """
    manifests = staged_manifests(config, context)
    if name not in manifests:
        raise PrerequisiteError(
            f"Rendered manifest '{name}.yaml' not found in {config.generated_dir}. "
            f"Check that {config.template_dir}/{name}.yaml exists."
        )
    return manifests[name]


@dataclass
class CheckPrerequisitesAction:
    """Verify the cluster CLI is installed and the API server answers."""
    name: str
    kube: ClusterClient

    def run(self, config: DriverConfig, _context: dict) -> ActionResult:
        start = time.time()
        check_cluster(self.kube)
        logger.info(f"[{self.name}] Connected to Kubernetes cluster")
        return ActionResult(
            success=True,
            message=f"{config.kubectl} connected to cluster",
            duration=time.time() - start,
            outcome=READY,
        )


@dataclass
class RenderManifestsAction:
    """Render templates into the staging directory."""
    name: str

    def run(self, config: DriverConfig, _context: dict) -> ActionResult:
        start = time.time()
        manifests = render_templates(config.template_dir, config.generated_dir, config.namespace)
        by_name = {m.name: m for m in manifests}

        updates: dict = {'manifests': by_name}
        if 'feast' in by_name:
            fs_name = feature_store_name(by_name['feast'])
            if fs_name:
                updates['feature_store_name'] = fs_name

        return ActionResult(
            success=True,
            message=f"Rendered {len(manifests)} manifest(s) to {config.generated_dir}",
            duration=time.time() - start,
            context_updates=updates,
            outcome=APPLIED,
        )


@dataclass
class CleanupGeneratedAction:
    """Remove the staging directory of rendered manifests."""
    name: str

    def run(self, config: DriverConfig, _context: dict) -> ActionResult:
        start = time.time()
        if not config.generated_dir.exists():
            return ActionResult(
                success=True,
                message=f"{config.generated_dir} already absent",
                duration=time.time() - start,
                outcome=SKIPPED,
            )

        foreign = _foreign(load_rendered(config.generated_dir), config.namespace)
        if foreign:
            logger.warning(f"[{self.name}] Keeping {config.generated_dir}: staged for another namespace")
            return ActionResult(
                success=True,
                message=f"Kept {config.generated_dir}, rendered for another namespace",
                duration=time.time() - start,
                outcome=SKIPPED,
            )

        logger.info(f"[{self.name}] Cleaning up generated manifests...")
        shutil.rmtree(config.generated_dir)
        return ActionResult(
            success=True,
            message=f"Removed {config.generated_dir}",
            duration=time.time() - start,
            outcome=REMOVED,
        )
