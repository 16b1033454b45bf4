"""Namespace actions."""

import logging
import time
from dataclasses import dataclass

from common import APPLIED, READY, REMOVED, ActionResult, PrerequisiteError
from config import DriverConfig
from kube import ClusterClient

logger = logging.getLogger(__name__)


@dataclass
class EnsureNamespaceAction:
    """Make sure the target namespace exists, creating it if allowed."""
    name: str
    kube: ClusterClient

    def run(self, config: DriverConfig, _context: dict) -> ActionResult:
        start = time.time()
        ns = config.namespace

        if self.kube.namespace_exists(ns):
            logger.info(f"[{self.name}] Namespace '{ns}' already exists")
            return ActionResult(
                success=True,
                message=f"Namespace '{ns}' already exists",
                duration=time.time() - start,
                outcome=READY,
            )

        if not config.create_namespace:
            raise PrerequisiteError(
                f"Namespace '{ns}' does not exist. Use -c/--create-namespace to create it."
            )

        logger.info(f"[{self.name}] Creating namespace '{ns}'...")
        self.kube.create_namespace(ns)
        return ActionResult(
            success=True,
            message=f"Namespace '{ns}' created",
            duration=time.time() - start,
            outcome=APPLIED,
        )


@dataclass
class DeleteNamespaceAction:
    """Delete the namespace and everything left in it."""
    name: str
    kube: ClusterClient

    def run(self, config: DriverConfig, _context: dict) -> ActionResult:
        start = time.time()
        logger.info(f"[{self.name}] Deleting namespace '{config.namespace}'...")
        self.kube.delete_resource('namespace', config.namespace)
        return ActionResult(
            success=True,
            message=f"Namespace '{config.namespace}' deleted",
            duration=time.time() - start,
            outcome=REMOVED,
        )
