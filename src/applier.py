"""Idempotent apply/delete of rendered manifests."""

import logging
from dataclasses import dataclass
from typing import Union

from kube import ClusterClient, ResourceRef
from renderer import Manifest

logger = logging.getLogger(__name__)


@dataclass
class ApplyResult:
    """Outcome of applying one manifest."""
    manifest: str
    output: str = ''


@dataclass
class DeleteResult:
    """Outcome of deleting a manifest or resource. Absent targets still succeed."""
    target: str
    output: str = ''


class ResourceApplier:
    """Applies and deletes manifests against a ClusterClient.

    Apply updates resources in place when they already exist. Delete always
    ignores resources that are not found. ApplyError and ConnectivityError
    from the client propagate unchanged.
    """

    def __init__(self, kube: ClusterClient):
        self.kube = kube

    def apply(self, manifest: Manifest) -> ApplyResult:
        logger.debug(f"Applying {manifest.path} ({', '.join(manifest.kinds) or 'no kinds'})")
        out = self.kube.apply(manifest.path)
        return ApplyResult(manifest=manifest.name, output=out.strip())

    def delete(self, target: Union[Manifest, ResourceRef]) -> DeleteResult:
        if isinstance(target, Manifest):
            logger.debug(f"Deleting resources from {target.path}")
            out = self.kube.delete_manifest(target.path)
            return DeleteResult(target=target.name, output=out.strip())

        logger.debug(f"Deleting {target}")
        out = self.kube.delete_resource(target.kind, target.name, target.namespace)
        return DeleteResult(target=str(target), output=out.strip())
