"""Feast Operator install/uninstall actions."""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import requests

from common import DEGRADED, READY, REMOVED, TIMED_OUT, ActionResult, PrerequisiteError, run_command
from config import DriverConfig
from kube import ClusterClient

logger = logging.getLogger(__name__)

OPERATOR_SELECTOR = 'control-plane=controller-manager'


def download_operator_manifest(url: str, dest: Path, timeout: int = 60) -> Path:
    """Fetch a released install.yaml into the staging directory.

    Raises:
        PrerequisiteError: On any HTTP or connection failure
    """
    logger.info(f"Downloading operator install manifest from {url}...")
    try:
        resp = requests.get(url, timeout=timeout)
        resp.raise_for_status()
    except requests.exceptions.RequestException as e:
        raise PrerequisiteError(f"Cannot download operator install manifest from {url}: {e}") from e

    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_text(resp.text, encoding='utf-8')
    return dest


def build_operator_manifest(operator_dir: Path, timeout: int = 1200) -> None:
    """Run 'make build-installer' in the operator source tree.

    Raises:
        PrerequisiteError: If there is no Makefile or the build fails
    """
    makefile = operator_dir / 'Makefile'
    if not makefile.is_file():
        raise PrerequisiteError(f"Cannot find operator Makefile at {makefile}")

    logger.info("Attempting to build it with 'make build-installer'...")
    rc, out, err = run_command(['make', '-C', str(operator_dir), 'build-installer'], timeout=timeout)
    if rc != 0:
        error_msg = err[-500:] if err else out[-500:]
        raise PrerequisiteError(f"make build-installer failed: {error_msg}")


def resolve_operator_manifest(config: DriverConfig) -> Path:
    """Locate the operator install manifest, fetching or building it if needed.

    Resolution order:
    1. {operator_dir}/dist/install.yaml
    2. Download from operator_manifest_url (if configured)
    3. make build-installer in operator_dir

    Raises:
        PrerequisiteError: If no source can produce the manifest
    """
    install_yaml = config.operator_install_manifest
    if install_yaml.is_file():
        return install_yaml

    logger.warning(f"Operator install manifest not found at {install_yaml}")

    if config.operator_manifest_url:
        return download_operator_manifest(config.operator_manifest_url, config.downloaded_operator_manifest)

    build_operator_manifest(config.operator_dir)
    if not install_yaml.is_file():
        raise PrerequisiteError(f"make build-installer did not produce {install_yaml}")
    return install_yaml


def find_installed_manifest(config: DriverConfig) -> Optional[Path]:
    """Return the install manifest used at setup time, if still on disk."""
    for candidate in (config.operator_install_manifest, config.downloaded_operator_manifest):
        if candidate.is_file():
            return candidate
    return None


@dataclass
class InstallOperatorAction:
    """Apply the Feast Operator install manifest and wait for its controller."""
    name: str
    kube: ClusterClient

    def run(self, config: DriverConfig, _context: dict) -> ActionResult:
        start = time.time()
        install_yaml = resolve_operator_manifest(config)

        logger.info(f"[{self.name}] Installing Feast Operator from {install_yaml}...")
        self.kube.apply(install_yaml)

        logger.info(f"[{self.name}] Waiting for operator deployment to be ready...")
        available = self.kube.wait(
            'deployment', 'available', config.wait_timeout,
            namespace=config.operator_namespace,
            selector=OPERATOR_SELECTOR,
        )
        if not available:
            return ActionResult(
                success=True,
                message="Operator readiness check timed out; it may still be starting up.",
                duration=time.time() - start,
                outcome=TIMED_OUT,
                follow_up=[
                    f"{config.kubectl} get deployment -n {config.operator_namespace} -l {OPERATOR_SELECTOR}",
                ],
            )

        return ActionResult(
            success=True,
            message="Feast Operator installed and available",
            duration=time.time() - start,
            outcome=READY,
        )


@dataclass
class UninstallOperatorAction:
    """Delete the resources from the operator install manifest."""
    name: str
    kube: ClusterClient

    def run(self, config: DriverConfig, _context: dict) -> ActionResult:
        start = time.time()
        install_yaml = find_installed_manifest(config)
        if install_yaml is None:
            return ActionResult(
                success=True,
                message=(
                    f"Operator install manifest not found at {config.operator_install_manifest}; "
                    "skipping operator removal."
                ),
                duration=time.time() - start,
                outcome=DEGRADED,
                follow_up=[f"{config.kubectl} get all -n {config.operator_namespace}"],
            )

        logger.info(f"[{self.name}] Uninstalling Feast Operator...")
        self.kube.delete_manifest(install_yaml)
        return ActionResult(
            success=True,
            message="Feast Operator uninstalled",
            duration=time.time() - start,
            outcome=REMOVED,
        )
