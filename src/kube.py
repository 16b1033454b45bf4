"""Cluster API access through the kubectl command line.

KubectlClient shells out to kubectl (or a compatible CLI such as oc) via
run_command. Actions depend on the ClusterClient protocol only, so tests
can hand them an in-memory cluster instead.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from common import ApplyError, ConnectivityError, run_command
from readiness import check_kubectl

logger = logging.getLogger(__name__)

# stderr fragments that mean the API server could not be reached at all
_CONNECTIVITY_MARKERS = (
    'unable to connect to the server',
    'connection refused',
    'no such host',
    'i/o timeout',
    'tls handshake timeout',
    "couldn't get current server api group list",
    'the server is currently unable to handle the request',
    'no configuration has been provided',
)


@runtime_checkable
class ClusterClient(Protocol):
    """Operations the sequencers need from the cluster."""

    def cluster_info(self) -> None:
        """Raise ConnectivityError if the API server is unreachable."""

    def apply(self, path: Path) -> str:
        """kubectl apply -f path."""

    def delete_manifest(self, path: Path) -> str:
        """kubectl delete -f path --ignore-not-found."""

    def delete_resource(self, kind: str, name: str, namespace: Optional[str] = None) -> str:
        """kubectl delete kind name --ignore-not-found."""

    def get(self, kind: str, jsonpath: str, name: Optional[str] = None,
            namespace: Optional[str] = None, selector: Optional[str] = None) -> Optional[str]:
        """Return a jsonpath projection, or None if the resource does not exist."""

    def wait(self, resource: str, condition: str, timeout: int,
             namespace: Optional[str] = None, selector: Optional[str] = None) -> bool:
        """kubectl wait; True if the condition was met before the timeout."""

    def namespace_exists(self, namespace: str) -> bool:
        """Check whether a namespace exists."""

    def create_namespace(self, namespace: str) -> None:
        """Create a namespace."""

    def create_job_from(self, cronjob: str, job_name: str, namespace: str) -> None:
        """Instantiate a one-off Job from a CronJob."""


@dataclass
class ResourceRef:
    """A resource addressed by kind and name instead of by manifest."""
    kind: str
    name: str
    namespace: Optional[str] = None

    def __str__(self) -> str:
        ref = f"{self.kind}/{self.name}"
        return f"{ref} -n {self.namespace}" if self.namespace else ref


def is_connectivity_failure(rc: int, stderr: str) -> bool:
    """Classify a failed kubectl call as an unreachable cluster."""
    if rc == -1:
        # run_command reports timeouts and exec failures as -1
        return True
    err = (stderr or '').lower()
    return any(marker in err for marker in _CONNECTIVITY_MARKERS)


def _is_command_timeout(rc: int, stderr: str) -> bool:
    return rc == -1 and (stderr or '').startswith('Command timed out')


def _is_not_found(stderr: str) -> bool:
    return 'notfound' in (stderr or '').replace(' ', '').lower()


class KubectlClient:
    """ClusterClient implementation backed by the kubectl binary."""

    def __init__(self, kubectl: str = 'kubectl', request_timeout: int = 60):
        self.kubectl = kubectl
        self.request_timeout = request_timeout

    def _run(self, args: list[str], timeout: Optional[int] = None,
             tolerate_timeout: bool = False) -> tuple[int, str, str]:
        cmd = [self.kubectl] + args
        rc, out, err = run_command(cmd, timeout=timeout or self.request_timeout)
        if tolerate_timeout and _is_command_timeout(rc, err):
            return rc, out, err
        if rc != 0 and is_connectivity_failure(rc, err):
            raise ConnectivityError(
                f"Cannot reach the Kubernetes API via '{' '.join(cmd)}': {err.strip()}\n"
                "  Check your kubeconfig and cluster status: "
                f"{self.kubectl} cluster-info"
            )
        return rc, out, err

    def _checked(self, args: list[str], what: str, timeout: Optional[int] = None) -> str:
        rc, out, err = self._run(args, timeout=timeout)
        if rc != 0:
            raise ApplyError(f"{what} failed: {err.strip() or out.strip()}")
        return out

    def cluster_info(self) -> None:
        check_kubectl(self.kubectl)
        rc, _, err = self._run(['cluster-info'], timeout=30)
        if rc != 0:
            raise ConnectivityError(
                f"Cannot connect to Kubernetes cluster. Check your kubeconfig. ({err.strip()})"
            )

    def apply(self, path: Path) -> str:
        return self._checked(['apply', '-f', str(path)], f"apply {path}")

    def delete_manifest(self, path: Path) -> str:
        return self._checked(
            ['delete', '-f', str(path), '--ignore-not-found'], f"delete {path}",
            timeout=300,
        )

    def delete_resource(self, kind: str, name: str, namespace: Optional[str] = None) -> str:
        args = ['delete', kind, name, '--ignore-not-found']
        if namespace:
            args += ['-n', namespace]
        return self._checked(args, f"delete {kind}/{name}", timeout=300)

    def get(self, kind: str, jsonpath: str, name: Optional[str] = None,
            namespace: Optional[str] = None, selector: Optional[str] = None) -> Optional[str]:
        args = ['get', kind]
        if name:
            args.append(name)
        if namespace:
            args += ['-n', namespace]
        if selector:
            args += ['-l', selector]
        args += ['-o', f'jsonpath={jsonpath}']
        rc, out, err = self._run(args)
        if rc != 0:
            if not _is_not_found(err):
                logger.debug(f"get {kind} {name or selector} failed: {err.strip()}")
            return None
        return out.strip()

    def wait(self, resource: str, condition: str, timeout: int,
             namespace: Optional[str] = None, selector: Optional[str] = None) -> bool:
        args = ['wait', f'--for=condition={condition}', resource]
        if selector:
            args += ['-l', selector]
        if namespace:
            args += ['-n', namespace]
        args.append(f'--timeout={timeout}s')
        # Give kubectl a margin over its own timeout before run_command kills it.
        # A kill at that margin is a timed-out wait
        rc, _, err = self._run(args, timeout=timeout + 30, tolerate_timeout=True)
        if rc != 0:
            logger.debug(f"wait {resource} {condition} returned {rc}: {err.strip()}")
        return rc == 0

    def namespace_exists(self, namespace: str) -> bool:
        rc, _, _ = self._run(['get', 'namespace', namespace])
        return rc == 0

    def create_namespace(self, namespace: str) -> None:
        self._checked(['create', 'namespace', namespace], f"create namespace {namespace}")

    def create_job_from(self, cronjob: str, job_name: str, namespace: str) -> None:
        self._checked(
            ['create', 'job', job_name, f'--from=cronjob/{cronjob}', '-n', namespace],
            f"create job {job_name} from cronjob/{cronjob}",
        )
