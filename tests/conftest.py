"""Shared pytest fixtures for feast-driver tests."""

import sys
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from common import ApplyError, ConnectivityError  # noqa: E402
from config import DriverConfig  # noqa: E402

REPO_TEMPLATES = Path(__file__).parent.parent / 'templates'

MUTATING_CALLS = ('apply', 'delete_manifest', 'delete_resource', 'create_namespace', 'create_job_from')


def _resource_key(doc: dict, default_namespace=None) -> tuple:
    meta = doc.get('metadata') or {}
    return (str(doc['kind']).lower(), meta.get('namespace', default_namespace), meta.get('name'))


class FakeKube:
    """In-memory ClusterClient.

    Resources applied from manifest files are tracked as
    (kind, namespace, name). Status lookups answer from scripted responses
    first, then from the tracked state: a Deployment means a Running pod,
    an applied FeatureStore is Ready and owns a feast-apply CronJob, and a
    created Job is Complete.

    Every call is appended to .calls as a tuple whose first item is the
    method name.
    """

    def __init__(self, namespaces=('feast',)):
        self.calls: list[tuple] = []
        self.namespaces = set(namespaces)
        self.resources: set[tuple] = set()
        self.cronjobs: dict[str, str] = {}  # FeatureStore name -> CronJob name
        self.jobs: dict[str, str] = {}  # Job name -> CronJob name
        self.scripted: dict[tuple, list] = {}
        self.reachable = True
        self.wait_result = True
        self.rejected: set[str] = set()
        self.creates_cronjob = True

    # -- test helpers --------------------------------------------------------

    def script(self, kind, responses, target=None):
        """Queue get() responses for kind (and optionally a name or selector).

        Responses are consumed in order; the last one repeats.
        """
        self.scripted[(kind, target)] = list(responses)

    @property
    def mutations(self) -> list[tuple]:
        return [c for c in self.calls if c[0] in MUTATING_CALLS]

    def names(self, kind) -> set:
        return {name for k, _, name in self.resources if k == kind}

    def _check_reachable(self):
        if not self.reachable:
            raise ConnectivityError("Unable to connect to the server: dial tcp: i/o timeout")

    # -- ClusterClient -------------------------------------------------------

    def cluster_info(self):
        self.calls.append(('cluster_info',))
        self._check_reachable()

    def apply(self, path):
        path = Path(path)
        self.calls.append(('apply', path.name))
        self._check_reachable()
        if path.name in self.rejected:
            raise ApplyError(f"apply {path} failed: error validating data")
        for doc in yaml.safe_load_all(path.read_text(encoding='utf-8')):
            if not isinstance(doc, dict):
                continue
            key = _resource_key(doc)
            self.resources.add(key)
            if key[0] == 'featurestore' and self.creates_cronjob:
                self.cronjobs[key[2]] = f"feast-{key[2]}"
        return f"applied {path.name}"

    def delete_manifest(self, path):
        path = Path(path)
        self.calls.append(('delete_manifest', path.name))
        self._check_reachable()
        if path.exists():
            for doc in yaml.safe_load_all(path.read_text(encoding='utf-8')):
                if isinstance(doc, dict):
                    key = _resource_key(doc)
                    self.resources.discard(key)
                    if key[0] == 'featurestore':
                        self.cronjobs.pop(key[2], None)
        return ''

    def delete_resource(self, kind, name, namespace=None):
        self.calls.append(('delete_resource', kind, name, namespace))
        self._check_reachable()
        if kind == 'namespace':
            self.namespaces.discard(name)
            self.resources = {r for r in self.resources if r[1] != name}
        else:
            self.resources.discard((kind, namespace, name))
            if kind == 'featurestore':
                self.cronjobs.pop(name, None)
        return ''

    def get(self, kind, jsonpath, name=None, namespace=None, selector=None):
        self.calls.append(('get', kind, name or selector))
        self._check_reachable()
        for key in ((kind, name or selector), (kind, None)):
            responses = self.scripted.get(key)
            if responses:
                return responses.pop(0) if len(responses) > 1 else responses[0]

        if kind == 'pods' and selector and selector.startswith('app='):
            app = selector.split('=', 1)[1]
            return 'Running' if ('deployment', namespace, app) in self.resources else ''
        if kind == 'pods':
            return ''
        if kind == 'featurestore':
            return 'Ready' if ('featurestore', namespace, name) in self.resources else None
        if kind == 'cronjobs':
            fs_name = selector.split('=', 1)[1]
            return self.cronjobs.get(fs_name, '')
        if kind == 'job':
            return 'Complete' if name in self.jobs else None
        return None

    def wait(self, resource, condition, timeout, namespace=None, selector=None):
        self.calls.append(('wait', resource, condition, namespace, selector))
        self._check_reachable()
        return self.wait_result

    def namespace_exists(self, namespace):
        self.calls.append(('namespace_exists', namespace))
        self._check_reachable()
        return namespace in self.namespaces

    def create_namespace(self, namespace):
        self.calls.append(('create_namespace', namespace))
        self._check_reachable()
        self.namespaces.add(namespace)

    def create_job_from(self, cronjob, job_name, namespace):
        self.calls.append(('create_job_from', cronjob, job_name, namespace))
        self._check_reachable()
        self.jobs[job_name] = cronjob


@pytest.fixture
def fake_kube():
    """In-memory cluster with the 'feast' namespace already present."""
    return FakeKube()


@pytest.fixture
def template_dir():
    """The stack templates shipped with the repository."""
    return REPO_TEMPLATES


@pytest.fixture
def operator_dir(tmp_path):
    """Operator checkout with a prebuilt dist/install.yaml."""
    op_dir = tmp_path / 'feast-operator'
    (op_dir / 'dist').mkdir(parents=True)
    (op_dir / 'dist' / 'install.yaml').write_text("""\
apiVersion: v1
kind: Namespace
metadata:
  name: feast-operator-system
---
apiVersion: apps/v1
kind: Deployment
metadata:
  name: feast-operator-controller-manager
  namespace: feast-operator-system
  labels:
    control-plane: controller-manager
""")
    return op_dir


@pytest.fixture
def make_config(tmp_path, template_dir, operator_dir):
    """Factory for DriverConfig pointing at temporary directories."""
    def _make(**overrides):
        values = dict(
            namespace='feast',
            template_dir=template_dir,
            generated_dir=tmp_path / 'generated',
            operator_dir=operator_dir,
            operator_cache_dir=tmp_path / 'operator-cache',
            kubectl='kubectl',
        )
        values.update(overrides)
        return DriverConfig(**values)
    return _make


@pytest.fixture
def no_sleep():
    """Patch time.sleep so polling loops run instantly."""
    with patch('time.sleep') as mock_sleep:
        yield mock_sleep
