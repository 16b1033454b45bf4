"""Driver configuration management.

Configuration is resolved once per invocation into an immutable
DriverConfig. The merge order is:

1. Built-in defaults
2. YAML config file (--config or $FEAST_DRIVER_CONFIG), keys under 'defaults:'
3. Environment ($KUBECTL_CMD, $FEAST_OPERATOR_DIR)
4. CLI flags
"""

import dataclasses
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml


class ConfigError(Exception):
    """Configuration error."""


DEFAULT_NAMESPACE = 'feast'
DEFAULT_FEATURE_STORE_NAME = 'example'
NAMESPACE_PLACEHOLDER = '__NAMESPACE__'

# RFC 1123 label, which is what Kubernetes accepts for namespace names
_NAMESPACE_RE = re.compile(r'^[a-z0-9]([-a-z0-9]{0,61}[a-z0-9])?$')

_PATH_FIELDS = ('template_dir', 'generated_dir', 'operator_dir', 'operator_cache_dir', 'report_dir')


def get_base_dir() -> Path:
    """Get the feast-driver directory."""
    return Path(__file__).parent.parent  # src/ -> feast-driver/


def get_default_operator_dir() -> Path:
    """Get the Feast Operator source tree.

    $FEAST_OPERATOR_DIR wins over the ../infra/feast-operator sibling
    checkout.
    """
    if env_path := os.environ.get('FEAST_OPERATOR_DIR'):
        return Path(env_path)
    return get_base_dir().parent / 'infra' / 'feast-operator'


@dataclass(frozen=True)
class DriverConfig:
    """Immutable settings for one setup or teardown run.

    Setup reads install_operator, create_namespace and the skip_* flags;
    teardown reads uninstall_operator, delete_namespace, skip_datastores
    and skip_feast.
    """
    namespace: str = DEFAULT_NAMESPACE
    create_namespace: bool = False
    install_operator: bool = False
    uninstall_operator: bool = False
    delete_namespace: bool = False
    skip_datastores: bool = False
    skip_feast: bool = False
    skip_apply: bool = False

    # Seconds
    wait_timeout: int = 120
    feast_timeout: int = 300
    apply_timeout: int = 300

    template_dir: Path = field(default_factory=lambda: get_base_dir() / 'templates')
    generated_dir: Path = field(default_factory=lambda: get_base_dir() / 'generated')
    operator_dir: Path = field(default_factory=get_default_operator_dir)
    operator_manifest_url: Optional[str] = None
    # Outside generated_dir so a re-render cannot remove a downloaded manifest
    operator_cache_dir: Path = field(default_factory=lambda: get_base_dir() / '.operator-cache')
    operator_namespace: str = 'feast-operator-system'
    kubectl: str = field(default_factory=lambda: os.environ.get('KUBECTL_CMD', 'kubectl'))
    feature_store_name: Optional[str] = None
    report_dir: Optional[Path] = None
    dry_run: bool = False

    def __post_init__(self):
        # Frozen dataclass: coerce str paths via object.__setattr__
        for name in _PATH_FIELDS:
            value = getattr(self, name)
            if isinstance(value, str):
                object.__setattr__(self, name, Path(value))

    @property
    def operator_install_manifest(self) -> Path:
        return self.operator_dir / 'dist' / 'install.yaml'

    @property
    def downloaded_operator_manifest(self) -> Path:
        return self.operator_cache_dir / 'install.yaml'

    def validate(self) -> None:
        """Raise ConfigError if any setting is unusable."""
        if not _NAMESPACE_RE.match(self.namespace or ''):
            raise ConfigError(
                f"Invalid namespace '{self.namespace}': must be a lowercase RFC 1123 label "
                "(a-z, 0-9, '-', at most 63 characters)"
            )
        for name in ('wait_timeout', 'feast_timeout', 'apply_timeout'):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ConfigError(f"{name} must be a positive integer, got {value!r}")
        if not self.kubectl:
            raise ConfigError("kubectl command must not be empty")

    def replace(self, **changes) -> 'DriverConfig':
        """Return a copy with the given fields changed."""
        return dataclasses.replace(self, **changes)


def _field_names() -> set[str]:
    return {f.name for f in dataclasses.fields(DriverConfig)}


def load_config_file(path: Path) -> dict:
    """Load the 'defaults' mapping from a YAML config file.

    Raises:
        ConfigError: If the file is missing, malformed, or has unknown keys
    """
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        with open(path, encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping at top level")
    defaults = data.get('defaults') or {}
    if not isinstance(defaults, dict):
        raise ConfigError(f"{path}: 'defaults' must be a mapping")

    unknown = sorted(set(defaults) - _field_names())
    if unknown:
        raise ConfigError(f"{path}: unknown settings: {', '.join(unknown)}")
    return defaults


def load_config(config_file: Optional[Path] = None, **overrides) -> DriverConfig:
    """Resolve a DriverConfig from file, environment and explicit overrides.

    Overrides whose value is None are ignored so argparse namespaces can be
    passed through without filtering unset options.

    Raises:
        ConfigError: On unreadable config files or invalid values
    """
    values: dict = {}

    if config_file is None and (env_path := os.environ.get('FEAST_DRIVER_CONFIG')):
        config_file = Path(env_path)
    if config_file is not None:
        values.update(load_config_file(Path(config_file)))

    # Environment beats the config file
    if kubectl := os.environ.get('KUBECTL_CMD'):
        values['kubectl'] = kubectl
    if operator_dir := os.environ.get('FEAST_OPERATOR_DIR'):
        values['operator_dir'] = operator_dir

    unknown = sorted(set(overrides) - _field_names())
    if unknown:
        raise ConfigError(f"Unknown settings: {', '.join(unknown)}")
    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        config = DriverConfig(**values)
    except TypeError as e:
        raise ConfigError(str(e)) from e
    config.validate()
    return config
