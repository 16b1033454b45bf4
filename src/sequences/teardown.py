"""Feast stack teardown.

Removes what the rollout created, in reverse order. Every delete ignores
resources that are already gone, so teardown is safe to rerun after a
partial setup.
"""

from actions import (
    RemoveFeatureStoreAction,
    WaitForPodsGoneAction,
    RemoveDatastoresAction,
    UninstallOperatorAction,
    DeleteNamespaceAction,
    CleanupGeneratedAction,
)
from config import DriverConfig
from kube import ClusterClient
from sequences import SequenceState, Stage, register_sequence


@register_sequence
class FeastTeardown:
    """Delete the Feast stack from a namespace."""

    name = 'teardown'
    description = 'Remove the FeatureStore, datastores and optionally the operator and namespace'
    requires_confirmation = True

    def get_stages(self, config: DriverConfig, kube: ClusterClient) -> list[Stage]:
        """Return stages in reverse dependency order."""
        return [
            Stage('feature_store', RemoveFeatureStoreAction(
                name='remove-feature-store',
                kube=kube,
            ), 'Remove FeatureStore CR', SequenceState.FEATURE_STORE_REMOVED,
                skip=config.skip_feast,
                skip_reason='--skip-feast'),

            Stage('drain', WaitForPodsGoneAction(
                name='drain-pods',
                kube=kube,
            ), 'Wait for operator-managed pods to terminate', SequenceState.PODS_DRAINED,
                skip=config.skip_feast,
                skip_reason='--skip-feast'),

            Stage('datastores', RemoveDatastoresAction(
                name='remove-datastores',
                kube=kube,
            ), 'Remove Redis and PostgreSQL', SequenceState.DATASTORES_REMOVED,
                skip=config.skip_datastores,
                skip_reason='--skip-datastores'),

            Stage('operator', UninstallOperatorAction(
                name='uninstall-operator',
                kube=kube,
            ), 'Uninstall Feast Operator', SequenceState.OPERATOR_REMOVED,
                skip=not config.uninstall_operator,
                skip_reason='operator uninstall not requested'),

            Stage('namespace', DeleteNamespaceAction(
                name='delete-namespace',
                kube=kube,
            ), f"Delete namespace '{config.namespace}'", SequenceState.NAMESPACE_REMOVED,
                skip=not config.delete_namespace,
                skip_reason='--delete-namespace not set'),

            Stage('cleanup', CleanupGeneratedAction(
                name='cleanup',
            ), 'Remove generated manifests', SequenceState.CLEANED_UP),
        ]

    def summary_hints(self, config: DriverConfig) -> list[str]:
        """Inspection commands printed after teardown."""
        if config.delete_namespace:
            return [f"{config.kubectl} get namespace {config.namespace}"]
        return [f"{config.kubectl} get all -n {config.namespace}"]
