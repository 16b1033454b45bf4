"""Feast stack rollout.

Deploys PostgreSQL (registry), Redis (online store) and a FeatureStore CR
into one namespace, optionally installing the Feast Operator first, then
runs 'feast apply' once through the operator's CronJob.
"""

from actions import (
    CheckPrerequisitesAction,
    RenderManifestsAction,
    EnsureNamespaceAction,
    InstallOperatorAction,
    DeployDatastoresAction,
    DeployFeatureStoreAction,
    TriggerApplyJobAction,
)
from config import DriverConfig
from kube import ClusterClient
from sequences import SequenceState, Stage, register_sequence


@register_sequence
class FeastRollout:
    """Render, apply and wait for the Feast stack."""

    name = 'setup'
    description = 'Deploy datastores and a Feast FeatureStore into a namespace'

    def get_stages(self, config: DriverConfig, kube: ClusterClient) -> list[Stage]:
        """Return stages in dependency order."""
        return [
            Stage('prereqs', CheckPrerequisitesAction(
                name='check-prereqs',
                kube=kube,
            ), 'Check kubectl and cluster connectivity', SequenceState.PREREQS_CHECKED),

            Stage('render', RenderManifestsAction(
                name='render',
            ), 'Render manifest templates', SequenceState.RENDERED),

            Stage('namespace', EnsureNamespaceAction(
                name='ensure-namespace',
                kube=kube,
            ), f"Ensure namespace '{config.namespace}'", SequenceState.NAMESPACE_READY),

            Stage('operator', InstallOperatorAction(
                name='install-operator',
                kube=kube,
            ), 'Install Feast Operator', SequenceState.OPERATOR_READY,
                skip=not config.install_operator,
                skip_reason='operator install not requested'),

            Stage('datastores', DeployDatastoresAction(
                name='deploy-datastores',
                kube=kube,
            ), 'Deploy PostgreSQL and Redis', SequenceState.DATASTORES_READY,
                skip=config.skip_datastores,
                skip_reason='--skip-datastores'),

            Stage('feature_store', DeployFeatureStoreAction(
                name='deploy-feature-store',
                kube=kube,
            ), 'Deploy FeatureStore CR', SequenceState.FEATURE_STORE_READY,
                skip=config.skip_feast,
                skip_reason='--skip-feast'),

            Stage('apply_job', TriggerApplyJobAction(
                name='feast-apply',
                kube=kube,
            ), "Run 'feast apply' job", SequenceState.POST_APPLY_TRIGGERED,
                skip=config.skip_feast or config.skip_apply,
                skip_reason='--skip-feast' if config.skip_feast else '--skip-apply'),
        ]

    def summary_hints(self, config: DriverConfig) -> list[str]:
        """Inspection commands printed after setup."""
        ns = config.namespace
        kubectl = config.kubectl
        hints = [f"{kubectl} get pods -n {ns}"]
        if not config.skip_feast:
            hints.append(f"{kubectl} get featurestore -n {ns}")
            hints.append(f"{kubectl} logs -n {ns} -l app.kubernetes.io/managed-by=feast-operator")
        return hints
