"""Rollout and teardown stage actions."""

from actions.staging import CheckPrerequisitesAction, RenderManifestsAction, CleanupGeneratedAction
from actions.namespace import EnsureNamespaceAction, DeleteNamespaceAction
from actions.operator import InstallOperatorAction, UninstallOperatorAction
from actions.datastores import DeployDatastoresAction, RemoveDatastoresAction
from actions.feature_store import (
    DeployFeatureStoreAction,
    RemoveFeatureStoreAction,
    WaitForPodsGoneAction,
)
from actions.apply_job import TriggerApplyJobAction

__all__ = [
    'CheckPrerequisitesAction',
    'RenderManifestsAction',
    'CleanupGeneratedAction',
    'EnsureNamespaceAction',
    'DeleteNamespaceAction',
    'InstallOperatorAction',
    'UninstallOperatorAction',
    'DeployDatastoresAction',
    'RemoveDatastoresAction',
    'DeployFeatureStoreAction',
    'RemoveFeatureStoreAction',
    'WaitForPodsGoneAction',
    'TriggerApplyJobAction',
]
