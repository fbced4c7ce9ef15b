"""Provisioning phase actions."""

from actions.preflight import ValidateInputsAction
from actions.fetch import (
    FetchConfigAction,
    FetchManifestAction,
    FetchProfileArtifactsAction,
    SubstitutePlaceholdersAction,
)
from actions.stack import (
    ReconcileContainersAction,
    ValidateComposeAction,
    BuildImagesAction,
    GenerateEnvAction,
    StartStackAction,
)

__all__ = [
    'ValidateInputsAction',
    'FetchConfigAction',
    'FetchManifestAction',
    'FetchProfileArtifactsAction',
    'SubstitutePlaceholdersAction',
    'ReconcileContainersAction',
    'ValidateComposeAction',
    'BuildImagesAction',
    'GenerateEnvAction',
    'StartStackAction',
]
