"""
core/errors.py

Exception hierarchy for the filter-list pipeline.

Only StorageUnavailable stops a workflow.  Every other error is scoped to one
subscription (or one bundle write) and is caught and logged by the orchestrator.
"""
from __future__ import annotations


class FilterSyncError(RuntimeError):
    """Base class for all pipeline failures."""


class StorageUnavailable(FilterSyncError):
    """The shared directory cannot be resolved or created."""


class FetchError(FilterSyncError):
    """Network or decode failure for one subscription."""


class CompileError(FilterSyncError):
    """The rule compiler failed or produced undecodable output."""


class PersistError(FilterSyncError):
    """A cache, bundle or log file could not be written."""


class ArtifactReadError(FilterSyncError):
    """A compiled artifact exists but cannot be read."""


class ArtifactParseError(FilterSyncError):
    """A compiled artifact was read but is not a JSON rule array."""


class UnknownSubscriptionError(FilterSyncError):
    """No subscription with the given name exists in the catalog."""


class PipelineBusyError(FilterSyncError):
    """A workflow is already running on this orchestrator."""


class HostReloadError(FilterSyncError):
    """The host refused or failed to reload the bundle."""
