"""
Exception hierarchy shared by the pipeline, the collaborators and the routers.
"""


class VaultError(Exception):
    """Base class for every error raised by the application."""


class ValidationError(VaultError):
    """Input rejected before any collaborator was called."""


class NothingToShareError(ValidationError):
    """The entry has no media to publish."""


class NotFoundError(VaultError):
    """Record absent, not public, or not owned by the caller."""


class StorageError(VaultError):
    """Object storage call failed."""


class StoreError(VaultError):
    """Data store call failed."""


class ConflictError(StoreError):
    """Unique constraint rejected the write."""


class AuthError(VaultError):
    """Identity provider call failed."""


class InvalidTransition(VaultError):  # noqa: N818
    """An operation tried to move between states that are not connected."""


class PipelineError(VaultError):
    """
    A collaborator failed part-way through a publish or teardown operation.
    `state` names the step that was running when it failed.
    """

    def __init__(self, message: str, state: str) -> None:
        super().__init__(message)
        self.state = state
