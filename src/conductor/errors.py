"""Exception hierarchy shared by the patch engine and the coordinator."""


class ConductorError(Exception):
    """Base exception for conductor errors."""

    pass


class PatchError(ConductorError):
    """A search/replace pair could not be applied."""

    def __init__(self, message: str, patch_index: int | None = None):
        super().__init__(message)
        self.patch_index = patch_index


class PatchNotFoundError(PatchError):
    """No matching strategy located the search text."""

    pass


class PatchAmbiguousError(PatchError):
    """Every located candidate occurs more than once."""

    pass


class NoChangeError(PatchError):
    """Search and replacement text are identical."""

    pass


class VersionConflictError(ConductorError):
    """A change was computed against content that is no longer current."""

    def __init__(self, file_name: str, message: str | None = None):
        super().__init__(
            message or f"{file_name} changed since the edit was computed; recompute against fresh content"
        )
        self.file_name = file_name


class WorkerError(ConductorError):
    """A specialist worker failed."""

    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(message)
        self.recoverable = recoverable


class StuckLoopError(ConductorError):
    """A detected loop would be retried with unchanged input."""

    pass


class InvalidTransitionError(ConductorError):
    """The execution state machine rejected a transition."""

    pass


class WorkerHalted(ConductorError):
    """The coordinator revoked a worker's remaining tool budget."""

    pass
