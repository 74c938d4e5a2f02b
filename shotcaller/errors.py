"""Error taxonomy for the prompt-to-path pipeline."""


class ShotcallerError(Exception):
    """Base class for all pipeline errors."""


class AnalysisError(ShotcallerError):
    """The loaded model has no usable geometry."""


class EnvironmentAnalysisError(ShotcallerError):
    """The scene bounds are degenerate (object does not fit the environment)."""


class PromptCompilationError(ShotcallerError):
    """The compiler inputs cannot produce a usable prompt."""


class PathGenerationError(ShotcallerError):
    """The LLM call failed, timed out, or returned an invalid path."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or []


class AnimationError(ShotcallerError):
    """Command validation or execution failed during playback."""


class MetadataStoreError(ShotcallerError):
    """The metadata collaborator failed after retries."""


class MetadataNotFoundError(MetadataStoreError):
    """No metadata is stored for the requested model id."""
