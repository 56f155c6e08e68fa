"""
Error types for the extraction pipeline.

Item-level failures never surface as exceptions: they are folded into status
fields (``PhotoDetectionResult.error``, ``bg_removal_status``). The classes
below mark the stage boundaries where a failure is fatal for the batch, plus
the internal errors that per-item guards convert into status fields.
"""


class ExtractionError(RuntimeError):
    """Base class for pipeline errors."""


class JobNotFoundError(ExtractionError):
    """Raised when an extraction job id does not resolve to a job record."""


class InvalidJobTransitionError(ExtractionError, ValueError):
    """Raised when a job write would break the job lifecycle rules."""


class InvalidPhaseTransitionError(ExtractionError, ValueError):
    """Raised when the pipeline state machine is asked for a move it does not allow."""


class AuthenticationRequiredError(ExtractionError):
    """Raised when no authenticated user is available."""


class ConfigurationError(ExtractionError):
    """Raised when a required external service is not configured."""


class ModelResponseError(ExtractionError, ValueError):
    """Raised when a model response cannot be turned into JSON."""


class BackgroundRemovalError(ExtractionError):
    """Raised when the background removal service fails for one image."""


class StorageError(ExtractionError):
    """Raised when an object storage call fails."""
