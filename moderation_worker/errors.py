"""
Error taxonomy for the moderation pipeline.

Fatal errors unwind to the orchestrator, which cleans up and marks the job
as errored. Non-fatal errors are absorbed at the stage that raised them.
"""


class ModerationError(Exception):
    """Base class for all pipeline errors"""


class ExtractionError(ModerationError):
    """No frames could be obtained from the source video (fatal)"""


class ClassificationError(ModerationError):
    """A single frame could not be classified (non-fatal)"""

    def __init__(self, message: str, throttled: bool = False):
        super().__init__(message)
        self.throttled = throttled


class AggregationError(ModerationError):
    """Malformed label input reached the score aggregator (fatal)"""


class MigrationError(ModerationError):
    """Moving the source file to durable storage failed (non-fatal)"""


class ConcurrencyConflict(ModerationError):
    """Another run already owns this job"""


class JobNotFoundError(ModerationError):
    """The requested job does not exist in the job store"""
