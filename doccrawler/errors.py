"""
Exception types shared across the pipeline.

Only ``PipelineError`` (and its subclass ``AuthenticationError``) ever reach
the orchestrator's top level; everything else is caught at the feature or
stage boundary where it was raised.
"""


class PipelineError(Exception):
    """Fatal: the job must end in ``failed`` with this message."""


class AuthenticationError(PipelineError):
    """Login did not succeed within the allowed attempts."""


class BrowserActionError(Exception):
    """A browser operation failed or timed out.  Always recoverable."""


class GenerationError(Exception):
    """The content generation service failed or timed out.  Always recoverable."""


class StoreError(Exception):
    """A job store read or write failed."""
