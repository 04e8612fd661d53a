"""
Exception hierarchy for the submission export pipeline.

ConfigurationError aborts an export before any submission is processed.
SubmissionError (and ParsingError) only drop the offending submission.
CryptoError wraps failures of the underlying cryptographic provider.
"""


class ExportError(Exception):
    """Base class for all export errors."""


class ConfigurationError(ExportError):
    """The export can't start with the given configuration."""


class SubmissionError(ExportError):
    """A single submission can't be exported."""


class ParsingError(SubmissionError):
    """A submission file can't be parsed or lacks required elements."""


class CryptoError(ExportError):
    """A cryptographic operation failed (bad key, bad padding, wrong algorithm)."""
