"""
Submission export.

Exports form submissions (plain or encrypted) to CSV tables, one per form
plus one per repeat group, and optionally to GeoJSON.
"""

from .config_manager import ConfigManager, ExportConfiguration
from .core import DateRange, FormDefinition
from .errors import ConfigurationError, CryptoError, ExportError, ParsingError, SubmissionError
from .pipeline import ExportEvent, ExportEventType, ExportOutcome, ExportPipeline, ExportResult, ExportStatus

__version__ = "0.1.0"

__all__ = [
    'ConfigManager',
    'ConfigurationError',
    'CryptoError',
    'DateRange',
    'ExportConfiguration',
    'ExportError',
    'ExportEvent',
    'ExportEventType',
    'ExportOutcome',
    'ExportPipeline',
    'ExportResult',
    'ExportStatus',
    'FormDefinition',
    'ParsingError',
    'SubmissionError',
]
