"""
Submission discovery, parsing and decryption.
"""

from .metadata import SubmissionMetaData, parse_date_time, regularize_date_time
from .submission import MIN_SUBMISSION_DATE, Submission, ValidationStatus
from .submission_parser import list_submission_files, parse_submission, read_submission_date

__all__ = [
    'MIN_SUBMISSION_DATE',
    'Submission',
    'SubmissionMetaData',
    'ValidationStatus',
    'list_submission_files',
    'parse_date_time',
    'parse_submission',
    'read_submission_date',
    'regularize_date_time',
]
