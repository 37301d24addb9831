"""Domain models for the CSV import/export pipeline.

This package contains the dataclasses shared by parser, mapping, validation,
executor, rollback, export, job tracking and template storage.
"""

from .error_record import ErrorRecord
from .field_definition import DataType, FieldDefinition, FieldMapping
from .jobs import DuplicateHandling, ExportJob, ImportJob, JobKind, JobStatus, TERMINAL_STATUSES
from .raw_row import RawRow
from .template import ImportTemplate, ValidationRule
from .validation import Severity, ValidationIssue, ValidationResult

__all__ = [
    # Catalog / mapping models
    "DataType",
    "FieldDefinition",
    "FieldMapping",
    # Parsing / validation models
    "RawRow",
    "Severity",
    "ValidationIssue",
    "ValidationResult",
    # Job models
    "DuplicateHandling",
    "ErrorRecord",
    "ExportJob",
    "ImportJob",
    "JobKind",
    "JobStatus",
    "TERMINAL_STATUSES",
    # Templates
    "ImportTemplate",
    "ValidationRule",
]
