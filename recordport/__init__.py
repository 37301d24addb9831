"""recordport: CSV bulk import/export for business records."""

__version__ = "0.1.0"
