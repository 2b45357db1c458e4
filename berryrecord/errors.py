"""Exception taxonomy for BerryRecord.

Validation failures are not exceptions: ``save()`` returns False and the
errors stay queryable on the record. Errors raised by the SQLAlchemy-backed
collaborators propagate unchanged.
"""
from __future__ import annotations


class BerryRecordError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(BerryRecordError):
    """Malformed relation declaration or missing database configuration."""


class SchemaMismatchError(BerryRecordError):
    """A table or column referenced by a record, relation or validator does not exist."""


class StateError(BerryRecordError):
    """Operation is not valid for the record's current state."""


__all__ = ['BerryRecordError', 'ConfigurationError', 'SchemaMismatchError', 'StateError']
