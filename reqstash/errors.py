"""reqstash errors - store and validation failures surfaced to callers."""

import click


class ReqstashError(click.ClickException):
    """Base class. The CLI prints these as ``Error: <message>`` and exits 1."""


class ValidationError(ReqstashError):
    """A required field is missing or malformed."""


class NotFoundError(ReqstashError):
    """No entity matches the given id or name."""


class ConflictError(ReqstashError):
    """The operation would break a store invariant."""


class PersistenceError(ReqstashError):
    """The backing file could not be read or written."""
