"""Error taxonomy shared by retrieval, analysis and the agent loop.

Data gaps and the iteration limit are reported as data, not raised.
"""

from __future__ import annotations


class JournalAgentError(Exception):
    """Base class for all errors raised by the journal agent."""


class QueryValidationError(JournalAgentError, ValueError):
    """Malformed query or operation arguments, rejected before any I/O."""


class NotFoundError(JournalAgentError, LookupError):
    """A referenced cached result or entity does not exist."""


class UpstreamError(JournalAgentError):
    """The embedding/chat capability or a backing store failed."""


class UpstreamTimeout(UpstreamError):
    """An upstream call did not finish within its timeout."""


class UpstreamFailure(UpstreamError):
    """An upstream call failed or returned an unusable response."""
