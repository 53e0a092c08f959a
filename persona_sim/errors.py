from __future__ import annotations


class PersonaEngineError(Exception):
    """Base class for failures surfaced by the persona session engine."""


class NotFound(PersonaEngineError, LookupError):
    """A session, memory record or persona required by the operation does not exist."""


class UpstreamUnavailable(PersonaEngineError, RuntimeError):
    """The durable store or the response generator did not answer."""


class ValidationFailure(PersonaEngineError, ValueError):
    """Malformed context or out-of-range input, rejected before any state mutation."""
