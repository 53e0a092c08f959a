
from .errors import NotFound, PersonaEngineError, UpstreamUnavailable, ValidationFailure

__version__ = "0.1.0"

__all__ = [
    "NotFound",
    "PersonaEngineError",
    "UpstreamUnavailable",
    "ValidationFailure",
    "__version__",
]
