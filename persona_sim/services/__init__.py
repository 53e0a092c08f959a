
from .gemini_client import GeminiClient
from .responder import GeminiResponseGenerator, ResponseGenerator, TemplateResponseGenerator, build_responder

__all__ = [
    "GeminiClient",
    "GeminiResponseGenerator",
    "ResponseGenerator",
    "TemplateResponseGenerator",
    "build_responder",
]
