from .client import LLMClient
from .errors import (
    LLMError,
    MalformedResponseError,
    RefusalError,
    AllModelsFailedError,
)
from .models import StructuredResult
from .router import ModelRouter
from .structured import StructuredLLM

__all__ = [
    'LLMClient',
    'LLMError',
    'MalformedResponseError',
    'RefusalError',
    'AllModelsFailedError',
    'StructuredResult',
    'ModelRouter',
    'StructuredLLM',
]
