"""
LLM caller backed by a local Ollama model.
"""

import threading
from typing import Any, Dict

import ollama

from ..core.config import OLLAMA_MODEL
from ..util.logging import logger
from .react_engine import OperationCancelled


class OllamaLLMCaller:
    """
    Adapts ollama.chat to the (prompt, cancel_event) -> str caller contract.

    The reply is streamed so cancellation is observed between chunks.
    """

    def __init__(self, model_name: str = None, options: Dict[str, Any] = None):
        self.model_name = model_name or OLLAMA_MODEL
        self.options = {
            'temperature': 0.2,
            # Stop before the model invents its own observation
            'stop': ['\nObservation:'],
        }
        if options:
            self.options.update(options)

    def __call__(self, prompt: str, cancel_event: threading.Event) -> str:
        if cancel_event.is_set():
            raise OperationCancelled()

        parts = []
        try:
            stream = ollama.chat(
                model=self.model_name,
                messages=[{'role': 'user', 'content': prompt}],
                options=self.options,
                stream=True,
            )
            for chunk in stream:
                if cancel_event.is_set():
                    raise OperationCancelled()
                parts.append(chunk['message']['content'] or '')
        except ollama.ResponseError as e:
            logger.error(f"Ollama request failed for {self.model_name}: {e.error}")
            raise

        return ''.join(parts)
