"""
Ollama-backed classifier and generator collaborators.
"""

import time
from typing import Any, Dict, List

import ollama

from ..core.errors import CollaboratorUnavailableError
from ..util.logging import logger
from .agent import ITextClassifier, ITextGenerator


class _OllamaChat:
    """Shared chat call: system + user messages, content out, errors wrapped."""

    collaborator = "ollama"

    def __init__(self, model_name: str, host: str = None, temperature: float = 0.7, top_p: float = 0.9,
                 client: ollama.AsyncClient = None):
        self.model_name = model_name
        self.host = host
        self.temperature = temperature
        self.top_p = top_p
        self.client = client or ollama.AsyncClient(host=host)

    @staticmethod
    def _build_messages(system: str, prompt: str) -> List[Dict[str, str]]:
        messages = []
        if system:
            messages.append({'role': 'system', 'content': system})
        messages.append({'role': 'user', 'content': prompt})
        return messages

    async def _chat(self, system: str, prompt: str) -> str:
        start_time = time.monotonic()
        try:
            response = await self.client.chat(
                model=self.model_name,
                messages=self._build_messages(system, prompt),
                options={
                    'temperature': self.temperature,
                    'top_p': self.top_p
                }
            )
            content = (response['message']['content'] or '').strip()
        except ollama.ResponseError as e:
            raise CollaboratorUnavailableError(self.collaborator, f"Ollama model error: {e}", e) from e
        except (KeyError, TypeError) as e:
            raise CollaboratorUnavailableError(self.collaborator, f"malformed Ollama response: {e}", e) from e
        except Exception as e:
            raise CollaboratorUnavailableError(self.collaborator, f"Ollama request failed: {e}", e) from e

        if not content:
            raise CollaboratorUnavailableError(self.collaborator, "empty response")

        logger.log_operation(f"{self.collaborator}.chat", "success", {
            "model": self.model_name,
            "processing_time_ms": int((time.monotonic() - start_time) * 1000),
            "response_length": len(content)
        })
        return content

    def get_status(self) -> Dict[str, Any]:
        return {
            "collaborator": self.__class__.__name__,
            "model_name": self.model_name,
            "host": self.host,
            "status": "ready"
        }


class OllamaTextClassifier(_OllamaChat, ITextClassifier):
    """Low-temperature Ollama chat for short classification answers."""

    collaborator = "text_classifier"

    def __init__(self, model_name: str, host: str = None, client: ollama.AsyncClient = None):
        super().__init__(model_name, host=host, temperature=0.1, top_p=0.9, client=client)

    async def classify(self, prompt: str, instructions: str) -> str:
        return await self._chat(instructions, prompt)


class OllamaTextGenerator(_OllamaChat, ITextGenerator):
    """Ollama chat for final answer writing."""

    collaborator = "text_generator"

    def __init__(self, model_name: str, host: str = None, client: ollama.AsyncClient = None):
        super().__init__(model_name, host=host, temperature=0.7, top_p=0.9, client=client)

    async def generate(self, prompt: str, system_instructions: str) -> str:
        return await self._chat(system_instructions, prompt)


def check_ollama_health(model_name: str, host: str = None) -> bool:
    """Check if Ollama is available and the model is pulled."""
    try:
        models = ollama.Client(host=host).list()
        model_names = [m['model'] for m in models['models']]
        return model_name in model_names
    except Exception:
        return False
