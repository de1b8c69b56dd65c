"""
Collaborator contracts for the retrieval pipeline.
Abstract interfaces and data classes for every external text service.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass
class WebResult:
    """One external search hit."""
    title: str
    snippet: str
    url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"title": self.title, "snippet": self.snippet, "url": self.url}


class ITextClassifier(ABC):
    """
    Short-answer text service.
    Used for the safety and category gates, for distillation and for fact-checks.
    """

    @abstractmethod
    async def classify(self, prompt: str, instructions: str) -> str:
        """
        Answer prompt under the given instructions.

        Raises:
            CollaboratorUnavailableError: the service failed or returned nothing
        """
        pass

    def get_status(self) -> Dict[str, Any]:
        return {"collaborator": self.__class__.__name__, "status": "ready"}


class ITextGenerator(ABC):
    """Final answer-writing service, treated as a black box."""

    @abstractmethod
    async def generate(self, prompt: str, system_instructions: str) -> str:
        """
        Write an answer for prompt.

        Raises:
            CollaboratorUnavailableError: the service failed or returned nothing
        """
        pass

    def get_status(self) -> Dict[str, Any]:
        return {"collaborator": self.__class__.__name__, "status": "ready"}


class IWebSearch(ABC):
    """External search service used only by the self-learning loop."""

    @abstractmethod
    async def search(self, query: str, max_results: int = 5) -> List[WebResult]:
        """
        Return at most max_results hits; an empty list means nothing was found.

        Raises:
            CollaboratorUnavailableError: the service failed
        """
        pass

    def get_status(self) -> Dict[str, Any]:
        return {"collaborator": self.__class__.__name__, "status": "ready"}
