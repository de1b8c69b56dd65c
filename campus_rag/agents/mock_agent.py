"""
Mock collaborators that simulate the classifier and generator without
external dependencies. Used for development, tests and LLM_PROVIDER=mock.
"""

import re
from typing import Any, Dict, List

from ..core.config import CATEGORIES, CATEGORY_DESCRIPTIONS, GENERAL_CATEGORY
from .agent import ITextClassifier, ITextGenerator


class MockTextClassifier(ITextClassifier):
    """
    Keyword-driven stand-in for the classification service.
    The task is recognised from the instructions text.
    """

    UNSAFE_PATTERNS = [
        r"\bhack\w*\b",
        r"\bcheat\w*\b",
        r"\bexam answers\b",
        r"\bwrite my (?:essay|assignment)\b",
        r"\b(?:bomb|weapon|kill)\b",
        r"ignore (?:all |your )?(?:previous|prior) instructions",
        r"(?:reveal|show|print) (?:your |the )?system prompt",
    ]

    def __init__(self):
        self.calls: List[Dict[str, str]] = []

    async def classify(self, prompt: str, instructions: str) -> str:
        self.calls.append({"prompt": prompt, "instructions": instructions})
        task = instructions.lower()

        if "unsafe" in task:
            return self._safety(prompt)
        if "fact-check" in task:
            return "ACCURATE\nNo conflicting information was found."
        if "factual paragraph" in task:
            return self._distill(prompt)
        if "category" in task:
            return self._category(prompt)
        return prompt.strip().splitlines()[0] if prompt.strip() else GENERAL_CATEGORY

    def _safety(self, text: str) -> str:
        lowered = text.lower()
        if any(re.search(pattern, lowered) for pattern in self.UNSAFE_PATTERNS):
            return "UNSAFE"
        return "SAFE"

    @staticmethod
    def _category(text: str) -> str:
        lowered = text.lower()
        best, best_hits = GENERAL_CATEGORY, 0
        for category in CATEGORIES:
            keywords = [category.rstrip("s")] + [k.strip() for k in CATEGORY_DESCRIPTIONS[category].split(",")]
            hits = sum(1 for keyword in keywords if keyword and keyword.rstrip("s") in lowered)
            if hits > best_hits:
                best, best_hits = category, hits
        return best

    @staticmethod
    def _distill(text: str) -> str:
        # Keep the first sentences of the supplied material
        body = text.split("\n\n", 1)[-1].replace("---", " ")
        sentences = re.split(r"(?<=[.!?])\s+", " ".join(body.split()))
        sentences = [s for s in sentences if s]
        return " ".join(sentences[:3])

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        status.update({"agent_type": "mock", "calls": len(self.calls)})
        return status


class MockTextGenerator(ITextGenerator):
    """Echo-style generator that quotes the supplied context."""

    NO_CONTEXT_RESPONSE = (
        "I don't have enough verified information to answer that yet. "
        "Please contact student services for confirmation."
    )

    def __init__(self):
        self.calls: List[Dict[str, str]] = []

    async def generate(self, prompt: str, system_instructions: str) -> str:
        self.calls.append({"prompt": prompt, "system_instructions": system_instructions})

        documents = re.findall(r'DOCUMENT: "([^"]*)"[^\n]*\n(.+?)(?=\n\nDOCUMENT:|\n\n[A-Z ]+:|\Z)', prompt, re.DOTALL)
        if not documents:
            return self.NO_CONTEXT_RESPONSE

        title, text = documents[0]
        return f"{' '.join(text.split())} [Source: {title}]"

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        status.update({"agent_type": "mock", "calls": len(self.calls)})
        return status
