"""
Tests for the Ollama, web search and mock collaborators.
"""

import asyncio

import ollama
import pytest
import requests
from unittest.mock import AsyncMock, Mock, patch

from campus_rag.agents.mock_agent import MockTextGenerator
from campus_rag.agents.ollama_agent import OllamaTextClassifier, OllamaTextGenerator, check_ollama_health
from campus_rag.agents.web_search import HttpWebSearch, NullWebSearch
from campus_rag.core.errors import CollaboratorUnavailableError


def chat_client(content=None, error=None):
    client = Mock()
    if error is not None:
        client.chat = AsyncMock(side_effect=error)
    else:
        client.chat = AsyncMock(return_value={"message": {"content": content}})
    return client


class TestOllamaCollaborators:

    def test_classifier_sends_instructions_as_system(self):
        client = chat_client("SAFE")
        classifier = OllamaTextClassifier("llama3.1:8b", client=client)

        answer = asyncio.run(classifier.classify("Where is the library?", "Reply SAFE or UNSAFE"))

        assert answer == "SAFE"
        kwargs = client.chat.call_args.kwargs
        assert kwargs["model"] == "llama3.1:8b"
        assert kwargs["messages"] == [
            {"role": "system", "content": "Reply SAFE or UNSAFE"},
            {"role": "user", "content": "Where is the library?"},
        ]
        assert kwargs["options"]["temperature"] == 0.1

    def test_generator_temperature(self):
        client = chat_client("  The library opens at 8am. [Source: Library]  ")
        generator = OllamaTextGenerator("llama3.1:8b", client=client)

        answer = asyncio.run(generator.generate("prompt", "system"))

        assert answer == "The library opens at 8am. [Source: Library]"
        assert client.chat.call_args.kwargs["options"]["temperature"] == 0.7

    def test_response_error_is_wrapped(self):
        client = chat_client(error=ollama.ResponseError("model not found", 404))
        generator = OllamaTextGenerator("missing-model", client=client)

        with pytest.raises(CollaboratorUnavailableError) as exc_info:
            asyncio.run(generator.generate("prompt", "system"))
        assert exc_info.value.collaborator == "text_generator"

    def test_connection_error_is_wrapped(self):
        client = chat_client(error=ConnectionError("refused"))
        classifier = OllamaTextClassifier("llama3.1:8b", client=client)

        with pytest.raises(CollaboratorUnavailableError):
            asyncio.run(classifier.classify("prompt", "instructions"))

    def test_empty_content(self):
        client = chat_client("   ")
        with pytest.raises(CollaboratorUnavailableError):
            asyncio.run(OllamaTextGenerator("llama3.1:8b", client=client).generate("p", "s"))

    @pytest.mark.parametrize("response", [{}, {"message": None}, {"message": {}}])
    def test_malformed_response_is_wrapped(self, response):
        client = Mock()
        client.chat = AsyncMock(return_value=response)

        with pytest.raises(CollaboratorUnavailableError) as exc_info:
            asyncio.run(OllamaTextGenerator("llama3.1:8b", client=client).generate("p", "s"))
        assert "malformed" in str(exc_info.value)

    def test_status(self):
        classifier = OllamaTextClassifier("llama3.1:8b", host="http://ollama:11434", client=chat_client("x"))
        status = classifier.get_status()
        assert status["model_name"] == "llama3.1:8b"
        assert status["host"] == "http://ollama:11434"

    @patch("campus_rag.agents.ollama_agent.ollama.Client")
    def test_health_check(self, mock_client):
        mock_client.return_value.list.return_value = {"models": [{"model": "llama3.1:8b"}]}

        assert check_ollama_health("llama3.1:8b") is True
        assert check_ollama_health("mistral:7b") is False

    @patch("campus_rag.agents.ollama_agent.ollama.Client")
    def test_health_check_unreachable(self, mock_client):
        mock_client.return_value.list.side_effect = ConnectionError("refused")
        assert check_ollama_health("llama3.1:8b") is False


class TestHttpWebSearch:

    def make_session(self, body=None, error=None):
        session = Mock(spec=requests.Session)
        if error is not None:
            session.get.side_effect = error
            return session
        response = Mock()
        response.raise_for_status.return_value = None
        response.json.return_value = body
        session.get.return_value = response
        return session

    def test_parses_results(self):
        session = self.make_session({"results": [
            {"title": "Library", "content": "Open 8am-10pm.", "url": "https://example.edu/library"},
            {"title": "", "content": ""},
            {"title": "Parking", "content": "Permits at security.", "url": "https://example.edu/parking"},
            {"title": "Extra", "content": "Beyond the limit."},
        ]})
        search = HttpWebSearch("http://search.local/search", timeout_sec=3, session=session)

        results = asyncio.run(search.search("library hours", max_results=2))

        assert [r.title for r in results] == ["Library", "Parking"]
        assert results[0].snippet == "Open 8am-10pm."
        assert results[0].url == "https://example.edu/library"
        session.get.assert_called_once_with(
            "http://search.local/search",
            params={"q": "library hours", "format": "json"},
            timeout=3
        )

    def test_no_results(self):
        search = HttpWebSearch("http://search.local/search", session=self.make_session({"results": []}))
        assert asyncio.run(search.search("nothing")) == []

    def test_http_error(self):
        session = self.make_session(error=requests.ConnectionError("refused"))
        search = HttpWebSearch("http://search.local/search", session=session)

        with pytest.raises(CollaboratorUnavailableError) as exc_info:
            asyncio.run(search.search("library"))
        assert exc_info.value.collaborator == "web_search"

    def test_invalid_json(self):
        session = self.make_session()
        session.get.return_value.json.side_effect = ValueError("Expecting value")
        search = HttpWebSearch("http://search.local/search", session=session)

        with pytest.raises(CollaboratorUnavailableError):
            asyncio.run(search.search("library"))

    def test_malformed_body(self):
        search = HttpWebSearch("http://search.local/search", session=self.make_session({"results": "oops"}))
        with pytest.raises(CollaboratorUnavailableError):
            asyncio.run(search.search("library"))

    def test_null_search(self):
        assert asyncio.run(NullWebSearch().search("anything")) == []


class TestMockGenerator:

    def test_quotes_first_document(self):
        prompt = (
            "TEMPORAL CONTEXT:\nCurrent Date/Time: Monday\n\n"
            "KNOWLEDGE BASE CONTEXT:\n\n"
            'DOCUMENT: "Campus Locations" [campus] (95% relevance)\n'
            "SISTC has campuses in Sydney, Parramatta, and Melbourne.\n\n"
            'DOCUMENT: "Library" [campus] (40% relevance)\nThe library opens at 8am.\n\n'
            "STUDENT QUESTION:\nWhere are the campuses?"
        )

        answer = asyncio.run(MockTextGenerator().generate(prompt, "system"))

        assert answer == "SISTC has campuses in Sydney, Parramatta, and Melbourne. [Source: Campus Locations]"

    def test_no_context(self):
        prompt = "KNOWLEDGE BASE CONTEXT:\n\nNo specific context retrieved.\n\nSTUDENT QUESTION:\nHi"
        answer = asyncio.run(MockTextGenerator().generate(prompt, "system"))
        assert answer == MockTextGenerator.NO_CONTEXT_RESPONSE


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
