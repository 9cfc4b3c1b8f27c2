"""Shared fixtures: an isolated config directory, a scripted provider and wired sessions."""

import json

import pytest

from bazinga.clients.base import LLMProvider
from bazinga.clients.manager import ProviderManager
from bazinga.models.llm import GenerateRequest, LLMResponse, ModelInfo, StreamChunk, ToolCall
from bazinga.models.session import CreateOptions
from bazinga.services.session_manager import SessionManager
from bazinga.services.storage import SessionStorage
from bazinga.utils.config import Config


class ScriptedProvider(LLMProvider):
    """Replays one list of chunks per stream_response call and records each request."""

    def __init__(self, name: str = "fake", rounds=None, model: str = "fake-model", error: Exception | None = None):
        self.name = name
        self.rounds = list(rounds or [])
        self.model = model
        self.error = error
        self.requests: list[GenerateRequest] = []
        self.reply = "feat: update files"

    async def stream_response(self, request: GenerateRequest):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        chunks = self.rounds.pop(0) if self.rounds else []
        return self._iterate(chunks)

    @staticmethod
    async def _iterate(chunks):
        for chunk in chunks:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk

    async def generate_response(self, request: GenerateRequest) -> LLMResponse:
        self.requests.append(request)
        return LLMResponse(id="resp-1", model=self.model, content=self.reply, provider=self.name)

    def get_available_models(self) -> list[ModelInfo]:
        return [ModelInfo(id=self.model, name=self.model, provider=self.name)]

    def get_default_model(self) -> str:
        return self.model


def text_chunk(text: str) -> StreamChunk:
    return StreamChunk(type="content_block_delta", content=text)


def tool_chunks(tool_id: str, name: str, args: dict, split: int = 0) -> list[StreamChunk]:
    """A tool_use block: start, input JSON (optionally in two fragments), stop."""
    payload = json.dumps(args)
    fragments = [payload[:split], payload[split:]] if split else [payload]
    return [
        StreamChunk(type="content_block_start", id=tool_id, tool_call=ToolCall(id=tool_id, name=name)),
        *(StreamChunk(type="content_block_delta", tool_input_delta=fragment) for fragment in fragments),
        StreamChunk(type="content_block_stop"),
    ]


@pytest.fixture(autouse=True)
def bazinga_home(tmp_path, monkeypatch):
    """Keep config, todos and memory out of the real home directory."""
    home = tmp_path / "bazinga-home"
    monkeypatch.setenv("BAZINGA_HOME", str(home))
    return home


@pytest.fixture
def project_dir(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def make_session(tmp_path, project_dir):
    """Factory for sessions wired like the CLI, backed by the given providers."""

    def factory(*providers: LLMProvider, terminator: bool = False, **options):
        manager = ProviderManager()
        for provider in providers:
            manager.register_provider(provider.name, provider)
        config = Config()
        config.llm.default_provider = providers[0].name if providers else ""
        config.security.terminator = terminator
        session_manager = SessionManager(config, manager, SessionStorage(tmp_path / "sessions"))
        options.setdefault("root_path", str(project_dir))
        options.setdefault("auto_detect_files", False)
        return session_manager.create_session(CreateOptions(**options))

    return factory
