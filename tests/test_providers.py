"""
Tests for installed-model detection
"""

from unittest.mock import AsyncMock, patch

import pytest

from llmfit.fit import analyze
from llmfit.providers import (
    OllamaProvider, hf_name_to_ollama_candidates, is_model_installed, mark_installed,
    parse_ollama_list,
)

from conftest import make_model

OLLAMA_LIST = """NAME                    ID              SIZE      MODIFIED
llama3.1:8b             46e0c10c039e    4.9 GB    2 days ago
qwen2.5-coder:7b        2b0496514337    4.7 GB    3 weeks ago
nomic-embed-text:latest 0a109f422b47    274 MB    5 weeks ago
"""


class TestNameMatching:
    """Test catalog name to runtime tag mapping"""

    def test_known_mapping(self):
        assert hf_name_to_ollama_candidates("meta-llama/Llama-3.1-8B-Instruct") == ["llama3.1:8b"]

    def test_fallback_strips_suffixes(self):
        assert hf_name_to_ollama_candidates("someone/Foo-13B-Chat") == ["foo-13b", "foo-13b-chat"]

    def test_fallback_without_suffix(self):
        assert hf_name_to_ollama_candidates("someone/bar") == ["bar"]

    def test_is_model_installed(self):
        installed = parse_ollama_list(OLLAMA_LIST)
        assert is_model_installed("meta-llama/Llama-3.1-8B-Instruct", installed)
        assert is_model_installed("nomic-ai/nomic-embed-text-v1.5", installed)
        assert not is_model_installed("meta-llama/Llama-3.1-70B-Instruct", installed)


class TestParseOllamaList:
    """Test `ollama list` parsing"""

    def test_tags_and_families(self):
        installed = parse_ollama_list(OLLAMA_LIST)
        assert "llama3.1:8b" in installed
        assert "llama3.1" in installed
        assert "nomic-embed-text" in installed
        assert "name" not in installed

    def test_empty_output(self):
        assert parse_ollama_list("") == set()
        assert parse_ollama_list("NAME ID SIZE MODIFIED\n\n") == set()


class TestMarkInstalled:
    """Test flagging fits as installed"""

    def test_mark_installed(self, unified_16):
        fits = [
            analyze(make_model("meta-llama/Llama-3.1-8B-Instruct", params_b=8.0), unified_16),
            analyze(make_model("meta-llama/Llama-3.2-3B-Instruct", params_b=3.0), unified_16),
        ]
        fits[1].installed = True

        count = mark_installed(fits, {"llama3.1:8b"})

        assert count == 1
        assert fits[0].installed
        assert not fits[1].installed


class TestOllamaProvider:
    """Test the Ollama runtime provider"""

    @pytest.mark.asyncio
    async def test_unavailable(self):
        provider = OllamaProvider()
        with patch('shutil.which', return_value=None):
            assert await provider.installed_models() == set()

    @pytest.mark.asyncio
    async def test_installed_models(self):
        provider = OllamaProvider()
        mock_process = AsyncMock()
        mock_process.communicate.return_value = (OLLAMA_LIST.encode(), b'')
        mock_process.returncode = 0

        with patch('shutil.which', return_value="/usr/bin/ollama"), \
             patch('asyncio.create_subprocess_exec', return_value=mock_process) as mock_exec:
            installed = await provider.installed_models()

        mock_exec.assert_called_once()
        assert mock_exec.call_args[0][:2] == ("ollama", "list")
        assert "qwen2.5-coder:7b" in installed

    @pytest.mark.asyncio
    async def test_command_failure(self):
        provider = OllamaProvider()
        mock_process = AsyncMock()
        mock_process.communicate.return_value = (b'', b'could not connect to ollama app')
        mock_process.returncode = 1

        with patch('shutil.which', return_value="/usr/bin/ollama"), \
             patch('asyncio.create_subprocess_exec', return_value=mock_process):
            assert await provider.installed_models() == set()

    @pytest.mark.asyncio
    async def test_spawn_failure(self):
        provider = OllamaProvider()
        with patch('shutil.which', return_value="/usr/bin/ollama"), \
             patch('asyncio.create_subprocess_exec', side_effect=PermissionError("denied")):
            assert await provider.installed_models() == set()
