"""
Local runtime providers and installed-model matching.

Catalog names follow HuggingFace repo naming ("meta-llama/Llama-3.1-8B-Instruct")
while runtimes use their own tags ("llama3.1:8b"), so matching is best effort.
"""

import asyncio
import logging
import shutil
from typing import Iterable, List, Set

from .fit import ModelFit

logger = logging.getLogger(__name__)

# HF repo name (lowercase, without owner) -> Ollama tag
OLLAMA_TAGS = {
    "llama-3.3-70b-instruct": "llama3.3:70b",
    "llama-3.2-11b-vision-instruct": "llama3.2-vision:11b",
    "llama-3.2-3b-instruct": "llama3.2:3b",
    "llama-3.2-1b-instruct": "llama3.2:1b",
    "llama-3.1-405b-instruct": "llama3.1:405b",
    "llama-3.1-70b-instruct": "llama3.1:70b",
    "llama-3.1-8b-instruct": "llama3.1:8b",
    "codellama-34b-instruct-hf": "codellama:34b",
    "codellama-7b-instruct-hf": "codellama:7b",
    "gemma-3-27b-it": "gemma3:27b",
    "gemma-3-12b-it": "gemma3:12b",
    "gemma-3-4b-it": "gemma3:4b",
    "gemma-2-9b-it": "gemma2:9b",
    "gemma-2-2b-it": "gemma2:2b",
    "phi-4": "phi4",
    "phi-3.5-mini-instruct": "phi3.5",
    "mistral-7b-instruct-v0.3": "mistral:7b",
    "mistral-nemo-instruct-2407": "mistral-nemo",
    "mistral-small-24b-instruct-2501": "mistral-small:24b",
    "mixtral-8x7b-instruct-v0.1": "mixtral:8x7b",
    "mixtral-8x22b-instruct-v0.1": "mixtral:8x22b",
    "qwen2.5-72b-instruct": "qwen2.5:72b",
    "qwen2.5-32b-instruct": "qwen2.5:32b",
    "qwen2.5-14b-instruct": "qwen2.5:14b",
    "qwen2.5-7b-instruct": "qwen2.5:7b",
    "qwen2.5-coder-32b-instruct": "qwen2.5-coder:32b",
    "qwen2.5-coder-7b-instruct": "qwen2.5-coder:7b",
    "qwen3-32b": "qwen3:32b",
    "qwen3-30b-a3b": "qwen3:30b",
    "qwen3-8b": "qwen3:8b",
    "deepseek-r1-distill-qwen-32b": "deepseek-r1:32b",
    "deepseek-r1-distill-qwen-7b": "deepseek-r1:7b",
    "deepseek-coder-v2-lite-instruct": "deepseek-coder-v2:16b",
    "tinyllama-1.1b-chat-v1.0": "tinyllama",
    "starcoder2-15b": "starcoder2:15b",
    "starcoder2-7b": "starcoder2:7b",
    "nomic-embed-text-v1.5": "nomic-embed-text",
    "bge-large-en-v1.5": "bge-large",
}

_STRIPPED_SUFFIXES = ("-instruct", "-chat", "-hf", "-it")


def hf_name_to_ollama_candidates(hf_name: str) -> List[str]:
    """Ollama tags that could serve a catalog model, most likely first"""
    repo = hf_name.split('/')[-1].lower()
    if repo in OLLAMA_TAGS:
        return [OLLAMA_TAGS[repo]]

    stripped = repo
    for suffix in _STRIPPED_SUFFIXES:
        stripped = stripped.replace(suffix, "")
    return list(dict.fromkeys([stripped, repo]))


def is_model_installed(hf_name: str, installed: Set[str]) -> bool:
    """Whether any candidate tag for the model is in the installed set"""
    return any(candidate in installed for candidate in hf_name_to_ollama_candidates(hf_name))


def mark_installed(fits: Iterable[ModelFit], installed: Set[str]) -> int:
    """Sets the installed flag on each fit, returning how many matched"""
    count = 0
    for fit in fits:
        fit.installed = is_model_installed(fit.model.name, installed)
        count += fit.installed
    return count


def parse_ollama_list(output: str) -> Set[str]:
    """Installed tags from `ollama list` output, with and without the size tag"""
    installed: Set[str] = set()
    for line in output.splitlines()[1:]:
        parts = line.split()
        if not parts:
            continue
        tag = parts[0].lower()
        installed.add(tag)
        installed.add(tag.split(':')[0])
    return installed


class OllamaProvider:
    """Lists models installed in a local Ollama runtime"""

    name = "Ollama"

    def __init__(self, executable: str = "ollama"):
        self.executable = executable

    def is_available(self) -> bool:
        return shutil.which(self.executable) is not None

    async def installed_models(self) -> Set[str]:
        """Lowercase installed tags; empty when Ollama is absent or fails"""
        if not self.is_available():
            return set()
        try:
            proc = await asyncio.create_subprocess_exec(
                self.executable, 'list',
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
            stdout, stderr = await proc.communicate()
        except OSError as e:
            logger.warning(f"Failed to query Ollama: {e}")
            return set()
        if proc.returncode != 0:
            logger.warning(f"ollama list failed: {stderr.decode().strip()}")
            return set()
        installed = parse_ollama_list(stdout.decode())
        logger.debug(f"Ollama reports {len(installed)} installed tags")
        return installed
