"""
Configuration Management for Chronicle

Loads configuration from ~/.chronicle/config.json and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field

logger = logging.getLogger("chronicle.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".chronicle"
CONFIG_PATH = CONFIG_DIR / "config.json"
DEFAULT_DB_PATH = CONFIG_DIR / "journal.db"


@dataclass
class StorageConfig:
    """SQLite storage configuration"""
    db_path: str = str(DEFAULT_DB_PATH)


@dataclass
class LLMConfig:
    """Language-model provider configuration shared by question answering and tagging"""
    provider: str = "ollama"
    ollama_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.1:8b"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str = ""
    timeout: float = 60.0
    embedding_model: str = "nomic-embed-text"
    embedding_version: str = "1"


@dataclass
class RetrieverConfig:
    """Context composition configuration"""
    max_context_entries: int = 8
    min_relevance: float = 0.3
    semantic_weight: float = 0.6
    snippet_chars: int = 320
    history_messages: int = 6


@dataclass
class TaggerConfig:
    """Tag extraction configuration"""
    max_tags: int = 5
    confidence_threshold: float = 0.3
    alias_discount: float = 0.8
    model_assist: bool = False
    bulk_workers: int = 4


@dataclass
class ServerConfig:
    """HTTP server configuration"""
    host: str = "127.0.0.1"
    port: int = 8765


@dataclass
class ChronicleConfig:
    """Main Chronicle configuration"""
    storage: StorageConfig = field(default_factory=StorageConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    retriever: RetrieverConfig = field(default_factory=RetrieverConfig)
    tagger: TaggerConfig = field(default_factory=TaggerConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    _env_sourced_keys: set = field(default_factory=set, repr=False)


def _parse_storage_config(data: dict) -> StorageConfig:
    """Parse storage section from config dict"""
    storage_data = data.get("storage", {})
    return StorageConfig(
        db_path=storage_data.get("db_path", str(DEFAULT_DB_PATH)),
    )


def _parse_llm_config(data: dict) -> LLMConfig:
    """Parse llm section from config dict"""
    llm_data = data.get("llm", {})
    defaults = LLMConfig()
    return LLMConfig(
        provider=llm_data.get("provider", defaults.provider),
        ollama_url=llm_data.get("ollama_url", defaults.ollama_url),
        ollama_model=llm_data.get("ollama_model", defaults.ollama_model),
        openai_api_key=llm_data.get("openai_api_key", ""),
        openai_model=llm_data.get("openai_model", defaults.openai_model),
        openai_base_url=llm_data.get("openai_base_url", ""),
        timeout=float(llm_data.get("timeout", defaults.timeout)),
        embedding_model=llm_data.get("embedding_model", defaults.embedding_model),
        embedding_version=str(llm_data.get("embedding_version", defaults.embedding_version)),
    )


def _parse_retriever_config(data: dict) -> RetrieverConfig:
    """Parse retriever section from config dict"""
    retriever_data = data.get("retriever", {})
    defaults = RetrieverConfig()
    return RetrieverConfig(
        max_context_entries=retriever_data.get("max_context_entries", defaults.max_context_entries),
        min_relevance=retriever_data.get("min_relevance", defaults.min_relevance),
        semantic_weight=retriever_data.get("semantic_weight", defaults.semantic_weight),
        snippet_chars=retriever_data.get("snippet_chars", defaults.snippet_chars),
        history_messages=retriever_data.get("history_messages", defaults.history_messages),
    )


def _parse_tagger_config(data: dict) -> TaggerConfig:
    """Parse tagger section from config dict"""
    tagger_data = data.get("tagger", {})
    defaults = TaggerConfig()
    return TaggerConfig(
        max_tags=tagger_data.get("max_tags", defaults.max_tags),
        confidence_threshold=tagger_data.get("confidence_threshold", defaults.confidence_threshold),
        alias_discount=tagger_data.get("alias_discount", defaults.alias_discount),
        model_assist=tagger_data.get("model_assist", defaults.model_assist),
        bulk_workers=tagger_data.get("bulk_workers", defaults.bulk_workers),
    )


def _parse_server_config(data: dict) -> ServerConfig:
    """Parse server section from config dict"""
    server_data = data.get("server", {})
    return ServerConfig(
        host=server_data.get("host", "127.0.0.1"),
        port=server_data.get("port", 8765),
    )


def load_config(path: Path = None) -> ChronicleConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file (~/.chronicle/config.json)
    3. Default values
    """
    config = ChronicleConfig()
    config_path = path or CONFIG_PATH

    if config_path.exists():
        try:
            with open(config_path) as f:
                data = json.load(f)

            config.storage = _parse_storage_config(data)
            config.llm = _parse_llm_config(data)
            config.retriever = _parse_retriever_config(data)
            config.tagger = _parse_tagger_config(data)
            config.server = _parse_server_config(data)
        except (json.JSONDecodeError, IOError, ValueError) as e:
            logger.warning("Failed to load config file %s: %s", config_path, e)

    if os.getenv("CHRONICLE_DB_PATH"):
        config.storage.db_path = os.getenv("CHRONICLE_DB_PATH")
    if os.getenv("CHRONICLE_API_PORT"):
        config.server.port = int(os.getenv("CHRONICLE_API_PORT"))
    if os.getenv("CHRONICLE_LLM_TIMEOUT"):
        config.llm.timeout = float(os.getenv("CHRONICLE_LLM_TIMEOUT"))

    # LLM env var overrides (track env-sourced keys so secrets are never saved)
    _env_llm_map = {
        "CHRONICLE_LLM_PROVIDER": "provider",
        "OLLAMA_URL": "ollama_url",
        "OLLAMA_MODEL": "ollama_model",
        "OPENAI_API_KEY": "openai_api_key",
        "OPENAI_MODEL": "openai_model",
        "OPENAI_BASE_URL": "openai_base_url",
        "CHRONICLE_EMBEDDING_MODEL": "embedding_model",
    }
    for env_var, attr in _env_llm_map.items():
        val = os.getenv(env_var)
        if val:
            setattr(config.llm, attr, val)
            config._env_sourced_keys.add(attr)

    return config


def save_config(config: ChronicleConfig, path: Path = None) -> None:
    """Save configuration to file.

    The OpenAI key is written as an empty string when it was sourced from the
    environment so that secrets are not persisted to disk.
    """
    config_path = path or CONFIG_PATH
    config_path.parent.mkdir(parents=True, exist_ok=True)

    env_sourced = getattr(config, "_env_sourced_keys", set())

    llm_section = {
        "provider": config.llm.provider,
        "ollama_url": config.llm.ollama_url,
        "ollama_model": config.llm.ollama_model,
        "openai_api_key": config.llm.openai_api_key,
        "openai_model": config.llm.openai_model,
        "openai_base_url": config.llm.openai_base_url,
        "timeout": config.llm.timeout,
        "embedding_model": config.llm.embedding_model,
        "embedding_version": config.llm.embedding_version,
    }
    if "openai_api_key" in env_sourced:
        llm_section["openai_api_key"] = ""

    data = {
        "storage": {
            "db_path": config.storage.db_path,
        },
        "llm": llm_section,
        "retriever": {
            "max_context_entries": config.retriever.max_context_entries,
            "min_relevance": config.retriever.min_relevance,
            "semantic_weight": config.retriever.semantic_weight,
            "snippet_chars": config.retriever.snippet_chars,
            "history_messages": config.retriever.history_messages,
        },
        "tagger": {
            "max_tags": config.tagger.max_tags,
            "confidence_threshold": config.tagger.confidence_threshold,
            "alias_discount": config.tagger.alias_discount,
            "model_assist": config.tagger.model_assist,
            "bulk_workers": config.tagger.bulk_workers,
        },
        "server": {
            "host": config.server.host,
            "port": config.server.port,
        },
    }

    with open(config_path, "w") as f:
        json.dump(data, f, indent=2)

    # Set secure permissions
    config_path.chmod(0o600)


def ensure_directories() -> None:
    """Ensure required directories exist"""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
