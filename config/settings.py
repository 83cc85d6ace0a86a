"""RAG System Configuration."""
import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional, Tuple, Dict, Any

from dotenv import dotenv_values, load_dotenv

from bookrag.document_loader import DocumentLoader
from bookrag.errors import ConfigurationError

ENV_PREFIX = "RAG_"

EMBEDDING_BACKENDS = ('ollama', 'sentence-transformers')
LLM_BACKENDS = ('ollama', 'gemini')


def _coerce(value: str, current: Any, name: str) -> Any:
    """Convert an environment string to the type of a field's default."""
    try:
        if isinstance(current, bool):
            lowered = value.strip().lower()
            if lowered in ('1', 'true', 'yes', 'on'):
                return True
            if lowered in ('0', 'false', 'no', 'off'):
                return False
            raise ValueError(value)
        if isinstance(current, int):
            return int(value)
        if isinstance(current, float):
            return float(value)
        if isinstance(current, tuple):
            return tuple(item.strip() for item in value.split(',') if item.strip())
    except ValueError as e:
        raise ConfigurationError(f"Invalid value for {name}: {value!r}") from e
    if value == '' and current is None:
        return None
    return value


@dataclass
class RAGConfig:
    """
    Configuration shared by the ingestion and query pipelines.

    Attributes:
        ollama_base_url: Base URL of the Ollama server (embeddings and generation)
        embedding_backend: 'ollama' or 'sentence-transformers'
        embedding_model: Embedding model name
        embedding_batch_size: Texts per embedding request
        embedding_workers: Maximum concurrent embedding requests
        embedding_device: Device for local embeddings ('cpu', 'cuda', or None to auto-detect)
        chroma_url: Base URL of the ChromaDB server
        chroma_persist_directory: Local ChromaDB directory, used when chroma_url is empty
        collection_name: Name of the ChromaDB collection
        distance_metric: 'cosine', 'l2' or 'ip'
        llm_backend: 'ollama' or 'gemini'
        llm_model: Language model name
        temperature: LLM temperature (0.0-2.0)
        max_tokens: Maximum tokens in LLM response (Gemini only)
        source_directory: Directory with the source documents
        file_extensions: Extensions of the files to ingest
        chunk_size: Maximum characters per chunk
        chunk_overlap: Target overlapping characters between chunks
        chunking_strategy: 'markdown', 'paragraph', 'sentence' or 'fixed'
        top_k: Number of chunks to retrieve
        similarity_threshold: Minimum similarity score, or None to keep all
        max_prompt_chars: Size limit of the assembled prompt, or None
        context_truncation: 'error' or 'drop_lowest'
        request_timeout: Timeout in seconds for every external HTTP call
        embedding_retry_attempts: Attempts per embedding request
        generation_retry_attempts: Attempts per generation request (1 = no retry)
        log_level: Logging level name
    """

    # Services
    ollama_base_url: str = "http://localhost:11434"

    # Embedding parameters
    embedding_backend: str = "ollama"
    embedding_model: str = "granite-embedding:278m"
    embedding_batch_size: int = 32
    embedding_workers: int = 4
    embedding_device: Optional[str] = None

    # Vector store parameters
    chroma_url: Optional[str] = "http://localhost:8000"
    chroma_persist_directory: Optional[str] = None
    collection_name: str = "alice_wonderland_book"
    distance_metric: str = "cosine"

    # Generation parameters
    llm_backend: str = "ollama"
    llm_model: str = "llama3.2:latest"
    temperature: float = 0.7
    max_tokens: int = 1024

    # Ingestion parameters
    source_directory: str = "./book"
    file_extensions: Tuple[str, ...] = ('.md',)
    chunk_size: int = 1000
    chunk_overlap: int = 200
    chunking_strategy: str = "markdown"

    # Retrieval parameters
    top_k: int = 5
    similarity_threshold: Optional[float] = None
    max_prompt_chars: Optional[int] = 32000
    context_truncation: str = "error"

    # Resilience
    request_timeout: float = 120.0
    embedding_retry_attempts: int = 3
    generation_retry_attempts: int = 1

    log_level: str = "INFO"

    # Fields whose default is None but hold a number when set
    _NUMERIC_OPTIONAL = {'similarity_threshold': float, 'max_prompt_chars': int}

    def validate(self) -> 'RAGConfig':
        """
        Check the configuration for inconsistent values.

        Raises:
            ConfigurationError: On the first problem found
        """
        if self.chunk_size < 1:
            raise ConfigurationError(f"chunk_size must be at least 1, got {self.chunk_size}")
        if not 0 <= self.chunk_overlap < self.chunk_size:
            raise ConfigurationError(
                f"chunk_overlap must be in [0, chunk_size), got {self.chunk_overlap}"
            )
        if self.top_k < 1:
            raise ConfigurationError(f"top_k must be at least 1, got {self.top_k}")
        if self.embedding_backend not in EMBEDDING_BACKENDS:
            raise ConfigurationError(
                f"Unknown embedding_backend {self.embedding_backend!r}. Choose from {EMBEDDING_BACKENDS}"
            )
        if self.llm_backend not in LLM_BACKENDS:
            raise ConfigurationError(f"Unknown llm_backend {self.llm_backend!r}. Choose from {LLM_BACKENDS}")
        if self.distance_metric not in ('cosine', 'l2', 'ip'):
            raise ConfigurationError(f"Unknown distance_metric {self.distance_metric!r}")
        if self.context_truncation not in ('error', 'drop_lowest'):
            raise ConfigurationError(f"Unknown context_truncation {self.context_truncation!r}")
        if self.embedding_batch_size < 1 or self.embedding_workers < 1:
            raise ConfigurationError("embedding_batch_size and embedding_workers must be at least 1")
        if self.embedding_retry_attempts < 1 or self.generation_retry_attempts < 1:
            raise ConfigurationError("retry attempts must be at least 1")
        if self.max_prompt_chars is not None and self.max_prompt_chars < 1:
            raise ConfigurationError(f"max_prompt_chars must be positive, got {self.max_prompt_chars}")
        if not self.file_extensions:
            raise ConfigurationError("file_extensions must not be empty")
        for ext in self.file_extensions:
            normalized = ext.lower() if ext.startswith('.') else '.' + ext.lower()
            if normalized not in DocumentLoader.SUPPORTED_EXTENSIONS:
                raise ConfigurationError(
                    f"Unsupported file extension {ext!r}. Supported: {sorted(DocumentLoader.SUPPORTED_EXTENSIONS)}"
                )
        return self

    def to_dict(self) -> dict:
        """Convert config to dictionary."""
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data['file_extensions'] = list(self.file_extensions)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'RAGConfig':
        """Create config from dictionary."""
        values = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        if 'file_extensions' in values:
            extensions = values['file_extensions']
            if isinstance(extensions, str):
                extensions = extensions.split(',')
            values['file_extensions'] = tuple(e.strip() for e in extensions if e.strip())
        return cls(**values)

    @classmethod
    def _from_strings(cls, env: Dict[str, Optional[str]], base: Optional['RAGConfig'] = None) -> 'RAGConfig':
        config = base or cls()
        values = {}
        for f in fields(cls):
            key = ENV_PREFIX + f.name.upper()
            raw = env.get(key)
            if raw is None:
                continue
            if f.name in cls._NUMERIC_OPTIONAL:
                # empty disables the option
                if not raw.strip():
                    values[f.name] = None
                    continue
                current = cls._NUMERIC_OPTIONAL[f.name]()
            else:
                current = getattr(config, f.name)
            values[f.name] = _coerce(raw, current, key)
        data = config.to_dict()
        data.update(values)
        return cls.from_dict(data)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> 'RAGConfig':
        """
        Create config from ``RAG_*`` environment variables.

        A ``.env`` file (``env_file`` or the one found by python-dotenv) is
        loaded first; variables already set in the environment win.
        """
        if env_file:
            load_dotenv(env_file, override=False)
        else:
            load_dotenv(override=False)
        return cls._from_strings(dict(os.environ))

    @classmethod
    def from_file(cls, path: str) -> 'RAGConfig':
        """
        Create config from a JSON file or a dotenv-style ``RAG_*`` file.

        Environment variables still override values from a dotenv file.
        """
        file_path = Path(path)
        if not file_path.is_file():
            raise ConfigurationError(f"Config file not found: {path}")
        if file_path.suffix.lower() == '.json':
            with open(file_path, 'r', encoding='utf-8') as f:
                try:
                    return cls.from_dict(json.load(f))
                except json.JSONDecodeError as e:
                    raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e
        env = dict(dotenv_values(file_path))
        env.update({k: v for k, v in os.environ.items() if k.startswith(ENV_PREFIX)})
        return cls._from_strings(env)
