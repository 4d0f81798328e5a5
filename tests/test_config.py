from __future__ import annotations

import pytest

from codeassist.config import load_config_from_env


def test_load_config_without_llm_is_ok() -> None:
    cfg = load_config_from_env(environ={})
    assert cfg.llm is None
    assert cfg.index.max_file_bytes == 1_000_000
    assert cfg.log_level == "INFO"


def test_load_config_full_llm_ok() -> None:
    environ = {"LLM_BASE_URL": "https://llm.example.com", "LLM_API_KEY": "k", "LLM_MODEL": "m"}
    cfg = load_config_from_env(environ=environ)
    assert cfg.llm is not None
    assert cfg.llm.model == "m"


def test_load_config_rejects_partial_llm() -> None:
    environ = {"LLM_BASE_URL": "https://llm.example.com", "LLM_API_KEY": "k"}
    with pytest.raises(ValueError):
        load_config_from_env(environ=environ)


def test_load_config_index_overrides() -> None:
    environ = {
        "INDEX_MAX_FILE_BYTES": "2048",
        "GENERATION_TIMEOUT_SECONDS": "2.5",
        "GENERATION_MAX_CONCURRENCY": "8",
        "LOG_LEVEL": "debug",
    }
    cfg = load_config_from_env(environ=environ)
    assert cfg.index.max_file_bytes == 2048
    assert cfg.index.generation_timeout_seconds == 2.5
    assert cfg.index.generation_max_concurrency == 8
    assert cfg.log_level == "DEBUG"


def test_load_config_rejects_non_positive_limits() -> None:
    with pytest.raises(ValueError):
        load_config_from_env(environ={"GENERATION_MAX_CONCURRENCY": "0"})


def test_load_config_rejects_unknown_log_level() -> None:
    with pytest.raises(ValueError):
        load_config_from_env(environ={"LOG_LEVEL": "chatty"})
