"""
Test cases for configuration factories.
"""

import pytest
from unittest.mock import patch

from docchat.core import config
from docchat.vector import EmbeddingsService, HttpEmbeddingClient, RerankClient


def test_rerank_disabled_by_default():
    client = config.get_rerank_client()

    assert isinstance(client, RerankClient)
    assert client.should_rerank("vector") is False


def test_hash_embedding_provider():
    with patch.object(config, 'EMBED_PROVIDER', 'hash'), patch.object(config, 'EMBEDDING_DIMENSIONS', 16):
        client = config.get_embedding_client()

    assert isinstance(client, EmbeddingsService)
    assert client.is_ready() is True
    assert len(client.embed("hello")) == 16


def test_http_embedding_provider_without_key():
    with patch.object(config, 'EMBED_PROVIDER', 'http'), patch.object(config, 'EMBEDDING_API_KEY', None):
        client = config.get_embedding_client()

    assert isinstance(client, HttpEmbeddingClient)
    assert client.is_ready() is False


def test_embedding_disabled():
    with patch.object(config, 'EMBEDDING_ENABLED', False):
        assert config.get_embedding_client() is None


def test_unknown_embedding_provider():
    with patch.object(config, 'EMBED_PROVIDER', 'bogus'):
        with pytest.raises(ValueError):
            config.get_embedding_client()


def test_budget_allocation_default_and_scaled():
    default = config.get_budget_allocation()
    assert default.total == 32000
    assert default.context == 18000

    with patch.object(config, 'TOKEN_BUDGET_TOTAL', 16000):
        scaled = config.get_budget_allocation()

    assert scaled.total == 16000
    assert scaled.context == 9000
    assert scaled.response == 2000


def test_ensure_db_directory(tmp_path):
    db_path = tmp_path / "nested" / "dir" / "vectors.db"
    config.ensure_db_directory(str(db_path))
    assert db_path.parent.is_dir()
