"""
Test cases for RerankClient gating, provider requests and fallback.
"""

import pytest
import requests
from unittest.mock import MagicMock

from docchat.core.schemas import RerankConfig
from docchat.vector.rerank import RerankClient, identity_order


DOCS = ["alpha", "beta", "gamma", "delta", "epsilon"]


def _enabled_client(results=None, **overrides):
    config = RerankConfig(enabled=True, api_key="rk-test", **overrides)
    session = MagicMock()
    response = MagicMock()
    response.json.return_value = {"results": results or []}
    response.raise_for_status.return_value = None
    session.post.return_value = response
    return RerankClient(config, session=session), session


def test_disabled_rerank_returns_identity_order():
    """A disabled client keeps the original order with strictly decreasing scores."""
    client = RerankClient(RerankConfig(enabled=False))

    results = client.rerank("query", DOCS)

    assert len(results) == len(DOCS)
    assert [r.index for r in results] == list(range(len(DOCS)))
    scores = [r.relevance_score for r in results]
    assert scores[0] == 1.0
    assert all(a > b for a, b in zip(scores, scores[1:]))


def test_identity_order_scores():
    assert [r.relevance_score for r in identity_order(3)] == [1.0, 0.99, 0.98]


def test_should_rerank_scope_policy():
    assert RerankClient(RerankConfig(enabled=False)).should_rerank("vector") is False

    vector_only = RerankClient(RerankConfig(enabled=True, scope="vector-only"))
    assert vector_only.should_rerank("vector") is True
    assert vector_only.should_rerank("keyword") is False

    everything = RerankClient(RerankConfig(enabled=True, scope="all"))
    assert everything.should_rerank("keyword") is True


def test_enabled_without_api_key_falls_back():
    session = MagicMock()
    client = RerankClient(RerankConfig(enabled=True, api_key=None), session=session)

    results = client.rerank("query", DOCS)

    assert [r.index for r in results] == list(range(len(DOCS)))
    session.post.assert_not_called()


def test_out_of_scope_search_type_falls_back():
    client, session = _enabled_client()

    results = client.rerank("query", DOCS, search_type="keyword")

    assert [r.index for r in results] == list(range(len(DOCS)))
    session.post.assert_not_called()


def test_rerank_uses_provider_scores():
    client, session = _enabled_client(results=[
        {"index": 2, "relevance_score": 0.91},
        {"index": 0, "relevance_score": 0.40},
        {"index": 4, "relevance_score": 0.75},
    ])

    results = client.rerank("which letter", DOCS, top_n=3)

    assert [r.index for r in results] == [2, 4, 0]
    assert results[0].relevance_score == pytest.approx(0.91)

    _, kwargs = session.post.call_args
    assert kwargs["url"] == "https://api.jina.ai/v1/rerank"
    assert kwargs["json"] == {
        "model": "jina-reranker-v2-base-multilingual",
        "query": "which letter",
        "documents": DOCS,
        "top_n": 3,
    }
    assert kwargs["headers"]["Authorization"] == "Bearer rk-test"


def test_cohere_default_endpoint():
    client, session = _enabled_client(results=[{"index": 0, "relevance_score": 0.5}], provider="cohere")

    client.rerank("q", ["only"])

    assert session.post.call_args[1]["url"] == "https://api.cohere.ai/v1/rerank"


def test_openai_provider_requires_endpoint():
    client, session = _enabled_client(provider="openai")

    results = client.rerank("q", DOCS)

    assert len(results) == len(DOCS)
    session.post.assert_not_called()


def test_document_dicts_are_normalized():
    client, session = _enabled_client(results=[{"index": 1, "relevance_score": 0.9}])

    client.rerank("q", [{"text": "first"}, {"content": "second"}])

    assert session.post.call_args[1]["json"]["documents"] == ["first", "second"]


def test_http_error_falls_back():
    client, session = _enabled_client()
    session.post.return_value.raise_for_status.side_effect = requests.HTTPError("500")

    results = client.rerank("q", DOCS)

    assert [r.index for r in results] == list(range(len(DOCS)))


def test_network_error_falls_back():
    client, session = _enabled_client()
    session.post.side_effect = requests.ConnectionError("down")

    results = client.rerank("q", DOCS)

    assert len(results) == len(DOCS)
    assert session.post.call_count == 1


def test_malformed_index_falls_back():
    client, _ = _enabled_client(results=[{"index": 99, "relevance_score": 0.9}])

    results = client.rerank("q", DOCS)

    assert [r.index for r in results] == list(range(len(DOCS)))


def test_empty_documents_return_empty():
    client, session = _enabled_client()
    assert client.rerank("q", []) == []
    session.post.assert_not_called()


def test_invalid_scope_rejected():
    with pytest.raises(ValueError):
        RerankConfig(scope="sometimes")


@pytest.mark.parametrize("payload", [
    ["not", "an", "object"],
    "plain text",
    None,
    {"results": "oops"},
    {"results": ["not-a-dict"]},
])
def test_non_object_response_falls_back(payload):
    client, session = _enabled_client()
    session.post.return_value.json.return_value = payload

    results = client.rerank("q", ["a", "b", "c"])

    assert [r.index for r in results] == [0, 1, 2]
