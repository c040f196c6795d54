"""
HTTP surface over document sessions: register and index, search, ask.
"""

from fastapi import FastAPI, HTTPException
from typing import Dict

from .. import VERSION
from ..agents.llm import OllamaLLMCaller
from ..agents.react_engine import EngineBusyError, LLMCallError, MaxStepsExceededError
from ..core.config import DB_PATH, get_embedding_client, get_rerank_client
from ..core.db import health_check
from ..core.session import DocumentSession
from ..util.logging import logger
from ..vector.embeddings import EmbeddingConfigError, EmbeddingRequestError, EmbeddingUnavailableError
from .schemas import (
    AskRequest,
    AskResponse,
    DocumentRegisterRequest,
    HealthResponse,
    IndexResponse,
    IndexStatusResponse,
    SearchHit,
    SearchRequest,
    SearchResponse,
)

app = FastAPI(
    title="DocChat Retrieval API",
    version=VERSION,
    description="Retrieval and ReAct reasoning over open documents",
)

# Open documents, keyed by doc_id
sessions: Dict[str, DocumentSession] = {}


def create_session(doc_id: str, request: DocumentRegisterRequest) -> DocumentSession:
    return DocumentSession(
        doc_id,
        chunks=[c.to_chunk(i) for i, c in enumerate(request.chunks)],
        groups=[g.to_unit() for g in request.groups],
        name=request.name,
        page_count=request.page_count,
        language=request.language,
        embedding_client=get_embedding_client(),
        rerank_client=get_rerank_client(),
        llm_caller=OllamaLLMCaller(),
        db_path=DB_PATH,
    )


def get_session(doc_id: str) -> DocumentSession:
    session = sessions.get(doc_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Document not registered: {doc_id}")
    return session


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint():
    """Check system health."""
    db_health = health_check(DB_PATH)
    return HealthResponse(
        status="healthy" if db_health else "unhealthy",
        version=VERSION,
        db_health=db_health,
        documents=len(sessions),
    )


@app.post("/documents/{doc_id}", response_model=IndexResponse)
def register_document(doc_id: str, request: DocumentRegisterRequest):
    """Register a document's chunks and groups and build its vector index."""
    session = create_session(doc_id, request)
    try:
        summary = session.index(force_rebuild=request.force_rebuild)
    except EmbeddingConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except EmbeddingUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except EmbeddingRequestError as e:
        raise HTTPException(status_code=502, detail=str(e))

    sessions[doc_id] = session
    return IndexResponse(**summary)


@app.get("/documents/{doc_id}/index", response_model=IndexStatusResponse)
def index_status(doc_id: str):
    return IndexStatusResponse(**get_session(doc_id).index_status())


@app.delete("/documents/{doc_id}/index")
def delete_index(doc_id: str):
    deleted = get_session(doc_id).delete_index()
    return {"doc_id": doc_id, "deleted": deleted}


@app.post("/documents/{doc_id}/search", response_model=SearchResponse)
def search_document(doc_id: str, request: SearchRequest):
    hits = get_session(doc_id).search(request.query, top_k=request.top_k, threshold=request.threshold)
    return SearchResponse(
        query=request.query,
        results=[
            SearchHit(
                chunk_id=h.chunk.chunk_id,
                text=h.chunk.text,
                score=h.score,
                original_score=h.original_score,
                rerank_score=h.rerank_score,
            )
            for h in hits
        ],
    )


@app.post("/documents/{doc_id}/ask", response_model=AskResponse)
def ask_document(doc_id: str, request: AskRequest):
    session = get_session(doc_id)
    try:
        answer = session.ask(request.question)
    except EngineBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except MaxStepsExceededError as e:
        raise HTTPException(status_code=504, detail=str(e))
    except LLMCallError as e:
        logger.error(f"Ask failed for {doc_id}: {e}")
        raise HTTPException(status_code=502, detail=str(e))

    return AskResponse(answer=answer, aborted=answer is None, steps=len(session.engine.history))
