"""
Incident RCA - Retrieval Module
================================

The RAG phase of the investigation: search the organization's knowledge base
with the generated queries, drop documents the LLM judges irrelevant, and keep
the best-scoring ones as context for the summary.

ARCHITECTURE:
    Queries → Vector Search (concurrent) → LLM Relevance Filter (concurrent)
            → Rank by score → Top-N → Context text

KEY CONCEPT - Relevance filtering:
    Similarity search always returns K documents, even when none of them is
    about the incident. Every candidate is shown to the LLM together with the
    incident and kept only if the answer is `true`. This removes noise before
    it reaches the summary prompt.
"""

# =============================================================================
# IMPORTS
# =============================================================================

import json
import logging
from contextlib import contextmanager
from typing import Callable, ContextManager, Iterator, Optional

from langchain_core.output_parsers import StrOutputParser
from langchain_core.runnables import Runnable
from langchain_core.vectorstores import VectorStore
from langchain_mongodb import MongoDBAtlasVectorSearch
from langchain_openai import OpenAIEmbeddings

from incident_rca.config import (
    DB_NAME,
    EMBEDDING_MODEL,
    OPENAI_API_KEY,
    RANK_TOP_N,
    RETRIEVAL_TOP_K,
    VECTOR_INDEX_NAME,
)
from incident_rca.errors import DocumentVerificationError, UnsupportedIndexTypeError
from incident_rca.models import KnowledgeIndex, RetrievedDocument
from incident_rca.prompts import verify_document_prompt
from incident_rca.utils import gather_or_cancel, get_mongo_client, with_timeout

LOGGER = logging.getLogger(__name__)

VectorStoreFactory = Callable[[KnowledgeIndex], ContextManager[VectorStore]]


# =============================================================================
# FUNCTION: get_vector_store
# =============================================================================
@contextmanager
def _mongodb_atlas_store(index: KnowledgeIndex) -> Iterator[VectorStore]:
    """
    Connect to an Atlas Vector Search collection named after the index.

    Uses the same embedding model the knowledge base was ingested with;
    query embeddings must match document embeddings.
    """
    client = get_mongo_client()
    try:
        embeddings = OpenAIEmbeddings(
            model=EMBEDDING_MODEL,
            openai_api_key=OPENAI_API_KEY
        )
        yield MongoDBAtlasVectorSearch(
            collection=client[DB_NAME][index.name],
            embedding=embeddings,
            index_name=VECTOR_INDEX_NAME
        )
    finally:
        # Always close the connection
        client.close()


VECTOR_STORE_FACTORIES: dict[str, VectorStoreFactory] = {
    "mongodb-atlas": _mongodb_atlas_store,
}


def get_vector_store(index: KnowledgeIndex) -> ContextManager[VectorStore]:
    """
    Open the vector store behind a knowledge-base index.

    Use as a context manager; the connection is closed on exit.

    Raises:
        UnsupportedIndexTypeError: If no store is registered for index.type
    """
    factory = VECTOR_STORE_FACTORIES.get(index.type)
    if factory is None:
        raise UnsupportedIndexTypeError(f"Unsupported index type: {index.type}")
    return factory(index)


# =============================================================================
# FUNCTION: run_queries
# =============================================================================
async def run_queries(
    index: KnowledgeIndex,
    queries: list[str],
    *,
    vector_store_factory: VectorStoreFactory = get_vector_store,
    top_k: int = RETRIEVAL_TOP_K,
    timeout: Optional[float] = None,
) -> list[RetrievedDocument]:
    """
    Run every query against the knowledge base concurrently.

    The store is opened once for all queries. Results are flattened in the
    order the queries were given (not by score, not by completion order).
    Store errors propagate unchanged.

    Args:
        index: The organization's knowledge-base index
        queries: Search queries from generate_queries
        vector_store_factory: Opens the store for an index (injectable)
        top_k: Documents per query
        timeout: Seconds to wait for each search

    Returns:
        List of RetrievedDocument, top_k (at most) per query
    """
    with vector_store_factory(index) as vector_store:
        results = await gather_or_cancel(
            with_timeout(
                vector_store.asimilarity_search_with_score(query, k=top_k),
                timeout,
            )
            for query in queries
        )

    documents = [
        RetrievedDocument.from_langchain(document, score)
        for query_results in results
        for document, score in query_results
    ]
    LOGGER.debug("retrieved %d documents for %d queries", len(documents), len(queries))
    return documents


# =============================================================================
# FUNCTION: verify_document
# =============================================================================
async def verify_document(
    incident_text: str,
    document_text: str,
    llm: Runnable,
    *,
    timeout: Optional[float] = None,
) -> bool:
    """
    Ask the LLM whether one document is relevant to the incident.

    The LLM is told to answer only `true` or `false`; the lower-cased answer
    is parsed as a JSON boolean literal.

    Raises:
        DocumentVerificationError: If the answer is not a boolean literal
    """
    chain = verify_document_prompt | llm | StrOutputParser()
    response = await with_timeout(
        chain.ainvoke({"incident": incident_text, "document": document_text}),
        timeout,
    )

    answer = response.strip().lower()
    try:
        verdict = json.loads(answer)
    except ValueError:
        verdict = None
    if not isinstance(verdict, bool):
        LOGGER.error("Error parsing the verification response: %r", response)
        raise DocumentVerificationError(
            f"Document verification returned a non-boolean answer: {response[:100]}"
        )
    return verdict


# =============================================================================
# FUNCTION: filter_documents
# =============================================================================
async def filter_documents(
    incident_text: str,
    documents: list[RetrievedDocument],
    llm: Runnable,
    *,
    timeout: Optional[float] = None,
) -> list[RetrievedDocument]:
    """
    Keep only the documents the LLM verifies as relevant.

    All documents are verified concurrently. The output preserves input
    order. One unparseable verification fails the whole call and cancels the
    verifications still running.
    """
    verifications = await gather_or_cancel(
        verify_document(incident_text, document.text, llm, timeout=timeout)
        for document in documents
    )

    filtered = [
        document
        for document, relevant in zip(documents, verifications)
        if relevant
    ]
    LOGGER.debug("%d of %d documents verified relevant", len(filtered), len(documents))
    return filtered


# =============================================================================
# FUNCTION: rank_documents
# =============================================================================
def rank_documents(
    documents: list[RetrievedDocument],
    top_n: int = RANK_TOP_N,
) -> list[RetrievedDocument]:
    """
    Return the top_n documents by score, highest first.

    The sort is stable: documents with equal scores keep their input order.
    """
    return sorted(documents, key=lambda document: document.score, reverse=True)[:top_n]


# =============================================================================
# FUNCTION: format_context
# =============================================================================
def format_context(documents: list[RetrievedDocument]) -> str:
    """Join document texts into the context block of the summary prompt."""
    if not documents:
        return "No relevant documents found."

    return "\n\n".join(document.text for document in documents)
