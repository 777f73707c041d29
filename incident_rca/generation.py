"""
Incident RCA - Generation Module
=================================

The two LLM steps that bracket the investigation:

    Incident text → generate_queries → (retrieval, logs) → summarize → RCA

KEY CONCEPT - Query generation:
    An alert message is rarely a good search query on its own. We ask the LLM
    for a few short queries first and search the knowledge base with each of
    them, which finds runbooks and postmortems the raw alert would miss.

Both steps are LCEL chains (prompt | llm | parser) built per call around the
chat model the caller passes in.
"""

import logging
from typing import Optional

from langchain_core.exceptions import OutputParserException
from langchain_core.output_parsers import JsonOutputParser, StrOutputParser
from langchain_core.runnables import Runnable

from incident_rca.config import DEFAULT_N_QUERIES
from incident_rca.errors import QueryGenerationError
from incident_rca.prompts import generate_queries_prompt, investigation_prompt
from incident_rca.utils import with_timeout

LOGGER = logging.getLogger(__name__)

NO_ADDITIONAL_INFO = "no additional information"


# =============================================================================
# FUNCTION: generate_queries
# =============================================================================
async def generate_queries(
    incident_text: str,
    llm: Runnable,
    n_queries: int = DEFAULT_N_QUERIES,
    *,
    timeout: Optional[float] = None,
) -> list[str]:
    """
    Ask the LLM for knowledge-base search queries about an incident.

    The prompt asks for a JSON object of the form {"queries": [...]}.
    There is no fallback: a run cannot continue without queries.

    Args:
        incident_text: Rendered incident description
        llm: Chat model (or any runnable accepting a prompt value)
        n_queries: How many queries to ask for
        timeout: Seconds to wait for the LLM

    Returns:
        Non-empty list of query strings, in the order the LLM produced them

    Raises:
        QueryGenerationError: If the response is not JSON or has no queries
    """
    chain = generate_queries_prompt | llm | JsonOutputParser()

    try:
        result = await with_timeout(
            chain.ainvoke({"incident": incident_text, "n_queries": n_queries}),
            timeout,
        )
    except OutputParserException as error:
        LOGGER.error("Error generating queries for incident: %s", incident_text)
        raise QueryGenerationError(f"Could not parse generated queries: {error}") from error

    queries = result.get("queries") if isinstance(result, dict) else None
    if (
        not isinstance(queries, list)
        or not queries
        or not all(isinstance(query, str) and query.strip() for query in queries)
    ):
        LOGGER.error(
            "No queries generated for incident: %s (response: %s)",
            incident_text,
            result,
        )
        raise QueryGenerationError("No queries generated")

    LOGGER.debug("generated %d queries: %s", len(queries), queries)
    return queries


# =============================================================================
# FUNCTION: summarize
# =============================================================================
async def summarize(
    incident_text: str,
    context_text: str,
    llm: Runnable,
    additional_info: Optional[str] = None,
    *,
    timeout: Optional[float] = None,
) -> str:
    """
    Generate the final root-cause analysis.

    Args:
        incident_text: Rendered incident description
        context_text: Ranked knowledge-base documents (see format_context)
        llm: Chat model
        additional_info: Log analysis text, if the log phase produced any
        timeout: Seconds to wait for the LLM

    Returns:
        The LLM output, verbatim
    """
    chain = investigation_prompt | llm | StrOutputParser()

    return await with_timeout(
        chain.ainvoke({
            "incident": incident_text,
            "context": context_text,
            "additional_info": additional_info or NO_ADDITIONAL_INFO,
        }),
        timeout,
    )
