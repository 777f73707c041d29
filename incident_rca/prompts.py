"""
Incident RCA - Prompt Templates
================================

Every prompt the pipeline sends to the LLM.

Template variables use {curly_braces}; literal JSON braces are doubled.
"""

from langchain_core.prompts import ChatPromptTemplate


# System prompt - shared by every step of the investigation
SYSTEM_PROMPT = """You are an expert Site Reliability Engineer (SRE) assistant that investigates production incidents.

Your role is to:
1. Work only from the incident, documents and logs you are given
2. Be precise and technical
3. Follow the requested output format exactly"""


# =============================================================================
# QUERY GENERATION
# =============================================================================

GENERATE_QUERIES_TEMPLATE = """An alert was triggered in production. We want to search our knowledge base for documents that could help explain it.

=== INCIDENT ===
{incident}
=== END INCIDENT ===

Write {n_queries} short search queries that would find documents related to this incident
(runbooks, postmortems, architecture notes, past incidents of the same services).

Respond with ONLY a JSON object of this form and nothing else:
{{"queries": ["first query", "second query"]}}"""


# =============================================================================
# DOCUMENT VERIFICATION
# =============================================================================

VERIFY_DOCUMENT_TEMPLATE = """Decide whether the document below is relevant for investigating the incident.

A document is relevant if it mentions the affected services, symptoms, error messages,
likely root causes or known fixes of the incident.

=== INCIDENT ===
{incident}
=== END INCIDENT ===

=== DOCUMENT ===
{document}
=== END DOCUMENT ===

Respond with ONLY one word: true or false"""


# =============================================================================
# LOG STRUCTURE EXTRACTION
# =============================================================================

EXTRACT_LOG_STRUCTURE_KEYS_TEMPLATE = """Below are sample log records, one JSON object per line.

{log_records}

Find the JSON key holding the log severity (for example: level, severity, log.level)
and the JSON key holding the log message body (for example: message, msg, text).
Use dots for nested keys.

Respond with ONLY a JSON object of this form and nothing else:
{{"severityKey": "<key>", "messageKey": "<key>"}}"""


# =============================================================================
# INVESTIGATION SUMMARY
# =============================================================================

INVESTIGATION_TEMPLATE = """Investigate the production incident below and explain its most likely root cause.

=== INCIDENT ===
{incident}
=== END INCIDENT ===

=== KNOWLEDGE BASE CONTEXT ===
{context}
=== END CONTEXT ===

=== ADDITIONAL INFORMATION (LOGS) ===
{additional_info}
=== END ADDITIONAL INFORMATION ===

Instructions:
- Start with a one-paragraph summary of what happened
- State the most likely root cause and the evidence for it
- Point out relevant log clusters (level, template, frequency) when available
- Suggest concrete next steps for the on-call engineer
- If the information is not enough to determine the root cause, say so clearly

Root-cause analysis:"""


def _chat_prompt(template: str) -> ChatPromptTemplate:
    return ChatPromptTemplate.from_messages([
        ("system", SYSTEM_PROMPT),
        ("human", template),
    ])


generate_queries_prompt = _chat_prompt(GENERATE_QUERIES_TEMPLATE)
verify_document_prompt = _chat_prompt(VERIFY_DOCUMENT_TEMPLATE)
extract_log_structure_keys_prompt = _chat_prompt(EXTRACT_LOG_STRUCTURE_KEYS_TEMPLATE)
investigation_prompt = _chat_prompt(INVESTIGATION_TEMPLATE)
