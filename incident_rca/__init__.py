"""
Incident RCA
============

Root-cause analysis assistant for monitoring alerts: retrieves knowledge-base
documents, clusters recent logs and summarizes both with an LLM.
"""

__version__ = "1.0.0"
