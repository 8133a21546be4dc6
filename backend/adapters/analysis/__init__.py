"""Adapters for the external AI scoring service."""

from .scoring_client import AnalysisWebhookClient, create_analysis_client

__all__ = ["AnalysisWebhookClient", "create_analysis_client"]
