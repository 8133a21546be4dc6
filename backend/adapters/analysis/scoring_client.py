"""
Client for the AI scoring webhooks.

Scoring itself happens in an external workflow service; this client only
posts the inputs and validates that a JSON object comes back.
"""

import logging
from typing import Any

import httpx

from core.errors import AnalysisServiceError

logger = logging.getLogger(__name__)


class AnalysisWebhookClient:
    """Posts analysis and comparison requests to the scoring webhooks."""

    def __init__(
        self,
        analysis_url: str | None,
        user_article_url: str | None = None,
        comparison_url: str | None = None,
        timeout: float = 120.0,
    ):
        """
        Args:
            analysis_url: Primary single-URL analysis webhook
            user_article_url: Fallback webhook taking ``{"url": ...}``
            comparison_url: Competitor comparison webhook
            timeout: Request timeout in seconds; scoring is slow
        """
        self.analysis_url = analysis_url
        self.user_article_url = user_article_url
        self.comparison_url = comparison_url
        self.timeout = timeout

    async def _post(self, url: str, body: dict[str, Any]) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.post(
                    url,
                    json=body,
                    headers={"Accept": "application/json"},
                )
        except httpx.RequestError as e:
            logger.error("Scoring webhook unreachable: %s", type(e).__name__)
            raise AnalysisServiceError(f"Analysis service unreachable: {e}") from e

    @staticmethod
    def _parse(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise AnalysisServiceError(
                "Analysis service returned malformed JSON", status_code=response.status_code
            ) from e
        if not isinstance(data, dict):
            raise AnalysisServiceError(
                "Analysis service returned a non-object response", status_code=response.status_code
            )
        return data

    async def analyze(self, keyword: str, url: str) -> dict[str, Any]:
        """
        Score a single page for ``keyword``.

        Falls back to the user-article webhook when the primary one answers
        with a non-2xx status.

        Raises:
            AnalysisServiceError: If no endpoint produced a usable result
        """
        response = None
        if self.analysis_url:
            response = await self._post(self.analysis_url, {"keyword": keyword, "userUrl": url})
            if response.is_success:
                return self._parse(response)
            logger.warning(
                "Analysis webhook returned HTTP %s; falling back to user-article webhook",
                response.status_code,
            )

        if not self.user_article_url:
            status = response.status_code if response is not None else None
            raise AnalysisServiceError("Analysis webhook not available", status_code=status)

        response = await self._post(self.user_article_url, {"url": url})
        if not response.is_success:
            raise AnalysisServiceError(
                f"Analysis failed on both endpoints (HTTP {response.status_code})",
                status_code=response.status_code,
            )
        return self._parse(response)

    async def compare(self, keyword: str, user_url: str, competitor_url: str) -> dict[str, Any]:
        """Score the user's page against a competitor page."""
        if not self.comparison_url:
            raise AnalysisServiceError("Comparison webhook not configured")

        response = await self._post(
            self.comparison_url,
            {"keyword": keyword, "userUrl": user_url, "competitorUrl": competitor_url},
        )
        if not response.is_success:
            raise AnalysisServiceError(
                f"Comparison failed (HTTP {response.status_code})",
                status_code=response.status_code,
            )
        return self._parse(response)


def create_analysis_client(settings) -> AnalysisWebhookClient:
    return AnalysisWebhookClient(
        analysis_url=settings.analysis_webhook_url,
        user_article_url=settings.user_article_webhook_url,
        comparison_url=settings.comparison_webhook_url,
        timeout=settings.analysis_timeout,
    )
