"""
AI Service - Facade over the external evaluation/generation service.

Any transport failure, non-2xx status or malformed payload is raised as
AIServiceError. Callers never see httpx exceptions.
"""

import base64
from typing import Any, Protocol

import httpx
from structlog import get_logger

from ielts_lover.exceptions import AIServiceError
from ielts_lover.models.domain import (
    AIUsage,
    ChartAnalysis,
    ChartDataPoint,
    EvaluationResult,
    ExerciseData,
    RewriteResult,
)
from ielts_lover.observability.metrics import metrics

logger = get_logger(__name__)


class AIService(Protocol):
    """
    AI collaborator protocol.

    Implementations may be remote (HttpAIService) or stubs in tests.
    """

    async def evaluate(self, content: str, exercise: ExerciseData) -> EvaluationResult:
        """
        Score a submission against its exercise.

        Raises:
            AIServiceError: Evaluation failed
        """
        ...

    async def rewrite_content(self, text: str) -> RewriteResult:
        """
        Rewrite text in a higher band style.

        Raises:
            AIServiceError: Rewrite failed
        """
        ...

    async def analyze_chart_image(self, image_bytes: bytes, mime_type: str) -> ChartAnalysis:
        """
        Extract structured data from a Task 1 chart image.

        Raises:
            AIServiceError: Analysis failed
        """
        ...


def _parse_usage(payload: dict[str, Any]) -> AIUsage | None:
    usage = payload.get("usage")
    if not isinstance(usage, dict):
        return None
    return AIUsage(
        model=str(usage.get("model", "unknown")),
        input_tokens=int(usage.get("input_tokens", 0)),
        output_tokens=int(usage.get("output_tokens", 0)),
    )


class HttpAIService:
    """AI service reached over HTTP with a bearer API key."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def _post(self, operation: str, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self.http_client.post(
                f"{self.base_url}{path}",
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "ai_request_failed",
                operation=operation,
                status=e.response.status_code,
                text=e.response.text[:500],
            )
            raise AIServiceError(operation, f"status {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error("ai_request_error", operation=operation, error=str(e))
            raise AIServiceError(operation, type(e).__name__) from e
        except ValueError as e:
            logger.error("ai_response_not_json", operation=operation, error=str(e))
            raise AIServiceError(operation, "response is not JSON") from e

        if not isinstance(data, dict):
            raise AIServiceError(operation, "response is not an object")

        usage = _parse_usage(data)
        if usage is not None:
            metrics.record_ai_usage(operation, usage.input_tokens, usage.output_tokens)
            logger.info(
                "ai_usage",
                operation=operation,
                model=usage.model,
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
            )
        return data

    async def evaluate(self, content: str, exercise: ExerciseData) -> EvaluationResult:
        data = await self._post(
            "evaluate",
            "/evaluate",
            {
                "content": content,
                "exercise_type": exercise.type.value,
                "prompt": exercise.prompt,
                "image_url": exercise.image_url,
            },
        )
        try:
            return EvaluationResult(
                score=float(data["score"]),
                feedback=str(data["feedback"]),
                usage=_parse_usage(data),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise AIServiceError("evaluate", f"malformed evaluation: {e}") from e

    async def rewrite_content(self, text: str) -> RewriteResult:
        data = await self._post("rewrite", "/rewrite", {"text": text})
        try:
            return RewriteResult(
                rewritten_text=str(data["rewritten_text"]), usage=_parse_usage(data)
            )
        except KeyError as e:
            raise AIServiceError("rewrite", f"malformed rewrite: missing {e}") from e

    async def analyze_chart_image(self, image_bytes: bytes, mime_type: str) -> ChartAnalysis:
        data = await self._post(
            "analyze_chart",
            "/analyze-chart",
            {"image_base64": base64.b64encode(image_bytes).decode("ascii"), "mime_type": mime_type},
        )
        try:
            return ChartAnalysis(
                is_valid=bool(data["is_valid"]),
                chart_type=data.get("chart_type"),
                data_points=tuple(
                    ChartDataPoint(
                        label=str(point["label"]),
                        value=float(point["value"]),
                        series=point.get("series"),
                    )
                    for point in data.get("data_points") or ()
                ),
                validation_errors=tuple(str(e) for e in data.get("validation_errors") or ()),
                usage=_parse_usage(data),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise AIServiceError("analyze_chart", f"malformed chart analysis: {e}") from e

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
