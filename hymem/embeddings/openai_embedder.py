import logging
from dataclasses import dataclass, field

from openai import APIConnectionError, APITimeoutError, OpenAI

from hymem.config import EmbeddingConfig, RetryConfig
from hymem.errors import Outcome, TransientServiceError
from hymem.resilience import call_external

logger = logging.getLogger(__name__)


@dataclass
class OpenAIEmbedder:
    config: EmbeddingConfig
    retry: RetryConfig = field(default_factory=RetryConfig)

    def __post_init__(self) -> None:
        self._client = OpenAI(
            api_key=self.config.api_key,
            base_url=self.config.base_url,
            timeout=self.config.timeout_s,
            max_retries=0,
        )

    def _extract_embeddings(self, response) -> list[list[float]] | None:
        if isinstance(response, str):
            return None
        if isinstance(response, dict):
            data = response.get("data") or []
            return [item.get("embedding", []) for item in data if isinstance(item, dict)]
        data = getattr(response, "data", None)
        if data is None:
            return None
        return [item.embedding for item in data]

    def _request(self, texts: list[str]) -> list[list[float]]:
        try:
            response = self._client.embeddings.create(
                model=self.config.model,
                input=texts,
            )
        except (APITimeoutError, APIConnectionError) as exc:
            raise TransientServiceError(f"embedding endpoint: {exc}") from exc
        embeddings = self._extract_embeddings(response)
        if not embeddings or len(embeddings) != len(texts):
            raise ValueError(
                "Embedding response invalid. Check OPENAI_BASE_URL and OPENAI_API_KEY."
            )
        return embeddings

    def embed_texts(self, texts: list[str]) -> Outcome[list[list[float]]]:
        if not texts:
            return Outcome.success([])
        return call_external(lambda: self._request(texts), "embeddings", self.retry)

    def embed(self, text: str) -> Outcome[list[float]]:
        outcome = self.embed_texts([text])
        if not outcome.ok:
            logger.warning("Embedding unavailable for query text")
            return Outcome.failure(outcome.error)
        return Outcome.success(outcome.value[0])
