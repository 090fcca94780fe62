"""Batch embedding with a per-item fallback cascade.

Some embedding models return NaN for specific token sequences. When a batch
fails that way, every item of the batch is retried alone, then as a summary,
then rephrased. An item that still fails is reported as a failure for its
index, the rest of the batch is unaffected.
"""

from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.helper.HelperText import sanitize_text
from shared.models.embedding import EmbedBatchResult, FallbackStage
from shared.models.errors import ClientResponseError, EmbedError, EmptyAfterSanitizationError
from services.embedding.Summarizer import Summarizer


class BatchEmbedder:
    def __init__(
        self,
        helper_config: HelperConfig,
        embed_client: EmbedClientInterface,
        summarizer: Summarizer,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._embed_client = embed_client
        self._summarizer = summarizer
        self.batch_size = helper_config.get_int_val("EMBED_BATCH_SIZE", default=100)
        self.max_chars = helper_config.get_int_val("EMBED_MAX_CHARS", default=8000)

    ##########################################
    ################ GETTER ##################
    ##########################################

    @property
    def embed_model(self) -> str:
        return self._embed_client.embed_model

    @property
    def embed_dimensions(self) -> int:
        return self._embed_client.embed_dimensions

    ##########################################
    ############### EMBEDDING ################
    ##########################################

    async def do_embed_batch(self, texts: list[str]) -> EmbedBatchResult:
        """Embed texts in bounded batches, falling back per item on non-finite results.

        Args:
            texts (list[str]): Raw texts. Each is sanitized before embedding.

        Returns:
            EmbedBatchResult: One optional vector per input plus failure and fallback details.

        Raises:
            EmptyAfterSanitizationError: If a text is empty after sanitization (carries the index).
            EmbedError: TRANSIENT or FATAL errors abort the current batch.
            httpx.TransportError: If the summarization backend stayed unreachable.
        """
        sanitized: list[str] = []
        for index, text in enumerate(texts):
            try:
                sanitized.append(sanitize_text(text))
            except EmptyAfterSanitizationError as e:
                raise EmptyAfterSanitizationError(original_length=len(text), index=index) from e

        result = EmbedBatchResult(vectors=[None] * len(sanitized))
        for start in range(0, len(sanitized), self.batch_size):
            batch = sanitized[start:start + self.batch_size]
            try:
                vectors = await self._embed_client.do_embed(batch)
            except EmbedError as e:
                if not e.is_non_finite:
                    raise
                self.logging.warning(
                    "Batch of %d texts failed with non-finite values, retrying individually with fallbacks...",
                    len(batch),
                )
                await self._embed_individually(batch, start, result)
                continue
            for offset, vector in enumerate(vectors):
                result.vectors[start + offset] = vector
        return result

    async def do_embed_query(self, text: str) -> list[float]:
        """Embed a single search text without any fallback.

        Raises:
            EmptyAfterSanitizationError: If the text is empty after sanitization.
            EmbedError: On any embedding failure.
        """
        vectors = await self._embed_client.do_embed([sanitize_text(text)])
        return vectors[0]

    ##########################################
    ############### FALLBACKS ################
    ##########################################

    async def _embed_individually(self, batch: list[str], start: int, result: EmbedBatchResult) -> None:
        for offset, text in enumerate(batch):
            index = start + offset
            vector, stage, detail = await self._embed_with_fallback(text, index)
            result.vectors[index] = vector
            if stage is not None:
                result.fallbacks[index] = stage
            if vector is None:
                result.failures[index] = detail or "NaN"

    async def _embed_single(self, text: str) -> list[float]:
        vectors = await self._embed_client.do_embed([text])
        return vectors[0]

    async def _embed_with_fallback(self, text: str, index: int) -> tuple[list[float] | None, FallbackStage | None, str | None]:
        """Try the text alone, then its summary, then a rephrased version.

        Returns:
            tuple: (vector or None, stage that produced it or None, failure detail or None).

        Raises:
            EmbedError: Any kind other than NON_FINITE.
        """
        try:
            return await self._embed_single(text), FallbackStage.SINGLE, None
        except EmbedError as e:
            if not e.is_non_finite:
                raise
            self.logging.info("Text %d failed with non-finite values, trying with summarization...", index)

        try:
            summary = await self._summarizer.do_summarize([text], force=True)
            vector = await self._embed_single(sanitize_text(summary)[:self.max_chars])
            self.logging.info("Summarization worked for text %d", index)
            return vector, FallbackStage.SUMMARIZED, None
        except EmbedError as e:
            if not e.is_non_finite:
                raise
            self.logging.info("Summarization of text %d also produced non-finite values, trying with rephrasing...", index)
        except (ClientResponseError, ValueError) as e:
            self.logging.warning("Summarization of text %d failed: %s. Trying with rephrasing...", index, e)

        try:
            rephrased = await self._summarizer.do_rephrase(text)
            vector = await self._embed_single(sanitize_text(rephrased)[:self.max_chars])
            self.logging.info("Rephrasing worked for text %d", index)
            return vector, FallbackStage.REPHRASED, None
        except EmbedError as e:
            if not e.is_non_finite:
                raise
            detail = e.detail
        except (ClientResponseError, ValueError) as e:
            detail = str(e)

        self.logging.error(
            "Text %d failed even after rephrasing (length %d): %s", index, len(text), text[:200]
        )
        return None, None, detail
