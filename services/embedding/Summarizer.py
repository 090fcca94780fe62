"""Conversation summarizer.

Compresses long transcripts into a detailed summary before embedding and
restates texts in different words when the embedding model cannot encode
them. Long inputs are split into chunks that fit the model context, each
chunk is summarized, and the chunk summaries are combined.
"""

from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import ClientResponseError

PART_SEPARATOR = "\n\n---\n\n"
MAX_CHARS_BEFORE_SUMMARIZE = 8000  # shorter texts are returned unchanged
MAX_CHUNK_CHARS = 100000           # largest input sent to the model in one call
CHUNK_FALLBACK_CHARS = 5000        # kept from a chunk whose summary call failed
COMBINE_FALLBACK_CHARS = 24000     # kept from joined summaries whose combine call failed

SUMMARIZE_PROMPT = """You are summarizing a coding conversation between a user and an AI assistant.
{context_note}

Create a COMPREHENSIVE summary that preserves:
- All file paths, function names, class names, and variable names mentioned
- Error messages and their solutions
- Key decisions and their rationale
- Code changes made (what was added, modified, removed)
- Technical patterns and approaches used
- Commands executed and their outcomes
- Any important context about the project structure

Be thorough - this summary will be used for semantic search to find relevant conversations later.
Include specific technical details, not just high-level descriptions.
Output only the summary, no preamble or meta-commentary.

CONVERSATION:
{text}

DETAILED SUMMARY:"""

CHUNK_CONTEXT_NOTE = "This is one chunk of a larger conversation. Preserve all technical details for later combination."

COMBINE_PROMPT = """You are combining multiple conversation summaries into a single comprehensive summary.
Each section below is a summary from a different part of the same conversation.

Merge them into ONE coherent summary that:
- Preserves ALL technical details from each section
- Maintains chronological flow where relevant
- Removes redundancy while keeping all unique information
- Keeps all file paths, function names, error messages, and code changes

Output only the combined summary, no preamble.

SUMMARIES TO COMBINE:
{text}

COMBINED SUMMARY:"""

REPHRASE_PROMPT = """Rephrase the following text using completely different words and sentence structure while preserving the exact meaning. Use simple, plain language. Do not add any introduction or explanation, just output the rephrased text:

{text}"""


def chunk_parts(parts: list[str], max_chars: int = MAX_CHUNK_CHARS) -> list[list[str]]:
    """Group consecutive parts into chunks whose joined length stays under max_chars.

    A single part longer than max_chars forms a chunk of its own.

    Args:
        parts (list[str]): Ordered text parts (e.g. formatted messages).
        max_chars (int): Size limit per chunk.

    Returns:
        list[list[str]]: The chunks, in order.
    """
    chunks: list[list[str]] = []
    current: list[str] = []
    current_length = 0
    for part in parts:
        part_length = len(part) + len(PART_SEPARATOR)
        if current and current_length + part_length > max_chars:
            chunks.append(current)
            current = [part]
            current_length = part_length
        else:
            current.append(part)
            current_length += part_length
    if current:
        chunks.append(current)
    return chunks


class Summarizer:
    """Summarization and rephrasing on top of an LLM client."""

    def __init__(self, helper_config: HelperConfig, llm_client: LLMClientInterface) -> None:
        self.logging = helper_config.get_logger()
        self._llm_client = llm_client

    ##########################################
    ################ SUMMARY #################
    ##########################################

    async def do_summarize(self, parts: list[str], force: bool = False) -> str:
        """Summarize a conversation given as ordered parts.

        Args:
            parts (list[str]): Ordered text parts, joined with a separator line.
            force (bool): Summarize even if the joined text is short enough to keep.

        Returns:
            str: The joined text when short, a model-written summary otherwise.

        Raises:
            httpx.TransportError: If the LLM backend stayed unreachable.
            ClientResponseError: If a single-call summary was rejected by the backend.
        """
        combined = PART_SEPARATOR.join(parts)
        if len(combined) <= MAX_CHARS_BEFORE_SUMMARIZE and not force:
            return combined

        if len(combined) <= MAX_CHUNK_CHARS:
            self.logging.info("Summarizing conversation (%d chars)...", len(combined))
            summary = await self._summarize_chunk(combined, is_chunk_of_many=False)
            self.logging.info("Summarized to %d chars", len(summary))
            return summary

        chunks = chunk_parts(parts)
        self.logging.info(
            "Conversation too long (%d chars), splitting into %d chunks...", len(combined), len(chunks)
        )
        summaries: list[str] = []
        for index, chunk in enumerate(chunks, start=1):
            chunk_text = PART_SEPARATOR.join(chunk)
            try:
                summary = await self._summarize_chunk(chunk_text, is_chunk_of_many=True)
            except (ClientResponseError, ValueError) as e:
                self.logging.warning(
                    "Failed to summarize chunk %d/%d: %s. Falling back to truncation.", index, len(chunks), e
                )
                summary = chunk_text[:CHUNK_FALLBACK_CHARS]
            summaries.append(summary)
        return await self._combine_summaries(summaries)

    async def _summarize_chunk(self, text: str, is_chunk_of_many: bool) -> str:
        prompt = SUMMARIZE_PROMPT.format(
            context_note=CHUNK_CONTEXT_NOTE if is_chunk_of_many else "",
            text=text,
        )
        return await self._llm_client.do_prompt(prompt)

    async def _combine_summaries(self, summaries: list[str]) -> str:
        combined = PART_SEPARATOR.join(summaries)
        if len(combined) <= MAX_CHARS_BEFORE_SUMMARIZE:
            return combined
        if len(combined) > MAX_CHUNK_CHARS:
            self.logging.info("Combined summaries too long (%d chars), chunking recursively...", len(combined))
            return await self.do_summarize(summaries)

        self.logging.info("Combining %d chunk summaries (%d chars)...", len(summaries), len(combined))
        try:
            summary = await self._llm_client.do_prompt(COMBINE_PROMPT.format(text=combined))
        except (ClientResponseError, ValueError) as e:
            self.logging.warning("Combining summaries failed: %s. Falling back to concatenation.", e)
            return combined[:COMBINE_FALLBACK_CHARS]
        self.logging.info("Combined to %d chars", len(summary))
        return summary

    ##########################################
    ############### REPHRASE #################
    ##########################################

    async def do_rephrase(self, text: str) -> str:
        """Restate a text in plain, different words, keeping its meaning.

        Raises:
            httpx.TransportError: If the LLM backend stayed unreachable.
            ClientResponseError: If the backend rejected the request.
        """
        return await self._llm_client.do_prompt(REPHRASE_PROMPT.format(text=text))
