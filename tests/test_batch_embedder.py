import pytest

from conftest import NAN_MARKER
from services.embedding.BatchEmbedder import BatchEmbedder
from services.embedding.Summarizer import Summarizer
from shared.models.embedding import FallbackStage
from shared.models.errors import EmbedError, EmbedErrorKind, EmptyAfterSanitizationError


@pytest.fixture
def embedder(helper_config, embed_client, llm_client) -> BatchEmbedder:
    summarizer = Summarizer(helper_config=helper_config, llm_client=llm_client)
    return BatchEmbedder(helper_config=helper_config, embed_client=embed_client, summarizer=summarizer)


@pytest.mark.asyncio
async def test_clean_batch_embeds_in_one_call(embedder, embed_client):
    result = await embedder.do_embed_batch(["first text", "second text"])

    assert embed_client.calls == [["first text", "second text"]]
    assert result.vectors == [embed_client.vector_for("first text"), embed_client.vector_for("second text")]
    assert result.failures == {}
    assert result.fallbacks == {}


@pytest.mark.asyncio
async def test_batches_are_bounded_by_batch_size(helper_config, embed_client, llm_client, monkeypatch):
    monkeypatch.setenv("EMBED_BATCH_SIZE", "2")
    embedder = BatchEmbedder(
        helper_config=helper_config,
        embed_client=embed_client,
        summarizer=Summarizer(helper_config=helper_config, llm_client=llm_client),
    )
    result = await embedder.do_embed_batch(["a", "b", "c"])

    assert embed_client.calls == [["a", "b"], ["c"]]
    assert all(v is not None for v in result.vectors)


@pytest.mark.asyncio
async def test_texts_are_sanitized_before_embedding(embedder, embed_client):
    await embedder.do_embed_batch(["  padded\x00 text\n"])
    assert embed_client.calls == [["padded text"]]


@pytest.mark.asyncio
async def test_empty_text_reports_its_index(embedder):
    with pytest.raises(EmptyAfterSanitizationError) as exc_info:
        await embedder.do_embed_batch(["fine", "\x00 \n"])
    assert exc_info.value.index == 1


@pytest.mark.asyncio
async def test_nan_batch_retries_items_alone(embedder, embed_client):
    result = await embedder.do_embed_batch(["good one", f"bad {NAN_MARKER}", "good two"])

    # the whole batch first, then every item on its own
    assert embed_client.calls[0] == ["good one", f"bad {NAN_MARKER}", "good two"]
    assert ["good one"] in embed_client.calls
    assert ["good two"] in embed_client.calls
    assert result.vectors[0] == embed_client.vector_for("good one")
    assert result.vectors[2] == embed_client.vector_for("good two")
    assert result.fallbacks[0] is FallbackStage.SINGLE
    assert result.fallbacks[2] is FallbackStage.SINGLE


@pytest.mark.asyncio
async def test_nan_item_falls_back_to_summary(embedder, embed_client, llm_client):
    result = await embedder.do_embed_batch([f"bad {NAN_MARKER}"])

    assert result.vectors[0] == embed_client.vector_for("a short summary")
    assert result.fallbacks[0] is FallbackStage.SUMMARIZED
    assert len(llm_client.prompts) == 1


@pytest.mark.asyncio
async def test_nan_summary_falls_back_to_rephrase(embedder, embed_client, llm_client):
    llm_client.replies = [f"summary still {NAN_MARKER}", "plain rephrased words"]

    result = await embedder.do_embed_batch([f"bad {NAN_MARKER}"])

    assert result.vectors[0] == embed_client.vector_for("plain rephrased words")
    assert result.fallbacks[0] is FallbackStage.REPHRASED
    assert "Rephrase" in llm_client.prompts[1]


@pytest.mark.asyncio
async def test_item_failing_every_stage_is_reported(embedder, llm_client):
    llm_client.default_reply = f"still {NAN_MARKER}"

    result = await embedder.do_embed_batch(["fine text", f"bad {NAN_MARKER}"])

    assert result.vectors[0] is not None
    assert result.vectors[1] is None
    assert 1 in result.failures
    assert result.failed_count == 1


@pytest.mark.asyncio
async def test_fatal_errors_are_not_swallowed(embedder, embed_client):
    embed_client.fatal = True
    with pytest.raises(EmbedError) as exc_info:
        await embedder.do_embed_batch(["text"])
    assert exc_info.value.kind is EmbedErrorKind.FATAL
