"""Tests for RAG prompt assembly."""
from nanorag.rag.prompt_builder import (
    DEFAULT_SYSTEM_PROMPT,
    build_prompt,
    distinct_sources,
    format_context,
)
from nanorag.rag.vector_store import ChunkMetadata, DocumentChunk, SearchResult


def _result(text: str, source: str, score: float = 0.8, chunk_id: int = 0) -> SearchResult:
    chunk = DocumentChunk(id=chunk_id, text=text, metadata=ChunkMetadata(source=source, timestamp=0))
    return SearchResult(chunk=chunk, score=score)


# ---------------------------------------------------------------------------
# format_context
# ---------------------------------------------------------------------------

class TestFormatContext:
    def test_single_block(self):
        assert format_context([_result("Paris is in France.", "geo")]) == (
            "[Source: geo]\nParis is in France."
        )

    def test_blocks_keep_given_order(self):
        context = format_context([_result("first", "a"), _result("second", "b")])
        assert context == "[Source: a]\nfirst\n\n[Source: b]\nsecond"

    def test_empty(self):
        assert format_context([]) == ""


# ---------------------------------------------------------------------------
# build_prompt
# ---------------------------------------------------------------------------

class TestBuildPrompt:
    def test_full_layout(self):
        prompt = build_prompt(
            "Where is Paris?",
            [_result("Paris is in France.", "geo")],
            system_prompt="Be brief.",
        )
        assert prompt == (
            "SYSTEM:\nBe brief.\n\n"
            "CONTEXT:\n[Source: geo]\nParis is in France.\n\n"
            "USER:\nWhere is Paris?\n\n"
            "ASSISTANT:"
        )

    def test_context_omitted_without_results(self):
        prompt = build_prompt("Hi there", [], system_prompt="Be brief.")
        assert "CONTEXT:" not in prompt
        assert prompt == "SYSTEM:\nBe brief.\n\nUSER:\nHi there\n\nASSISTANT:"

    def test_default_system_prompt(self):
        prompt = build_prompt("question")
        assert prompt.startswith(f"SYSTEM:\n{DEFAULT_SYSTEM_PROMPT}\n\n")

    def test_blank_system_prompt_uses_default(self):
        assert DEFAULT_SYSTEM_PROMPT in build_prompt("question", system_prompt="")

    def test_ends_with_open_assistant_turn(self):
        assert build_prompt("q", [_result("t", "s")]).endswith("USER:\nq\n\nASSISTANT:")

    def test_section_order(self):
        prompt = build_prompt("q", [_result("t", "s")])
        positions = [prompt.index(tag) for tag in ("SYSTEM:", "CONTEXT:", "USER:", "ASSISTANT:")]
        assert positions == sorted(positions)


class TestDistinctSources:
    def test_first_seen_order(self):
        results = [_result("1", "b"), _result("2", "a"), _result("3", "b")]
        assert distinct_sources(results) == ["b", "a"]
