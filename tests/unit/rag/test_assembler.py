"""Tests for context assembly and grounded prompts."""

from __future__ import annotations

from docent.rag.assembler import (
    assemble_context,
    build_grounded_system_prompt,
    format_reference,
)
from docent.rag.search import RetrievalResult


def _result(n: int, content: str = "chunk text", title: str = "Manual") -> RetrievalResult:
    return RetrievalResult(
        chunk_id=n,
        document_id=1,
        document_title=title,
        source_path="/manual.pdf",
        content=content,
        similarity=0.8,
        chunk_index=n,
        score=0.8,
    )


# ------------------------------------------------------------------
# format_reference / assemble_context
# ------------------------------------------------------------------


def test_format_reference():
    assert format_reference(2, _result(1, "Press reset.", "Quick start")) == (
        "[Reference 2] Source: Quick start\nPress reset."
    )


def test_assemble_numbers_blocks_in_order():
    ctx = assemble_context([_result(1, "first"), _result(2, "second")])
    assert ctx.text == (
        "[Reference 1] Source: Manual\nfirst\n\n[Reference 2] Source: Manual\nsecond"
    )
    assert [r.chunk_id for r in ctx.results] == [1, 2]
    assert ctx.total_tokens > 0


def test_assemble_empty():
    ctx = assemble_context([])
    assert ctx.text == ""
    assert ctx.results == []
    assert ctx.total_tokens == 0


def test_token_budget_stops_before_overflow():
    results = [_result(i, "x" * 200) for i in range(3)]
    one_block = assemble_context(results[:1]).total_tokens

    ctx = assemble_context(results, token_budget=one_block * 2)
    assert len(ctx.results) == 2
    assert ctx.total_tokens <= one_block * 2

    assert assemble_context(results, token_budget=one_block - 1).results == []


# ------------------------------------------------------------------
# build_grounded_system_prompt
# ------------------------------------------------------------------


def test_grounded_prompt_includes_base_references_and_guidance():
    prompt = build_grounded_system_prompt(
        "You are a helpful assistant.", [_result(1, "The warranty lasts two years.")]
    )
    assert prompt.startswith("You are a helpful assistant.")
    assert "[Reference 1] Source: Manual\nThe warranty lasts two years." in prompt
    assert "Guidelines:" in prompt


def test_grounded_prompt_without_results_is_base_prompt():
    assert build_grounded_system_prompt("Base.", []) == "Base."


def test_grounded_prompt_when_nothing_fits_budget():
    assert build_grounded_system_prompt("Base.", [_result(1, "x" * 400)], token_budget=5) == "Base."
