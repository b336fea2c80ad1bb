"""Context assembler: format retrieval results as grounding text for an LLM prompt.

Results are rendered in ranking order as numbered reference blocks::

    [Reference 1] Source: <document title>
    <chunk content>

A token budget (4 characters ≈ 1 token) stops assembly before the block that
would exceed it.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from docent.ingest.semantic import count_tokens
from docent.rag.search import RetrievalResult

_GROUNDING_TEMPLATE = """\
{base_prompt}

You now have access to relevant information from the knowledge base. \
The following references relate to the user's question:

{context}

Guidelines:
1. Prefer the information in the references when answering.
2. If the references are not sufficient, supplement them with your own knowledge.
3. Answer naturally; there is no need to cite each reference.
4. Ignore references that are unrelated to the question."""


@dataclass
class AssembledContext:
    text: str = ""
    results: list[RetrievalResult] = field(default_factory=list)
    total_tokens: int = 0


def format_reference(number: int, result: RetrievalResult) -> str:
    return f"[Reference {number}] Source: {result.document_title}\n{result.content}"


def assemble_context(
    results: Sequence[RetrievalResult], token_budget: int | None = None
) -> AssembledContext:
    """Render *results* as numbered reference blocks.

    Args:
        results: Ranked retrieval results, best first.
        token_budget: Maximum approximate tokens of the rendered text; None for
            no limit.

    Returns:
        AssembledContext with the rendered text and the results it includes.
    """
    blocks: list[str] = []
    included: list[RetrievalResult] = []
    total = 0
    for result in results:
        block = format_reference(len(blocks) + 1, result)
        tokens = count_tokens(block)
        if token_budget is not None and total + tokens > token_budget:
            break
        blocks.append(block)
        included.append(result)
        total += tokens
    return AssembledContext(text="\n\n".join(blocks), results=included, total_tokens=total)


def build_grounded_system_prompt(
    base_prompt: str,
    results: Sequence[RetrievalResult],
    token_budget: int | None = None,
) -> str:
    """Append the assembled references and usage guidance to *base_prompt*.

    With no results (or none fitting the budget) *base_prompt* is returned unchanged.
    """
    context = assemble_context(results, token_budget)
    if not context.results:
        return base_prompt
    return _GROUNDING_TEMPLATE.format(base_prompt=base_prompt, context=context.text).strip()
