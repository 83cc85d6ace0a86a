"""
Prompt assembly for grounded answers.

The context block lists the retrieved chunks in retrieval order, each
prefixed with its source, separated by blank lines. Oversized prompts are
either rejected or trimmed by dropping the lowest-scored chunks first,
depending on the configured policy; nothing is cut silently.
"""
import logging
from typing import List, Optional

from .data_models import RetrievalResult
from .errors import ContextTooLargeError

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE = """Answer the question based on the following context:

Context: {context}

Question: {question}

Answer:"""

TRUNCATION_POLICIES = ('error', 'drop_lowest')


class PromptAssembler:
    """Renders the question and retrieved context into a prompt."""

    def __init__(
        self,
        template: str = DEFAULT_TEMPLATE,
        max_prompt_chars: Optional[int] = None,
        truncation: str = "error"
    ):
        """
        Initialize the assembler.

        Args:
            template: Prompt template with ``{context}`` and ``{question}`` slots
            max_prompt_chars: Size limit of the rendered prompt (None for no limit)
            truncation: 'error' to raise, 'drop_lowest' to drop lowest-scored chunks
        """
        for slot in ('{context}', '{question}'):
            if slot not in template:
                raise ValueError(f"Prompt template is missing the {slot} slot")
        if truncation not in TRUNCATION_POLICIES:
            raise ValueError(f"Unknown truncation policy: {truncation}. Choose from {TRUNCATION_POLICIES}")

        self.template = template
        self.max_prompt_chars = max_prompt_chars
        self.truncation = truncation

    @staticmethod
    def format_context(results: List[RetrievalResult]) -> str:
        """Format retrieval results as the context block."""
        return "\n\n".join(f"Source: {r.source}\n{r.text}" for r in results)

    def _render(self, question: str, results: List[RetrievalResult]) -> str:
        return self.template.format(context=self.format_context(results), question=question)

    def _fits(self, prompt: str) -> bool:
        return self.max_prompt_chars is None or len(prompt) <= self.max_prompt_chars

    def select(self, question: str, results: List[RetrievalResult]) -> List[RetrievalResult]:
        """
        The results that go into the prompt under the truncation policy.

        Raises:
            ContextTooLargeError: If the prompt cannot be made to fit
        """
        prompt = self._render(question, results)
        if self._fits(prompt):
            return list(results)

        if self.truncation == 'error':
            raise ContextTooLargeError(prompt_chars=len(prompt), limit=self.max_prompt_chars)

        kept = list(results)
        while kept:
            lowest = min(range(len(kept)), key=lambda i: (kept[i].score, -i))
            kept.pop(lowest)
            prompt = self._render(question, kept)
            if self._fits(prompt):
                logger.warning(
                    "Dropped %d of %d context chunks to fit %d characters",
                    len(results) - len(kept), len(results), self.max_prompt_chars
                )
                return kept

        raise ContextTooLargeError(prompt_chars=len(prompt), limit=self.max_prompt_chars)

    def render(self, question: str, results: List[RetrievalResult]) -> str:
        """
        Render the prompt for a question and its retrieved context.

        Args:
            question: The user question, inserted verbatim
            results: Retrieved chunks, in retrieval order

        Returns:
            The complete prompt
        """
        return self._render(question, self.select(question, results))
