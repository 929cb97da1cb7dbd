"""
Answer generation from retrieved passages.

The answer generator is a boundary capability: (query, passages) → answer.
OpenAIAnswerGenerator "stuffs" the passages into a single prompt, trimmed to
a token budget, and asks a chat model to answer from that context only.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

import tiktoken
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from .config import AnswerConfig
from .errors import ConfigurationError
from .models import RetrievedPassage

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "Use the following pieces of context to answer the question at the end. "
    "If you don't know the answer, just say that you don't know, don't try to make up an answer. "
    "Cite sources by their [n] marker when you use them."
)


class IAnswerGenerator(ABC):
    """Interface for answer generation."""

    @abstractmethod
    async def generate_answer(self, query: str, passages: List[RetrievedPassage]) -> str:
        """Answer query using only the given passages."""
        pass


def build_context(
    passages: List[RetrievedPassage],
    max_tokens: int,
    encoding: Optional[tiktoken.Encoding] = None,
) -> str:
    """
    Format passages as numbered context blocks within a token budget.

    Passages are taken in retrieval order; the first passage that would
    exceed the budget stops the context.
    """
    context_parts = []
    total_tokens = 0

    for idx, passage in enumerate(passages, 1):
        text = passage.chunk.content
        # Rough estimate when no tokenizer is given: 1 token ≈ 4 characters
        chunk_tokens = len(encoding.encode(text)) if encoding else len(text) // 4

        if context_parts and total_tokens + chunk_tokens > max_tokens:
            logger.info(f"Token budget reached, stopping at {idx - 1} passages")
            break

        context_parts.append(f"[{idx}] (source: {passage.chunk.source_label})\n{text}\n")
        total_tokens += chunk_tokens

    return "\n".join(context_parts)


class OpenAIAnswerGenerator(IAnswerGenerator):
    """Chat-model answer generator (temperature 0 by default)."""

    def __init__(self, config: AnswerConfig, llm: Optional[ChatOpenAI] = None):
        self.config = config
        if llm is None:
            if not config.api_key:
                raise ConfigurationError("OPENAI_API_KEY is required for answer generation")
            llm = ChatOpenAI(
                model=config.model_name,
                temperature=config.temperature,
                openai_api_key=config.api_key,
                base_url=config.base_url,
            )
        self.llm = llm
        self.encoding = tiktoken.get_encoding("cl100k_base")

        logger.info(f"Initialized answer generator with model: {config.model_name}")

    async def generate_answer(self, query: str, passages: List[RetrievedPassage]) -> str:
        context = build_context(passages, self.config.max_context_tokens, self.encoding)
        messages = [
            SystemMessage(content=SYSTEM_PROMPT),
            HumanMessage(content=f"Context:\n{context}\n\nQuestion: {query}\nHelpful Answer:"),
        ]
        response = await self.llm.ainvoke(messages)
        return str(response.content).strip()
