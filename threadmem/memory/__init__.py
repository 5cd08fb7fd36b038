"""Conversation memory: compaction processors, weighted reranking and adapters."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .chroma_index import ChromaVectorIndex
    from .flow import ConversationFlowPreserver
    from .importance import ImportanceScorer
    from .llm_scorer import LiteLLMScoringModel
    from .pipeline import MemoryPipeline
    from .pruner import ContextPruner
    from .redundancy import RedundancyFilter
    from .reranker import WeightedReranker
    from .sentence_embeddings import SentenceEmbeddingProvider
    from .sqlite_store import SQLiteMessageStore
    from .token_limiter import TokenLimiter
    from .tool_filter import ToolCallFilter
    from .topics import TopicSegmenter
    from .types import Candidate, Message, RerankedResult, Role, ScoredMessage, Thread

_MODULE_LOCKS = {
    "MemoryPipeline": ".pipeline",
    "ImportanceScorer": ".importance",
    "RedundancyFilter": ".redundancy",
    "ContextPruner": ".pruner",
    "ConversationFlowPreserver": ".flow",
    "TopicSegmenter": ".topics",
    "WeightedReranker": ".reranker",
    "TokenLimiter": ".token_limiter",
    "ToolCallFilter": ".tool_filter",
    "SQLiteMessageStore": ".sqlite_store",
    "ChromaVectorIndex": ".chroma_index",
    "SentenceEmbeddingProvider": ".sentence_embeddings",
    "LiteLLMScoringModel": ".llm_scorer",
    "Message": ".types",
    "Role": ".types",
    "ScoredMessage": ".types",
    "Thread": ".types",
    "Candidate": ".types",
    "RerankedResult": ".types",
}

__all__ = list(_MODULE_LOCKS.keys())


def __getattr__(name: str):
    if name in _MODULE_LOCKS:
        import importlib
        module_path = _MODULE_LOCKS[name]
        module = importlib.import_module(module_path, __name__)
        return getattr(module, name)
    raise AttributeError(f"module {__name__} has no attribute {name}")


def __dir__():
    return __all__
