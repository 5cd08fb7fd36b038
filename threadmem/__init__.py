"""threadmem - conversation memory compaction and reranked recall."""

__version__ = "0.1.0"
__logo__ = "🧵"
