"""Vector store abstractions and implementations."""

from memory.store import InMemoryVectorStore, SupabaseVectorStore, VectorStore

__all__ = ["InMemoryVectorStore", "SupabaseVectorStore", "VectorStore"]
