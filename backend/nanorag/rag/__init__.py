"""RAG (Retrieval-Augmented Generation) engine.

Provides a numpy-backed vector store with JSON persistence, token-bounded
text chunking, an ingestion pipeline with per-chunk embedding fallback, and
retrieval plus prompt assembly for local generation.
"""
