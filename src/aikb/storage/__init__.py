"""Vector index backends: hosted Pinecone or a local ChromaDB collection."""

from .base import VectorStoreBase, get_vector_store, pinecone_host

__all__ = ["VectorStoreBase", "get_vector_store", "pinecone_host"]
