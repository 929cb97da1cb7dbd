"""
Vector index lifecycle for document-library question answering.

This module implements the index side of a RAG pipeline using:
- FAISS flat inner-product indexes over normalized OpenAI embeddings
- Fixed-window overlapping chunking (characters or tiktoken tokens)
- Atomic on-disk publication guarded by a filesystem lock
- Hot reload of new generations into long-running query servers

Writers (the crawler) and readers (the API) share nothing but the index
directory: the lock file and directory renames are the synchronization.
"""

__version__ = "1.0.0"
