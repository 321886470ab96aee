"""
Ingestion — corpus loading, chunking, and embedding.

This module turns the crawler's JSON output into LangChain documents,
splits them into overlapping chunks, and maps each chunk to a vector via
the configured embedding provider.
"""
