"""Crawl Index — turns crawler output into persisted FAISS vector indexes."""
