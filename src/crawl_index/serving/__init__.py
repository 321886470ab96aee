"""
Serving — FastAPI application for on-demand index generation.

This module exposes the corpus → index pipeline over HTTP so it can run
as a standalone container next to the crawler.
"""
