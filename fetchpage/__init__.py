"""fetchpage: fetch readable web page content as Markdown.

Decides per URL between a plain HTTP request and a full browser render,
reuses cookies captured by the companion browser extension and converts the
result to Markdown.

Usage:
    from fetchpage import fetchpage

    text = await fetchpage("https://example.com/article")
"""

__version__ = "1.0.0"

from .fetch.orchestrator import FetchOrchestrator, fetchpage

__all__ = ['fetchpage', 'FetchOrchestrator', '__version__']
