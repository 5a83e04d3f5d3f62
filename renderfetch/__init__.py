"""
renderfetch - browser-rendered fetching for crawlers.

Fetches URLs through a real browser engine (Playwright) and returns the
rendered page or the downloaded file to the crawler.
"""

__version__ = "0.1.0"
