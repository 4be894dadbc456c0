"""
Community skills: catalog, locators and fetching.
"""

from .catalog import CatalogManager, InstallResult, SearchResults, tree_digest
from .fetcher import Fetcher, GitFetcher, TransientFetchError
from .locator import SourceLocator, looks_like_locator, parse_locator

__all__ = [
    "CatalogManager",
    "Fetcher",
    "GitFetcher",
    "InstallResult",
    "SearchResults",
    "SourceLocator",
    "TransientFetchError",
    "looks_like_locator",
    "parse_locator",
    "tree_digest",
]
