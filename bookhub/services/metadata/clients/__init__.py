"""Provider clients for external book data APIs."""

from .base import BaseProviderClient
from .google_books import GoogleBooksClient
from .nyt import NytBooksClient
from .openlibrary import OpenLibraryClient
from .registry import ProviderRegistry

__all__ = [
    "BaseProviderClient",
    "GoogleBooksClient",
    "NytBooksClient",
    "OpenLibraryClient",
    "ProviderRegistry",
]
