"""
Book Identification Module

Enriches detected and recommended books with catalog metadata.
"""

from shelfscanner.identification.metadata_enricher import (
    MetadataEnricher,
    BookMetadata,
    GoogleBooksClient,
    OpenLibraryClient,
    clean_isbn,
)

__all__ = [
    "MetadataEnricher",
    "BookMetadata",
    "GoogleBooksClient",
    "OpenLibraryClient",
    "clean_isbn",
]
