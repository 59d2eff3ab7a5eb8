"""
Metadata Enricher

Looks up catalog metadata for a book by title/author or ISBN. Google Books is
queried first; Open Library is the fallback when Google has no match or is
down. Results are cached in memory for a few minutes.
"""

import hashlib
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

import httpx
from loguru import logger

from ..errors import EnrichmentError


@dataclass
class BookMetadata:
    """
    Book metadata from an external catalog.
    """

    title: str
    authors: list[str] = field(default_factory=list)
    isbn_10: Optional[str] = None
    isbn_13: Optional[str] = None

    # Publication info
    publisher: Optional[str] = None
    published_date: Optional[str] = None

    description: Optional[str] = None
    categories: list[str] = field(default_factory=list)
    page_count: Optional[int] = None
    language: Optional[str] = None

    # Ratings
    average_rating: Optional[float] = None
    ratings_count: Optional[int] = None

    # Links
    thumbnail: Optional[str] = None
    preview_link: Optional[str] = None
    info_link: Optional[str] = None

    # External IDs
    google_books_id: Optional[str] = None
    open_library_id: Optional[str] = None

    source: str = "unknown"

    @property
    def primary_isbn(self) -> Optional[str]:
        """Get primary ISBN (prefer ISBN-13)."""
        return self.isbn_13 or self.isbn_10

    def to_dict(self) -> dict:
        """Convert to the metadata document stored on books and recommendations."""
        return {
            "title": self.title,
            "authors": self.authors,
            "isbn_10": self.isbn_10,
            "isbn_13": self.isbn_13,
            "publisher": self.publisher,
            "published_date": self.published_date,
            "description": self.description,
            "categories": self.categories,
            "page_count": self.page_count,
            "language": self.language,
            "average_rating": self.average_rating,
            "ratings_count": self.ratings_count,
            "thumbnail": self.thumbnail,
            "preview_link": self.preview_link,
            "info_link": self.info_link,
            "google_books_id": self.google_books_id,
            "open_library_id": self.open_library_id,
            "source": self.source,
        }


def _https(url: Optional[str]) -> Optional[str]:
    if url and url.startswith("http:"):
        return "https:" + url[len("http:"):]
    return url


def clean_isbn(isbn: str) -> str:
    return re.sub(r"[^0-9Xx]", "", isbn).upper()


class GoogleBooksClient:
    """
    Client for Google Books API.

    Rate limit: 1000 requests/day without API key.
    """

    BASE_URL = "https://www.googleapis.com/books/v1"

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def _first_volume(self, query: str) -> Optional[BookMetadata]:
        client = await self._get_client()

        params = {
            "q": query,
            "maxResults": 1,
            "printType": "books",
            "langRestrict": "en",
        }
        if self.api_key:
            params["key"] = self.api_key

        try:
            response = await client.get(f"{self.BASE_URL}/volumes", params=params)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise EnrichmentError("Google Books lookup failed", detail=str(e)) from e

        items = data.get("items") or []
        if not items:
            return None
        return self._parse_volume(items[0])

    async def search_by_isbn(self, isbn: str) -> Optional[BookMetadata]:
        """Search by ISBN."""
        return await self._first_volume(f"isbn:{clean_isbn(isbn)}")

    async def search_by_title_author(
        self,
        title: str,
        author: Optional[str] = None,
    ) -> Optional[BookMetadata]:
        """Best match for title and (optionally) author."""
        query = f"intitle:{title}"
        if author:
            query += f" inauthor:{author}"
        return await self._first_volume(query)

    def _parse_volume(self, item: dict) -> Optional[BookMetadata]:
        """Parse volume data."""
        info = item.get("volumeInfo") or {}

        title = info.get("title")
        if not title:
            return None

        isbn_10 = None
        isbn_13 = None
        for identifier in info.get("industryIdentifiers", []):
            if identifier.get("type") == "ISBN_10":
                isbn_10 = identifier.get("identifier")
            elif identifier.get("type") == "ISBN_13":
                isbn_13 = identifier.get("identifier")

        images = info.get("imageLinks") or {}

        return BookMetadata(
            title=title,
            authors=info.get("authors", []),
            isbn_10=isbn_10,
            isbn_13=isbn_13,
            publisher=info.get("publisher"),
            published_date=info.get("publishedDate"),
            description=info.get("description"),
            categories=info.get("categories", []),
            page_count=info.get("pageCount"),
            language=info.get("language"),
            average_rating=info.get("averageRating"),
            ratings_count=info.get("ratingsCount"),
            thumbnail=_https(images.get("thumbnail") or images.get("smallThumbnail")),
            preview_link=_https(info.get("previewLink")),
            info_link=_https(info.get("infoLink")),
            google_books_id=item.get("id"),
            source="google_books",
        )

    async def close(self):
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None


class OpenLibraryClient:
    """
    Client for Open Library search API.

    No official rate limit, but keep request volume modest.
    """

    BASE_URL = "https://openlibrary.org"
    COVERS_URL = "https://covers.openlibrary.org"
    FIELDS = "key,title,author_name,isbn,publisher,first_publish_year,cover_i,number_of_pages_median,subject,language"

    def __init__(
        self,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.timeout = timeout
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def _first_doc(self, params: dict) -> Optional[BookMetadata]:
        client = await self._get_client()
        params = {**params, "limit": 1, "fields": self.FIELDS}

        try:
            response = await client.get(f"{self.BASE_URL}/search.json", params=params)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise EnrichmentError("Open Library lookup failed", detail=str(e)) from e

        docs = data.get("docs") or []
        if not docs:
            return None
        return self._parse_search_result(docs[0])

    async def search_by_isbn(self, isbn: str) -> Optional[BookMetadata]:
        return await self._first_doc({"isbn": clean_isbn(isbn)})

    async def search_by_title_author(
        self,
        title: str,
        author: Optional[str] = None,
    ) -> Optional[BookMetadata]:
        params = {"title": title}
        if author:
            params["author"] = author
        return await self._first_doc(params)

    def _parse_search_result(self, doc: dict) -> Optional[BookMetadata]:
        """Parse search result document."""
        title = doc.get("title")
        if not title:
            return None

        isbn_10 = None
        isbn_13 = None
        for isbn in doc.get("isbn", []):
            if len(isbn) == 10 and isbn_10 is None:
                isbn_10 = isbn
            elif len(isbn) == 13 and isbn_13 is None:
                isbn_13 = isbn

        thumbnail = None
        if doc.get("cover_i"):
            thumbnail = f"{self.COVERS_URL}/b/id/{doc['cover_i']}-M.jpg"

        key = doc.get("key", "")
        publishers = doc.get("publisher") or []
        languages = doc.get("language") or []
        first_year = doc.get("first_publish_year")

        return BookMetadata(
            title=title,
            authors=doc.get("author_name", []),
            isbn_10=isbn_10,
            isbn_13=isbn_13,
            publisher=publishers[0] if publishers else None,
            published_date=str(first_year) if first_year else None,
            categories=(doc.get("subject") or [])[:10],
            page_count=doc.get("number_of_pages_median"),
            language=languages[0] if languages else None,
            thumbnail=thumbnail,
            info_link=f"{self.BASE_URL}{key}" if key else None,
            open_library_id=key.replace("/works/", "") or None,
            source="openlibrary",
        )

    async def close(self):
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None


class MetadataEnricher:
    """
    Catalog lookup with an in-memory TTL cache.

    Cache keys are normalized (case and whitespace) title/author pairs, or the
    cleaned ISBN. An expired or absent entry triggers a normal lookup.
    """

    def __init__(
        self,
        google_api_key: Optional[str] = None,
        cache_ttl_seconds: float = 300,
        timeout: float = 10.0,
        google_books: Optional[GoogleBooksClient] = None,
        openlibrary: Optional[OpenLibraryClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize metadata enricher.

        Args:
            google_api_key: Google Books API key (optional)
            cache_ttl_seconds: Cache entry TTL
            timeout: Per-request HTTP timeout
            google_books: Preconfigured Google Books client
            openlibrary: Preconfigured Open Library client
            clock: Monotonic time source for cache expiry
        """
        self.google_books = google_books or GoogleBooksClient(api_key=google_api_key, timeout=timeout)
        self.openlibrary = openlibrary or OpenLibraryClient(timeout=timeout)
        self.cache_ttl = cache_ttl_seconds
        self._clock = clock
        self._cache: dict[str, tuple[Optional[BookMetadata], float]] = {}

        logger.info("MetadataEnricher initialized")

    async def lookup(
        self,
        title: str,
        author: Optional[str] = None,
    ) -> Optional[BookMetadata]:
        """
        Best catalog match for a title and optional author.

        Returns None when neither catalog knows the book.

        Raises:
            EnrichmentError: both catalogs failed
        """
        cache_key = self._title_key(title, author)
        hit, cached = self._get_cached(cache_key)
        if hit:
            return cached

        metadata, complete = await self._query(
            lambda source: source.search_by_title_author(title, author),
            label=f"'{title}'",
        )
        if metadata is not None or complete:
            self._set_cached(cache_key, metadata)
        return metadata

    async def lookup_isbn(self, isbn: str) -> Optional[BookMetadata]:
        """Catalog record for an ISBN."""
        cache_key = f"isbn:{clean_isbn(isbn)}"
        hit, cached = self._get_cached(cache_key)
        if hit:
            return cached

        metadata, complete = await self._query(
            lambda source: source.search_by_isbn(isbn),
            label=f"ISBN {isbn}",
        )
        if metadata is not None or complete:
            self._set_cached(cache_key, metadata)
        return metadata

    async def enrich(
        self,
        title: str,
        author: Optional[str] = None,
        isbn: Optional[str] = None,
    ) -> Optional[BookMetadata]:
        """ISBN lookup when an ISBN is known, title/author search otherwise."""
        if isbn:
            metadata = await self.lookup_isbn(isbn)
            if metadata is not None:
                return metadata
        return await self.lookup(title, author)

    async def _query(self, search, label: str) -> tuple[Optional[BookMetadata], bool]:
        """
        Try each catalog in turn.

        Returns (metadata, complete) where ``complete`` is False if any
        catalog errored; a miss is only cached when every catalog answered.
        """
        errors: list[EnrichmentError] = []

        for source in (self.google_books, self.openlibrary):
            try:
                metadata = await search(source)
            except EnrichmentError as e:
                logger.warning(f"{e.message} for {label}: {e.detail}")
                errors.append(e)
                continue
            if metadata is not None:
                return metadata, True

        if len(errors) == 2:
            raise EnrichmentError(f"All catalogs failed for {label}", detail=errors[-1].detail)
        return None, not errors

    @staticmethod
    def _title_key(title: str, author: Optional[str]) -> str:
        normalized = "|".join(
            " ".join((part or "").lower().split()) for part in (title, author)
        )
        return "title:" + hashlib.sha256(normalized.encode()).hexdigest()[:16]

    def _get_cached(self, key: str) -> tuple[bool, Optional[BookMetadata]]:
        """Return (hit, value); expired entries are evicted."""
        if key in self._cache:
            metadata, cached_at = self._cache[key]
            if self._clock() - cached_at < self.cache_ttl:
                return True, metadata
            del self._cache[key]
        return False, None

    def _set_cached(self, key: str, metadata: Optional[BookMetadata]):
        now = self._clock()
        expired = [k for k, (_, cached_at) in self._cache.items() if now - cached_at >= self.cache_ttl]
        for k in expired:
            del self._cache[k]
        self._cache[key] = (metadata, now)

    def clear_cache(self):
        self._cache.clear()

    async def close(self):
        """Close all clients."""
        await self.google_books.close()
        await self.openlibrary.close()
