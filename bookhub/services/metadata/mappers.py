"""Source mappers: provider JSON to :class:`NormalizedBookAggregate`.

Every mapper is a pure function of its input. A payload that is not a
mapping, is empty, or has no usable title maps to ``None``; callers skip
that source rather than treating it as an error.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple

from .text import (
    build_slug_base,
    clean_quoted_text,
    clean_text,
    coerce_positive_int,
    normalize_isbn,
    parse_published_date,
    unique_strings,
    upgrade_image_url,
)
from .types import Dimensions, ExternalIdentifiers, MetadataSource, NormalizedBookAggregate

ISBN_10_TAG = "ISBN_10"
ISBN_13_TAG = "ISBN_13"


class SourceMapper(Protocol):
    source: MetadataSource

    def map(self, raw: Any) -> Optional[NormalizedBookAggregate]:
        ...


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, list):
        return value
    if value is None:
        return []
    return [value]


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_bool(value: Any) -> Optional[bool]:
    return value if isinstance(value, bool) else None


def _names(values: Iterable[Any]) -> List[str]:
    """Accept plain strings or ``{"name": ...}`` objects."""
    names: List[Any] = []
    for value in values:
        if isinstance(value, Mapping):
            names.append(value.get("name"))
        else:
            names.append(value)
    return unique_strings(names)


def _pick_isbn(values: Iterable[str]) -> Optional[str]:
    candidates = sorted({value for value in values if value})
    return candidates[0] if candidates else None


def _image_links(raw_links: Mapping[str, Any]) -> Dict[str, str]:
    links: Dict[str, str] = {}
    for tier, url in raw_links.items():
        upgraded = upgrade_image_url(url)
        if upgraded:
            links[str(tier)] = upgraded
    return links


def extract_industry_identifiers(
    entries: Iterable[Any],
) -> Tuple[Tuple[str, str], ...]:
    """Return ``(type, value)`` pairs whose type tag is exactly an ISBN tag.

    Classification never looks at the value's length, so a mistagged or
    unknown type is dropped instead of being filed as the other ISBN kind.
    """
    pairs: List[Tuple[str, str]] = []
    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        tag = entry.get("type")
        if not isinstance(tag, str):
            continue
        tag = tag.strip().upper()
        if tag not in (ISBN_10_TAG, ISBN_13_TAG):
            continue
        value = normalize_isbn(entry.get("identifier"))
        if value and (tag, value) not in pairs:
            pairs.append((tag, value))
    return tuple(pairs)


def _isbns_of(pairs: Iterable[Tuple[str, str]], tag: str) -> List[str]:
    return [value for kind, value in pairs if kind == tag]


class GoogleBooksMapper:
    """Maps a Google Books ``volume`` resource."""

    source = MetadataSource.GOOGLE_BOOKS

    def map(self, raw: Any) -> Optional[NormalizedBookAggregate]:
        if not isinstance(raw, Mapping) or not raw:
            return None
        info = raw.get("volumeInfo")
        if not isinstance(info, Mapping):
            return None
        title = clean_quoted_text(info.get("title"))
        if title is None:
            return None

        authors = unique_strings(_as_list(info.get("authors")))
        identifiers = extract_industry_identifiers(_as_list(info.get("industryIdentifiers")))
        sale = _as_mapping(raw.get("saleInfo"))
        access = _as_mapping(raw.get("accessInfo"))
        price = _as_mapping(sale.get("listPrice")) or _as_mapping(sale.get("retailPrice"))
        dimensions = Dimensions.from_dict(_as_mapping(info.get("dimensions")))

        external = ExternalIdentifiers(
            source=self.source,
            external_id=clean_text(raw.get("id")),
            info_link=upgrade_image_url(info.get("infoLink")),
            preview_link=upgrade_image_url(info.get("previewLink")),
            purchase_link=clean_text(sale.get("buyLink")),
            average_rating=_as_float(info.get("averageRating")),
            ratings_count=coerce_positive_int(info.get("ratingsCount")),
            pdf_available=_as_bool(_as_mapping(access.get("pdf")).get("isAvailable")),
            epub_available=_as_bool(_as_mapping(access.get("epub")).get("isAvailable")),
            list_price=_as_float(price.get("amount")),
            currency_code=clean_text(price.get("currencyCode")),
            image_links=_image_links(_as_mapping(info.get("imageLinks"))),
        )
        return NormalizedBookAggregate(
            title=title,
            identifiers=external,
            subtitle=clean_quoted_text(info.get("subtitle")),
            description=clean_text(info.get("description")),
            authors=tuple(authors),
            categories=tuple(unique_strings(_as_list(info.get("categories")))),
            isbn10=_pick_isbn(_isbns_of(identifiers, ISBN_10_TAG)),
            isbn13=_pick_isbn(_isbns_of(identifiers, ISBN_13_TAG)),
            industry_identifiers=identifiers,
            publisher=clean_quoted_text(info.get("publisher")),
            published_date=parse_published_date(info.get("publishedDate")),
            page_count=coerce_positive_int(info.get("pageCount")),
            language=clean_text(info.get("language")),
            dimensions=dimensions,
            slug_base=build_slug_base(title, authors),
            raw=raw,
        )


def _openlibrary_key_id(key: Any) -> Optional[str]:
    text = clean_text(key)
    if text is None:
        return None
    return text.rstrip("/").rsplit("/", 1)[-1] or None


class OpenLibraryMapper:
    """Maps an OpenLibrary ``jscmd=data`` book record or a ``search.json`` doc."""

    source = MetadataSource.OPENLIBRARY

    def map(self, raw: Any) -> Optional[NormalizedBookAggregate]:
        if not isinstance(raw, Mapping) or not raw:
            return None
        title = clean_quoted_text(raw.get("title"))
        if title is None:
            return None
        if "author_name" in raw or "cover_i" in raw or "isbn" in raw:
            return self._map_search_doc(raw, title)
        return self._map_book_record(raw, title)

    def _map_book_record(self, raw: Mapping[str, Any], title: str) -> NormalizedBookAggregate:
        authors = _names(_as_list(raw.get("authors")))
        ids = _as_mapping(raw.get("identifiers"))
        pairs = tuple(
            [(ISBN_10_TAG, value) for value in _normalized_isbns(ids.get("isbn_10") or raw.get("isbn_10"))]
            + [(ISBN_13_TAG, value) for value in _normalized_isbns(ids.get("isbn_13") or raw.get("isbn_13"))]
        )
        publishers = _names(_as_list(raw.get("publishers")))
        description = raw.get("description")
        if isinstance(description, Mapping):
            description = description.get("value")
        olid = _first(_as_list(ids.get("openlibrary"))) or _openlibrary_key_id(raw.get("key"))

        external = ExternalIdentifiers(
            source=self.source,
            external_id=clean_text(olid),
            info_link=upgrade_image_url(raw.get("url")),
            image_links=_image_links(_as_mapping(raw.get("cover"))),
        )
        return NormalizedBookAggregate(
            title=title,
            identifiers=external,
            subtitle=clean_quoted_text(raw.get("subtitle")),
            description=clean_text(description),
            authors=tuple(authors),
            categories=tuple(_names(_as_list(raw.get("subjects")))),
            isbn10=_pick_isbn(_isbns_of(pairs, ISBN_10_TAG)),
            isbn13=_pick_isbn(_isbns_of(pairs, ISBN_13_TAG)),
            industry_identifiers=pairs,
            publisher=clean_quoted_text(publishers[0]) if publishers else None,
            published_date=parse_published_date(raw.get("publish_date")),
            page_count=coerce_positive_int(raw.get("number_of_pages")),
            slug_base=build_slug_base(title, authors),
            raw=raw,
        )

    def _map_search_doc(self, raw: Mapping[str, Any], title: str) -> NormalizedBookAggregate:
        authors = unique_strings(_as_list(raw.get("author_name")))
        pairs: List[Tuple[str, str]] = []
        for value in _normalized_isbns(raw.get("isbn")):
            # search docs list ISBNs untagged; only the two valid lengths are kept
            if len(value) == 10:
                pairs.append((ISBN_10_TAG, value))
            elif len(value) == 13:
                pairs.append((ISBN_13_TAG, value))
        image_links: Dict[str, str] = {}
        cover_id = raw.get("cover_i")
        if isinstance(cover_id, int) and not isinstance(cover_id, bool):
            for tier, size in (("small", "S"), ("medium", "M"), ("large", "L")):
                image_links[tier] = f"https://covers.openlibrary.org/b/id/{cover_id}-{size}.jpg"
        publishers = unique_strings(_as_list(raw.get("publisher")))
        languages = unique_strings(_as_list(raw.get("language")))
        key = clean_text(raw.get("key"))

        external = ExternalIdentifiers(
            source=self.source,
            external_id=_openlibrary_key_id(key),
            info_link=f"https://openlibrary.org{key}" if key and key.startswith("/") else None,
            average_rating=_as_float(raw.get("ratings_average")),
            ratings_count=coerce_positive_int(raw.get("ratings_count")),
            image_links=image_links,
        )
        first_year = raw.get("first_publish_year")
        return NormalizedBookAggregate(
            title=title,
            identifiers=external,
            subtitle=clean_quoted_text(raw.get("subtitle")),
            authors=tuple(authors),
            categories=tuple(unique_strings(_as_list(raw.get("subject"))[:20])),
            isbn10=_pick_isbn(_isbns_of(pairs, ISBN_10_TAG)),
            isbn13=_pick_isbn(_isbns_of(pairs, ISBN_13_TAG)),
            industry_identifiers=tuple(pairs),
            publisher=clean_quoted_text(publishers[0]) if publishers else None,
            published_date=parse_published_date(str(first_year)) if first_year else None,
            page_count=coerce_positive_int(raw.get("number_of_pages_median")),
            language=languages[0] if languages else None,
            slug_base=build_slug_base(title, authors),
            raw=raw,
        )


def _first(values: List[Any]) -> Optional[Any]:
    return values[0] if values else None


def _normalized_isbns(values: Any) -> List[str]:
    result: List[str] = []
    for value in _as_list(values):
        normalized = normalize_isbn(value)
        if normalized and normalized not in result:
            result.append(normalized)
    return result


def _nyt_title(value: Any) -> Optional[str]:
    title = clean_quoted_text(value)
    if title and title.isupper():
        return title.title()
    return title


class NytBestsellerMapper:
    """Maps one book entry of a NYT best-sellers list."""

    source = MetadataSource.NYT

    def map(self, raw: Any) -> Optional[NormalizedBookAggregate]:
        if not isinstance(raw, Mapping) or not raw:
            return None
        title = _nyt_title(raw.get("title") or raw.get("book_title"))
        if title is None:
            return None
        author = clean_text(raw.get("author") or raw.get("book_author"))
        authors = [name.strip() for name in author.replace(" and ", ",").split(",")] if author else []
        authors = unique_strings(authors)

        pairs: List[Tuple[str, str]] = []
        for tag, key in ((ISBN_10_TAG, "primary_isbn10"), (ISBN_13_TAG, "primary_isbn13")):
            value = normalize_isbn(raw.get(key))
            if value:
                pairs.append((tag, value))
        for entry in _as_list(raw.get("isbns")):
            entry = _as_mapping(entry)
            for tag, key in ((ISBN_10_TAG, "isbn10"), (ISBN_13_TAG, "isbn13")):
                value = normalize_isbn(entry.get(key))
                if value and (tag, value) not in pairs:
                    pairs.append((tag, value))

        image = upgrade_image_url(raw.get("book_image"))
        external = ExternalIdentifiers(
            source=self.source,
            external_id=normalize_isbn(raw.get("primary_isbn13")) or normalize_isbn(raw.get("primary_isbn10")),
            purchase_link=clean_text(raw.get("amazon_product_url")),
            image_links={"large": image} if image else {},
        )
        return NormalizedBookAggregate(
            title=title,
            identifiers=external,
            description=clean_text(raw.get("description")),
            authors=tuple(authors),
            isbn10=_pick_isbn(_isbns_of(pairs, ISBN_10_TAG)),
            isbn13=_pick_isbn(_isbns_of(pairs, ISBN_13_TAG)),
            industry_identifiers=tuple(pairs),
            publisher=clean_quoted_text(raw.get("publisher")),
            slug_base=build_slug_base(title, authors),
            raw=raw,
        )


MAPPERS: Dict[MetadataSource, SourceMapper] = {
    MetadataSource.GOOGLE_BOOKS: GoogleBooksMapper(),
    MetadataSource.OPENLIBRARY: OpenLibraryMapper(),
    MetadataSource.NYT: NytBestsellerMapper(),
}


def detect_source(raw: Any) -> MetadataSource:
    """Guess which provider produced ``raw`` from its characteristic fields."""
    if not isinstance(raw, Mapping):
        return MetadataSource.UNKNOWN
    if "volumeInfo" in raw:
        return MetadataSource.GOOGLE_BOOKS
    key = raw.get("key")
    if isinstance(key, str) and ("/works/OL" in key or "/books/OL" in key):
        return MetadataSource.OPENLIBRARY
    if any(field in raw for field in ("isbn_10", "isbn_13", "author_name", "number_of_pages")):
        return MetadataSource.OPENLIBRARY
    if any(field in raw for field in ("rank", "weeks_on_list", "primary_isbn13", "primary_isbn10")):
        return MetadataSource.NYT
    return MetadataSource.UNKNOWN


def map_any(raw: Any) -> Optional[NormalizedBookAggregate]:
    """Map a payload with whichever mapper matches its detected source."""
    mapper = MAPPERS.get(detect_source(raw))
    if mapper is None:
        return None
    return mapper.map(raw)


__all__ = [
    "GoogleBooksMapper",
    "ISBN_10_TAG",
    "ISBN_13_TAG",
    "MAPPERS",
    "NytBestsellerMapper",
    "OpenLibraryMapper",
    "SourceMapper",
    "detect_source",
    "extract_industry_identifiers",
    "map_any",
]
