import pytest

from bookhub.config_manager import MAX_CACHED_RECOMMENDATIONS
from bookhub.services.metadata.book import (
    Book,
    CollectionAssignment,
    ExternalCover,
    InternalCover,
    Qualifier,
    QualifierKind,
    best_image_link,
    book_from_aggregate,
    canonical_book_id,
    classify_cover,
)
from bookhub.services.metadata.mappers import GoogleBooksMapper
from bookhub.services.metadata.types import MetadataSource

from tests.helpers.metadata_fakes import DUNE_ISBN13, google_volume

pytestmark = pytest.mark.metadata


class TestIdentity:
    """Books compare and hash by id alone."""

    def test_same_id_different_titles_are_equal(self) -> None:
        first = Book(id="b-1", title="Dune")
        second = Book(id="b-1", title="Dune Messiah")

        assert first == second
        assert hash(first) == hash(second)
        assert len({first, second}) == 1

    def test_different_ids_are_not_equal(self) -> None:
        assert Book(id="b-1", title="Dune") != Book(id="b-2", title="Dune")

    def test_canonical_id_is_stable_per_source(self) -> None:
        google = canonical_book_id(MetadataSource.GOOGLE_BOOKS, "abc")
        assert google == canonical_book_id(MetadataSource.GOOGLE_BOOKS, "abc")
        assert google != canonical_book_id(MetadataSource.OPENLIBRARY, "abc")


class TestCovers:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("https://bucket.s3.amazonaws.com/covers/1.jpg", InternalCover("https://bucket.s3.amazonaws.com/covers/1.jpg")),
            ("https://books.sfo3.digitaloceanspaces.com/c.jpg", InternalCover("https://books.sfo3.digitaloceanspaces.com/c.jpg")),
            ("covers/abc.jpg", InternalCover("covers/abc.jpg")),
            ("https://books.google.com/c.jpg", ExternalCover("https://books.google.com/c.jpg")),
            ("   ", None),
            (None, None),
        ],
    )
    def test_classification(self, value, expected) -> None:
        assert classify_cover(value) == expected

    def test_set_cover_routes_to_the_matching_field(self) -> None:
        book = Book(id="b-1", title="Dune")

        book.set_cover("https://covers.openlibrary.org/b/id/1-L.jpg")
        book.set_cover("covers/dune.jpg")
        book.set_cover(None)

        assert book.external_cover_url == "https://covers.openlibrary.org/b/id/1-L.jpg"
        assert book.internal_cover_path == "covers/dune.jpg"
        assert book.cover == InternalCover("covers/dune.jpg")
        assert book.cover_url == "covers/dune.jpg"

    def test_best_image_link_prefers_larger_tiers(self) -> None:
        assert best_image_link({"thumbnail": "t", "large": "l"}) == "l"
        assert best_image_link({"custom": "c"}) == "c"
        assert best_image_link({}) is None


class TestRecommendations:
    def test_new_ids_come_first_without_duplicates_or_self(self) -> None:
        book = Book(id="b-1", title="Dune", cached_recommendation_ids=["b-2", "b-3"])

        book.add_recommendation_ids(["b-4", "b-2", "b-1", ""])

        assert book.cached_recommendation_ids == ["b-4", "b-2", "b-3"]

    def test_list_is_capped(self) -> None:
        book = Book(id="b-1", title="Dune")

        book.add_recommendation_ids(f"r-{index}" for index in range(MAX_CACHED_RECOMMENDATIONS + 5))

        assert len(book.cached_recommendation_ids) == MAX_CACHED_RECOMMENDATIONS
        assert book.cached_recommendation_ids[0] == "r-0"


class TestSerialization:
    def test_round_trip_keeps_qualifiers_and_collections(self) -> None:
        book = book_from_aggregate(GoogleBooksMapper().map(google_volume()))
        book.add_qualifier(Qualifier(QualifierKind.RECOMMENDED, {"score": 0.9}))
        book.add_collection(CollectionAssignment("nyt:fiction", name="Fiction", rank=3))
        book.extra_qualifiers["staff_pick"] = True

        restored = Book.from_dict(book.to_dict())

        assert restored.to_dict() == book.to_dict()
        assert restored.qualifiers[QualifierKind.RECOMMENDED].payload == {"score": 0.9}

    def test_unknown_qualifier_kinds_are_kept_as_extras(self) -> None:
        book = Book.from_dict(
            {"id": "b-1", "title": "Dune", "qualifiers": [{"kind": "award", "payload": {"name": "Hugo"}}]}
        )

        assert book.qualifiers == {}
        assert book.extra_qualifiers == {"award": {"name": "Hugo"}}

    def test_nyt_fields_become_a_bestseller_qualifier(self) -> None:
        book = Book.from_dict({"id": "b-1", "title": "Dune", "nyt_rank": 1, "nyt_weeks_on_list": 10})

        assert book.qualifiers[QualifierKind.NYT_BESTSELLER].payload == {"rank": 1, "weeks_on_list": 10}

    @pytest.mark.parametrize("payload", [[], {"title": "x"}, {"id": "  "}])
    def test_non_book_payloads_raise(self, payload) -> None:
        with pytest.raises((TypeError, KeyError, ValueError)):
            Book.from_dict(payload)


def test_book_from_aggregate() -> None:
    aggregate = GoogleBooksMapper().map(google_volume())

    book = book_from_aggregate(aggregate)

    assert book.id == canonical_book_id(MetadataSource.GOOGLE_BOOKS, "abc")
    assert book.isbn13 == DUNE_ISBN13
    assert book.slug == "dune-frank-herbert"
    assert book.external_id_for(MetadataSource.GOOGLE_BOOKS) == "abc"
    assert book.external_id_for(MetadataSource.NYT) is None
    assert book.contributing_sources == [MetadataSource.GOOGLE_BOOKS]
    assert isinstance(book.cover, ExternalCover)
    assert book.external_cover_url.startswith("https://books.google.com/")
