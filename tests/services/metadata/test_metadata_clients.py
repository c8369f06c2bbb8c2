import asyncio
import contextlib

import aiohttp
import pytest

from bookhub import observability
from bookhub.services.metadata.clients import (
    GoogleBooksClient,
    NytBooksClient,
    OpenLibraryClient,
    ProviderRegistry,
)
from bookhub.services.metadata.errors import (
    CircuitOpenError,
    ProviderRateLimited,
    ProviderUnavailable,
)
from bookhub.services.metadata.resilience import CircuitBreaker, CircuitState, RateLimiter
from bookhub.services.metadata.types import MetadataSource

from tests.helpers.metadata_fakes import (
    DUNE_ISBN13,
    FakeClock,
    FakeResponse,
    FakeSession,
    google_volume,
)

pytestmark = pytest.mark.metadata


def _google(session: FakeSession, **kwargs) -> GoogleBooksClient:
    return GoogleBooksClient(base_url="https://books.example/v1", session=session, **kwargs)


class TestGoogleBooksClient:
    def test_fetch_returns_the_volume(self) -> None:
        session = FakeSession([FakeResponse(200, google_volume())])
        client = _google(session, api_key="secret")

        payload = asyncio.run(client.fetch_by_id("abc"))

        assert payload["id"] == "abc"
        assert session.calls[0]["url"] == "https://books.example/v1/volumes/abc"
        assert session.calls[0]["params"] == {"key": "secret"}
        assert client.breaker.state is CircuitState.CLOSED

    def test_not_found_is_a_miss(self) -> None:
        client = _google(FakeSession([FakeResponse(404, {"error": "not found"})]))

        assert asyncio.run(client.fetch_by_id("missing")) is None
        assert client.breaker.state is CircuitState.CLOSED

    def test_payload_without_volume_info_is_a_miss(self) -> None:
        client = _google(FakeSession([FakeResponse(200, {"kind": "books#volume"})]))

        assert asyncio.run(client.fetch_by_id("abc")) is None

    def test_rate_limit_opens_the_breaker_and_skips_later_calls(self) -> None:
        session = FakeSession([FakeResponse(429), FakeResponse(200, google_volume())])
        client = _google(session)

        with pytest.raises(ProviderRateLimited):
            asyncio.run(client.fetch_by_id("abc"))
        with pytest.raises(CircuitOpenError):
            asyncio.run(client.fetch_by_id("abc"))

        assert len(session.calls) == 1
        assert client.breaker.state is CircuitState.OPEN
        assert observability.get_counter("provider.circuit_skipped", provider="google_books") == 1

        client.reset_breaker()

        assert client.breaker.state is CircuitState.CLOSED
        assert asyncio.run(client.fetch_by_id("abc"))["id"] == "abc"

    def test_locally_rate_limited_trial_does_not_keep_the_circuit_open(self) -> None:
        clock = FakeClock()
        breaker = CircuitBreaker("google_books", failure_threshold=1, cooldown_seconds=10, clock=clock)
        limiter = RateLimiter("google_books", requests_per_minute=1, clock=clock)
        session = FakeSession([FakeResponse(503), FakeResponse(200, google_volume())])
        client = _google(session, breaker=breaker, rate_limiter=limiter, rate_limit_wait_seconds=0)

        with pytest.raises(ProviderUnavailable):
            asyncio.run(client.fetch_by_id("abc"))
        clock.advance(11)
        with pytest.raises(ProviderRateLimited):
            asyncio.run(client.fetch_by_id("abc"))
        clock.advance(60)

        assert asyncio.run(client.fetch_by_id("abc"))["id"] == "abc"
        assert breaker.state is CircuitState.CLOSED

    def test_cancelled_trial_frees_the_half_open_slot(self) -> None:
        class HangingSession(FakeSession):
            def get(self, url, **kwargs):
                self.calls.append({"method": "GET", "url": url, **kwargs})
                return self

            async def __aenter__(self):
                await asyncio.Event().wait()

            async def __aexit__(self, *exc_info):
                return False

        clock = FakeClock()
        breaker = CircuitBreaker("google_books", failure_threshold=1, cooldown_seconds=10, clock=clock)
        breaker.record_failure("http_503")
        clock.advance(11)
        client = _google(HangingSession(), breaker=breaker)

        async def _scenario():
            task = asyncio.create_task(client.fetch_by_id("abc"))
            await asyncio.sleep(0.01)
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        asyncio.run(_scenario())

        assert breaker.state is CircuitState.HALF_OPEN
        assert breaker.allow_request() is True

    def test_server_errors_count_towards_the_threshold(self) -> None:
        session = FakeSession([FakeResponse(503), FakeResponse(500)])
        client = _google(session, breaker=CircuitBreaker("google_books", failure_threshold=2))

        for _ in range(2):
            with pytest.raises(ProviderUnavailable):
                asyncio.run(client.fetch_by_id("abc"))

        assert client.breaker.state is CircuitState.OPEN
        assert client.status()["breaker"]["last_reason"] == "http_500"

    def test_transport_errors_become_provider_unavailable(self) -> None:
        client = _google(FakeSession([aiohttp.ClientConnectionError("connection reset")]))

        with pytest.raises(ProviderUnavailable) as excinfo:
            asyncio.run(client.fetch_by_id("abc"))

        assert excinfo.value.provider == "google_books"
        assert client.breaker.status().consecutive_failures == 1

    def test_undecodable_bodies_become_provider_unavailable(self) -> None:
        client = _google(FakeSession([FakeResponse(200, ValueError("not json"))]))

        with pytest.raises(ProviderUnavailable):
            asyncio.run(client.fetch_by_id("abc"))

    def test_search_parameters(self) -> None:
        session = FakeSession([FakeResponse(200, {"totalItems": 1, "items": [google_volume()]})])
        client = _google(session)

        payload = asyncio.run(client.search("dune", start_index=-3, max_results=500, language="en"))

        assert client.extract_items(payload)[0]["id"] == "abc"
        assert session.calls[0]["params"] == {
            "q": "dune",
            "startIndex": 0,
            "maxResults": 40,
            "langRestrict": "en",
        }

    def test_extract_items_tolerates_odd_payloads(self) -> None:
        client = _google(FakeSession())

        assert client.extract_items(None) == []
        assert client.extract_items({"items": "nope"}) == []
        assert client.extract_items({"items": [google_volume(), 3]}) == [google_volume()]

    def test_shared_session_is_not_closed(self) -> None:
        session = FakeSession()

        asyncio.run(_google(session).close())

        assert not session.closed


class TestOpenLibraryClient:
    def test_fetch_by_isbn_uses_the_books_api(self) -> None:
        record = {"title": "Dune"}
        session = FakeSession([FakeResponse(200, {f"ISBN:{DUNE_ISBN13}": record})])
        client = OpenLibraryClient(session=session)

        assert asyncio.run(client.fetch_by_id("978-0-441-17271-9")) == record
        assert session.calls[0]["params"]["bibkeys"] == f"ISBN:{DUNE_ISBN13}"

    def test_fetch_by_work_id(self) -> None:
        session = FakeSession([FakeResponse(200, {"key": "/works/OL893415W", "title": "Dune"})])
        client = OpenLibraryClient(base_url="https://ol.example", session=session)

        assert asyncio.run(client.fetch_by_id("/works/ol893415w"))["title"] == "Dune"
        assert session.calls[0]["url"] == "https://ol.example/works/OL893415W.json"

    def test_unknown_identifiers_make_no_request(self) -> None:
        session = FakeSession()

        assert asyncio.run(OpenLibraryClient(session=session).fetch_by_id("zyTCAlFPjgYC")) is None
        assert session.calls == []

    def test_search_docs_are_extracted(self) -> None:
        session = FakeSession([FakeResponse(200, {"numFound": 1, "docs": [{"title": "Dune"}]})])
        client = OpenLibraryClient(session=session)

        payload = asyncio.run(client.search("dune", max_results=5))

        assert client.extract_items(payload) == [{"title": "Dune"}]
        assert session.calls[0]["params"] == {"q": "dune", "offset": 0, "limit": 5}


class TestNytClient:
    def test_without_an_api_key_no_request_is_made(self) -> None:
        session = FakeSession()
        client = NytBooksClient(session=session)

        assert not client.is_available
        with pytest.raises(ProviderUnavailable):
            asyncio.run(client.fetch_by_id("hardcover-fiction"))
        assert session.calls == []

    def test_list_fetch_sends_the_key(self) -> None:
        payload = {
            "results": {
                "list_name": "Hardcover Fiction",
                "books": [{"rank": 1, "title": "DUNE", "primary_isbn13": DUNE_ISBN13}],
            }
        }
        session = FakeSession([FakeResponse(200, payload)])
        client = NytBooksClient(api_key="nyt-key", session=session)

        fetched = asyncio.run(client.fetch_by_id("hardcover-fiction"))

        assert session.calls[0]["url"].endswith("/lists/current/hardcover-fiction.json")
        assert session.calls[0]["params"] == {"api-key": "nyt-key"}
        assert client.extract_items(fetched) == [
            {"list_name": "Hardcover Fiction", "rank": 1, "title": "DUNE", "primary_isbn13": DUNE_ISBN13}
        ]

    def test_overview_payloads_are_flattened(self) -> None:
        client = NytBooksClient(api_key="nyt-key")
        payload = {
            "results": {
                "lists": [
                    {"list_name": "Fiction", "books": [{"title": "A"}]},
                    {"list_name": "Nonfiction", "books": [{"title": "B"}, "junk"]},
                ]
            }
        }

        assert [item["list_name"] for item in client.extract_items(payload)] == ["Fiction", "Nonfiction"]


class TestProviderRegistry:
    def test_unavailable_clients_are_hidden(self) -> None:
        registry = ProviderRegistry([GoogleBooksClient(), NytBooksClient()])

        assert registry.get(MetadataSource.GOOGLE_BOOKS) is not None
        assert registry.get(MetadataSource.NYT) is None
        assert registry.get(MetadataSource.OPENLIBRARY) is None
        assert MetadataSource.NYT in registry
        assert [client.name for client in registry.available()] == [MetadataSource.GOOGLE_BOOKS]

    def test_statuses_report_every_client(self) -> None:
        registry = ProviderRegistry([GoogleBooksClient(), NytBooksClient()])

        statuses = registry.statuses()

        assert statuses["nyt"]["available"] is False
        assert statuses["google_books"]["breaker"]["state"] == "closed"
