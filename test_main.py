import pytest
import httpx
from unittest.mock import AsyncMock, Mock
from fastapi.testclient import TestClient

from main import app, get_fetcher, STATUS_BY_KIND, USAGE_HINT
from youtube_transcript import (
    ErrorKind,
    InvalidIdentifierError,
    LanguageNotAvailableError,
    TooManyRequestsError,
    TranscriptFetcher,
    TranscriptsDisabledError,
    TranscriptsNotAvailableError,
    VideoUnavailableError,
)
from test_youtube_transcript import TIMED_TEXT, TWO_TRACKS, VIDEO_ID, make_fetcher, make_tracks_page


@pytest.fixture
def mock_fetcher():
    """Replace the shared fetcher with a mock for the duration of a test."""
    fetcher = Mock()
    fetcher.fetch = AsyncMock(return_value=TIMED_TEXT)
    app.dependency_overrides[get_fetcher] = lambda: fetcher
    yield fetcher
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    return TestClient(app)


class TestIndex:
    """Test the root and health endpoints."""

    def test_usage_hint(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == USAGE_HINT

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_cors_headers(self, client):
        response = client.get("/", headers={"Origin": "https://example.com"})
        assert response.headers.get("access-control-allow-origin") == "*"


class TestGetTranscript:
    """Test the /transcript/{video_id} endpoint."""

    def test_success_default_language(self, client, mock_fetcher):
        response = client.get(f"/transcript/{VIDEO_ID}")

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "videoId": VIDEO_ID,
            "lang": "default",
            "transcript": TIMED_TEXT,
        }
        mock_fetcher.fetch.assert_awaited_once_with(VIDEO_ID, lang=None)

    def test_success_with_language(self, client, mock_fetcher):
        response = client.get(f"/transcript/{VIDEO_ID}", params={"lang": "fr"})

        assert response.status_code == 200
        assert response.json()["lang"] == "fr"
        mock_fetcher.fetch.assert_awaited_once_with(VIDEO_ID, lang="fr")

    @pytest.mark.parametrize("error, status_code", [
        (InvalidIdentifierError(), 400),
        (TooManyRequestsError(), 429),
        (VideoUnavailableError(VIDEO_ID), 404),
        (TranscriptsDisabledError(VIDEO_ID), 404),
        (TranscriptsNotAvailableError(VIDEO_ID), 404),
        (LanguageNotAvailableError("de", ["en", "fr"], VIDEO_ID), 404),
    ])
    def test_transcript_errors(self, client, mock_fetcher, error, status_code):
        mock_fetcher.fetch.side_effect = error

        response = client.get(f"/transcript/{VIDEO_ID}", params={"lang": "de"})

        assert response.status_code == status_code
        assert response.json() == {
            "success": False,
            "videoId": VIDEO_ID,
            "lang": "de",
            "error": str(error),
        }

    def test_unexpected_error(self, client, mock_fetcher):
        mock_fetcher.fetch.side_effect = httpx.ConnectError("connection refused")

        response = client.get(f"/transcript/{VIDEO_ID}")

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["lang"] == "default"
        assert body["error"] == "An unexpected error occurred."

    def test_every_error_kind_has_a_status(self):
        assert set(STATUS_BY_KIND) == set(ErrorKind)

    def test_end_to_end_with_simulated_upstream(self, client):
        seen = []
        app.dependency_overrides[get_fetcher] = lambda: make_fetcher(make_tracks_page(TWO_TRACKS), seen)
        try:
            response = client.get(f"/transcript/{VIDEO_ID}", params={"lang": "de"})
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 404
        assert "Available languages: en, fr" in response.json()["error"]

    def test_default_dependency(self):
        assert isinstance(get_fetcher(), TranscriptFetcher)
