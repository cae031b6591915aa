import os
import re
import json
import logging
from enum import Enum
from typing import Any, List, Optional
from urllib.parse import urlsplit, urlunsplit

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_4) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/85.0.4183.83 Safari/537.36,gzip(gfe)"
)
WATCH_URL = "https://www.youtube.com/watch?v={video_id}"
# Appended as-is; the timed-text endpoint only serves JSON with all four present.
TIMED_TEXT_PARAMS = "&fmt=json3&xorb=2&xobt=3&xovt=3"
DEFAULT_LANG = "default"
DEFAULT_TIMEOUT = 30.0

VIDEO_ID_LENGTH = 11

# Path shapes that may precede the identifier. Add new URL forms here.
URL_SHAPES = (
    r"youtube\.com/(?:.*[?&])?v=",  # /watch?v=ID, /watch?feature=x&v=ID
    r"youtube\.com/v/",
    r"youtube\.com/embed/",
    r"youtube\.com/e/",
    r"youtu\.be/",
)
RE_YOUTUBE = re.compile(
    r"(?:%s)([A-Za-z0-9_-]{%d})" % ("|".join(URL_SHAPES), VIDEO_ID_LENGTH),
    re.IGNORECASE,
)

CAPTIONS_MARKER = '"captions":'
VIDEO_DETAILS_MARKER = ',"videoDetails'
RECAPTCHA_MARKER = 'class="g-recaptcha"'
PLAYABILITY_MARKER = '"playabilityStatus":'
TRACKLIST_KEY = "playerCaptionsTracklistRenderer"


class ErrorKind(str, Enum):
    INVALID_IDENTIFIER = "invalid_identifier"
    TOO_MANY_REQUESTS = "too_many_requests"
    VIDEO_UNAVAILABLE = "video_unavailable"
    TRANSCRIPTS_DISABLED = "transcripts_disabled"
    TRANSCRIPTS_NOT_AVAILABLE = "transcripts_not_available"
    LANGUAGE_NOT_AVAILABLE = "language_not_available"


class YoutubeTranscriptError(Exception):
    """Base class for every failure the transcript pipeline reports on purpose.

    Network errors and other surprises are not wrapped in it, so callers can
    tell a platform-side condition apart from a broken request.
    """

    kind = ErrorKind.INVALID_IDENTIFIER

    def __init__(self, message: str):
        super().__init__(f"[YoutubeTranscript] {message}")


class InvalidIdentifierError(YoutubeTranscriptError):
    kind = ErrorKind.INVALID_IDENTIFIER

    def __init__(self):
        super().__init__("Impossible to retrieve Youtube video ID.")


class TooManyRequestsError(YoutubeTranscriptError):
    kind = ErrorKind.TOO_MANY_REQUESTS

    def __init__(self):
        super().__init__(
            "YouTube is receiving too many requests from this IP and now "
            "requires solving a captcha to continue"
        )


class VideoUnavailableError(YoutubeTranscriptError):
    kind = ErrorKind.VIDEO_UNAVAILABLE

    def __init__(self, video_id: str):
        self.video_id = video_id
        super().__init__(f"The video is no longer available ({video_id})")


class TranscriptsDisabledError(YoutubeTranscriptError):
    kind = ErrorKind.TRANSCRIPTS_DISABLED

    def __init__(self, video_id: str):
        self.video_id = video_id
        super().__init__(f"Transcript is disabled on this video ({video_id})")


class TranscriptsNotAvailableError(YoutubeTranscriptError):
    kind = ErrorKind.TRANSCRIPTS_NOT_AVAILABLE

    def __init__(self, video_id: str):
        self.video_id = video_id
        super().__init__(f"No transcripts are available for this video ({video_id})")


class LanguageNotAvailableError(YoutubeTranscriptError):
    kind = ErrorKind.LANGUAGE_NOT_AVAILABLE

    def __init__(self, lang: str, available_langs: List[str], video_id: str):
        self.lang = lang
        self.available_langs = list(available_langs)
        self.video_id = video_id
        super().__init__(
            f"No transcripts are available in {lang} this video ({video_id}). "
            f"Available languages: {', '.join(self.available_langs)}"
        )


class FetcherConfig(BaseModel):
    """Process-wide settings shared read-only by every fetch."""

    model_config = ConfigDict(frozen=True)

    proxy_url: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT
    user_agent: str = USER_AGENT

    @classmethod
    def from_env(cls) -> "FetcherConfig":
        return cls(
            proxy_url=os.getenv("PROXY_URL") or None,
            timeout=float(os.getenv("REQUEST_TIMEOUT", str(DEFAULT_TIMEOUT))),
        )

    def redacted_proxy_url(self) -> Optional[str]:
        """Proxy URL with any ``user:pass@`` credentials masked, for logging."""
        if not self.proxy_url:
            return self.proxy_url
        parts = urlsplit(self.proxy_url)
        if not (parts.username or parts.password):
            return self.proxy_url
        netloc = "***@" + parts.netloc.rsplit("@", 1)[1]
        return urlunsplit(parts._replace(netloc=netloc))


class CaptionTrack(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    language_code: Optional[str] = Field(default=None, alias="languageCode")
    base_url: Optional[str] = Field(default=None, alias="baseUrl")


def retrieve_video_id(video_id: str) -> str:
    """Return the 11-character video ID from a raw ID or a YouTube URL."""
    if len(video_id) == VIDEO_ID_LENGTH:
        return video_id

    match = RE_YOUTUBE.search(video_id)
    if match:
        return match.group(1)
    raise InvalidIdentifierError()


def is_default_lang(lang: Optional[str]) -> bool:
    return not lang or lang == DEFAULT_LANG


def extract_captions_json(page_body: str, video_id: str) -> dict:
    """Pull the ``captions`` JSON island out of a watch page.

    The island is delimited by text only: it starts right after the first
    ``"captions":`` and ends at the first ``,"videoDetails`` after it.
    Raises the taxonomy error matching what the page says instead.
    """
    parts = page_body.split(CAPTIONS_MARKER, 1)
    if len(parts) < 2:
        if RECAPTCHA_MARKER in page_body:
            raise TooManyRequestsError()
        if PLAYABILITY_MARKER not in page_body:
            raise VideoUnavailableError(video_id)
        raise TranscriptsDisabledError(video_id)

    island = parts[1].split(VIDEO_DETAILS_MARKER, 1)[0].replace("\n", "")
    try:
        captions = json.loads(island)
    except ValueError as e:
        # Malformed markup and disabled captions are reported the same way.
        logger.debug(f"Could not parse captions JSON for {video_id}: {e}")
        raise TranscriptsDisabledError(video_id) from e

    if not isinstance(captions, dict) or not isinstance(captions.get(TRACKLIST_KEY), dict):
        raise TranscriptsDisabledError(video_id)
    return captions


def parse_caption_tracks(captions: dict, video_id: str) -> List[CaptionTrack]:
    raw_tracks = captions[TRACKLIST_KEY].get("captionTracks") or []
    if not isinstance(raw_tracks, list):
        raise TranscriptsDisabledError(video_id)
    if not raw_tracks:
        raise TranscriptsNotAvailableError(video_id)
    # Fields are only required on the track that gets selected.
    try:
        return [CaptionTrack.model_validate(track) for track in raw_tracks]
    except ValidationError as e:
        raise TranscriptsDisabledError(video_id) from e


def select_caption_track(tracks: List[CaptionTrack], lang: Optional[str], video_id: str) -> CaptionTrack:
    """Pick the first track, or the first whose language code equals ``lang``."""
    if not tracks:
        raise TranscriptsNotAvailableError(video_id)
    if is_default_lang(lang):
        return tracks[0]

    for track in tracks:
        if track.language_code == lang:
            return track
    available = [t.language_code for t in tracks if t.language_code is not None]
    raise LanguageNotAvailableError(lang, available, video_id)


def build_timed_text_url(track: CaptionTrack) -> str:
    return f"{track.base_url}{TIMED_TEXT_PARAMS}"


class TranscriptFetcher:
    """Fetches the timed-text JSON for a video by scraping its watch page.

    Holds only immutable configuration; every call to :meth:`fetch` opens
    its own HTTP client, so one instance can serve concurrent requests.
    """

    def __init__(self, config: Optional[FetcherConfig] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or FetcherConfig()
        self._transport = transport

    def _headers(self, lang: Optional[str]) -> dict:
        headers = {"User-Agent": self.config.user_agent}
        if not is_default_lang(lang):
            headers["Accept-Language"] = lang
        return headers

    def _build_transport(self) -> Optional[httpx.AsyncBaseTransport]:
        if self._transport is not None:
            return self._transport
        if self.config.proxy_url:
            return httpx.AsyncHTTPTransport(proxy=self.config.proxy_url)
        return None

    def _client(self) -> httpx.AsyncClient:
        # The proxy lives on the transport so an injected one is never bypassed.
        return httpx.AsyncClient(
            timeout=self.config.timeout,
            transport=self._build_transport(),
            follow_redirects=True,
            trust_env=False,
        )

    async def fetch(self, video_id: str, lang: Optional[str] = None) -> Any:
        identifier = retrieve_video_id(video_id)
        headers = self._headers(lang)
        logger.info(f"Fetching transcript for {identifier} (lang={lang or DEFAULT_LANG})")

        async with self._client() as client:
            page_response = await client.get(WATCH_URL.format(video_id=identifier), headers=headers)
            captions = extract_captions_json(page_response.text, video_id)

            tracks = parse_caption_tracks(captions, video_id)
            track = select_caption_track(tracks, lang, video_id)
            if not track.base_url:
                raise TranscriptsDisabledError(video_id)
            logger.debug(f"Selected caption track {track.language_code} for {identifier}")

            transcript_response = await client.get(build_timed_text_url(track), headers=headers)
            if not transcript_response.is_success:
                logger.warning(
                    f"Timed-text request for {identifier} returned {transcript_response.status_code}"
                )
                raise TranscriptsNotAvailableError(video_id)

            return transcript_response.json()
