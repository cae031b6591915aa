import os
import logging
from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel
from typing import Any, Optional

from youtube_transcript import (
    DEFAULT_LANG,
    ErrorKind,
    FetcherConfig,
    TranscriptFetcher,
    YoutubeTranscriptError,
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Listening port (override via environment variable)
PORT = int(os.getenv("PORT", "3000"))

FETCHER_CONFIG = FetcherConfig.from_env()
if FETCHER_CONFIG.proxy_url:
    logger.info(f"Using proxy: {FETCHER_CONFIG.redacted_proxy_url()}")
else:
    logger.warning("No proxy configured. Set the PROXY_URL environment variable if needed.")

USAGE_HINT = "YouTube transcript API is running. Use `/transcript/:videoId` to fetch captions."
UNEXPECTED_ERROR = "An unexpected error occurred."

STATUS_BY_KIND = {
    ErrorKind.INVALID_IDENTIFIER: 400,
    ErrorKind.TOO_MANY_REQUESTS: 429,
    ErrorKind.VIDEO_UNAVAILABLE: 404,
    ErrorKind.TRANSCRIPTS_DISABLED: 404,
    ErrorKind.TRANSCRIPTS_NOT_AVAILABLE: 404,
    ErrorKind.LANGUAGE_NOT_AVAILABLE: 404,
}

app = FastAPI(
    title="YouTube Transcript API",
    description="REST API relaying YouTube timed-text transcripts as JSON",
    version="1.0.0"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_fetcher = TranscriptFetcher(FETCHER_CONFIG)


def get_fetcher() -> TranscriptFetcher:
    """Shared fetcher; it only holds immutable configuration."""
    return _fetcher


class TranscriptResponse(BaseModel):
    success: bool = True
    videoId: str
    lang: str
    transcript: Any


class ErrorResponse(BaseModel):
    success: bool = False
    videoId: str
    lang: str
    error: str


def error_response(status_code: int, video_id: str, lang: str, message: str) -> JSONResponse:
    body = ErrorResponse(videoId=video_id, lang=lang, error=message)
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.get("/", response_class=PlainTextResponse)
async def index():
    return USAGE_HINT


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/transcript/{video_id}", response_model=TranscriptResponse)
async def get_transcript(video_id: str, lang: Optional[str] = None, fetcher: TranscriptFetcher = Depends(get_fetcher)):
    """Retrieve the timed-text transcript of a video, optionally in a given language."""
    shown_lang = lang or DEFAULT_LANG

    try:
        transcript = await fetcher.fetch(video_id, lang=lang)
    except YoutubeTranscriptError as e:
        logger.warning(f"Transcript unavailable for video {video_id}: {str(e)}")
        return error_response(STATUS_BY_KIND[e.kind], video_id, shown_lang, str(e))
    except Exception as e:
        logger.error(f"Unexpected error fetching transcript for video {video_id}: {str(e)}")
        return error_response(500, video_id, shown_lang, UNEXPECTED_ERROR)

    return TranscriptResponse(videoId=video_id, lang=shown_lang, transcript=transcript)


if __name__ == "__main__":
    import uvicorn
    logger.info(f"YouTube transcript API listening on http://localhost:{PORT}")
    uvicorn.run(app, host="0.0.0.0", port=PORT)
