"""Content extraction clients for remote web pages and PDF documents.

Both extractors are thin wrappers over third-party HTTP APIs:

- ``FirecrawlExtractor`` scrapes a URL into markdown plus page metadata.
- ``MistralOCRExtractor`` runs OCR over a remote document URL and returns
  per-page markdown.

Errors are raised as ``ExtractionError`` so the calling tool can report them
back to the model as a failed tool result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from .config import AppConfig, get_config

logger = logging.getLogger(__name__)

MISTRAL_OCR_MODEL = "mistral-ocr-latest"


class ExtractionError(Exception):
    """Raised when a remote extraction call fails."""


@dataclass
class ScrapedPage:
    """Markdown body and metadata returned by the scraping API."""
    markdown: str
    title: Optional[str] = None
    url: Optional[str] = None
    description: Optional[str] = None
    language: Optional[str] = None

    def to_markdown(self) -> str:
        """Render the page with a metadata header block."""
        header = (
            "-----\n"
            f"# Title: {self.title or 'N/A'}\n"
            f"## URL: {self.url or 'N/A'}\n"
            f"## Description: {self.description or 'N/A'}\n"
            f"## Language: {self.language or 'N/A'}\n"
            "-----\n\n"
        )
        return header + (self.markdown or "")


@dataclass
class OCRDocument:
    """Per-page markdown produced by OCR."""
    pages: List[str] = field(default_factory=list)

    def to_markdown(self) -> str:
        return "".join(f"{page}\n\n" for page in self.pages)


class FirecrawlExtractor:
    """Scrape web pages through the Firecrawl REST API."""

    def __init__(
        self,
        config: AppConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or get_config()
        self._transport = transport

    async def scrape(self, url: str) -> ScrapedPage:
        if not self.config.firecrawl_api_key:
            raise ExtractionError("FIRECRAWL_API_KEY not configured")

        logger.info(f"Scraping URL via Firecrawl: {url}")
        try:
            async with httpx.AsyncClient(
                timeout=self.config.tool_timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(
                    f"{self.config.firecrawl_base_url}/v1/scrape",
                    headers={
                        "Authorization": f"Bearer {self.config.firecrawl_api_key}",
                        "Content-Type": "application/json",
                    },
                    json={"url": url, "formats": ["markdown"]},
                )
                response.raise_for_status()
                body: Dict[str, Any] = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(f"Firecrawl API error: {e.response.status_code} for {url}")
            raise ExtractionError(f"Scraping API error: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.warning(f"Firecrawl request failed for {url}: {e}")
            raise ExtractionError(f"Could not reach scraping API: {e}") from e

        if body.get("success") is False:
            raise ExtractionError(f"Scraping failed: {body.get('error', 'unknown error')}")

        data = body.get("data") or {}
        metadata = data.get("metadata") or {}
        return ScrapedPage(
            markdown=data.get("markdown") or "",
            title=metadata.get("title"),
            url=metadata.get("sourceURL") or url,
            description=metadata.get("description"),
            language=metadata.get("language"),
        )


class MistralOCRExtractor:
    """OCR remote documents through the Mistral OCR endpoint."""

    def __init__(
        self,
        config: AppConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or get_config()
        self._transport = transport

    async def ocr(self, document_url: str) -> OCRDocument:
        if not self.config.mistral_api_key:
            raise ExtractionError("MISTRAL_API_KEY not configured")

        logger.info(f"Running OCR on document: {document_url}")
        try:
            async with httpx.AsyncClient(
                timeout=self.config.tool_timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(
                    f"{self.config.mistral_base_url}/v1/ocr",
                    headers={
                        "Authorization": f"Bearer {self.config.mistral_api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "model": MISTRAL_OCR_MODEL,
                        "document": {"type": "document_url", "document_url": document_url},
                        "include_image_base64": False,
                    },
                )
                response.raise_for_status()
                body: Dict[str, Any] = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(f"Mistral OCR error: {e.response.status_code} for {document_url}")
            raise ExtractionError(f"OCR API error: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.warning(f"Mistral OCR request failed for {document_url}: {e}")
            raise ExtractionError(f"Could not reach OCR API: {e}") from e

        pages = [page.get("markdown") or "" for page in body.get("pages") or []]
        return OCRDocument(pages=pages)


__all__ = [
    "ExtractionError",
    "FirecrawlExtractor",
    "MistralOCRExtractor",
    "OCRDocument",
    "ScrapedPage",
    "MISTRAL_OCR_MODEL",
]
