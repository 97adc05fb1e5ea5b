import logging
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Protocol
from uuid import UUID

import httpx

from sheetpipe.core.config import ENRICHMENT_API_KEY, ENRICHMENT_URL, HANDLER_TIMEOUT
from sheetpipe.core.errors import EnrichmentError

log = logging.getLogger("sheetpipe.enrichment")


@dataclass
class EnrichmentRequest:
    sheet_id: UUID
    row_index: int
    source_col_index: int
    target_col_index: int
    query: str
    row_data: Dict[int, str] = field(default_factory=dict)
    column_title: Optional[str] = None
    column_prompt: Optional[str] = None

    def to_payload(self) -> Dict:
        body = asdict(self)
        body["sheet_id"] = str(self.sheet_id)
        # JSON object keys are strings
        body["row_data"] = {str(col): value for col, value in self.row_data.items()}
        return body


@dataclass
class EnrichmentResult:
    content: str
    sources: List[str] = field(default_factory=list)


class Enricher(Protocol):
    async def enrich(self, request: EnrichmentRequest) -> EnrichmentResult:
        ...


class HttpEnricher:
    """Calls an external search/agent service over HTTP and returns its answer."""

    def __init__(self, url: str, api_key: Optional[str] = None, timeout: float = HANDLER_TIMEOUT, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    async def enrich(self, request: EnrichmentRequest) -> EnrichmentResult:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                resp = await client.post(self.url, json=request.to_payload(), headers=headers)
                resp.raise_for_status()
                body = resp.json()
            except httpx.TimeoutException as e:
                raise EnrichmentError(f"Enrichment request timed out after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise EnrichmentError(f"Enrichment backend returned {e.response.status_code}") from e
            except (httpx.HTTPError, ValueError) as e:
                raise EnrichmentError(f"Enrichment request failed: {e}") from e

        content = body.get("content") if isinstance(body, dict) else None
        if not content or not str(content).strip():
            raise EnrichmentError("Enrichment backend returned no content")
        sources = body.get("sources") or []
        log.debug(f"Enriched ({request.row_index}, {request.target_col_index}) with {len(sources)} sources")
        return EnrichmentResult(content=str(content).strip(), sources=[str(s) for s in sources])


class UnconfiguredEnricher:
    async def enrich(self, request: EnrichmentRequest) -> EnrichmentResult:
        raise EnrichmentError("No enrichment backend configured (set ENRICHMENT_URL)")


def enricher_from_config() -> Enricher:
    if ENRICHMENT_URL:
        return HttpEnricher(ENRICHMENT_URL, api_key=ENRICHMENT_API_KEY)
    log.warning("ENRICHMENT_URL is not set; cell_update events will fail until it is configured.")
    return UnconfiguredEnricher()
