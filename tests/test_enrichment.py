import json
from uuid import uuid4

import httpx
import pytest

from sheetpipe.consumers.enrichment import EnrichmentRequest, HttpEnricher, UnconfiguredEnricher
from sheetpipe.core.errors import EnrichmentError

URL = "http://enricher.local/enrich"


def make_request():
    return EnrichmentRequest(
        sheet_id=uuid4(),
        row_index=0,
        source_col_index=0,
        target_col_index=1,
        query="weather NYC",
        row_data={0: "weather NYC"},
        column_title="Weather",
    )


def make_enricher(handler, api_key=None):
    return HttpEnricher(URL, api_key=api_key, timeout=5, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_http_enricher_posts_request_and_returns_content():
    seen = {}

    def handler(request: httpx.Request):
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"content": " Sunny ", "sources": ["https://weather.example"]})

    result = await make_enricher(handler, api_key="secret").enrich(make_request())

    assert result.content == "Sunny"
    assert result.sources == ["https://weather.example"]
    assert seen["auth"] == "Bearer secret"
    assert seen["body"]["query"] == "weather NYC"
    assert seen["body"]["row_data"] == {"0": "weather NYC"}
    assert seen["body"]["column_title"] == "Weather"


@pytest.mark.asyncio
async def test_http_enricher_wraps_server_errors():
    enricher = make_enricher(lambda request: httpx.Response(503, text="busy"))

    with pytest.raises(EnrichmentError, match="503"):
        await enricher.enrich(make_request())


@pytest.mark.asyncio
async def test_http_enricher_rejects_empty_answer():
    enricher = make_enricher(lambda request: httpx.Response(200, json={"content": "   "}))

    with pytest.raises(EnrichmentError, match="no content"):
        await enricher.enrich(make_request())


@pytest.mark.asyncio
async def test_http_enricher_wraps_transport_errors():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(EnrichmentError, match="failed"):
        await make_enricher(handler).enrich(make_request())


@pytest.mark.asyncio
async def test_unconfigured_enricher_always_fails():
    with pytest.raises(EnrichmentError, match="ENRICHMENT_URL"):
        await UnconfiguredEnricher().enrich(make_request())
