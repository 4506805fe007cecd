import httpx
import pytest

from sitestats.core.config import SourceConfig
from sitestats.core.errors import SourceFetchError
from sitestats.ingestion.sources.http_source import HttpSourceFetcher
from sitestats.services.geo import IpApiLookup

SITE = SourceConfig(host="a.example", credential="s3cret")


def fetcher_for(handler, max_attempts=1):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpSourceFetcher("/wp-json/sitestats/v1/batch", max_attempts=max_attempts, client=client)


@pytest.mark.asyncio
async def test_fetch_sends_watermarks_and_credential():
    seen = []

    def handler(request: httpx.Request):
        seen.append(request)
        return httpx.Response(200, json={"events": [], "comments": []})

    fetcher = fetcher_for(handler)
    payload = await fetcher.fetch(SITE, 41, 7)
    await fetcher.aclose()

    assert payload == {"events": [], "comments": []}
    request = seen[0]
    assert request.url.host == "a.example"
    assert request.url.path == "/wp-json/sitestats/v1/batch"
    assert request.url.params["after_id"] == "41"
    assert request.url.params["after_comment_id"] == "7"
    assert request.headers["Authorization"] == "Bearer s3cret"


@pytest.mark.asyncio
async def test_auth_failure_is_a_source_error():
    fetcher = fetcher_for(lambda request: httpx.Response(401))

    with pytest.raises(SourceFetchError) as exc:
        await fetcher.fetch(SITE, 0, 0)

    assert exc.value.host == "a.example"
    assert "401" in str(exc.value)


@pytest.mark.asyncio
async def test_non_json_body_is_a_source_error():
    fetcher = fetcher_for(lambda request: httpx.Response(200, text="<html>maintenance</html>"))

    with pytest.raises(SourceFetchError):
        await fetcher.fetch(SITE, 0, 0)


@pytest.mark.asyncio
async def test_server_error_propagates():
    fetcher = fetcher_for(lambda request: httpx.Response(502))

    with pytest.raises(httpx.HTTPStatusError):
        await fetcher.fetch(SITE, 0, 0)


@pytest.mark.asyncio
async def test_transport_error_reraised_after_last_attempt():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("refused", request=request)

    fetcher = fetcher_for(handler, max_attempts=1)

    with pytest.raises(httpx.ConnectError):
        await fetcher.fetch(SITE, 0, 0)
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_ip_api_lookup_parses_response():
    def handler(request):
        assert request.url.path == "/json/1.2.3.4"
        return httpx.Response(200, json={"status": "success", "countryCode": "NL", "country": "Netherlands"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    geo = IpApiLookup("http://ip-api.com/json/{ip}?fields=status,country,countryCode", client=client)

    result = await geo.lookup("1.2.3.4")
    await geo.aclose()

    assert result.ok
    assert result.country_code == "NL"
    assert result.country == "Netherlands"
