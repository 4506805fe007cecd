from typing import Optional, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field

UNKNOWN_COUNTRY_CODE = "XX"
UNKNOWN_COUNTRY_NAME = "Unknown"


class GeoResult(BaseModel):
    """ip-api.com response shape: {status, countryCode, country}."""

    status: str = "fail"
    country_code: Optional[str] = Field(None, alias="countryCode")
    country: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @property
    def ok(self) -> bool:
        return self.status == "success" and bool(self.country_code)


class GeoLookup(Protocol):
    async def lookup(self, ip: str) -> GeoResult:
        ...


class IpApiLookup:
    def __init__(self, url_template: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.url_template = url_template
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def lookup(self, ip: str) -> GeoResult:
        response = await self._client.get(self.url_template.format(ip=ip))
        response.raise_for_status()
        return GeoResult.model_validate(response.json())

    async def aclose(self):
        await self._client.aclose()
