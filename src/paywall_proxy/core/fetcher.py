from typing import Dict, Optional, Protocol

import structlog
from curl_cffi import CurlError
from curl_cffi.const import CurlECode
from curl_cffi.requests import AsyncSession

from ..models import FetchedResponse
from .errors import FetchTimeoutError, TransportError

logger = structlog.get_logger()


class Fetcher(Protocol):
    async def fetch(self, url: str, headers: Dict[str, str]) -> FetchedResponse: ...


class CurlFetcher:
    """
    GETs a URL with curl_cffi.
    Any HTTP status is a result; only transport failures raise.
    """

    def __init__(self, timeout: float = 30.0, impersonate: Optional[str] = "chrome120"):
        self.timeout = timeout
        self.impersonate = impersonate

    async def fetch(self, url: str, headers: Dict[str, str]) -> FetchedResponse:
        session_opts = {"timeout": self.timeout}
        if self.impersonate:
            session_opts["impersonate"] = self.impersonate

        try:
            async with AsyncSession(**session_opts) as client:
                response = await client.get(url, headers=headers, allow_redirects=True)
        except CurlError as e:
            if getattr(e, "code", None) == CurlECode.OPERATION_TIMEDOUT:
                logger.warning("fetch_timeout", url=url, timeout=self.timeout)
                raise FetchTimeoutError(f"Timed out after {self.timeout}s fetching {url}") from e
            logger.warning("fetch_failed", url=url, error=str(e))
            raise TransportError(str(e)) from e

        logger.info("fetched", url=url, status=response.status_code)
        return FetchedResponse(
            status_code=response.status_code,
            headers={k.lower(): v for k, v in response.headers.items()},
            cookies=response.headers.get_list("set-cookie"),
            body=response.text,
        )
