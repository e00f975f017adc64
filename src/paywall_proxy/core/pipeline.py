import random
from typing import Optional, Union
from urllib.parse import urlsplit

import structlog

from ..models import NoFixResult, RedirectResult, SuccessResult
from .errors import TargetValidationError
from .fetcher import Fetcher
from .headers import build_headers
from .rewriter import rewrite
from .routing import route_special_case
from .rules import RuleTable

logger = structlog.get_logger()

UnlockResult = Union[NoFixResult, RedirectResult, SuccessResult]


def parse_target(target_url) -> str:
    """Validates the target URL and returns its hostname."""
    if not target_url:
        raise TargetValidationError("URL is required")
    if not isinstance(target_url, str):
        raise TargetValidationError("URL must be a string")

    try:
        parts = urlsplit(target_url.strip())
        hostname = parts.hostname
    except ValueError as e:
        raise TargetValidationError(f"Malformed URL: {target_url}: {e}") from e
    if parts.scheme not in ("http", "https") or not hostname:
        raise TargetValidationError(f"URL must be an absolute http(s) URL: {target_url}")
    return hostname


class Unlocker:
    """
    Runs one target URL through the site rules:
    no-fix check, special-case redirects, header spoofing, fetch, rewrite.
    """

    def __init__(
        self,
        table: RuleTable,
        fetcher: Fetcher,
        rng: Optional[random.Random] = None,
    ):
        self.table = table
        self.fetcher = fetcher
        self.rng = rng

    async def unlock(self, target_url) -> UnlockResult:
        hostname = parse_target(target_url)
        target_url = target_url.strip()
        log = logger.bind(hostname=hostname)

        if self.table.is_nofix(hostname):
            log.info("nofix_site")
            return NoFixResult(message=f"Site {hostname} is not supported", hostname=hostname)

        redirected = route_special_case(target_url, hostname)
        if redirected is not None:
            log.info("redirect", redirected_url=redirected)
            return RedirectResult(redirected_url=redirected)

        policy, is_group = self.table.resolve(hostname)
        log.info("resolved", rule=policy.name if policy else None, group=is_group)

        headers = build_headers(policy, self.rng)
        response = await self.fetcher.fetch(target_url, headers)
        return rewrite(self.table, policy, hostname, target_url, response)
