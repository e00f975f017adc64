import re
from typing import Dict, List, Optional, Tuple

import structlog

from ..models import FetchedResponse, SitePolicy, SuccessResult
from .rules import RuleTable

logger = structlog.get_logger()

SCRIPT_TAG = re.compile(r"<script[^>]*>[\s\S]*?</script>", re.IGNORECASE)

PREVIEW_LENGTH = 500
PREVIEW_MARKER = "..."

# Applied after the fetch, whatever the origin sent
HEADER_OVERRIDES: Dict[str, Dict[str, str]] = {
    "nytimes.com": {"x-frame-options": "SAMEORIGIN"},
}


def filter_cookies(policy: Optional[SitePolicy], cookies: List[str]) -> List[str]:
    if policy is None or not policy.allow_cookies:
        return []
    if policy.drop_cookie_names:
        return [
            cookie
            for cookie in cookies
            if not any(name in cookie for name in policy.drop_cookie_names)
        ]
    return list(cookies)


def strip_blocked_scripts(
    table: RuleTable,
    hostname: str,
    target_url: str,
    body: str,
) -> Tuple[str, List[str]]:
    """
    Removes every <script> element when the target URL matches any block
    pattern in the table.

    All policies are checked, not only the one resolved for the hostname.
    A general pattern is skipped for hostnames its own policy excludes.
    Each matching pattern adds one entry to the blocked list.
    """
    blocked: List[str] = []
    for policy in table:
        if policy.block_pattern and policy.block_pattern.search(target_url):
            blocked.append(target_url)
            body = SCRIPT_TAG.sub("", body)
            logger.info("scripts_blocked", rule=policy.name, url=target_url)
        if (
            policy.block_pattern_general
            and policy.block_pattern_general.search(target_url)
            and hostname not in policy.excluded_members
        ):
            blocked.append(target_url)
            body = SCRIPT_TAG.sub("", body)
            logger.info("scripts_blocked", rule=policy.name, url=target_url, general=True)
    return body, blocked


def apply_header_overrides(hostname: str, headers: Dict[str, str]) -> Dict[str, str]:
    result = {k.lower(): v for k, v in headers.items()}
    result.update(HEADER_OVERRIDES.get(hostname, {}))
    return result


def preview(body: str) -> str:
    return body[:PREVIEW_LENGTH] + PREVIEW_MARKER


def rewrite(
    table: RuleTable,
    policy: Optional[SitePolicy],
    hostname: str,
    target_url: str,
    response: FetchedResponse,
) -> SuccessResult:
    cookies = filter_cookies(policy, response.cookies)
    body, blocked = strip_blocked_scripts(table, hostname, target_url, response.body)
    headers = apply_header_overrides(hostname, response.headers)

    applied = None
    if policy is not None:
        applied = {"name": policy.name, **policy.summary()}

    return SuccessResult(
        url=target_url,
        status_code=response.status_code,
        content=preview(body),
        headers=headers,
        cookies=cookies,
        blocked_scripts=blocked,
        applied_policy=applied,
    )
