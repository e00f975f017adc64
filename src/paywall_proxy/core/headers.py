import random
from typing import Dict, Optional

from ..models import SitePolicy

BASE_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Connection": "keep-alive",
}

USER_AGENTS = {
    "googlebot": "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)",
    "bingbot": "Mozilla/5.0 (compatible; Bingbot/2.0; +http://www.bing.com/bingbot.htm)",
}

REFERERS = {
    "google": "https://www.google.com/",
    "facebook": "https://www.facebook.com/",
}

_default_rng = random.Random()


def random_ipv4(rng: random.Random) -> str:
    return ".".join(str(rng.randint(0, 255)) for _ in range(4))


def build_headers(
    policy: Optional[SitePolicy],
    rng: Optional[random.Random] = None,
) -> Dict[str, str]:
    """Outbound request headers for a site, spoofed as its policy asks."""
    headers = dict(BASE_HEADERS)
    if policy is None:
        return headers

    if policy.user_agent in USER_AGENTS:
        headers["User-Agent"] = USER_AGENTS[policy.user_agent]
    if policy.referer in REFERERS:
        headers["Referer"] = REFERERS[policy.referer]
    if policy.random_ip:
        headers["X-Forwarded-For"] = random_ipv4(rng or _default_rng)

    return headers
