import logging
import random
from typing import Optional

from mitmproxy import http

from .headers import build_headers
from .rewriter import apply_header_overrides, filter_cookies, strip_blocked_scripts
from .routing import route_special_case
from .rules import RuleTable

logger = logging.getLogger("paywall_proxy")


def _decoded_text(message: http.Message) -> Optional[str]:
    # mitmproxy undoes content-encoding and charset; None for binary bodies
    if not message.content:
        return None
    return message.get_text(strict=False)


class SitePolicyInterceptor:
    """Applies site policies to live traffic flowing through mitmproxy."""

    def __init__(self, table: RuleTable, rng: Optional[random.Random] = None):
        self.table = table
        self.rng = rng

    def request(self, flow: http.HTTPFlow):
        host = flow.request.host
        if self.table.is_nofix(host):
            logger.info("Leaving no-fix site untouched: '%s'", host)
            return

        try:
            redirected = route_special_case(flow.request.url, host)
            if redirected is not None and redirected != flow.request.url:
                flow.response = http.Response.make(302, b"", {"Location": redirected})
                logger.info("Redirected '%s' to '%s'", flow.request.url, redirected)
                return

            policy, _ = self.table.resolve(host)
            if policy is None:
                return
            for key, value in build_headers(policy, self.rng).items():
                flow.request.headers[key] = value
            logger.info("Spoofed request headers using: '%s'", policy.name)

        except Exception as e:
            logger.error("[ERROR] Couldn't apply site rules to request '%s': %s", host, e)

    def response(self, flow: http.HTTPFlow):
        if not flow.response:
            return
        host = flow.request.host
        if self.table.is_nofix(host):
            return

        try:
            policy, _ = self.table.resolve(host)
            message = flow.response

            # Traffic without a site policy keeps its cookies in intercept mode
            cookies = message.headers.get_all("set-cookie")
            if cookies and policy is not None:
                kept = filter_cookies(policy, cookies)
                message.headers.set_all("set-cookie", kept)
                if len(kept) != len(cookies):
                    logger.info("Dropped %d cookie(s) from '%s'", len(cookies) - len(kept), host)

            text = _decoded_text(message)
            if text is not None:
                new_text, blocked = strip_blocked_scripts(self.table, host, flow.request.url, text)
                if blocked:
                    message.text = new_text
                    logger.info("Scripts stripped from: '%s'", flow.request.url)

            for key, value in apply_header_overrides(host, {}).items():
                message.headers[key] = value

        except Exception as e:
            logger.error("[ERROR] Couldn't apply site rules to response '%s': %s", host, e)
