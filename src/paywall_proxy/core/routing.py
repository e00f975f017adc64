from typing import Optional
from urllib.parse import unquote, urlsplit, urlunsplit

AMP_CACHE_SUFFIX = "cdn.ampproject.org"
AMP_VIEWER_HOSTS = {"google.com", "www.google.com"}
SIGN_IN_HOSTS = {"inkl.com", "www.inkl.com"}
SIGN_IN_PARAM = "sign-in"


def is_amp_host(hostname: str, target_url: str) -> bool:
    if hostname.endswith(AMP_CACHE_SUFFIX):
        return True
    return hostname in AMP_VIEWER_HOSTS and urlsplit(target_url).path.startswith("/amp/")


def unwrap_amp(target_url: str) -> str:
    """
    Recovers the publisher URL from an AMP cache/viewer URL.
    Everything after the first "/s/" is the percent-encoded origin URL,
    served over https. URLs without the marker come back unchanged.
    """
    _, marker, embedded = target_url.partition("/s/")
    if not marker or not embedded:
        return target_url
    decoded = unquote(embedded)
    if not decoded.startswith(("http://", "https://")):
        decoded = f"https://{decoded}"
    return decoded


def _param_name(piece: str) -> str:
    return piece.split("=", 1)[0]


def has_sign_in(target_url: str) -> bool:
    query = urlsplit(target_url).query
    return any(_param_name(piece) == SIGN_IN_PARAM for piece in query.split("&"))


def strip_sign_in(target_url: str) -> str:
    """Drops the sign-in parameter, leaving the rest of the query as sent."""
    parts = urlsplit(target_url)
    kept = [
        piece
        for piece in parts.query.split("&")
        if piece and _param_name(piece) != SIGN_IN_PARAM
    ]
    return urlunsplit(parts._replace(query="&".join(kept)))


def route_special_case(target_url: str, hostname: str) -> Optional[str]:
    """Returns the URL the client should re-request instead, if any."""
    if is_amp_host(hostname, target_url):
        return unwrap_amp(target_url)

    if hostname in SIGN_IN_HOSTS and has_sign_in(target_url):
        return strip_sign_in(target_url)

    return None
