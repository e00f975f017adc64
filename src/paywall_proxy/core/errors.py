class ProxyError(Exception):
    """Base class for paywall proxy failures."""

    kind = "internal"


class TargetValidationError(ProxyError):
    """The requested URL is missing or cannot be proxied."""

    kind = "validation"


class RuleConfigError(ProxyError):
    """The site rule table could not be loaded."""

    kind = "config"


class TransportError(ProxyError):
    """The upstream fetch failed before an HTTP response arrived."""

    kind = "transport"


class FetchTimeoutError(TransportError):
    kind = "timeout"
