import os
from re import Pattern
from typing import Any, Dict, FrozenSet, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

GROUP_MARKER = "###"


class SitePolicy(BaseModel):
    """Per-publisher rules for request spoofing and response cleanup."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str
    # Either a hostname or a "###_..." key naming a cluster of hostnames
    domain: str
    group_members: Tuple[str, ...] = ()
    excluded_members: FrozenSet[str] = frozenset()

    # Response
    allow_cookies: bool = False
    drop_cookie_names: Optional[FrozenSet[str]] = None
    block_pattern: Optional[Pattern] = None
    block_pattern_general: Optional[Pattern] = None

    # Request
    user_agent: Optional[Literal["googlebot", "bingbot"]] = None
    referer: Optional[Literal["google", "facebook"]] = None
    random_ip: bool = False

    @model_validator(mode="after")
    def _check_group(self):
        if self.is_group and not self.group_members:
            raise ValueError(f"group policy '{self.name}' has no group_members")
        return self

    @property
    def is_group(self) -> bool:
        return self.domain.startswith(GROUP_MARKER)

    def summary(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class FetchedResponse(BaseModel):
    status_code: int
    headers: Dict[str, str] = Field(default_factory=dict)
    cookies: List[str] = Field(default_factory=list)
    body: str = ""


class _Result(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class NoFixResult(_Result):
    status: Literal["nofix"] = "nofix"
    message: str
    hostname: str


class RedirectResult(_Result):
    status: Literal["redirect"] = "redirect"
    redirected_url: str


class SuccessResult(_Result):
    status: Literal["success"] = "success"
    url: str
    status_code: int
    content: str
    headers: Dict[str, str]
    cookies: List[str]
    blocked_scripts: List[str]
    applied_policy: Optional[Dict[str, Any]] = None


class ProxySettings(BaseModel):
    """Runtime settings, read from PAYWALL_PROXY_* environment variables."""

    host: str = "0.0.0.0"
    port: int = 3000
    intercept_port: int = 8080
    fetch_timeout: float = 30.0
    impersonate: Optional[str] = "chrome120"
    rules_path: Optional[str] = None
    transport: Literal["http", "stdio"] = "http"
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls, environ=None) -> "ProxySettings":
        env = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for field in ("host", "port", "intercept_port", "fetch_timeout", "transport"):
            raw = env.get(f"PAYWALL_PROXY_{field.upper()}")
            if raw:
                values[field] = raw
        if "PAYWALL_PROXY_IMPERSONATE" in env:
            values["impersonate"] = env["PAYWALL_PROXY_IMPERSONATE"] or None
        if env.get("PAYWALL_PROXY_RULES"):
            values["rules_path"] = env["PAYWALL_PROXY_RULES"]
        if env.get("PAYWALL_PROXY_CORS_ORIGINS"):
            values["cors_origins"] = [
                o.strip() for o in env["PAYWALL_PROXY_CORS_ORIGINS"].split(",") if o.strip()
            ]
        return cls(**values)
