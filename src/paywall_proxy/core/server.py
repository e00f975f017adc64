import asyncio
import json
import logging
import sys
from typing import Optional

import structlog
import uvicorn

from mcp.server.fastmcp import FastMCP
from mitmproxy import options
from mitmproxy.tools.dump import DumpMaster
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from ..models import ProxySettings
from .errors import ProxyError, TargetValidationError
from .fetcher import CurlFetcher
from .interceptor import SitePolicyInterceptor
from .pipeline import Unlocker
from .rules import RuleTable, load_rule_table

# Configure structlog
structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.add_log_level,
        structlog.processors.JSONRenderer(),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

# Configure standard logging to output the JSON string as-is
logging.basicConfig(
    format="%(message)s",
    level=logging.INFO,
    stream=sys.stderr,
)

logger = structlog.get_logger()


class ProxyController:
    def __init__(self, settings: ProxySettings, table: Optional[RuleTable] = None):
        self.settings = settings
        self.table = table if table is not None else load_rule_table(settings.rules_path)
        self.unlocker = Unlocker(
            self.table,
            CurlFetcher(timeout=settings.fetch_timeout, impersonate=settings.impersonate),
        )
        self.interceptor = SitePolicyInterceptor(self.table)
        self.master: Optional[DumpMaster] = None
        self.proxy_task: Optional[asyncio.Task] = None
        self.port = settings.intercept_port
        logger.info("rules_loaded", sites=len(self.table), nofix=len(self.table.nofix))

    @property
    def running(self) -> bool:
        return self.proxy_task is not None and not self.proxy_task.done()

    def _build_master(self, host: str, port: int) -> DumpMaster:
        master = DumpMaster(
            options.Options(listen_host=host, listen_port=port),
            with_termlog=False,
            with_dumper=False,
        )
        master.addons.add(self.interceptor)
        return master

    async def start(self, port: Optional[int] = None, host: str = "0.0.0.0"):
        """Starts a mitmproxy instance that applies the site rules to live traffic."""
        if self.running:
            return f"The intercepting proxy's already running on port {self.port}!"

        self.port = port or self.settings.intercept_port
        self.master = self._build_master(host, self.port)
        self.proxy_task = asyncio.create_task(self.master.run())

        # A master that fails while binding has already finished by now
        await asyncio.sleep(0)
        if self.proxy_task.done() and self.proxy_task.exception():
            error = self.proxy_task.exception()
            self.master, self.proxy_task = None, None
            raise error

        logger.info("intercept_proxy_started", host=host, port=self.port)
        return f"Started intercepting proxy on port {self.port}"

    async def stop(self):
        if not self.running:
            return "The intercepting proxy isn't running right now."

        self.master.shutdown()
        try:
            await self.proxy_task
        except asyncio.CancelledError:
            pass
        finally:
            self.master, self.proxy_task = None, None

        logger.info("intercept_proxy_stopped", port=self.port)
        return "Stopped the intercepting proxy."


settings = ProxySettings.from_env()

# Global Controller Instance
controller = ProxyController(settings)

mcp = FastMCP("Paywall Proxy")


# --- HTTP endpoint ---


@mcp.custom_route("/proxy", methods=["POST"])
async def proxy_endpoint(request: Request) -> JSONResponse:
    try:
        payload = await request.json()
    except ValueError:
        return JSONResponse({"error": "Request body must be JSON"}, status_code=400)

    target_url = payload.get("url") if isinstance(payload, dict) else None
    try:
        result = await controller.unlocker.unlock(target_url)
    except TargetValidationError as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    except ProxyError as e:
        logger.error("proxy_failed", url=target_url, kind=e.kind, error=str(e))
        return JSONResponse(
            {"error": f"Proxy error: {e}", "kind": e.kind},
            status_code=500,
        )
    except Exception as e:
        logger.exception("proxy_crashed", url=target_url)
        return JSONResponse(
            {"error": f"Proxy error: {e}", "kind": "internal"},
            status_code=500,
        )

    return JSONResponse(result.to_payload())


# --- MCP Tools ---


@mcp.tool()
async def unlock_url(url: str) -> str:
    """
    Fetch a URL with its site's rules applied.
    Returns the nofix/redirect/success payload as JSON.
    """
    try:
        result = await controller.unlocker.unlock(url)
    except ProxyError as e:
        logger.error("unlock_failed", url=url, kind=e.kind, error=str(e))
        return f"Couldn't fetch that URL: {str(e)}"
    return json.dumps(result.to_payload(), indent=2)


@mcp.tool()
async def resolve_site(hostname: str) -> str:
    table = controller.table
    policy, is_group = table.resolve(hostname)
    return json.dumps(
        {
            "hostname": hostname,
            "nofix": table.is_nofix(hostname),
            "excluded": table.is_excluded(hostname),
            "group_match": is_group,
            "rule": policy.summary() if policy else None,
        },
        indent=2,
    )


@mcp.tool()
async def list_site_rules() -> str:
    table = controller.table
    rules = {p.name: p.group_members or [p.domain] for p in table}
    return json.dumps(
        {"rules": rules, "nofix": sorted(table.nofix)},
        indent=2,
    )


@mcp.tool()
async def start_proxy(port: int = 8080) -> str:
    try:
        return await controller.start(port=port)
    except Exception as e:
        logger.error("intercept_proxy_start_failed", error=str(e))
        return f"Couldn't start the intercepting proxy: {str(e)}"


@mcp.tool()
async def stop_proxy() -> str:
    return await controller.stop()


def start():
    """Entry point for running the server directly."""
    if settings.transport == "stdio":
        mcp.run()
        return

    app = mcp.streamable_http_app()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    logger.info("http_server_starting", host=settings.host, port=settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    start()
