import logging

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST

from truenas_net_topology_lib import ResolvedInterface, TopologyResolver

from .metrics import render_metrics

RESOLVER_KEY = web.AppKey("resolver", TopologyResolver)
METRICS_PATH_KEY = web.AppKey("metrics_path", str)

INDEX_PAGE = """<html><head><title>TrueNAS Network Exporter</title></head>
<body><h1>TrueNAS Network Exporter</h1>
<p><a href="{metrics_path}">Metrics</a></p>
</body></html>"""


async def metrics_handler(request: web.Request):
    resolver = request.app[RESOLVER_KEY]
    interfaces: list[ResolvedInterface] = []
    try:
        interfaces = await resolver.resolve()
    except (OSError, RuntimeError) as e:
        logging.error(f"failed to read interface counters: {e}")
    logging.debug(f"client {request.remote} scraped {len(interfaces)} interfaces")
    return web.Response(
        body=render_metrics(interfaces), headers={"Content-Type": CONTENT_TYPE_LATEST}
    )


async def index_handler(request: web.Request):
    return web.Response(
        text=INDEX_PAGE.format(metrics_path=request.app[METRICS_PATH_KEY]),
        content_type="text/html",
    )


def create_app(resolver: TopologyResolver, metrics_path: str = "/metrics") -> web.Application:
    app = web.Application()
    app[RESOLVER_KEY] = resolver
    app[METRICS_PATH_KEY] = metrics_path
    app.router.add_get(metrics_path, metrics_handler)
    app.router.add_get("/", index_handler)
    return app
