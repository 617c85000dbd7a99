from aiohttp import web
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST


def create_web_app(monitor) -> web.Application:
    """Build the exporter app; cleaning it up stops the monitor's scrape loop"""
    app = web.Application()
    app.router.add_get("/health", monitor.health_check_handler)
    app.router.add_get("/metrics", metrics_handler)

    async def stop_monitor(app):
        await monitor.shutdown()

    app.on_cleanup.append(stop_monitor)
    return app


async def metrics_handler(request):
    metrics_data = generate_latest()
    # aiohttp rejects a charset inside content_type, so set the header directly
    return web.Response(
        body=metrics_data,
        headers={'Content-Type': CONTENT_TYPE_LATEST}
    )
