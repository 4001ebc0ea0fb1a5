"""Liveness endpoint reporting poller health."""

from .base import TrackerHandler


class HealthHandler(TrackerHandler):
    """200 while the poller is within its failure budget, 503 after."""

    async def get(self):
        poller = self.poller
        status = poller.status() if poller is not None else {'healthy': True, 'running': False}
        status['database'] = await self.query(lambda store: store.ping())
        healthy = status['healthy'] and status['database']
        status['status'] = 'ok' if healthy else 'unhealthy'
        if not healthy:
            self.set_status(503)
        self.finish(status)
