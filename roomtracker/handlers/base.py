"""Shared base for the read API handlers."""

import asyncio
import functools
import logging

from tornado import web

log = logging.getLogger('roomtracker')


class TrackerHandler(web.RequestHandler):
    """JSON handler with access to the store and poller in application settings."""

    @property
    def store(self):
        return self.settings['tracker_store']

    @property
    def poller(self):
        return self.settings.get('tracker_poller')

    def set_default_headers(self):
        self.set_header('Content-Type', 'application/json; charset=UTF-8')

    async def query(self, fn, *args, **kwargs):
        """Run a blocking query function off the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, self.store, *args, **kwargs))

    def int_argument(self, name, default):
        value = self.get_argument(name, None)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            raise web.HTTPError(400, f"Query parameter '{name}' must be an integer")

    def write_error(self, status_code, **kwargs):
        self.finish({'error': self._reason, 'status': status_code})
