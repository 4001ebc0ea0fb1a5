"""Platform sync API fetcher - produces JsonCapture snapshots."""

import asyncio
import logging
import time

import aiohttp

from .errors import TransportError
from .normalizer import JsonCapture

log = logging.getLogger('roomtracker')

USER_AGENT = (
    'Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
)
REFERER = 'https://www.free4talk.com/'
SYNC_ACTION = 'sync-get-free4talk-groups'
SYNC_VERSION = '553-4'


class PlatformFetcher:
    """Fetches the full room list from the platform's sync endpoint.

    Any object with an ``async fetch()`` returning a capture can stand in
    for this class (e.g. a browser-driven HTML scraper).
    """

    def __init__(self, api_url, timeout=30):
        self.api_url = api_url
        self.timeout = timeout

    @classmethod
    def from_config(cls, config):
        return cls(config.api_url, timeout=config.fetch_timeout)

    def _params(self):
        return {'a': SYNC_ACTION, 'v': SYNC_VERSION, 't': str(int(time.time() * 1000))}

    async def fetch(self):
        headers = {'User-Agent': USER_AGENT, 'Referer': REFERER}
        client_timeout = aiohttp.ClientTimeout(total=self.timeout)

        try:
            async with aiohttp.ClientSession(timeout=client_timeout) as session:
                async with session.get(self.api_url, params=self._params(), headers=headers) as resp:
                    if resp.status != 200:
                        raise TransportError(f"API request failed: {resp.status}")
                    payload = await resp.json(content_type=None)
        except TransportError:
            raise
        except asyncio.TimeoutError as e:
            raise TransportError(f"API request timed out after {self.timeout}s") from e
        except (aiohttp.ClientError, ValueError) as e:
            raise TransportError(f"Error fetching rooms: {e}") from e

        rooms = payload.get('data', payload) if isinstance(payload, dict) else payload
        size = len(rooms) if isinstance(rooms, (dict, list)) else 0
        log.info(f"[PlatformFetcher] Got {size} rooms")
        return JsonCapture(payload=payload)
