"""Tornado request handlers for the health and read API."""

from tornado import web

from .health import HealthHandler
from .reports import (
    ActiveRoomsHandler,
    RoomStatsHandler,
    RoomTimelineHandler,
    RoomUsersHandler,
    StatsHandler,
    TrendingRoomsHandler,
    UserHistoryHandler,
    UserSearchHandler,
    UserSessionsHandler,
    UserStatsHandler,
)

_ID = r'([^/]+)'


def get_routes():
    return [
        (r'/health', HealthHandler),
        (r'/api/stats', StatsHandler),
        (r'/api/rooms', ActiveRoomsHandler),
        (r'/api/rooms/trending', TrendingRoomsHandler),
        (rf'/api/rooms/{_ID}/users', RoomUsersHandler),
        (rf'/api/rooms/{_ID}/timeline', RoomTimelineHandler),
        (rf'/api/rooms/{_ID}/stats', RoomStatsHandler),
        (r'/api/users/search', UserSearchHandler),
        (rf'/api/users/{_ID}/sessions', UserSessionsHandler),
        (rf'/api/users/{_ID}/history', UserHistoryHandler),
        (rf'/api/users/{_ID}/stats', UserStatsHandler),
    ]


def make_app(store, poller=None, **settings):
    return web.Application(get_routes(), tracker_store=store, tracker_poller=poller, **settings)


__all__ = [
    "make_app",
    "get_routes",
    "HealthHandler",
    "StatsHandler",
    "ActiveRoomsHandler",
    "TrendingRoomsHandler",
    "RoomUsersHandler",
    "RoomTimelineHandler",
    "RoomStatsHandler",
    "UserSearchHandler",
    "UserSessionsHandler",
    "UserHistoryHandler",
    "UserStatsHandler",
]
