"""Read-only JSON endpoints over the reporting queries."""

from tornado import web

from .. import queries
from .base import TrackerHandler


class StatsHandler(TrackerHandler):
    async def get(self):
        self.finish(await self.query(queries.get_stats))


class ActiveRoomsHandler(TrackerHandler):
    async def get(self):
        rooms = await self.query(
            queries.active_rooms,
            language=self.get_argument('language', None),
            limit=self.int_argument('limit', 100),
        )
        self.finish({'rooms': rooms, 'count': len(rooms)})


class TrendingRoomsHandler(TrackerHandler):
    async def get(self):
        rooms = await self.query(
            queries.trending_rooms,
            hours=self.int_argument('hours', 24),
            limit=self.int_argument('limit', 10),
        )
        self.finish({'rooms': rooms})


class RoomUsersHandler(TrackerHandler):
    async def get(self, room_id):
        users = await self.query(queries.room_active_users, room_id)
        self.finish({'room_id': room_id, 'users': users})


class RoomTimelineHandler(TrackerHandler):
    async def get(self, room_id):
        events = await self.query(queries.room_timeline, room_id)
        self.finish({'room_id': room_id, 'events': events})


class RoomStatsHandler(TrackerHandler):
    async def get(self, room_id):
        stats = await self.query(queries.room_statistics, room_id)
        if not stats['total_sessions']:
            raise web.HTTPError(404, f"No sessions recorded for room {room_id}")
        self.finish(stats)


class UserSearchHandler(TrackerHandler):
    async def get(self):
        q = self.get_argument('q', '')
        if not q.strip():
            raise web.HTTPError(400, "Query parameter 'q' is required")
        users = await self.query(queries.search_users, q, limit=self.int_argument('limit', 20))
        self.finish({'query': q, 'users': users})


class UserSessionsHandler(TrackerHandler):
    async def get(self, user_id):
        sessions = await self.query(queries.user_sessions, user_id, limit=self.int_argument('limit', 100))
        self.finish({'user_id': user_id, 'sessions': sessions})


class UserHistoryHandler(TrackerHandler):
    async def get(self, user_id):
        rooms = await self.query(queries.user_room_history, user_id)
        self.finish({'user_id': user_id, 'rooms': rooms})


class UserStatsHandler(TrackerHandler):
    async def get(self, user_id):
        stats = await self.query(queries.user_statistics, user_id)
        if stats is None:
            raise web.HTTPError(404, f"Unknown user {user_id}")
        self.finish(stats)
