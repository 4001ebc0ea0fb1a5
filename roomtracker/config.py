"""Environment-driven tracker configuration."""

import logging
import os

log = logging.getLogger('roomtracker')

DEFAULT_DATABASE_URL = 'sqlite:///roomtracker.sqlite'
DEFAULT_API_URL = 'https://sync.free4talk.com/sync/get/free4talk/groups/'


def get_env_int(name, default, min_val, max_val):
    """Get integer from environment with validation."""
    try:
        value = int(os.environ.get(name, default))
        if value < min_val or value > max_val:
            log.info(f"[Config] {name}={value} out of range ({min_val}-{max_val}), using default {default}")
            return default
        return value
    except (ValueError, TypeError):
        log.info(f"[Config] {name} invalid, using default {default}")
        return default


class TrackerConfig:
    """Runtime settings for the tracker service.

    Usage:
        config = TrackerConfig.from_env()
        config = TrackerConfig(poll_interval=5, workers=1)  # explicit, e.g. tests
    """

    DEFAULT_PORT = 8080
    DEFAULT_POLL_INTERVAL = 60
    DEFAULT_SWEEP_TIMEOUT = 120
    DEFAULT_FETCH_TIMEOUT = 30
    DEFAULT_WORKERS = 4
    DEFAULT_STORE_RETRIES = 2
    DEFAULT_STORE_TIMEOUT = 10
    DEFAULT_MAX_FAILURES = 5
    DEFAULT_BACKOFF_MAX = 900
    DEFAULT_RETENTION_DAYS = 90

    def __init__(self, database_url=DEFAULT_DATABASE_URL, api_url=DEFAULT_API_URL,
                 port=DEFAULT_PORT, poll_interval=DEFAULT_POLL_INTERVAL,
                 sweep_timeout=DEFAULT_SWEEP_TIMEOUT, fetch_timeout=DEFAULT_FETCH_TIMEOUT,
                 workers=DEFAULT_WORKERS, store_retries=DEFAULT_STORE_RETRIES,
                 store_timeout=DEFAULT_STORE_TIMEOUT, max_failures=DEFAULT_MAX_FAILURES,
                 backoff_max=DEFAULT_BACKOFF_MAX, retention_days=DEFAULT_RETENTION_DAYS,
                 record_snapshots=True, use_session_index=True):
        self.database_url = database_url
        self.api_url = api_url
        self.port = port
        self.poll_interval = poll_interval
        self.sweep_timeout = sweep_timeout
        self.fetch_timeout = fetch_timeout
        self.workers = workers
        self.store_retries = store_retries
        self.store_timeout = store_timeout
        self.max_failures = max_failures
        self.backoff_max = backoff_max
        self.retention_days = retention_days
        self.record_snapshots = record_snapshots
        self.use_session_index = use_session_index

    @classmethod
    def from_env(cls):
        config = cls(
            database_url=os.environ.get('DATABASE_URL') or DEFAULT_DATABASE_URL,
            api_url=os.environ.get('ROOMTRACKER_API_URL') or DEFAULT_API_URL,
            port=get_env_int('PORT', cls.DEFAULT_PORT, 1, 65535),
            poll_interval=get_env_int('ROOMTRACKER_POLL_INTERVAL', cls.DEFAULT_POLL_INTERVAL, 5, 86400),
            sweep_timeout=get_env_int('ROOMTRACKER_SWEEP_TIMEOUT', cls.DEFAULT_SWEEP_TIMEOUT, 5, 3600),
            fetch_timeout=get_env_int('ROOMTRACKER_FETCH_TIMEOUT', cls.DEFAULT_FETCH_TIMEOUT, 1, 600),
            workers=get_env_int('ROOMTRACKER_WORKERS', cls.DEFAULT_WORKERS, 1, 64),
            store_retries=get_env_int('ROOMTRACKER_STORE_RETRIES', cls.DEFAULT_STORE_RETRIES, 0, 10),
            store_timeout=get_env_int('ROOMTRACKER_STORE_TIMEOUT', cls.DEFAULT_STORE_TIMEOUT, 1, 300),
            max_failures=get_env_int('ROOMTRACKER_MAX_FAILURES', cls.DEFAULT_MAX_FAILURES, 1, 1000),
            backoff_max=get_env_int('ROOMTRACKER_BACKOFF_MAX', cls.DEFAULT_BACKOFF_MAX, 1, 86400),
            retention_days=get_env_int('ROOMTRACKER_RETENTION_DAYS', cls.DEFAULT_RETENTION_DAYS, 1, 3650),
            record_snapshots=get_env_int('ROOMTRACKER_RECORD_SNAPSHOTS', 1, 0, 1) == 1,
            use_session_index=get_env_int('ROOMTRACKER_USE_SESSION_INDEX', 1, 0, 1) == 1,
        )
        log.info(
            f"[Config] poll_interval={config.poll_interval}s, sweep_timeout={config.sweep_timeout}s, "
            f"workers={config.workers}, store_retries={config.store_retries}, "
            f"max_failures={config.max_failures}, retention={config.retention_days}d"
        )
        return config
