"""Process entry point: connect the store, serve the read API and run the poller."""

import argparse
import asyncio
import logging
import sys

from tornado.ioloop import IOLoop

from . import __version__
from .config import TrackerConfig
from .errors import StoreUnavailableError, TrackerError
from .fetcher import PlatformFetcher
from .handlers import make_app
from .poller import TrackerPoller
from .store import TrackerStore
from .sweep import SweepRunner

log = logging.getLogger('roomtracker')

LOG_FORMAT = '[%(levelname)1.1s %(asctime)s.%(msecs)03d %(name)s] %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'


def build_parser():
    parser = argparse.ArgumentParser(
        prog='roomtracker',
        description='Track room presence on the platform and record user sessions.',
    )
    parser.add_argument('--once', action='store_true', help='Run a single sweep and exit')
    parser.add_argument('--port', type=int, default=None, help='Read API port (overrides PORT)')
    parser.add_argument('--log-level', default='INFO', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def connect_store(config):
    store = TrackerStore.from_config(config)
    try:
        store.connect()
    except StoreUnavailableError as e:
        log.error(f"[Service] {e}")
        sys.exit(1)
    return store


def run_once(config, store):
    """Single sweep. Returns the process exit code."""
    runner = SweepRunner.build(config, store, PlatformFetcher.from_config(config))
    try:
        result = asyncio.run(runner.run_sweep())
    except TrackerError as e:
        log.error(f"[Service] Sweep failed: {e}")
        return 1
    finally:
        runner.shutdown()
    log.info(f"[Service] Sweep finished: {result.as_dict()}")
    return 0


def serve(config, store):
    runner = SweepRunner.build(config, store, PlatformFetcher.from_config(config))
    if runner.index is not None:
        runner.index.initialize()
    poller = TrackerPoller.from_config(config, runner, store)

    app = make_app(store, poller)
    app.listen(config.port)
    log.info(f"[Service] Read API listening on port {config.port}")

    poller.start()
    try:
        IOLoop.current().start()
    except KeyboardInterrupt:
        log.info("[Service] Interrupted, shutting down")
    finally:
        poller.stop()
        runner.shutdown()
        store.close()
    return 0


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format=LOG_FORMAT, datefmt=LOG_DATEFMT)

    config = TrackerConfig.from_env()
    if args.port is not None:
        config.port = args.port

    store = connect_store(config)
    if args.once:
        try:
            return run_once(config, store)
        finally:
            store.close()
    return serve(config, store)


if __name__ == '__main__':
    sys.exit(main())
