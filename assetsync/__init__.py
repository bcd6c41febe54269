"""assetsync - Offline asset cache synchronization engine."""

import argparse
import json
import logging
import signal
import sys
from threading import Event
from typing import Optional

__version__ = "0.1.0"

# Global shutdown event for signal handlers
_shutdown_event: Optional[Event] = None

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


def _handle_shutdown(signum: int, frame: object) -> None:
    """Signal handler for graceful shutdown."""
    sig_name = signal.Signals(signum).name
    logger.info("Received %s, initiating shutdown...", sig_name)
    if _shutdown_event is not None:
        _shutdown_event.set()


def _cmd_run(args: argparse.Namespace) -> None:
    """Execute the run command - start the sync engine and HTTP front."""
    global _shutdown_event

    _setup_logging(args.verbose)

    logger.info("assetsync %s starting...", __version__)

    # Import here to avoid circular imports and allow logging setup first
    from .config import load_config, ConfigError
    from .store import GenerationStore, StoreError
    from .engine import SyncEngine
    from .api import ApiServer, ApiError

    # 1. Load configuration
    try:
        config = load_config(args.config)
        logger.info("Configuration loaded from %s", args.config)
        logger.info("Syncing %s in %s mode", config.origin.base_url, config.sync.mode)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)

    # 2. Open the generation store
    try:
        store = GenerationStore.open(config.store.path)
        logger.info("Store opened at %s", config.store.path)
    except StoreError as e:
        logger.error("Store error: %s", e)
        sys.exit(1)

    # 3. Setup shutdown and "check now" handlers
    engine = SyncEngine(config, store)
    _shutdown_event = Event()
    signal.signal(signal.SIGTERM, _handle_shutdown)
    signal.signal(signal.SIGINT, _handle_shutdown)
    if hasattr(signal, "SIGUSR1"):
        signal.signal(signal.SIGUSR1, lambda signum, frame: engine.check_now())

    # 4. Start components
    api_server: Optional[ApiServer] = None

    try:
        engine.start()

        if config.server.enabled:
            try:
                api_server = ApiServer(config.server, engine)
                api_server.start()
            except ApiError as e:
                logger.error("Failed to start HTTP server: %s", e)
                logger.warning("Continuing without HTTP server")
                api_server = None

        logger.info("All components started, waiting for shutdown signal...")

        # 5. Wait for shutdown signal
        _shutdown_event.wait()

    except KeyboardInterrupt:
        # Backup handler if signal doesn't work
        logger.info("Keyboard interrupt received")
    finally:
        # 6. Cleanup - stop all components
        logger.info("Shutting down components...")

        if api_server is not None:
            api_server.stop()

        if not engine.scheduler.wait_idle(timeout=10):
            logger.warning("Update check still running at shutdown")

        store.close()
        logger.info("Store closed")

        logger.info("Shutdown complete")


def _cmd_check(args: argparse.Namespace) -> None:
    """Execute the check command - run one update check in the foreground."""
    _setup_logging(args.verbose)

    from .config import load_config, ConfigError
    from .store import GenerationStore, StoreError
    from .engine import SyncEngine

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}")
        sys.exit(1)

    try:
        store = GenerationStore.open(config.store.path)
    except StoreError as e:
        print(f"Error: {e}")
        sys.exit(1)

    try:
        engine = SyncEngine(config, store)
        if store.active_generation() is None:
            updated = engine.install() is not None
        else:
            updated = engine.check_for_updates()
        print(f"Installed version: {store.installed_version()}")
        print("Cache updated." if updated else "Cache unchanged.")
    except StoreError as e:
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        store.close()


def _cmd_status(args: argparse.Namespace) -> None:
    """Execute the status command - print the cache state as JSON."""
    from pathlib import Path

    from .config import load_config, ConfigError
    from .store import GenerationStore, StoreError
    from .engine import SyncEngine

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}")
        sys.exit(1)

    if not Path(config.store.path).exists():
        print(f"Error: Store not found at {config.store.path}")
        sys.exit(1)

    try:
        store = GenerationStore.open(config.store.path)
    except StoreError as e:
        print(f"Error: {e}")
        sys.exit(1)

    try:
        print(json.dumps(SyncEngine(config, store).status(), indent=2))
    except StoreError as e:
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        store.close()


def _cmd_clean(args: argparse.Namespace) -> None:
    """Execute the clean command - remove stale or all cache generations."""
    from pathlib import Path

    from .config import load_config, ConfigError
    from .store import GenerationStore, StoreError

    # 1. Load configuration
    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}")
        sys.exit(1)

    # 2. Validate store exists
    if not Path(config.store.path).exists():
        print(f"Error: Store not found at {config.store.path}")
        sys.exit(1)

    # 3. Prune or purge
    try:
        store = GenerationStore.open(config.store.path)
    except StoreError as e:
        print(f"Error: {e}")
        sys.exit(1)

    try:
        if args.all:
            deleted = store.purge()
            print(f"Deleted all {deleted} generations from the store.")
        else:
            names = store.prune()
            print(f"Deleted {len(names)} stale generations.")
    except StoreError as e:
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        store.close()


def main() -> None:
    """Main entry point for the assetsync package."""
    parser = argparse.ArgumentParser(
        description="assetsync - Offline asset cache synchronization engine"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"assetsync {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command")

    # Run subcommand (default behavior)
    run_parser = subparsers.add_parser(
        "run",
        help="Start the sync engine and HTTP front (default)",
    )
    run_parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)",
    )
    run_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )
    run_parser.set_defaults(func=_cmd_run)

    # Check subcommand
    check_parser = subparsers.add_parser(
        "check",
        help="Check for updates once and apply them",
    )
    check_parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)",
    )
    check_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )
    check_parser.set_defaults(func=_cmd_check)

    # Status subcommand
    status_parser = subparsers.add_parser(
        "status",
        help="Show installed version and cache contents",
    )
    status_parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)",
    )
    status_parser.set_defaults(func=_cmd_status)

    # Clean subcommand
    clean_parser = subparsers.add_parser(
        "clean",
        help="Remove stale cache generations",
    )
    clean_parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)",
    )
    clean_parser.add_argument(
        "--all",
        action="store_true",
        help="Delete every generation, including the active one",
    )
    clean_parser.set_defaults(func=_cmd_clean)

    args = parser.parse_args()

    # Default to 'run' if no command specified
    if args.command is None:
        args.config = "config.yaml"
        args.verbose = False
        args.func = _cmd_run

    args.func(args)
