#!/usr/bin/env python3
"""Warranty Tracker launcher: single entry point for the API server.

Thin wrapper around interfaces/api/server.py that adds:
- Logging setup
- Data directory verification
- Signal handling for graceful shutdown
- ``--sweep-once`` for running the expiration sweep from an external
  timer (cron, systemd) instead of the in-process scheduler

Run directly:
    python3 warranty_launcher.py
    python3 warranty_launcher.py --sweep-once
"""

import argparse
import logging
import signal
from pathlib import Path

logger = logging.getLogger("tracker.launcher")


def setup_logging(level: str = "info"):
    """Configure root logger."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def ensure_data_dirs(db_path: str):
    """Create the directory holding the SQLite file if it doesn't exist."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    logger.info("Data directory verified (%s)", Path(db_path).parent)


def install_signal_handlers():
    """Install SIGTERM/SIGINT handlers for graceful shutdown."""
    def handle_signal(signum, frame):
        sig_name = signal.Signals(signum).name
        logger.info("Received %s, shutting down", sig_name)
        # uvicorn turns this into a lifespan shutdown
        raise SystemExit(0)

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)
    logger.info("Signal handlers installed (SIGTERM, SIGINT)")


def sweep_once(config) -> int:
    """Run one expiration sweep against the configured database and exit."""
    from tools.tracker.email_templates import Mailer
    from tools.tracker.expiration_sweep import ExpirationSweep
    from tools.tracker.products import ProductStore
    from tools.tracker.services import ServiceStore
    from tools.tracker.users import UserStore

    db_path = config.database.db_path
    products = ProductStore(db_path, threshold_days=config.status.threshold_days)
    services = ServiceStore(db_path, threshold_days=config.status.threshold_days)
    users = UserStore(db_path)
    try:
        sweep = ExpirationSweep(
            products, services, users, Mailer(config.email),
            lookahead_days=config.sweep.lookahead_days,
        )
        report = sweep.run_sweep()
    finally:
        for store in (products, services, users):
            store.close()
    return 1 if report.failed else 0


def main(argv: list[str] | None = None) -> int:
    """Entry point: boot sequence, then uvicorn or a one-off sweep."""
    parser = argparse.ArgumentParser(description="Warranty Tracker API server")
    parser.add_argument("--config", help="Path to settings.toml")
    parser.add_argument("--host", help="Override server.host")
    parser.add_argument("--port", type=int, help="Override server.port")
    parser.add_argument(
        "--sweep-once", action="store_true",
        help="Run the expiration sweep once and exit",
    )
    args = parser.parse_args(argv)

    from core.config import get_config
    config = get_config(args.config)
    setup_logging(config.server.log_level)
    logger.info("Warranty Tracker launcher starting")

    ensure_data_dirs(config.database.db_path)

    if args.sweep_once:
        return sweep_once(config)

    install_signal_handlers()

    import uvicorn
    host = args.host or config.server.host
    port = args.port or config.server.port
    logger.info("Starting uvicorn on %s:%d", host, port)
    uvicorn.run(
        "interfaces.api.server:create_app",
        factory=True,
        host=host,
        port=port,
        log_level=config.server.log_level,
        access_log=False,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
