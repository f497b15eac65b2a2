"""Approval daemon entry point."""

from __future__ import annotations

import argparse
import logging
import signal
import threading
import time
from pathlib import Path

from mailgate.approval.queue import ApprovalQueue
from mailgate.bootstrap import BootstrapError, BootstrapStore
from mailgate.events.store import ApprovalEventLog, EventStore
from mailgate.ipc.client import DaemonClient, DaemonProtocolError, DaemonUnreachableError
from mailgate.ipc.server import IpcServer
from mailgate.notify.approval import ApprovalNotifier, BrokerPollLoop
from mailgate.notify.ntfy import BrokerEventStream, NtfyClient
from mailgate.settings import Settings, SettingsError, ensure_directories, load_settings, read_secret
from mailgate.web.dashboard import DashboardServer
from mailgate.web.setup import SetupServer

BANNER = "=" * 63

logger = logging.getLogger("mailgate.daemon")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the out-of-band email approval daemon")
    parser.add_argument(
        "--config-dir",
        default=None,
        help="Config directory override (default: ~/.config/mailgate)",
    )
    parser.add_argument("--reset", action="store_true", help="Reset configuration and re-run setup")
    parser.add_argument("--status", action="store_true", help="Show daemon status")
    parser.add_argument("--no-dashboard", action="store_true", help="Do not start the web dashboard")
    parser.add_argument("--no-browser", action="store_true", help="Do not open a browser during setup")
    parser.add_argument("--verbose", action="store_true", help="Log debug output")
    return parser


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def show_status(settings: Settings) -> int:
    client = DaemonClient(settings.paths.socket_path, timeout=5)
    try:
        response = client.status()
    except (DaemonUnreachableError, DaemonProtocolError) as exc:
        print(f"Status: not running ({exc})")
        return 1
    print(f"Status: {response.get('status', 'unknown')}")
    return 0


def run(settings: Settings, *, dashboard: bool, open_browser: bool) -> int:
    store = BootstrapStore(settings.paths.bootstrap_path)
    try:
        config = store.load_or_create()
    except BootstrapError as exc:
        logger.error("Failed to load or create config: %s", exc)
        return 1

    ntfy = NtfyClient(
        settings.broker_url,
        access_token=read_secret(settings.paths.secrets_dir, "ntfy_access_token.txt"),
    )
    notifier = ApprovalNotifier(ntfy, config.ntfy_topic)

    if not config.setup_complete:
        SetupServer(
            config=config,
            store=store,
            notifier=notifier,
            subscribe_url=ntfy.topic_url(config.ntfy_topic),
        ).run(open_browser=open_browser)

    event_store = EventStore(settings.paths.events_db_path)
    event_store.initialize()
    event_log = ApprovalEventLog(event_store.connect())

    queue = ApprovalQueue(notifier, timeout_seconds=settings.approval_timeout_seconds)
    queue.add_listener(event_log.on_transition)

    ipc_server = IpcServer(socket_path=settings.paths.socket_path, queue=queue, event_log=event_log)
    try:
        ipc_server.bind()
    except OSError as exc:
        logger.error("Failed to create socket server: %s", exc)
        event_store.close()
        return 1
    ipc_server.start()

    poll_loop = BrokerPollLoop(
        queue,
        BrokerEventStream(ntfy, config.ntfy_topic, since=int(time.time())),
        interval=settings.poll_interval_seconds,
    )
    poll_loop.start()

    dashboard_server: DashboardServer | None = None
    if dashboard and settings.dashboard_enabled:
        dashboard_server = DashboardServer(
            host=settings.dashboard_host,
            port=settings.dashboard_port,
            queue=queue,
        )
        try:
            dashboard_server.start()
        except OSError as exc:
            logger.warning("Dashboard disabled, could not bind %s:%s: %s", settings.dashboard_host, settings.dashboard_port, exc)
            dashboard_server = None

    event_log.record(
        "daemon_boot",
        {"socket": str(settings.paths.socket_path), "dashboard": dashboard_server is not None},
    )
    logger.info(BANNER)
    logger.info("APPROVAL DAEMON RUNNING")
    logger.info("   ntfy topic: %s", config.ntfy_topic)
    logger.info("   Socket: %s", settings.paths.socket_path)
    if dashboard_server is not None:
        logger.info("   Dashboard: %s", dashboard_server.url)
    logger.info(BANNER)

    stop = threading.Event()

    def handle_shutdown(*_: object) -> None:
        stop.set()

    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    try:
        while not stop.wait(1):
            pass
    finally:
        event_log.record("daemon_shutdown", {"pending_lost": queue.has_pending()})
        poll_loop.stop()
        if dashboard_server is not None:
            dashboard_server.stop()
        ipc_server.stop()
        event_store.close()
    return 0


def main() -> int:
    args = build_parser().parse_args()
    configure_logging(args.verbose)
    config_dir = Path(args.config_dir).expanduser().resolve() if args.config_dir else None
    try:
        settings = load_settings(config_dir)
    except SettingsError as exc:
        logger.error("%s", exc)
        return 1

    if args.status:
        return show_status(settings)

    ensure_directories(settings)
    if args.reset:
        BootstrapStore(settings.paths.bootstrap_path).reset()
        logger.info("Configuration reset. Setup will run on this start.")

    return run(settings, dashboard=not args.no_dashboard, open_browser=not args.no_browser)


if __name__ == "__main__":
    raise SystemExit(main())
