"""CLI entry point for RelayShadow.

Runs the DVM service, or sends a single job request to a DVM and prints
the result. The DVM runs in one-shot mode (``--once``) or continuously
with a Prometheus metrics server.

Examples:
    ```bash
    python -m relayshadow dvm
    python -m relayshadow dvm --log-level DEBUG --config config/services/dvm.yaml
    python -m relayshadow request --dvm-pubkey <hex> --threat-level high
    python -m relayshadow request --dvm-pubkey <hex> --type analyze --relay wss://nos.lol
    ```
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any

from relayshadow.core import Store, start_metrics_server
from relayshadow.core.exceptions import (
    ConnectivityError,
    DatabaseError,
    PublishingError,
    SignatureError,
)
from relayshadow.core.logger import Logger, StructuredFormatter
from relayshadow.core.yaml import load_yaml
from relayshadow.models.constants import RequestType, ServiceName, ThreatLevel
from relayshadow.services.client import DvmClient, DvmClientConfig
from relayshadow.services.dvm import Dvm


CONFIG_BASE = Path("config")
STORE_CONFIG = CONFIG_BASE / "store.yaml"
DVM_CONFIG = CONFIG_BASE / "services" / "dvm.yaml"
CLIENT_CONFIG = CONFIG_BASE / "services" / "client.yaml"

DEFAULT_RESPONSE_TIMEOUT = 60.0

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130

logger = Logger("cli")


# =============================================================================
# DVM
# =============================================================================


async def run_dvm(store: Store, service_dict: dict[str, Any], *, once: bool) -> int:
    """Run the DVM in one-shot or continuous mode.

    In one-shot mode the DVM serves requests for one ``interval``, runs a
    single housekeeping cycle and exits. In continuous mode a Prometheus
    metrics server is started and the DVM runs until a shutdown signal is
    received.

    Returns:
        Exit code: 0 for success, 1 for failure.
    """
    service = Dvm.from_dict(service_dict, store=store)
    service_name = ServiceName.DVM

    # One-shot mode: single cycle, no metrics server
    if once:
        try:
            async with service:
                await service.wait(service.config.interval)
                await service.run()
            logger.info(f"{service_name}_completed")
            return EXIT_OK
        except Exception as e:  # Intentionally broad: CLI error boundary for one-shot mode
            logger.error(f"{service_name}_failed", error=str(e))
            return EXIT_FAILURE

    # Continuous mode: metrics server + indefinite operation
    metrics_config = service.config.metrics
    metrics_server = await start_metrics_server(metrics_config)

    if metrics_config.enabled:
        logger.info(
            "metrics_server_started",
            host=metrics_config.host,
            port=metrics_config.port,
            path=metrics_config.path,
        )

    # Signal handling for graceful shutdown
    def handle_signal(sig: signal.Signals) -> None:
        logger.info("shutdown_signal", signal=sig.name)
        service.request_shutdown()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        async with service:
            await service.run_forever()
        return EXIT_OK
    except Exception as e:  # Intentionally broad: CLI error boundary for continuous mode
        logger.error(f"{service_name}_failed", error=str(e))
        return EXIT_FAILURE
    finally:
        await metrics_server.stop()
        if metrics_config.enabled:
            logger.info("metrics_server_stopped")


def _apply_pool_overrides(
    store_dict: dict[str, Any],
    pool_overrides: dict[str, Any] | None,
    service_name: str,
) -> None:
    """Merge per-service pool overrides into the shared store configuration.

    Applies ``user``, ``password_env`` to ``pool.database``, ``min_size`` and
    ``max_size`` to ``pool.limits``, and auto-sets ``application_name`` to the
    service name (unless explicitly provided in overrides).
    """
    pool = store_dict.setdefault("pool", {})

    server_settings = pool.setdefault("server_settings", {})
    if "application_name" not in server_settings:
        server_settings["application_name"] = service_name

    if not pool_overrides:
        return

    if "application_name" in pool_overrides:
        server_settings["application_name"] = pool_overrides["application_name"]

    db_overrides = {k: pool_overrides[k] for k in ("user", "password_env") if k in pool_overrides}
    if db_overrides:
        pool.setdefault("database", {}).update(db_overrides)

    limits_overrides = {k: pool_overrides[k] for k in ("min_size", "max_size") if k in pool_overrides}
    if limits_overrides:
        pool.setdefault("limits", {}).update(limits_overrides)


async def dvm_main(args: argparse.Namespace) -> int:
    """Load the store and DVM configuration, then run the DVM."""
    store_dict = _load_yaml_dict(args.store_config)
    service_dict = _load_yaml_dict(args.config or DVM_CONFIG)
    pool_overrides = service_dict.pop("pool", None)
    _apply_pool_overrides(store_dict, pool_overrides, ServiceName.DVM)

    store = Store.from_dict(store_dict)

    try:
        async with store:
            return await run_dvm(store, service_dict, once=args.once)
    except (ConnectionError, DatabaseError) as e:
        logger.error("connection_failed", error=str(e))
        return EXIT_FAILURE


# =============================================================================
# Request client
# =============================================================================


async def request_main(args: argparse.Namespace) -> int:
    """Send one job request and print the first result as JSON."""
    client_dict = _load_yaml_dict(args.config or CLIENT_CONFIG)
    if args.via:
        client_dict["relays"] = args.via
    if args.dvm_pubkey:
        client_dict["dvm_pubkey"] = args.dvm_pubkey

    try:
        client = DvmClient(DvmClientConfig(**client_dict))
        async with client:
            request_id = await client.send_request(
                request_type=args.type,
                threat_level=args.threat_level,
                max_results=args.max_results,
                use_case=args.use_case,
                current_relays=args.relay or (),
                context=args.context,
            )
            result = await client.wait_for_response(request_id, timeout=args.timeout)
    except (ConnectivityError, PublishingError, SignatureError, ValueError) as e:
        logger.error("request_failed", error=str(e), error_type=type(e).__name__)
        return EXIT_FAILURE

    output = result.payload if result.payload is not None else result.content
    print(json.dumps(output, indent=2, ensure_ascii=False))  # noqa: T201
    return EXIT_FAILURE if result.is_error else EXIT_OK


# =============================================================================
# Argument parsing
# =============================================================================


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level (default: INFO)",
    )

    parser = argparse.ArgumentParser(
        prog="relayshadow",
        description="RelayShadow relay recommendation DVM",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    dvm = commands.add_parser("dvm", parents=[common], help="Run the DVM service")
    dvm.add_argument(
        "--config",
        type=Path,
        help=f"DVM config path (default: {DVM_CONFIG})",
    )
    dvm.add_argument(
        "--store-config",
        type=Path,
        default=STORE_CONFIG,
        help=f"Store config path (default: {STORE_CONFIG})",
    )
    dvm.add_argument(
        "--once",
        action="store_true",
        help="Serve for one interval, run one cycle, and exit (default: run continuously)",
    )

    request = commands.add_parser(
        "request", parents=[common], help="Send one job request and print the result"
    )
    request.add_argument(
        "--config",
        type=Path,
        help=f"Client config path (default: {CLIENT_CONFIG})",
    )
    request.add_argument("--dvm-pubkey", help="Hex public key of the DVM")
    request.add_argument(
        "--type",
        choices=[t.value for t in RequestType],
        default=RequestType.RECOMMEND.value,
        help="Request type (default: recommend)",
    )
    request.add_argument(
        "--threat-level",
        default=ThreatLevel.MEDIUM.value,
        help="Threat level: low, medium, high, nation-state (default: medium)",
    )
    request.add_argument("--max-results", type=int, help="Number of results")
    request.add_argument("--use-case", default="social", help="Use case (default: social)")
    request.add_argument(
        "--relay",
        action="append",
        metavar="URL",
        help="A relay you already use (repeatable)",
    )
    request.add_argument("--context", help="Free-text request context")
    request.add_argument(
        "--via",
        action="append",
        metavar="URL",
        help="Relay to publish the request on (repeatable, overrides the config)",
    )
    request.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_RESPONSE_TIMEOUT,
        help=f"Seconds to wait for the result (default: {DEFAULT_RESPONSE_TIMEOUT:g})",
    )

    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    """Configure the root logger with structured formatting.

    Installs a ``StructuredFormatter`` on the root handler so that all
    log output -- from both ``Logger`` (with ``structured_kv`` extra) and
    plain ``logging.getLogger()`` calls in queries/utils -- is unified as
    ``level name message key=value ...``.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level))


def _load_yaml_dict(path: Path) -> dict[str, Any]:
    """Load a YAML file as a dict, returning ``{}`` if the file does not exist."""
    if not path.exists():
        logger.warning("config_not_found", path=str(path))
        return {}
    return load_yaml(str(path))


async def main(argv: list[str] | None = None) -> int:
    """Main entry point: parse args and dispatch to the subcommand."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        if args.command == "dvm":
            return await dvm_main(args)
        return await request_main(args)
    except KeyboardInterrupt:
        logger.info("interrupted")
        return EXIT_INTERRUPTED


def cli() -> None:
    """Synchronous entry point for console_scripts."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(EXIT_INTERRUPTED)


if __name__ == "__main__":
    cli()
