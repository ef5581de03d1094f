"""
Command-line interface for the diagnostic probe engine.

This module provides the main CLI entry point with commands for:
- serve: Run the JSON-over-HTTP probe service
- dns-bench, mail-tls, greylist, rdap: Run one probe and print its JSON
- config: Configuration management
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from . import __version__
from .config import (
    SystemConfig,
    apply_env_overrides,
    create_default_config,
    load_config_from_file,
    save_config_to_file,
)
from .enums import LogLevel
from .exceptions import ProbeError, ValidationError
from .orchestrator import ProbeOrchestrator
from .probe_logger import ProbeLogger
from .server import run_server

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INVALID_INPUT = 2

DEFAULT_CONFIG_PATH = Path.home() / ".diagnostic_probes" / "config.json"


def load_config(args: argparse.Namespace) -> Optional[SystemConfig]:
    """Configuration from ``--config`` (or defaults) with environment overrides."""
    config = None
    if getattr(args, "config", None):
        config = load_config_from_file(Path(args.config))
        if config is None:
            print(f"Error: Could not load config from {args.config}", file=sys.stderr)
            return None

    config = apply_env_overrides(config or create_default_config())
    if getattr(args, "verbose", False):
        config.logging.level = LogLevel.DEBUG.value
    return config


def create_logger(config: SystemConfig) -> ProbeLogger:
    return ProbeLogger.from_config(config.logging, output_stream=sys.stderr)


async def run_probe(
    config: SystemConfig,
    call: Callable[[ProbeOrchestrator], Awaitable[dict]],
) -> int:
    """Run one orchestrator call, print its JSON and map errors to exit codes."""
    orchestrator = ProbeOrchestrator(config, logger=create_logger(config))
    try:
        result = await call(orchestrator)
    except ValidationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_INVALID_INPUT
    except ProbeError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_FAILURE

    print(json.dumps(result, indent=2, ensure_ascii=False))
    return EXIT_OK


def _run(args: argparse.Namespace, call: Callable[[ProbeOrchestrator], Awaitable[dict]]) -> int:
    config = load_config(args)
    if config is None:
        return EXIT_FAILURE
    return asyncio.run(run_probe(config, call))


def cmd_serve(args: argparse.Namespace) -> int:
    """Handle the 'serve' command."""
    config = load_config(args)
    if config is None:
        return EXIT_FAILURE
    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port

    run_server(config, logger=create_logger(config))
    return EXIT_OK


def cmd_dns_bench(args: argparse.Namespace) -> int:
    """Handle the 'dns-bench' command."""
    body: dict[str, Any] = {
        "domain": args.domain,
        "recordType": args.type,
        "customResolvers": args.resolver or [],
        "includeDefaultResolvers": not args.no_defaults,
    }
    if args.timeout_ms is not None:
        body["timeoutMs"] = args.timeout_ms
    return _run(args, lambda o: o.handle_dns_performance(body))


def cmd_mail_tls(args: argparse.Namespace) -> int:
    """Handle the 'mail-tls' command."""
    body = {"domain": args.domain, "port": args.port}
    return _run(args, lambda o: o.handle_mail_tls(body))


def cmd_greylist(args: argparse.Namespace) -> int:
    """Handle the 'greylist' command."""
    body = {
        "domain": args.domain,
        "port": args.port,
        "attempts": args.attempts,
        "delayBetweenAttempts": args.delay,
    }
    return _run(args, lambda o: o.handle_greylist(body))


def cmd_rdap(args: argparse.Namespace) -> int:
    """Handle the 'rdap' command."""
    body = {"action": f"{args.kind}-lookup", args.kind: args.query}
    return _run(args, lambda o: o.handle_rdap(body))


def cmd_config(args: argparse.Namespace) -> int:
    """Handle the 'config' command."""
    config_path = Path(args.path) if args.path else DEFAULT_CONFIG_PATH

    if args.action == "show":
        config = load_config_from_file(config_path)
        if config is None:
            print(f"No configuration found at: {config_path}")
            print("Use 'config init' to create a default configuration.")
            return EXIT_FAILURE

        print(f"Configuration from: {config_path}")
        print(f"  Server: {config.server.host}:{config.server.port}")
        print(f"  Default resolvers: {len(config.resolver_bench.default_resolvers)}")
        print(f"  DNS timeout: {config.resolver_bench.default_timeout_ms} ms")
        print(f"  Mail TLS timeout: {config.mail_tls.timeout_seconds:g} s")
        print(f"  Greylist connect timeout: {config.greylist.connect_timeout_seconds:g} s")
        print(f"  RDAP timeout: {config.rdap.timeout_seconds:g} s")
        print(f"  Log level: {config.logging.level}")
        return EXIT_OK

    elif args.action == "init":
        if config_path.exists() and not args.force:
            print(f"Configuration already exists at: {config_path}")
            print("Use --force to overwrite.")
            return EXIT_FAILURE

        if save_config_to_file(create_default_config(), config_path):
            print(f"Configuration created at: {config_path}")
            return EXIT_OK
        return EXIT_FAILURE

    elif args.action == "validate":
        config = load_config_from_file(config_path)
        if config is None:
            print(f"Error: Could not load config from {config_path}", file=sys.stderr)
            return EXIT_FAILURE

        print(f"Configuration at {config_path} is valid.")
        return EXIT_OK

    return EXIT_FAILURE


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="diagnostic-probes",
        description="Network protocol diagnostic probes: DNS resolvers, mail TLS, greylisting, RDAP",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config", "-c",
        help="Path to configuration file",
    )
    common.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # 'serve' command
    serve_parser = subparsers.add_parser(
        "serve",
        parents=[common],
        help="Run the HTTP probe service",
    )
    serve_parser.add_argument("--host", help="Bind address (default from config)")
    serve_parser.add_argument("--port", type=int, help="Bind port (default from config)")
    serve_parser.set_defaults(func=cmd_serve)

    # 'dns-bench' command
    bench_parser = subparsers.add_parser(
        "dns-bench",
        parents=[common],
        help="Compare DNS resolver response times",
    )
    bench_parser.add_argument("domain", help="Name to resolve (e.g., example.com)")
    bench_parser.add_argument(
        "--type", "-t",
        default="A",
        help="Record type: A, AAAA, MX, TXT, NS, CNAME, SOA (default: A)",
    )
    bench_parser.add_argument(
        "--resolver", "-r",
        action="append",
        metavar="IP",
        help="Additional resolver address (repeatable)",
    )
    bench_parser.add_argument(
        "--no-defaults",
        action="store_true",
        help="Only query the resolvers given with --resolver",
    )
    bench_parser.add_argument(
        "--timeout-ms",
        type=int,
        help="Per-resolver timeout in milliseconds (clamped to 1000-30000)",
    )
    bench_parser.set_defaults(func=cmd_dns_bench)

    # 'mail-tls' command
    tls_parser = subparsers.add_parser(
        "mail-tls",
        parents=[common],
        help="Check STARTTLS / direct TLS support of a mail server",
    )
    tls_parser.add_argument("domain", help="Mail server host name")
    tls_parser.add_argument("--port", "-p", type=int, default=25, help="Port (default: 25; 465 for direct TLS)")
    tls_parser.set_defaults(func=cmd_mail_tls)

    # 'greylist' command
    grey_parser = subparsers.add_parser(
        "greylist",
        parents=[common],
        help="Detect greylisting with repeated SMTP connections",
    )
    grey_parser.add_argument("domain", help="Mail server host name")
    grey_parser.add_argument("--port", "-p", type=int, default=25, help="Port (default: 25)")
    grey_parser.add_argument("--attempts", "-n", type=int, default=3, help="Attempts, 2-5 (default: 3)")
    grey_parser.add_argument(
        "--delay", "-d",
        type=float,
        default=60.0,
        help="Seconds between attempts, 1-300 (default: 60)",
    )
    grey_parser.set_defaults(func=cmd_greylist)

    # 'rdap' command
    rdap_parser = subparsers.add_parser(
        "rdap",
        parents=[common],
        help="Look up registration data via RDAP",
    )
    rdap_parser.add_argument("kind", choices=["domain", "ip", "asn"], help="Object type")
    rdap_parser.add_argument("query", help="Domain name, IP address or AS number")
    rdap_parser.set_defaults(func=cmd_rdap)

    # 'config' command
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
    )
    config_parser.add_argument(
        "action",
        choices=["show", "init", "validate"],
        help="Configuration action",
    )
    config_parser.add_argument(
        "--path", "-p",
        help="Path to configuration file",
    )
    config_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Force overwrite existing configuration",
    )
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_OK

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
