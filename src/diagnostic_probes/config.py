"""
Configuration dataclasses for the diagnostic probe engine.

This module defines all configuration structures used throughout the system,
including per-probe limits and timeouts, the RDAP bootstrap locations, the
HTTP server binding and logging configuration. Configuration can be loaded
from a JSON file and overridden from the environment (``.env`` supported).
"""

import json
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .models import ResolverSpec


DEFAULT_RESOLVERS: tuple[ResolverSpec, ...] = (
    ResolverSpec("1.1.1.1", "Cloudflare"),
    ResolverSpec("8.8.8.8", "Google"),
    ResolverSpec("9.9.9.9", "Quad9"),
    ResolverSpec("208.67.222.222", "OpenDNS"),
    ResolverSpec("76.76.2.0", "ControlD"),
    ResolverSpec("94.140.14.14", "AdGuard"),
    ResolverSpec("185.228.168.9", "CleanBrowsing"),
    ResolverSpec("77.88.8.8", "Yandex"),
)

IANA_BOOTSTRAP_URLS = {
    "domain": "https://data.iana.org/rdap/dns.json",
    "ipv4": "https://data.iana.org/rdap/ipv4.json",
    "ipv6": "https://data.iana.org/rdap/ipv6.json",
    "asn": "https://data.iana.org/rdap/asn.json",
}


@dataclass
class ResolverBenchConfig:
    """Resolver bench limits and defaults."""

    default_resolvers: list[ResolverSpec] = field(
        default_factory=lambda: list(DEFAULT_RESOLVERS)
    )
    default_timeout_ms: int = 5000
    min_timeout_ms: int = 1000
    max_timeout_ms: int = 30000
    max_custom_resolvers: int = 20
    max_records: int = 10


@dataclass
class MailTLSConfig:
    """Mail TLS prober configuration."""

    timeout_seconds: float = 5.0
    ehlo_name: str = "client.local"
    default_port: int = 25
    direct_tls_port: int = 465


@dataclass
class GreylistConfig:
    """Greylist detector configuration."""

    connect_timeout_seconds: float = 10.0
    quit_grace_seconds: float = 0.1
    default_port: int = 25
    default_attempts: int = 3
    min_attempts: int = 2
    max_attempts: int = 5
    default_delay_seconds: float = 60.0
    min_delay_seconds: float = 1.0
    max_delay_seconds: float = 300.0


@dataclass
class RdapConfig:
    """RDAP resolver configuration."""

    bootstrap_urls: dict[str, str] = field(
        default_factory=lambda: dict(IANA_BOOTSTRAP_URLS)
    )
    timeout_seconds: float = 10.0
    user_agent: str = "IP-Calc-Diagnostics/1.0"


@dataclass
class ServerConfig:
    """HTTP server binding."""

    host: str = "127.0.0.1"
    port: int = 8080


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"
    output_format: str = "text"  # 'json', 'text', 'both'


@dataclass
class SystemConfig:
    """Main system configuration combining all sub-configurations."""

    resolver_bench: ResolverBenchConfig = field(default_factory=ResolverBenchConfig)
    mail_tls: MailTLSConfig = field(default_factory=MailTLSConfig)
    greylist: GreylistConfig = field(default_factory=GreylistConfig)
    rdap: RdapConfig = field(default_factory=RdapConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def create_default_config() -> SystemConfig:
    """Create a system configuration with every default applied."""
    return SystemConfig()


def load_config_from_file(config_path: Path) -> Optional[SystemConfig]:
    """
    Load configuration from a JSON file.

    Sections and keys missing from the file keep their defaults.

    Args:
        config_path: Path to the configuration file

    Returns:
        SystemConfig if successful, None otherwise
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        defaults = SystemConfig()

        bench_data = data.get("resolver_bench", {})
        resolvers = [
            ResolverSpec(address=r["address"], label=r["label"])
            for r in bench_data.get("default_resolvers", [])
        ] or list(DEFAULT_RESOLVERS)
        bench_defaults = defaults.resolver_bench
        resolver_bench = ResolverBenchConfig(
            default_resolvers=resolvers,
            default_timeout_ms=bench_data.get("default_timeout_ms", bench_defaults.default_timeout_ms),
            min_timeout_ms=bench_data.get("min_timeout_ms", bench_defaults.min_timeout_ms),
            max_timeout_ms=bench_data.get("max_timeout_ms", bench_defaults.max_timeout_ms),
            max_custom_resolvers=bench_data.get("max_custom_resolvers", bench_defaults.max_custom_resolvers),
            max_records=bench_data.get("max_records", bench_defaults.max_records),
        )

        tls_data = data.get("mail_tls", {})
        mail_tls = MailTLSConfig(
            timeout_seconds=tls_data.get("timeout_seconds", defaults.mail_tls.timeout_seconds),
            ehlo_name=tls_data.get("ehlo_name", defaults.mail_tls.ehlo_name),
            default_port=tls_data.get("default_port", defaults.mail_tls.default_port),
            direct_tls_port=tls_data.get("direct_tls_port", defaults.mail_tls.direct_tls_port),
        )

        grey_data = data.get("greylist", {})
        grey_defaults = defaults.greylist
        greylist = GreylistConfig(
            connect_timeout_seconds=grey_data.get("connect_timeout_seconds", grey_defaults.connect_timeout_seconds),
            quit_grace_seconds=grey_data.get("quit_grace_seconds", grey_defaults.quit_grace_seconds),
            default_port=grey_data.get("default_port", grey_defaults.default_port),
            default_attempts=grey_data.get("default_attempts", grey_defaults.default_attempts),
            min_attempts=grey_data.get("min_attempts", grey_defaults.min_attempts),
            max_attempts=grey_data.get("max_attempts", grey_defaults.max_attempts),
            default_delay_seconds=grey_data.get("default_delay_seconds", grey_defaults.default_delay_seconds),
            min_delay_seconds=grey_data.get("min_delay_seconds", grey_defaults.min_delay_seconds),
            max_delay_seconds=grey_data.get("max_delay_seconds", grey_defaults.max_delay_seconds),
        )

        rdap_data = data.get("rdap", {})
        bootstrap_urls = dict(IANA_BOOTSTRAP_URLS)
        bootstrap_urls.update(rdap_data.get("bootstrap_urls", {}))
        rdap = RdapConfig(
            bootstrap_urls=bootstrap_urls,
            timeout_seconds=rdap_data.get("timeout_seconds", defaults.rdap.timeout_seconds),
            user_agent=rdap_data.get("user_agent", defaults.rdap.user_agent),
        )

        server_data = data.get("server", {})
        server = ServerConfig(
            host=server_data.get("host", defaults.server.host),
            port=server_data.get("port", defaults.server.port),
        )

        logging_data = data.get("logging", {})
        logging_config = LoggingConfig(
            level=logging_data.get("level", defaults.logging.level),
            output_format=logging_data.get("output_format", defaults.logging.output_format),
        )

        return SystemConfig(
            resolver_bench=resolver_bench,
            mail_tls=mail_tls,
            greylist=greylist,
            rdap=rdap,
            server=server,
            logging=logging_config,
        )

    except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return None
    except FileNotFoundError:
        return None


def save_config_to_file(config: SystemConfig, config_path: Path) -> bool:
    """
    Save configuration to a JSON file.

    Args:
        config: SystemConfig to save
        config_path: Path to save the configuration

    Returns:
        True if successful, False otherwise
    """
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)

        bench = config.resolver_bench
        data = {
            "resolver_bench": {
                "default_resolvers": [
                    {"address": r.address, "label": r.label}
                    for r in bench.default_resolvers
                ],
                "default_timeout_ms": bench.default_timeout_ms,
                "min_timeout_ms": bench.min_timeout_ms,
                "max_timeout_ms": bench.max_timeout_ms,
                "max_custom_resolvers": bench.max_custom_resolvers,
                "max_records": bench.max_records,
            },
            "mail_tls": {
                "timeout_seconds": config.mail_tls.timeout_seconds,
                "ehlo_name": config.mail_tls.ehlo_name,
                "default_port": config.mail_tls.default_port,
                "direct_tls_port": config.mail_tls.direct_tls_port,
            },
            "greylist": {
                "connect_timeout_seconds": config.greylist.connect_timeout_seconds,
                "quit_grace_seconds": config.greylist.quit_grace_seconds,
                "default_port": config.greylist.default_port,
                "default_attempts": config.greylist.default_attempts,
                "min_attempts": config.greylist.min_attempts,
                "max_attempts": config.greylist.max_attempts,
                "default_delay_seconds": config.greylist.default_delay_seconds,
                "min_delay_seconds": config.greylist.min_delay_seconds,
                "max_delay_seconds": config.greylist.max_delay_seconds,
            },
            "rdap": {
                "bootstrap_urls": dict(config.rdap.bootstrap_urls),
                "timeout_seconds": config.rdap.timeout_seconds,
                "user_agent": config.rdap.user_agent,
            },
            "server": {
                "host": config.server.host,
                "port": config.server.port,
            },
            "logging": {
                "level": config.logging.level,
                "output_format": config.logging.output_format,
            },
        }

        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

        return True

    except (OSError, TypeError) as e:
        print(f"Error saving config: {e}", file=sys.stderr)
        return False


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def apply_env_overrides(config: SystemConfig, dotenv_path: Optional[Path] = None) -> SystemConfig:
    """
    Apply ``PROBES_*`` environment variables on top of a configuration.

    A ``.env`` file is read first (existing environment variables win).
    Unparsable numeric values leave the configured value untouched.

    Args:
        config: Configuration to update in place
        dotenv_path: Optional explicit ``.env`` location

    Returns:
        The same configuration object, for chaining
    """
    load_dotenv(dotenv_path=dotenv_path)

    config.server.host = os.getenv("PROBES_HOST", config.server.host)
    config.server.port = _int_env("PROBES_PORT", config.server.port)
    config.logging.level = (os.getenv("PROBES_LOG_LEVEL", config.logging.level) or "info").lower()
    config.logging.output_format = os.getenv("PROBES_LOG_FORMAT", config.logging.output_format)
    config.resolver_bench.default_timeout_ms = _int_env(
        "PROBES_DNS_TIMEOUT_MS", config.resolver_bench.default_timeout_ms
    )
    config.mail_tls.timeout_seconds = _float_env(
        "PROBES_MAIL_TLS_TIMEOUT", config.mail_tls.timeout_seconds
    )
    config.greylist.connect_timeout_seconds = _float_env(
        "PROBES_GREYLIST_TIMEOUT", config.greylist.connect_timeout_seconds
    )
    config.rdap.timeout_seconds = _float_env(
        "PROBES_RDAP_TIMEOUT", config.rdap.timeout_seconds
    )
    return config
