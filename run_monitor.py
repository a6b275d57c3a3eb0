#!/usr/bin/env python3
"""
Tapline MQTT Monitor - Entry Point
==================================

This script starts the Tapline monitor, which:
- Keeps a persistent (TLS) MQTT session to the configured broker
- Subscribes to the whole topic namespace (or the configured filters)
- Classifies every inbound message (JSON record or plain text) and logs it
- Publishes one diagnostic message shortly after start

Usage:
    python run_monitor.py --config config/tapline_monitor/monitor_config.yaml

Signals:
    - SIGTERM: Graceful shutdown
    - SIGINT (Ctrl+C): Graceful shutdown

Logs:
    - Console: configured level
    - File: logs/monitor.log
    - Errors: logs/monitor-errors.log
"""

import argparse
import sys
from pathlib import Path

from tapline_mqtt import TaplineError
from tapline_monitor import MonitorApp, MonitorConfig
from tapline_monitor.config import LOG_LEVELS

DEFAULT_CONFIG = Path('config/tapline_monitor/monitor_config.yaml')


# ─────────────────────────────────────────────────────────────────────────────
# CLI
# ─────────────────────────────────────────────────────────────────────────────

def parse_args(argv=None):
    """
    Parse command-line arguments.

    Returns:
        argparse.Namespace with parsed arguments
    """
    parser = argparse.ArgumentParser(
        description="Tapline MQTT Monitor - subscribe, classify, log",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start with default config
  python run_monitor.py --config config/tapline_monitor/monitor_config.yaml

  # Override the broker and watch two topics only
  python run_monitor.py --broker mqtt://localhost:1883 --topic sensors/# --topic alerts/+

  # Console only, debug level
  python run_monitor.py --no-log-file --log-level debug
        """
    )

    parser.add_argument(
        '--config',
        type=Path,
        default=DEFAULT_CONFIG,
        help=f'Path to monitor configuration YAML file (default: {DEFAULT_CONFIG})'
    )

    parser.add_argument(
        '--broker',
        help='Broker URL, e.g. mqtts://broker.example.com:8883 (overrides config)'
    )

    parser.add_argument(
        '--topic',
        action='append',
        dest='topics',
        help='Topic filter to subscribe to (repeatable, overrides config)'
    )

    parser.add_argument(
        '--qos',
        type=int,
        choices=[0, 1, 2],
        help='Subscription and publish QoS (overrides config)'
    )

    parser.add_argument(
        '--diagnostic-delay',
        type=float,
        help='Seconds before the diagnostic publish, 0 disables (overrides config)'
    )

    parser.add_argument(
        '--log-level',
        choices=sorted(LOG_LEVELS),
        help='Logging level (overrides config)'
    )

    parser.add_argument(
        '--log-file',
        type=Path,
        help='Path to log file (overrides config)'
    )

    parser.add_argument(
        '--no-log-file',
        action='store_true',
        help='Disable file logging (console only)'
    )

    return parser.parse_args(argv)


def load_config(args) -> MonitorConfig:
    """
    Load the YAML config (if present) and apply CLI overrides.

    A missing file is only an error when --config was given explicitly.

    Raises:
        ConfigurationError: If the file or an override is invalid
        FileNotFoundError: If an explicit config file does not exist
    """
    if args.config.exists():
        config = MonitorConfig.from_yaml(args.config)
    elif args.config != DEFAULT_CONFIG:
        raise FileNotFoundError(f"Configuration file not found: {args.config}")
    else:
        config = MonitorConfig()

    return config.with_overrides(
        broker=args.broker,
        topics=args.topics,
        qos=args.qos,
        diagnostic_delay=args.diagnostic_delay,
        log_level=args.log_level,
        log_file=args.log_file,
        no_log_file=args.no_log_file,
    )


def main(argv=None):
    """
    Main entry point.

    Workflow:
    1. Parse CLI arguments and load configuration
    2. Create MonitorApp
    3. Setup components
    4. Run monitor (blocks until stopped)
    """
    args = parse_args(argv)

    try:
        config = load_config(args)
    except FileNotFoundError as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        sys.exit(1)
    except TaplineError as e:
        print(f"❌ Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    app = MonitorApp(config=config)

    try:
        app.setup()
        app.run()
    except TaplineError as e:
        print(f"❌ Fatal error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
