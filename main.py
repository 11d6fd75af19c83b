#!/usr/bin/env python3
"""
AdGuard Filter - temporary blocked-services overrides for AdGuard Home.

Serves the HTTP API and web UI, or runs one-off maintenance commands against the
appliance configured through the environment (or a local `.env`).
"""

import argparse
import json
import logging
import sys

from dotenv import load_dotenv

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

#
# NOTE: Keep adguardfilter imports lazy (inside functions) so `.env` values are loaded
# before the config is first read.
#


def show_blocked() -> None:
    """Print the appliance's current blocked services as JSON."""
    from adguardfilter.upstream.adguard_provider import get_adguard_provider

    cfg = get_adguard_provider().get_blocked_services()
    print(json.dumps(cfg.model_dump(mode="json"), indent=2, sort_keys=False))


def reset_now() -> None:
    """Apply the default blocked services configuration immediately."""
    from adguardfilter.upstream.adguard_provider import get_adguard_provider

    get_adguard_provider().reset_blocked_services()
    print("Blocked services reset to default configuration")


def main():
    """CLI entry point."""
    load_dotenv()

    parser = argparse.ArgumentParser(
        description="Temporarily override AdGuard Home blocked services",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the API + web UI on port 3000
  python main.py --serve

  # Print the current configuration
  python main.py --show-blocked

  # Put the default block list back now
  python main.py --reset-now
        """,
    )
    parser.add_argument("--serve", action="store_true", help="Run the HTTP API and web UI")
    parser.add_argument("--host", default="0.0.0.0", help="Server bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="Server listen port (default: $PORT or 3000)")
    parser.add_argument("--show-blocked", action="store_true", help="Print current blocked services as JSON")
    parser.add_argument("--reset-now", action="store_true", help="Apply the default blocked services configuration")

    args = parser.parse_args()

    try:
        if args.serve:
            from adguardfilter.api.server import run as run_server

            run_server(host=args.host, port=args.port)
            return

        if args.show_blocked:
            show_blocked()
            return

        if args.reset_now:
            reset_now()
            return

        parser.print_help()

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        raise


if __name__ == "__main__":
    main()
