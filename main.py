#!/usr/bin/env python3
"""
B2C integration - serve the FastAPI app or inspect the configured schemes.
"""

import argparse
import json
import logging
import sys

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

#
# NOTE: Keep b2cauth imports lazy (inside functions) so `--help` works without the web stack.
#


def show_schemes() -> None:
    """Print the registered schemes and the options derived for each concrete scheme."""
    from dataclasses import asdict

    from b2cauth.api.app import build_auth_host
    from b2cauth.auth.config import load_auth_config
    from b2cauth.auth.models import CookieOptions, OpenIdConnectOptions

    host = build_auth_host(load_auth_config())
    out = []
    for mapping in host.registry:
        oidc_opts = asdict(host.options.get(OpenIdConnectOptions, mapping.openid_connect_scheme))
        cookie_opts = asdict(host.options.get(CookieOptions, mapping.cookie_scheme))
        for secret_key in ("client_secret", "state_secret", "session_secret"):
            for opts in (oidc_opts, cookie_opts):
                if opts.get(secret_key):
                    opts[secret_key] = "***"
        out.append(
            {
                "scheme": mapping.virtual_scheme,
                "displayName": host.get_scheme(mapping.virtual_scheme).display_name,
                "openIdConnect": {"scheme": mapping.openid_connect_scheme, "options": oidc_opts},
                "cookie": {"scheme": mapping.cookie_scheme, "options": cookie_opts},
            }
        )
    print(json.dumps(out, indent=2, sort_keys=False))


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Azure AD B2C authentication for FastAPI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the web app (configuration from B2C_* / AUTH_* environment variables)
  python main.py --serve --port 8080

  # Show the schemes and the options derived from the environment
  python main.py --show-schemes
        """,
    )
    parser.add_argument("--serve", action="store_true", help="Run the HTTP server")
    parser.add_argument("--show-schemes", action="store_true", help="Print registered schemes and derived options")
    parser.add_argument("--host", default="0.0.0.0", help="Server bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8080, help="Server listen port (default: 8080)")

    args = parser.parse_args()

    try:
        if args.serve:
            from b2cauth.api.app import run

            run(host=args.host, port=args.port)
            return

        if args.show_schemes:
            show_schemes()
            return

        parser.print_help()

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        raise


if __name__ == "__main__":
    main()
