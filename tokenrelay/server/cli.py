"""Command line entry point for the relay server."""

import argparse

from tokenrelay.server.app import RelayApp
from tokenrelay.shared.config import RelaySettings


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run the tokenrelay WebSocket server")
    parser.add_argument("--host", default=None, help="Host to bind (auto-detected by default)")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on (default: $PORT or 8000)")
    parser.add_argument("--env-file", default=".env", help="Env file with GROQ_API_KEY and TOKENRELAY_* settings")
    parser.add_argument("--static-dir", default=None, help="Directory served at /static")
    parser.add_argument("--debug", action="store_true", help="Verbose logging and access log")
    args = parser.parse_args(argv)

    settings = RelaySettings.from_env(args.env_file)
    if args.static_dir:
        settings.static_dir = args.static_dir
    if args.debug:
        settings.debug = True

    app = RelayApp(settings=settings)
    app.run(port=args.port, host=args.host)


if __name__ == "__main__":
    main()
