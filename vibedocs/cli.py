#!/usr/bin/env python
"""
Command-line interface for VibeDocs
"""

import argparse
import logging
import sys
from pathlib import Path

from vibedocs.config import load_config
from vibedocs.core.logging_config import setup_logging
from vibedocs.version_info import __version__, __build_type__

logger = logging.getLogger(__name__)


def print_version():
    """Print version information."""
    print(f"VibeDocs v{__version__}")
    print(f"Build Type: {__build_type__}")


def apply_overrides(config, args):
    """Command line flags win over the config file and environment."""
    if args.root:
        config['projects_dir'] = str(Path(args.root).expanduser())
    if args.host:
        config['host'] = args.host
    if args.port:
        config['port'] = args.port
    if args.debug:
        config['debug'] = True
    if args.no_watch:
        config['watch'] = False
    if args.log_dir:
        config['log_dir'] = args.log_dir
    return config


def start_server(config):
    """Start the Flask server."""
    from vibedocs.app import create_app

    app = create_app(config)
    host = config['host']
    port = config['port']

    print(f"Starting VibeDocs v{__version__}")
    print(f"Projects: {config['projects_dir']}")
    print(f"Server: http://{host}:{port}")
    print("Press Ctrl+C to stop")
    print()

    try:
        # The reloader would start a second watcher process
        app.run(host=host, port=port, debug=config['debug'], use_reloader=False, threaded=True)
    finally:
        app.extensions['vibedocs'].notifier.stop()


def run_search(config, query):
    """Index the projects root once and print matches."""
    from vibedocs.core.search import SearchIndex

    index = SearchIndex(config['excluded_dirs'])
    index.rebuild(config['projects_dir'])
    results = index.search(query)
    if not results:
        print("No matches.")
        return 1
    for result in results:
        print(f"{result.project}/{result.path}")
        print(f"    {result.snippet}")
    return 0


def build_parser():
    parser = argparse.ArgumentParser(
        description=f'VibeDocs v{__version__}',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  vibedocs --version                    Show version information
  vibedocs --root ~/projects            Serve docs of every project in ~/projects
  vibedocs start --port 9000            Start server on port 9000
  vibedocs search "install guide"       Search once and print matches
        """
    )

    parser.add_argument('--version', '-v', action='store_true', help='Show version information')
    parser.add_argument('--config', type=str, default=None, help='Path to a JSON config file')
    parser.add_argument('--root', '-r', type=str, default=None, help='Directory containing the projects')
    parser.add_argument('--host', type=str, default=None, help='Host to bind to (default: 127.0.0.1)')
    parser.add_argument('--port', '-p', type=int, default=None, help='Port to bind to (default: 8080)')
    parser.add_argument('--debug', '-d', action='store_true', help='Run in debug mode')
    parser.add_argument('--no-watch', action='store_true', help='Do not watch the filesystem for changes')
    parser.add_argument('--log-dir', type=str, default=None, help='Also write rotating logs to this directory')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')
    subparsers.add_parser('start', help='Start the documentation server (default)')
    search_parser = subparsers.add_parser('search', help='Search all documents once')
    search_parser.add_argument('query', help='Text to look for')
    return parser


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print_version()
        return 0

    config = apply_overrides(load_config(args.config), args)
    log_dir = Path(config['log_dir']) if config['log_dir'] else None
    setup_logging(log_dir, config['debug'])

    if args.command == 'search':
        return run_search(config, args.query)

    # Default behavior: start the server, whether command is 'start' or None
    try:
        start_server(config)
        return 0
    except KeyboardInterrupt:
        print("\nServer stopped.")
        return 0
    except OSError as e:
        logger.debug("Server failed to start", exc_info=True)
        print(f"Error starting server: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
