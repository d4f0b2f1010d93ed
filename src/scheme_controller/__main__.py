"""
Scheme Controller - Entry Point

Inspect a configured controller, write a starter config, or serve the
read-only inspection API.
"""

import argparse
import json
import logging
import sys

from .config import create_default_config, load_config
from .core.controller import Controller
from .core.errors import ControllerError
from .core.resources import InMemoryAvatar, InMemoryReputation, InMemoryToken

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def build_controller(config, debug: bool = False) -> Controller:
    """Controller over in-memory resources, bootstrapped from config"""
    if not debug:
        logging.getLogger("scheme_controller").setLevel(getattr(logging, config.log_level, logging.INFO))
    return Controller.from_config(
        config,
        avatar=InMemoryAvatar(),
        token=InMemoryToken(),
        reputation=InMemoryReputation(),
    )


def cmd_show(args) -> int:
    config = load_config(args.config)
    controller = build_controller(config, debug=args.debug)
    print(json.dumps(controller.to_dict(), indent=2))
    return 0


def cmd_init_config(args) -> int:
    path = create_default_config(args.path, genesis_scheme=args.genesis)
    print(f"Wrote {path}")
    return 0


def cmd_serve(args) -> int:
    import uvicorn

    from .api import create_app

    config = load_config(args.config)
    controller = build_controller(config, debug=args.debug)
    host = args.host or config.api.host
    port = args.port or config.api.port
    logger.info(f"Serving inspection API on {host}:{port}")
    uvicorn.run(create_app(controller), host=host, port=port, log_level=config.log_level.lower())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scheme-controller",
        description="Permissioned governance controller",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Write a starter configuration
  python -m scheme_controller init-config controller.yaml

  # Print the bootstrapped state
  python -m scheme_controller show --config controller.yaml

  # Serve the read-only inspection API
  python -m scheme_controller serve --config controller.yaml --port 8300
"""
    )
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')

    sub = parser.add_subparsers(dest="command", required=True)

    show = sub.add_parser("show", help="Print bootstrapped controller state as JSON")
    show.add_argument('--config', '-c', help='Path to controller.yaml')
    show.set_defaults(func=cmd_show)

    init = sub.add_parser("init-config", help="Write a starter controller.yaml")
    init.add_argument('path', nargs='?', default='controller.yaml')
    init.add_argument('--genesis', default='scheme:genesis', help='Principal holding every capability')
    init.set_defaults(func=cmd_init_config)

    serve = sub.add_parser("serve", help="Serve the read-only inspection API")
    serve.add_argument('--config', '-c', help='Path to controller.yaml')
    serve.add_argument('--host', default=None)
    serve.add_argument('--port', type=int, default=None)
    serve.set_defaults(func=cmd_serve)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        return args.func(args)
    except (ControllerError, FileNotFoundError, KeyError, ValueError) as e:
        logger.error(str(e))
        print(f"\n❌ Error: {e}", file=sys.stderr)
        return 1


def run():
    """Entry point for console script"""
    sys.exit(main())


if __name__ == '__main__':
    run()
