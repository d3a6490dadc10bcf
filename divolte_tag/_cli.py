"""divolte-tag command-line interface.

Usage:
    divolte-tag config [--input settings.json]
    divolte-tag decode 'l=http%3A%2F%2Fexample.com%2F&w=800&h=600'
    divolte-tag encode --location http://example.com/ [--event NAME --param k=v ...]
    divolte-tag script [--input settings.json]
    divolte-tag serve [--input settings.json] [--host 127.0.0.1] [--port 8290]
    divolte-tag version

The settings document may also be named by the DIVOLTE_TAG_CONFIG
environment variable.  Configuration errors exit with status 2 before
anything else happens.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import List, Optional, Tuple

from . import (
    DEFAULT_TAG_CONFIGURATION,
    Collector,
    DecodedBeacon,
    Measurements,
    NonceSource,
    TagConfiguration,
    TagError,
    __version__,
    custom_event_beacon,
    decode_beacon,
    encode_beacon,
    load_configuration,
    page_view_beacon,
    render_tag_script,
)

logger = logging.getLogger("divolte_tag")

CONFIG_ENV = "DIVOLTE_TAG_CONFIG"


def _add_input(p: argparse.ArgumentParser) -> None:
    p.add_argument("--input", "-i", metavar="FILE",
                   help="JSON settings document (default: ${})".format(CONFIG_ENV))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="divolte-tag",
        description="divolte tag configuration and beacon protocol tools",
    )
    parser.add_argument("--verbose", "-v", action="count", default=0,
                        help="log more (repeat for debug output)")
    sub = parser.add_subparsers(dest="command")

    # ── config ──
    config_p = sub.add_parser("config", help="Resolve and print the tag configuration")
    _add_input(config_p)

    # ── decode ──
    decode_p = sub.add_parser("decode", help="Decode a beacon query string to JSON")
    decode_p.add_argument("query", help="beacon query string, with or without leading '?'")

    # ── encode ──
    encode_p = sub.add_parser("encode", help="Print a beacon query string")
    encode_p.add_argument("--location", "-l", required=True, help="page URL (l)")
    encode_p.add_argument("--referrer", "-r", default="", help="referrer URL (r)")
    encode_p.add_argument("--viewport", metavar="WxH", help="viewport size (w/h)")
    encode_p.add_argument("--screen", metavar="WxH", help="screen size (i/j)")
    encode_p.add_argument("--event", "-t", metavar="NAME", help="custom event name (t)")
    encode_p.add_argument("--param", "-p", action="append", default=[], metavar="KEY=VALUE",
                          help="custom event parameter (t.KEY); requires --event")

    # ── script ──
    script_p = sub.add_parser("script", help="Print the tag script")
    _add_input(script_p)

    # ── serve ──
    serve_p = sub.add_parser("serve", help="Run a local collector")
    _add_input(serve_p)
    serve_p.add_argument("--host", default="127.0.0.1")
    serve_p.add_argument("--port", type=int, default=8290)

    # ── version ──
    sub.add_parser("version", help="Print version and exit")

    return parser


def _load(path: Optional[str]) -> TagConfiguration:
    path = path or os.environ.get(CONFIG_ENV)
    if not path:
        return DEFAULT_TAG_CONFIGURATION
    config = load_configuration(path)
    logger.info("loaded configuration from %s: %s", path, config)
    return config


def _size(text: Optional[str], flag: str) -> Tuple[Optional[int], Optional[int]]:
    if text is None:
        return None, None
    w, sep, h = text.lower().partition("x")
    if not sep or not w.isdigit() or not h.isdigit():
        raise argparse.ArgumentTypeError("{} expects WxH, got {!r}".format(flag, text))
    return int(w), int(h)


def _cmd_config(args: argparse.Namespace) -> None:
    print(json.dumps(_load(args.input).to_settings(), indent=2))


def _cmd_decode(args: argparse.Namespace) -> None:
    beacon: DecodedBeacon = decode_beacon(args.query)
    print(json.dumps(beacon.as_dict(), indent=2, ensure_ascii=False))


def _cmd_encode(args: argparse.Namespace) -> None:
    vw, vh = _size(args.viewport, "--viewport")
    sw, sh = _size(args.screen, "--screen")
    measurements = Measurements(vw, vh, sw, sh)
    nonce = NonceSource().next()
    if args.param and not args.event:
        raise argparse.ArgumentTypeError("--param requires --event")
    if args.event:
        params = []
        for item in args.param:
            key, sep, value = item.partition("=")
            if not sep:
                raise argparse.ArgumentTypeError("--param expects KEY=VALUE, got {!r}".format(item))
            params.append((key, value))
        fields = custom_event_beacon(args.location, args.referrer, measurements, nonce,
                                     args.event, params)
    else:
        fields = page_view_beacon(args.location, args.referrer, measurements, nonce)
    print(encode_beacon(fields))


def _cmd_script(args: argparse.Namespace) -> None:
    sys.stdout.write(render_tag_script(_load(args.input)).decode("utf-8"))


def _cmd_serve(args: argparse.Namespace) -> None:
    config = _load(args.input)

    def report(beacon: DecodedBeacon) -> None:
        logger.info("beacon: %s", json.dumps(beacon.as_dict(), ensure_ascii=False))

    collector = Collector(config, host=args.host, port=args.port, on_beacon=report)
    try:
        collector.serve_forever()
    except KeyboardInterrupt:
        pass


def main(argv: Optional[List[str]] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    level = logging.WARNING
    if args.verbose == 1 or args.command == "serve":
        level = logging.INFO
    if args.verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "version":
        print(f"divolte-tag {__version__}")
        return

    try:
        if args.command == "config":
            _cmd_config(args)
        elif args.command == "decode":
            _cmd_decode(args)
        elif args.command == "encode":
            _cmd_encode(args)
        elif args.command == "script":
            _cmd_script(args)
        elif args.command == "serve":
            _cmd_serve(args)
    except TagError as e:
        print(f"divolte-tag: error [{e.code}]: {e}", file=sys.stderr)
        sys.exit(2)
    except argparse.ArgumentTypeError as e:
        print(f"divolte-tag: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
