#!/usr/bin/env python3

"""
Expose storage device topology and identity as Prometheus info metrics.

Collectors:

  - lsblk: one series per block device reported by lsblk(8).

  - udev: one series per block device from the udev property database, plus one series per
    /dev symlink udev created for it.

  - zfs: one series per leaf vdev of every imported ZFS pool.

  - devicemapper: one series per device-mapper device (disabled by default).

Every device series has the value 1. Without --listen a single scrape is printed to stdout, which
suits the node_exporter textfile collector; with --listen the metrics are served over HTTP.

Requires Python 3.10 or later, root privileges for complete lsblk, udev and zfs data.
"""

import argparse
import functools
import logging
import os
import socket
import sys
import time
from socketserver import ThreadingMixIn
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from prometheus_client import CollectorRegistry, Gauge, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

from device_block import devicemapper_lines, lsblk_lines, udev_lines
from device_command import DEFAULT_TIMEOUT
from device_labels import NAMESPACE, render
from device_zfs import zfs_lines

logger = logging.getLogger("device_info")

DEFAULT_PORT = 9133

# name -> (factory(timeout) -> collector, enabled by default)
COLLECTORS = {
    "lsblk": (lambda timeout: functools.partial(lsblk_lines, timeout=timeout), True),
    "udev": (lambda timeout: udev_lines, True),
    "zfs": (lambda timeout: functools.partial(zfs_lines, timeout=timeout), True),
    "devicemapper": (lambda timeout: functools.partial(devicemapper_lines, timeout=timeout), False),
}


def _scrape_metrics(registry):
    success = Gauge(
        "collector_success",
        "Whether a device collector succeeded.",
        ["collector"],
        namespace=NAMESPACE,
        subsystem="scrape",
        registry=registry,
    )
    duration = Gauge(
        "collector_duration_seconds",
        "Duration of a device collector scrape.",
        ["collector"],
        namespace=NAMESPACE,
        subsystem="scrape",
        registry=registry,
    )
    return success, duration


def collect(collectors, registry):
    """Run each (name, collector) in order and return all of their lines.

    A collector that raises contributes no lines and is reported with collector_success 0; the
    remaining collectors still run.
    """
    success, duration = _scrape_metrics(registry)
    lines = []

    for name, collector in collectors:
        start = time.monotonic()
        try:
            collected = list(collector())
        except Exception:
            logger.exception("%s collector failed", name)
            success.labels(name).set(0)
        else:
            lines.extend(collected)
            success.labels(name).set(1)
        duration.labels(name).set(time.monotonic() - start)

    return lines


def scrape(collectors):
    registry = CollectorRegistry()
    lines = collect(collectors, registry)
    return render(lines) + generate_latest(registry).decode()


def _http_response(start_response, status, headers, body):
    start_response(status, headers)
    return [body]


def make_app(collectors):
    def app(environ, start_response):
        path = environ.get("PATH_INFO", "/")

        if path == "/health":
            return _http_response(
                start_response,
                "200 OK",
                [("Content-Type", "text/plain; charset=utf-8")],
                b"ok\n",
            )

        if path != "/metrics":
            return _http_response(
                start_response,
                "404 Not Found",
                [("Content-Type", "text/plain; charset=utf-8")],
                b"not found\n",
            )

        logger.info("handling request from %s", environ.get("REMOTE_ADDR", "-"))
        try:
            output = scrape(collectors).encode("utf-8")
        except Exception as e:
            logger.exception("scrape failed")
            return _http_response(
                start_response,
                "500 Internal Server Error",
                [("Content-Type", "text/plain; charset=utf-8")],
                f"scrape failed: {e}\n".encode("utf-8"),
            )
        return _http_response(start_response, "200 OK", [("Content-Type", CONTENT_TYPE_LATEST)], output)

    return app


class _ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    daemon_threads = True


class _ThreadingWSGIServer6(_ThreadingWSGIServer):
    address_family = socket.AF_INET6


class _QuietHandler(WSGIRequestHandler):
    def log_message(self, format, *args):
        logger.debug(format, *args)


def serve(addr, port, app):
    server_class = _ThreadingWSGIServer6 if ":" in addr else _ThreadingWSGIServer
    httpd = make_server(addr, port, app, server_class=server_class, handler_class=_QuietHandler)
    logger.info("listening on %s:%d", addr, port)
    with httpd:
        httpd.serve_forever()


def _listen_address(value):
    addr, sep, port = value.rpartition(":")
    if not sep:
        addr, port = "", value
    try:
        return addr.strip("[]"), int(port)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid listen address: {value!r}")


def enabled_collectors(args):
    return [
        (name, factory(args.timeout))
        for name, (factory, _) in COLLECTORS.items()
        if getattr(args, f"collector_{name}")
    ]


def main(argv=None):
    if argv is None:
        argv = sys.argv

    parser = argparse.ArgumentParser(
        prog=os.path.basename(argv[0]),
        exit_on_error=False,
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-l",
        "--listen",
        type=_listen_address,
        dest="listen",
        metavar="[ADDR]:PORT",
        help=f"Serve metrics over HTTP (e.g. :{DEFAULT_PORT}) instead of printing a single scrape",
    )
    parser.add_argument(
        "-t",
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT,
        dest="timeout",
        metavar="SECONDS",
        help="Deadline for each external command",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        dest="log_level",
        help="Minimum level of log messages written to stderr",
    )
    for name, (_, default) in COLLECTORS.items():
        parser.add_argument(
            f"--collector.{name}",
            action=argparse.BooleanOptionalAction,
            default=default,
            dest=f"collector_{name}",
            help=f"Enable the {name} collector",
        )

    try:
        args = parser.parse_args(argv[1:])
    except argparse.ArgumentError as err:
        print(err, file=sys.stderr)
        return 1

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(levelname)s: %(name)s: %(message)s",
        stream=sys.stderr,
    )

    collectors = enabled_collectors(args)

    if args.listen is None:
        print(scrape(collectors), end="")
        return 0

    addr, port = args.listen
    serve(addr, port, make_app(collectors))
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
