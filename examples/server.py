#!/usr/bin/env python3
# Copyright (c) Facebook, Inc. and its affiliates.

# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import argparse
import logging
import os
import shutil

from streamtftp import BaseServer, RetryPolicy


def print_session_stats(stats):
    logging.info("Stats: for %r transferring %r" % (stats.peer, stats.filename))
    logging.info("Error: %r" % stats.error)
    logging.info("Time spent: %dms" % (stats.duration() * 1e3))
    logging.info("Packets sent: %d" % stats.packets_sent)
    logging.info("Packets ACKed: %d" % stats.packets_acked)
    logging.info("Bytes sent: %d" % stats.bytes_sent)
    logging.info("Bytes received: %d" % stats.bytes_received)
    logging.info("Retransmits: %d" % stats.retransmits)
    logging.info("Server port: %d" % stats.local_addr[1])
    logging.info("Client port: %d" % stats.peer[1])


class StaticServer(BaseServer):
    """Serves the files below `root` and stores uploads there."""

    def __init__(self, address, port, retries, timeout, root, stats_callback):
        self._root = os.path.abspath(root)
        super().__init__(
            address,
            port,
            retry_policy=RetryPolicy(retries, timeout),
            session_stats_callback=stats_callback,
        )

    def _local_path(self, filename):
        path = os.path.abspath(os.path.join(self._root, filename.lstrip("/")))
        if os.path.commonpath([self._root, path]) != self._root:
            raise PermissionError("%s is outside of the served directory" % filename)
        return path

    def handle_read_request(self, filename, mode, peer, writer):
        with open(self._local_path(filename), "rb") as f:
            shutil.copyfileobj(f, writer)

    def handle_write_request(self, filename, mode, peer, reader):
        # never overwrite, the peer gets "file already exists"
        with open(self._local_path(filename), "xb") as f:
            shutil.copyfileobj(reader, f)


def get_arguments():
    parser = argparse.ArgumentParser()
    parser.add_argument("--ip", type=str, default="::", help="IP address to bind to")
    parser.add_argument("--port", type=int, default=1969, help="port to bind to")
    parser.add_argument(
        "--retries", type=int, default=5, help="number of per-packet retries"
    )
    parser.add_argument(
        "--timeout_s", type=int, default=2, help="timeout for packet retransmission"
    )
    parser.add_argument(
        "--root", type=str, default="", help="root of the static filesystem"
    )
    return parser.parse_args()


def main():
    args = get_arguments()
    logging.basicConfig(level=logging.DEBUG)
    server = StaticServer(
        args.ip,
        args.port,
        args.retries,
        args.timeout_s,
        args.root,
        print_session_stats,
    )
    try:
        server.run()
    except KeyboardInterrupt:
        server.close()


if __name__ == "__main__":
    main()
