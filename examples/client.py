#!/usr/bin/env python3
# Copyright (c) Facebook, Inc. and its affiliates.

# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import argparse
import logging
import shutil
import sys

from streamtftp import Client, RetryPolicy, TftpError


def get_arguments():
    parser = argparse.ArgumentParser()
    parser.add_argument("--host", type=str, default="localhost", help="TFTP server")
    parser.add_argument("--port", type=int, default=1969, help="port of the server")
    parser.add_argument(
        "--retries", type=int, default=5, help="number of per-packet retries"
    )
    parser.add_argument(
        "--timeout_s", type=int, default=2, help="timeout for packet retransmission"
    )
    parser.add_argument(
        "--mode", type=str, default="octet", help="transfer mode sent to the server"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    subparsers = parser.add_subparsers(dest="command")
    subparsers.required = True
    get = subparsers.add_parser("get", help="download a file")
    get.add_argument("remote", help="file on the server")
    get.add_argument("local", help="where to save it")
    put = subparsers.add_parser("put", help="upload a file")
    put.add_argument("local", help="file to upload")
    put.add_argument("remote", help="name on the server")
    return parser.parse_args()


def main():
    args = get_arguments()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    retry_policy = RetryPolicy(args.retries, args.timeout_s)
    client = Client(args.host, port=args.port, retry_policy=retry_policy)
    try:
        if args.command == "get":
            with open(args.local, "wb") as f:
                stats = client.get(
                    args.remote, lambda reader: shutil.copyfileobj(reader, f), args.mode
                )
        else:
            with open(args.local, "rb") as f:
                stats = client.put(
                    args.remote, lambda writer: shutil.copyfileobj(f, writer), args.mode
                )
    except TftpError as e:
        logging.error("Transfer failed (code %d): %s" % (e.error_code, e.message))
        sys.exit(1)
    logging.info(
        "%s %r done: %d bytes sent, %d bytes received, %d retransmits in %dms"
        % (
            args.command,
            args.remote,
            stats.bytes_sent,
            stats.bytes_received,
            stats.retransmits,
            stats.duration() * 1e3,
        )
    )


if __name__ == "__main__":
    main()
