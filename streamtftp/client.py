#!/usr/bin/env python3
# Copyright (c) Facebook, Inc. and its affiliates.

# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import logging
import socket
import threading

from . import constants
from .config import RetryPolicy
from .pipe import pipe
from .receiver import ReceiverSession
from .sender import SenderSession


class Client:
    def __init__(
        self, host, port=constants.DEFAULT_PORT, retry_policy=None, logger=None
    ):
        """
        TFTP client. Every `get` or `put` runs one transfer on its own
        ephemeral socket.

        The user supplied handler runs in a separate thread and talks to the
        transfer through a pipe: download handlers read from a `PipeReader`,
        upload handlers write into a `PipeWriter`. E.g.:

            with open("/var/tmp/debian.img", "wb") as f:
                client.get("debian.img", lambda r: shutil.copyfileobj(r, f))

        Args:
            host (str): name or address of the server.

            port (int): port the server listens to, 69 by default.

            retry_policy (RetryPolicy): retransmission settings, defaults to
                `RetryPolicy()`.

            logger (logging.Logger): where to log, defaults to this module's
                logger.
        """
        self._host = host
        self._port = port
        self._retry_policy = retry_policy or RetryPolicy()
        self._log = logger or logging.getLogger(__name__)

    def get(self, filename, handler, mode=constants.MODE_BINARY):
        """
        Downloads `filename` from the server.

        Args:
            filename (str): the remote file.

            handler (callable): called with a `PipeReader` it must read the
                file from, until `read()` returns `b""`.

            mode (str): transfer mode sent to the server.

        Returns:
            SessionStats: what happened during the transfer.

        Raises:
            TftpError: the transfer failed.
        """
        reader, writer = pipe()
        sock, server_addr = self._get_socket()
        session = ReceiverSession(
            sock,
            server_addr,
            filename,
            mode,
            writer,
            retry_policy=self._retry_policy,
            logger=self._log,
            client=True,
        )
        return self._run(session, handler, reader)

    def put(self, filename, handler, mode=constants.MODE_BINARY):
        """
        Uploads `filename` to the server.

        Args:
            filename (str): the remote file.

            handler (callable): called with a `PipeWriter` it must write the
                file to. The writer is closed once the handler returns.

            mode (str): transfer mode sent to the server.

        Returns:
            SessionStats: what happened during the transfer.

        Raises:
            TftpError: the transfer failed.
        """
        reader, writer = pipe()
        sock, server_addr = self._get_socket()
        session = SenderSession(
            sock,
            server_addr,
            filename,
            mode,
            reader,
            retry_policy=self._retry_policy,
            logger=self._log,
            client=True,
        )
        return self._run(session, handler, writer)

    def _get_socket(self):
        """
        Resolves the server address and returns it along with a socket of the
        matching family bound to an ephemeral port.
        """
        family, _, _, _, server_addr = socket.getaddrinfo(
            self._host, self._port, type=socket.SOCK_DGRAM
        )[0]
        sock = socket.socket(family, socket.SOCK_DGRAM)
        try:
            sock.bind(("::" if family == socket.AF_INET6 else "0.0.0.0", 0))
        except OSError:
            sock.close()
            raise
        return sock, server_addr

    def _run(self, session, handler, stream):
        """
        Runs `handler` in its own thread and `session` in the calling one,
        then waits for both.
        """
        handler_thread = threading.Thread(
            target=self._run_handler, args=(handler, stream)
        )
        handler_thread.daemon = True
        handler_thread.start()
        session.run()
        handler_thread.join()
        if session.error is not None:
            raise session.error
        return session.stats

    def _run_handler(self, handler, stream):
        try:
            handler(stream)
        except Exception as e:
            self._log.warning("Transfer handler raised: %r" % e)
            stream.close_with_error(e)
        else:
            stream.close()
