#!/usr/bin/env python3
# Copyright (c) Facebook, Inc. and its affiliates.

# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import ipaddress
import logging
import select
import socket
import threading

from . import constants, packet
from .config import RetryPolicy
from .errors import MalformedPacket
from .pipe import pipe
from .receiver import ReceiverSession
from .sender import SenderSession


class BaseServer:
    def __init__(
        self,
        address,
        port,
        retry_policy=None,
        logger=None,
        session_stats_callback=None,
        poll_interval=constants.DEFAULT_POLL_INTERVAL,
    ):
        """
        This base class implements the loop which deals with accepting new
        requests. Every read or write request gets its own ephemeral socket, a
        session thread speaking TFTP on it, and a handler thread producing or
        consuming the file.

        Note:
            This class doesn't have to be used directly, you must inherit from
            it and override `handle_read_request()` and/or
            `handle_write_request()`.

        Args:
            address (str): address (IPv4 or IPv6) the server needs to bind to.

            port (int): the port the server needs to bind to.

            retry_policy (RetryPolicy): retransmission settings handed to every
                session. Defaults to `RetryPolicy()`.

            logger (logging.Logger): where the server and its sessions log.
                Defaults to this module's logger.

            session_stats_callback (callable): a callable that will be executed
                at the end of every session. It gets passed an instance of the
                `SessionStats` class.

            poll_interval (float): how often, in seconds, the serving loop
                checks whether `close()` was called.
        """
        self._address = address
        self._port = port
        self._retry_policy = retry_policy or RetryPolicy()
        self._log = logger or logging.getLogger(__name__)
        self._session_stats_callback = session_stats_callback
        self._poll_interval = poll_interval
        # the format of the peer tuple is different for v4 and v6
        self._family = socket.AF_INET6
        if isinstance(ipaddress.ip_address(self._address), ipaddress.IPv4Address):
            self._family = socket.AF_INET
        self._listener = socket.socket(self._family, socket.SOCK_DGRAM)
        self._listener.setblocking(0)  # non-blocking
        self._listener.bind((address, port))
        self._epoll = select.epoll()
        self._epoll.register(self._listener.fileno(), select.EPOLLIN)
        self._should_stop = False

    @property
    def server_address(self):
        """The (ip, port) the listener is bound to."""
        return self._listener.getsockname()

    def run(self, run_once=False):
        """
        Run the infinite serving loop.

        Args:
            run_once (bool): If True it will exit the loop after first
                iteration.  Note this is only used in unit tests.
        """
        while not self._should_stop:
            self.run_once()
            if run_once:
                break
        self._epoll.close()
        self._listener.close()

    def run_once(self):
        """
        Uses edge polling object (`socket.epoll`) as an event notification
        facility to know when data is ready to be retrived from the listening
        socket. See http://linux.die.net/man/4/epoll .
        """
        events = self._epoll.poll(self._poll_interval)
        for fileno, eventmask in events:
            if not eventmask & select.EPOLLIN:
                continue
            if fileno == self._listener.fileno():
                self.on_new_data()

    def on_new_data(self):
        """
        Deals with incoming requests. This is called by `run_once` when data
        is available on the listening socket.
        Read and write requests start a new transfer, anything else is
        answered with an error.
        """
        data, peer = self._listener.recvfrom(constants.RECV_BUFFER_SIZE)
        try:
            request = packet.decode(data)
        except MalformedPacket as e:
            self._log.error(
                "Received malformed packet from %s, ignoring: %s" % (peer, e)
            )
            return
        if not isinstance(request, (packet.ReadRequest, packet.WriteRequest)):
            self._log.warning(
                "unexpected TFTP opcode %d from %s, expected a request"
                % (request.opcode, peer)
            )
            self._reply_error(
                peer,
                constants.ERR_ILLEGAL_OPERATION,
                "Expected a read or write request",
            )
            return
        self._log.info(
            "New %s from peer `%s` for path `%s` (mode %s)"
            % (request.__class__.__name__, peer, request.filename, request.mode)
        )
        try:
            self.start_transfer(request, peer)
        except Exception as e:
            self._log.exception(
                "starting a transfer for %r raised an exception %s"
                % (request.filename, e)
            )

    def _reply_error(self, peer, code, message):
        try:
            self._listener.sendto(
                packet.encode(packet.ErrorPacket(code, message)), peer
            )
        except OSError as e:
            self._log.warning("Could not send error to %s: %s" % (peer, e))

    def _get_transfer_socket(self):
        """Returns a socket bound to an ephemeral port, for a single transfer."""
        sock = socket.socket(self._family, socket.SOCK_DGRAM)
        try:
            sock.bind((self._address, 0))
        except OSError:
            sock.close()
            raise
        return sock

    def start_transfer(self, request, peer):
        """
        Starts the session serving `request` and the thread running the
        matching handler, connected by a pipe.

        Args:
            request (ReadRequest or WriteRequest): the decoded request.

            peer (tuple): address of the peer that sent the request.

        Returns:
            the started session.
        """
        sock = self._get_transfer_socket()
        reader, writer = pipe()
        session_args = dict(
            retry_policy=self._retry_policy,
            logger=self._log,
            stats_callback=self._session_stats_callback,
        )
        if isinstance(request, packet.ReadRequest):
            session = SenderSession(
                sock, peer, request.filename, request.mode, reader, **session_args
            )
            handler_args = (self.handle_read_request, request, peer, writer)
        else:
            session = ReceiverSession(
                sock, peer, request.filename, request.mode, writer, **session_args
            )
            handler_args = (self.handle_write_request, request, peer, reader)
        handler = threading.Thread(target=self._run_handler, args=handler_args)
        handler.daemon = True
        handler.start()
        session.start()
        return session

    def _run_handler(self, handler, request, peer, stream):
        """
        Runs a user handler, then closes its end of the pipe: cleanly if it
        returned, with its exception if it raised.
        """
        try:
            handler(request.filename, request.mode, peer, stream)
        except Exception as e:
            self._log.warning(
                "Handler for %r from %s raised: %r" % (request.filename, peer, e)
            )
            stream.close_with_error(e)
        else:
            stream.close()

    def handle_read_request(self, filename, mode, peer, writer):
        """
        Produces the content of `filename` for a read request by writing it
        into `writer`.

        Note:
            This is a virtual method and must be overridden in a sub-class to
            serve downloads. Raising an exception aborts the transfer; a
            `FileNotFoundError` is reported to the peer as "file not found".

        Args:
            filename (str): the file path requested by the peer.

            mode (str): the transfer mode requested by the peer.

            peer (tuple): tuple containing ip and port of the peer.

            writer (PipeWriter): where the content goes. It is closed for you
                when this method returns.
        """
        raise NotImplementedError("read requests are not supported")

    def handle_write_request(self, filename, mode, peer, reader):
        """
        Consumes the content uploaded by a write request, reading it from
        `reader` until it returns `b""`.

        Note:
            This is a virtual method and must be overridden in a sub-class to
            accept uploads. Raising an exception aborts the transfer; raising
            before the first `read()` refuses the upload without
            acknowledging it, e.g. `FileExistsError` is reported to the peer
            as "file already exists". Returning before `read()` returned `b""`
            fails the transfer if more of the upload arrives.

        Args:
            filename (str): the file path the peer is uploading.

            mode (str): the transfer mode requested by the peer.

            peer (tuple): tuple containing ip and port of the peer.

            reader (PipeReader): where the content comes from. If an error
                ends the transfer `reader.read()` raises it.
        """
        raise NotImplementedError("write requests are not supported")

    def close(self):
        """
        Stops the server, by setting a boolean flag which will be picked by
        the main while loop.
        """
        self._should_stop = True
