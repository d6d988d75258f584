#!/usr/bin/env python3
# Copyright (c) Facebook, Inc. and its affiliates.

# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

from . import constants, packet
from .base_session import BaseSession, State
from .errors import TftpError


class ReceiverSession(BaseSession):
    def __init__(
        self,
        sock,
        peer,
        filename,
        mode,
        writer,
        retry_policy=None,
        logger=None,
        stats_callback=None,
        client=False,
    ):
        """
        Session pulling a stream from the peer: it serves a write request, or
        performs a client side get.

        Every block is written to `writer` before it is acknowledged, so a slow
        consumer on the other end of the pipe slows the peer down.

        Args:
            writer (PipeWriter): the end of the pipe the handler reads the
                file from. The session closes it when the transfer ends, with
                the error that ended it, if any.

            client (bool): if True the session opens the transfer with a read
                request, otherwise it acknowledges the peer's write request
                with block 0.

        See `BaseSession` for the other arguments.
        """
        super().__init__(
            sock,
            peer,
            filename,
            mode,
            retry_policy=retry_policy,
            logger=logger,
            stats_callback=stats_callback,
            client=client,
        )
        self._writer = writer
        self._last_block_delivered = 0
        self._delivered_any = False

    def _start_transfer(self):
        self._log.info(
            "Receiving `%s` from peer `%s` (mode %s)"
            % (self._filename, self._peer, self._mode)
        )
        if self._client:
            self._transmit(packet.ReadRequest(self._filename, self._mode))
        else:
            # a handler that refused the upload gets it rejected before ACK 0
            self._deliver(b"")
            self._transmit(packet.Ack(0))
        self._state = State.AWAIT_DATA

    def run_once(self):
        self.on_new_data()
        if self._state == State.AWAIT_DATA and self._time_left() <= 0:
            self._handle_timeout()

    def on_new_data(self):
        """Waits for a packet from the peer and handles DATA packets."""
        pkt = self._receive()
        if pkt is None:
            return
        if not isinstance(pkt, packet.Data):
            self._log.warning(
                "Expected DATA from %s, got: %s"
                % (self._peer, pkt.__class__.__name__)
            )
            return
        self._handle_data(pkt)

    def _handle_data(self, data):
        expected = self._last_block_delivered + 1
        if expected > constants.MAX_BLOCK_NUMBER:
            expected = 0  # Wrap around the block counter.
        if data.block == expected:
            self._deliver(data.payload)
            self._last_block_delivered = data.block
            self._delivered_any = True
            self._stats.bytes_received += len(data.payload)
            self._transmit(packet.Ack(data.block))
            if data.is_last():
                self._log.info(
                    "Received `%s` from peer `%s`: %d bytes"
                    % (self._filename, self._peer, self._stats.bytes_received)
                )
                self._state = State.DONE
            return
        if self._delivered_any and data.block == self._last_block_delivered:
            # our ACK got lost, the payload was already delivered
            self._log.info(
                "Duplicate DATA %d from %s, resending ACK" % (data.block, self._peer)
            )
            self._send(packet.Ack(data.block))
            return
        self._log.warning(
            "Dropping DATA %d from %s, expected %d" % (data.block, self._peer, expected)
        )

    def _deliver(self, payload):
        """
        Hands a payload to the handler, blocking until it consumed it. An empty
        payload still waits for the handler to be reading, so a handler that
        gave up is noticed before the final block is acknowledged.
        """
        try:
            self._writer.write(payload)
        except Exception as e:
            raise self._handler_failure(e) from e

    def _close_stream(self, error):
        if error is None:
            self._writer.close()
        else:
            self._writer.close_with_error(error)

    def _close(self):
        if self._state == State.DONE:
            # the handler sees end of stream now, not after dallying
            self._close_stream(None)
            self._dally()
        super()._close()

    def _dally(self):
        """
        Keeps the socket open for one more timeout after the final ACK, as RFC
        1350 suggests. If that ACK got lost the peer resends the final block,
        which is acknowledged again instead of leaving the peer to time out.
        """
        self._reset_timeout()
        while self._time_left() > 0:
            try:
                pkt = self._receive()
            except TftpError as e:
                self._log.debug("Stopped dallying with %s: %s" % (self._peer, e))
                return
            if (
                isinstance(pkt, packet.Data)
                and pkt.block == self._last_block_delivered
            ):
                self._log.info(
                    "Final ACK %d to %s was lost, resending it"
                    % (pkt.block, self._peer)
                )
                try:
                    self._send(packet.Ack(pkt.block))
                except TftpError as e:
                    self._log.warning(str(e))
                    return
