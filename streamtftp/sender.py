#!/usr/bin/env python3
# Copyright (c) Facebook, Inc. and its affiliates.

# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

from . import constants, packet
from .base_session import BaseSession, State


class SenderSession(BaseSession):
    def __init__(
        self,
        sock,
        peer,
        filename,
        mode,
        reader,
        retry_policy=None,
        logger=None,
        stats_callback=None,
        client=False,
    ):
        """
        Session pushing a stream to the peer: it serves a read request, or
        performs a client side put.

        Bytes are read from `reader` one block at a time and every block has
        to be acknowledged by the peer before the next one is read, so the
        producer on the other end of the pipe can never outrun the network.

        Args:
            reader (PipeReader): the end of the pipe the handler writes the
                file into. The session closes it when the transfer ends, with
                the error that ended it, if any.

            client (bool): if True the session first sends a write request and
                waits for it to be acknowledged with block 0.

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
        self._reader = reader
        self._block_size = constants.DEFAULT_BLKSIZE
        self._last_block_sent = 0
        self._current_block = None
        self._waiting_last_ack = False

    def _start_transfer(self):
        self._log.info(
            "Sending `%s` to peer `%s` (mode %s)"
            % (self._filename, self._peer, self._mode)
        )
        if self._client:
            self._transmit(packet.WriteRequest(self._filename, self._mode))
            self._state = State.AWAIT_ACK
        else:
            self._state = State.AWAIT_DATA

    def run_once(self):
        if self._state == State.AWAIT_DATA:
            self._next_block()
            self._transmit_data()
            return
        self.on_new_data()
        if self._state == State.AWAIT_ACK and self._time_left() <= 0:
            self._handle_timeout()

    def on_new_data(self):
        """
        Waits for a packet from the peer and extracts the acknowledged block
        number, if any.
        """
        pkt = self._receive()
        if pkt is None:
            return
        if not isinstance(pkt, packet.Ack):
            self._log.warning(
                "Expected an ACK from %s, got: %s"
                % (self._peer, pkt.__class__.__name__)
            )
            return
        self._handle_ack(pkt.block)

    def _handle_ack(self, block_number):
        """Deals with a peer ACK packet."""
        if block_number != self._last_block_sent:
            # Duplicate or unexpected ACK, let's ignore this.
            self._log.debug(
                "Ignoring ACK %d, waiting for %d"
                % (block_number, self._last_block_sent)
            )
            return
        if self._current_block is not None:
            self._stats.packets_acked += 1
        if self._waiting_last_ack:
            self._log.info(
                "Sent `%s` to peer `%s`: %d bytes"
                % (self._filename, self._peer, self._stats.bytes_sent)
            )
            self._state = State.DONE
            return
        self._state = State.AWAIT_DATA

    def _next_block(self):
        """
        Reads the next block from the stream. If the handler broke the stream
        an error will be reported to the peer.
        """
        self._last_block_sent += 1
        if self._last_block_sent > constants.MAX_BLOCK_NUMBER:
            self._last_block_sent = 0  # Wrap around the block counter.
        try:
            current_block = b""
            while len(current_block) < self._block_size:
                data = self._reader.read(self._block_size - len(current_block))
                if not data:
                    break
                current_block += data
        except Exception as e:
            raise self._handler_failure(e) from e
        self._current_block = current_block

    def _transmit_data(self):
        """Method that deals with sending a block to the wire."""
        data = packet.Data(self._last_block_sent, self._current_block)
        self._transmit(data)
        self._stats.bytes_sent += len(data.payload)
        if data.is_last():
            self._waiting_last_ack = True
        self._state = State.AWAIT_ACK

    def _close_stream(self, error):
        if error is None:
            self._reader.close()
        else:
            self._reader.close_with_error(error)
