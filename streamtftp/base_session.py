#!/usr/bin/env python3
# Copyright (c) Facebook, Inc. and its affiliates.

# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import enum
import logging
import socket
import threading
import time

from . import constants, packet
from .config import RetryPolicy
from .errors import (
    ForeignPeer,
    HandlerFailure,
    MalformedPacket,
    PeerAbort,
    ProtocolTimeout,
    TftpError,
    TransportFailure,
    error_code_for,
)


class State(enum.Enum):
    AWAIT_DATA = "await_data"
    AWAIT_ACK = "await_ack"
    DONE = "done"
    FAILED = "failed"


class SessionStats:
    """
    SessionStats represents a digest of what happened during a session.
    Data inside the object gets populated while the session runs and is final
    once the session ended.

    Note:
        You should never need to instantiate an object of this class.
        This object is what gets passed to the stats callback of a session and
        what the `Client` methods return.
    """

    def __init__(self, local_addr, peer, filename, mode):
        self.peer = peer
        self.local_addr = local_addr
        self.filename = filename
        self.mode = mode
        self.error = {}
        self.start_time = time.time()
        self.end_time = None
        self.packets_sent = 0
        self.packets_acked = 0
        self.bytes_sent = 0
        self.bytes_received = 0
        self.retransmits = 0

    def duration(self):
        end_time = self.end_time if self.end_time is not None else time.time()
        return end_time - self.start_time


class BaseSession(threading.Thread):
    def __init__(
        self,
        sock,
        peer,
        filename,
        mode,
        retry_policy=None,
        logger=None,
        stats_callback=None,
        client=False,
    ):
        """
        Class that deals with a single transfer over a dedicated UDP socket.
        Being a subclass of `threading.Thread` it can run next to the thread
        of the handler producing or consuming the transferred bytes.

        Note:
            Do not use this class as is, use `SenderSession` or
            `ReceiverSession`.

        Args:
            sock (socket.socket): the ephemeral socket of this transfer. The
                session owns it and closes it when the transfer ends.

            peer (tuple): (ip, port) of the peer. For a client session this is
                where the request goes; the peer is then pinned to the address
                of whoever answers first.

            filename (str): the file being transferred.

            mode (str): transfer mode, carried through but not interpreted.

            retry_policy (RetryPolicy): retransmission settings, defaults to
                `RetryPolicy()`.

            logger (logging.Logger): where to log, defaults to this module's
                logger.

            stats_callback (callable): a callable that will be executed at the
                end of the session. It gets passed an instance of the
                `SessionStats` class.

            client (bool): whether the session opens the transfer by sending a
                request to the peer.
        """
        super().__init__()
        self.daemon = True
        self._sock = sock
        self._peer = peer
        self._peer_pinned = not client
        self._client = client
        self._filename = filename
        self._mode = mode
        self._retry_policy = retry_policy or RetryPolicy()
        self._log = logger or logging.getLogger(__name__)
        self._stats_callback = stats_callback
        self._state = None
        self._retransmits = 0
        self._global_retransmits = 0
        self._last_packet = None
        self._expire_ts = None
        self.error = None
        self._reset_timeout()
        self._stats = SessionStats(self._local_addr(), peer, filename, mode)

    @property
    def stats(self):
        return self._stats

    @property
    def state(self):
        return self._state

    def _local_addr(self):
        try:
            return self._sock.getsockname()
        except OSError:
            return None

    def run(self):
        """This is the main transfer loop."""
        try:
            self._start_transfer()
            while self._state not in (State.DONE, State.FAILED):
                self.run_once()
        except TftpError as e:
            self._fail(e)
        except Exception as e:
            self._log.exception("Unexpected exception in session: %s" % e)
            self._fail(TftpError(str(e)))
        finally:
            self._close()

    def run_once(self):
        """The main body of the transfer loop, one step of the state machine."""
        raise NotImplementedError()

    def _start_transfer(self):
        raise NotImplementedError()

    def _close_stream(self, error):
        """Closes the session's end of the stream, with `error` if not None."""
        raise NotImplementedError()

    def _reset_timeout(self):
        """
        This method resets the retransmission timer in order to extend the
        session lifetime. It does so setting the timestamp in the future.
        """
        self._expire_ts = time.monotonic() + self._retry_policy.timeout

    def _time_left(self):
        return self._expire_ts - time.monotonic()

    def _send(self, pkt):
        """Encodes and sends a packet to the peer."""
        try:
            self._sock.sendto(packet.encode(pkt), self._peer)
        except OSError as e:
            raise TransportFailure("sending to %s failed: %s" % (self._peer, e))
        self._stats.packets_sent += 1

    def _transmit(self, pkt):
        """Sends a packet that will be retransmitted if the peer is silent."""
        self._send(pkt)
        self._last_packet = pkt
        self._retransmits = 0
        self._reset_timeout()

    def _retransmit(self):
        self._send(self._last_packet)
        self._retransmits += 1
        self._global_retransmits += 1
        self._reset_timeout()

    def _handle_timeout(self):
        """
        Called when the peer did not answer in time. Retransmits the last
        packet until the retry budget is exhausted.
        """
        if self._retransmits < self._retry_policy.retries:
            self._log.warning(
                "Timeout waiting for %s, retransmitting %s"
                % (self._peer, self._last_packet.__class__.__name__)
            )
            self._retransmit()
            return
        raise ProtocolTimeout("timeout after %d retransmits." % self._retransmits)

    def _receive(self):
        """
        Waits for a packet from the peer until the retransmission timer
        expires.

        Returns:
            the decoded packet, or None if nothing usable arrived in time.

        Raises:
            PeerAbort: the peer sent an ERROR packet.
            TransportFailure: the socket is unusable.
        """
        timeout = self._time_left()
        if timeout <= 0:
            return None
        try:
            self._sock.settimeout(timeout)
            data, peer = self._sock.recvfrom(constants.RECV_BUFFER_SIZE)
        except socket.timeout:
            return None
        except OSError as e:
            raise TransportFailure("receiving from %s failed: %s" % (self._peer, e))
        try:
            pkt = packet.decode(data)
        except MalformedPacket as e:
            self._log.warning("Dropping malformed packet from %s: %s" % (peer, e))
            return None
        if not self._peer_pinned:
            self._log.debug("Pinning peer to %s" % (peer,))
            self._peer = peer
            self._peer_pinned = True
            self._stats.peer = peer
        elif peer != self._peer:
            self._reject_foreign(peer)
            return None
        if isinstance(pkt, packet.ErrorPacket):
            raise PeerAbort(
                "error reported by peer: %s" % pkt.message, error_code=pkt.code
            )
        return pkt

    def _reject_foreign(self, peer):
        error = ForeignPeer("unknown transfer ID")
        self._log.warning("Unexpected peer: %s, expected %s" % (peer, self._peer))
        try:
            self._sock.sendto(
                packet.encode(packet.ErrorPacket(error.error_code, error.message)),
                peer,
            )
        except OSError as e:
            self._log.warning("Could not notify %s: %s" % (peer, e))

    def _handler_failure(self, cause):
        """Wraps an exception coming from the stream into a `HandlerFailure`."""
        message = str(cause) or cause.__class__.__name__
        return HandlerFailure(message, error_code=error_code_for(cause))

    def _fail(self, error):
        self._state = State.FAILED
        self.error = error
        self._stats.error = {
            "error_code": error.error_code,
            "error_message": error.message,
        }
        self._log.error(
            "Transfer of %s with %s failed: %s" % (self._filename, self._peer, error)
        )
        if isinstance(error, HandlerFailure):
            self._transmit_error(error)

    def _transmit_error(self, error):
        """Transmits an error to the peer, which terminates the exchange."""
        try:
            self._send(packet.ErrorPacket(error.error_code, error.message))
        except (TransportFailure, ValueError) as e:
            self._log.warning("Could not send error to %s: %s" % (self._peer, e))

    def _on_close(self):
        """
        Called at the end of a session.

        This method sets number of retransmissions and calls the stats callback
        at the end of the session.
        """
        self._stats.retransmits = self._global_retransmits
        self._stats.end_time = time.time()
        if self._stats_callback is not None:
            self._stats_callback(self._stats)

    def _close(self):
        """
        Wrapper around `_on_close`. Its duty is to perform the necessary
        cleanup: closing the stream end and the UDP socket.
        """
        self._log.debug("Closing stream")
        self._close_stream(self.error)
        self._log.debug("Closing socket")
        self._sock.close()
        try:
            self._on_close()
        except Exception as e:
            self._log.exception("Exception raised when calling _on_close: %s" % e)
