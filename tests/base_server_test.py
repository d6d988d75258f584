#!/usr/bin/env python3
# Copyright (c) Facebook, Inc. and its affiliates.

# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import socket
import threading
import time
import unittest
from unittest.mock import patch, Mock

from streamtftp import constants, packet
from streamtftp.base_server import BaseServer
from streamtftp.base_session import State
from streamtftp.config import RetryPolicy
from streamtftp.receiver import ReceiverSession
from streamtftp.sender import SenderSession

MOCK_SOCKET_FILENO = 100
SELECT_EPOLLIN = 1
PEER = ("127.0.0.1", 5678)


class MockSocketListener:
    def __init__(self, network_queue):
        self._network_queue = network_queue
        self.sendto = Mock()

    def recvfrom(self, blocksize):
        data = self._network_queue.pop(0)
        return data, PEER

    def fileno(self):
        # just a given socket fileno that will have to be matched by
        # testBaseServer.poll_mock below. This is to trick the
        # BaseServer.run_once()'s' select.epoll.poll() method...
        return MOCK_SOCKET_FILENO

    def close(self):
        pass


class MockTransferSocket:
    """Ephemeral socket of a transfer, fed from a packet queue."""

    def __init__(self, network_queue):
        self._network_queue = list(network_queue)
        self._timeout = None
        self.sendto = Mock()
        self.close = Mock()

    def settimeout(self, timeout):
        self._timeout = timeout

    def recvfrom(self, bufsize):
        if not self._network_queue:
            time.sleep(self._timeout or 0)
            raise socket.timeout()
        return packet.encode(self._network_queue.pop(0)), PEER

    def getsockname(self):
        return ("127.0.0.1", 4321)

    def sent_packets(self):
        return [packet.decode(args[0]) for args, _ in self.sendto.call_args_list]


class StaticServer(BaseServer):
    def __init__(self, network_queue, files=None, transfer_queue=()):
        super().__init__(
            "127.0.0.1",
            0,  # let the kernel choose
            retry_policy=RetryPolicy(retries=1, timeout=0.05),
            session_stats_callback=Mock(),
        )
        self._files = files or {}
        self.uploaded = {}
        self.upload_done = threading.Event()
        # mock the network
        self._listener.close()
        self._listener = MockSocketListener(network_queue)
        self.transfer_socket = MockTransferSocket(transfer_queue)

    def _get_transfer_socket(self):
        return self.transfer_socket

    def handle_read_request(self, filename, mode, peer, writer):
        if filename not in self._files:
            raise FileNotFoundError("File not found: %s" % filename)
        writer.write(self._files[filename])

    def handle_write_request(self, filename, mode, peer, reader):
        if filename in self._files:
            raise FileExistsError("File exists: %s" % filename)
        self.uploaded[filename] = reader.read()
        self.upload_done.set()


class testBaseServer(unittest.TestCase):
    def setUp(self):
        self.network_queue = []

    def poll_mock(self, *args):
        """
        mock the select.epoll.poll() method, returns an iterable containing a
        list of (fileno, eventmask), the fileno constant matches the
        MockSocketListener.fileno() method, eventmask matches select.EPOLLIN
        """
        if len(self.network_queue) > 0:
            return [(MOCK_SOCKET_FILENO, SELECT_EPOLLIN)]
        return []

    def prepare_and_run(self):
        server = StaticServer(self.network_queue)
        server.start_transfer = Mock()
        server.run(run_once=True)
        server.close()
        self.assertTrue(server._should_stop)
        return server

    @patch("select.epoll")
    def testRRQ(self, epoll_mock):
        # link the self.poll_mock() method with the select.epoll patched object
        epoll_mock.return_value.poll.side_effect = self.poll_mock
        self.network_queue.append(
            # RRQ + file name + mode + optname + optvalue
            b"\x00\x01some_file\x00octet\x00opt1_key\x00opt1_val\x00"
        )
        server = self.prepare_and_run()
        server.start_transfer.assert_called_once_with(
            packet.ReadRequest("some_file", "octet"), PEER
        )

    @patch("select.epoll")
    def testWRQ(self, epoll_mock):
        epoll_mock.return_value.poll.side_effect = self.poll_mock
        self.network_queue.append(b"\x00\x02some_file\x00netascii\x00")
        server = self.prepare_and_run()
        server.start_transfer.assert_called_once_with(
            packet.WriteRequest("some_file", "netascii"), PEER
        )

    @patch("select.epoll")
    def testUnexpectedOpsCode(self, epoll_mock):
        epoll_mock.return_value.poll.side_effect = self.poll_mock
        self.network_queue.append(b"\x00\x04\x00\x01")
        server = self.prepare_and_run()
        server.start_transfer.assert_not_called()
        server._listener.sendto.assert_called_with(
            # \x00\x05 == OPCODE_ERROR
            # \x00\x04 == ERR_ILLEGAL_OPERATION
            b"\x00\x05\x00\x04Expected a read or write request\x00",
            PEER,
        )

    @patch("select.epoll")
    def testNothingToRead(self, epoll_mock):
        epoll_mock.return_value.poll.side_effect = self.poll_mock
        server = self.prepare_and_run()
        server.start_transfer.assert_not_called()

    def testStartTransferException(self):
        server = StaticServer(
            [b"\x00\x01some_file\x00octet\x00", b"\x00\x01some_file\x00octet\x00"]
        )
        server._get_transfer_socket = Mock(side_effect=OSError("no more ports"))
        # logged, not raised
        server.on_new_data()
        server.start_transfer = Mock(side_effect=Exception("boom!"))
        server.on_new_data()
        server.start_transfer.assert_called_once_with(
            packet.ReadRequest("some_file", "octet"), PEER
        )

    def testServeRead(self):
        server = StaticServer(
            [], files={"some_file": b"bacon"}, transfer_queue=[packet.Ack(1)]
        )
        session = server.start_transfer(packet.ReadRequest("some_file", "octet"), PEER)
        self.assertIsInstance(session, SenderSession)
        session.join(5)
        self.assertEqual(session.state, State.DONE)
        self.assertEqual(
            server.transfer_socket.sent_packets(), [packet.Data(1, b"bacon")]
        )
        server._session_stats_callback.assert_called_once_with(session.stats)

    def testServeWrite(self):
        server = StaticServer(
            [], transfer_queue=[packet.Data(1, b"x" * 512), packet.Data(2, b"yz")]
        )
        session = server.start_transfer(
            packet.WriteRequest("some_file", "octet"), PEER
        )
        self.assertIsInstance(session, ReceiverSession)
        session.join(5)
        self.assertTrue(server.upload_done.wait(5))
        self.assertEqual(session.state, State.DONE)
        self.assertEqual(server.uploaded, {"some_file": b"x" * 512 + b"yz"})
        self.assertEqual(
            server.transfer_socket.sent_packets(),
            [packet.Ack(0), packet.Ack(1), packet.Ack(2)],
        )

    def testFileNotFound(self):
        server = StaticServer([])
        session = server.start_transfer(packet.ReadRequest("missing", "octet"), PEER)
        session.join(5)
        self.assertEqual(session.state, State.FAILED)
        self.assertEqual(
            server.transfer_socket.sent_packets(),
            [
                packet.ErrorPacket(
                    constants.ERR_FILE_NOT_FOUND, "File not found: missing"
                )
            ],
        )

    def testDefaultHandlersRefuse(self):
        server = BaseServer("127.0.0.1", 0)
        sock = MockTransferSocket([])
        server._get_transfer_socket = Mock(return_value=sock)
        session = server.start_transfer(packet.ReadRequest("some_file", "octet"), PEER)
        session.join(5)
        self.assertEqual(
            sock.sent_packets(),
            [
                packet.ErrorPacket(
                    constants.ERR_UNDEFINED, "read requests are not supported"
                )
            ],
        )
        server._listener.close()
        server._epoll.close()

    def testTransferSocket(self):
        server = BaseServer("127.0.0.1", 0)
        sock = server._get_transfer_socket()
        self.assertEqual(sock.family, socket.AF_INET)
        self.assertEqual(sock.getsockname()[0], "127.0.0.1")
        self.assertNotEqual(sock.getsockname()[1], server.server_address[1])
        sock.close()
        server._listener.close()
        server._epoll.close()

    def testRefusedUploadNotAcknowledged(self):
        server = StaticServer(
            [], files={"some_file": b"bacon"}, transfer_queue=[packet.Data(1, b"x")]
        )
        session = server.start_transfer(
            packet.WriteRequest("some_file", "octet"), PEER
        )
        session.join(5)
        self.assertEqual(session.state, State.FAILED)
        self.assertEqual(
            server.transfer_socket.sent_packets(),
            [
                packet.ErrorPacket(
                    constants.ERR_FILE_EXISTS, "File exists: some_file"
                )
            ],
        )
        self.assertEqual(server.uploaded, {})
