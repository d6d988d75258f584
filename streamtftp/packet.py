#!/usr/bin/env python3
# Copyright (c) Facebook, Inc. and its affiliates.

# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

"""
Encoding and decoding of the five RFC 1350 packet kinds.

    RRQ/WRQ   | opcode (2) | filename | 0 | mode | 0 |
    DATA      | opcode (2) | block (2) | data (0..512) |
    ACK       | opcode (2) | block (2) |
    ERROR     | opcode (2) | code (2) | message | 0 |

All integers are big endian, strings are NUL terminated.
"""

import collections
import struct

from . import constants
from .errors import MalformedPacket


class ReadRequest(collections.namedtuple("ReadRequest", ["filename", "mode"])):
    __slots__ = ()
    opcode = constants.OPCODE_RRQ


class WriteRequest(collections.namedtuple("WriteRequest", ["filename", "mode"])):
    __slots__ = ()
    opcode = constants.OPCODE_WRQ


class Data(collections.namedtuple("Data", ["block", "payload"])):
    __slots__ = ()
    opcode = constants.OPCODE_DATA

    def is_last(self):
        """A block shorter than the block size terminates the transfer."""
        return len(self.payload) < constants.DEFAULT_BLKSIZE


class Ack(collections.namedtuple("Ack", ["block"])):
    __slots__ = ()
    opcode = constants.OPCODE_ACK


class ErrorPacket(collections.namedtuple("ErrorPacket", ["code", "message"])):
    __slots__ = ()
    opcode = constants.OPCODE_ERROR


def _check_uint16(name, value):
    if not 0 <= value <= constants.MAX_BLOCK_NUMBER:
        raise ValueError("%s out of range: %r" % (name, value))


def _encode_string(value):
    if "\x00" in value:
        raise ValueError("NUL byte in %r" % value)
    return value.encode("latin-1") + b"\x00"


def _encode_message(value):
    # free text: unencodable characters become "?", NULs would end it early
    return value.replace("\x00", " ").encode("latin-1", "replace") + b"\x00"


def _encode_request(packet):
    return (
        struct.pack("!H", packet.opcode)
        + _encode_string(packet.filename)
        + _encode_string(packet.mode)
    )


def _encode_data(packet):
    _check_uint16("block number", packet.block)
    if len(packet.payload) > constants.DEFAULT_BLKSIZE:
        raise ValueError(
            "payload of %d bytes exceeds the block size" % len(packet.payload)
        )
    return struct.pack("!HH", packet.opcode, packet.block) + bytes(packet.payload)


def _encode_ack(packet):
    _check_uint16("block number", packet.block)
    return struct.pack("!HH", packet.opcode, packet.block)


def _encode_error(packet):
    _check_uint16("error code", packet.code)
    return struct.pack("!HH", packet.opcode, packet.code) + _encode_message(
        packet.message
    )


_ENCODERS = {
    ReadRequest: _encode_request,
    WriteRequest: _encode_request,
    Data: _encode_data,
    Ack: _encode_ack,
    ErrorPacket: _encode_error,
}


def encode(packet):
    """
    Serializes a packet into a datagram payload.

    Raises:
        TypeError: `packet` is not one of the packet types of this module.
        ValueError: a field cannot be represented on the wire.
    """
    try:
        encoder = _ENCODERS[type(packet)]
    except KeyError:
        raise TypeError("not a TFTP packet: %r" % (packet,)) from None
    return encoder(packet)


def _split_strings(body, count):
    """
    Splits the first `count` NUL terminated strings off `body`. Anything
    following them is returned untouched.
    """
    strings = []
    for _ in range(count):
        end = body.find(b"\x00")
        if end == -1:
            raise MalformedPacket("missing NUL terminator")
        strings.append(body[:end].decode("latin-1"))
        body = body[end + 1 :]
    return strings, body


def _decode_request(cls, data):
    # bytes after the mode are RFC 2347 options, which we do not negotiate
    (filename, mode), _ = _split_strings(data[2:], 2)
    return cls(filename, mode)


def _decode_data(data):
    if len(data) < 4:
        raise MalformedPacket("DATA packet too short: %d bytes" % len(data))
    payload = data[4:]
    if len(payload) > constants.DEFAULT_BLKSIZE:
        raise MalformedPacket("DATA payload too long: %d bytes" % len(payload))
    (block,) = struct.unpack("!H", data[2:4])
    return Data(block, bytes(payload))


def _decode_ack(data):
    if len(data) < 4:
        raise MalformedPacket("ACK packet too short: %d bytes" % len(data))
    (block,) = struct.unpack("!H", data[2:4])
    return Ack(block)


def _decode_error(data):
    if len(data) < 5:
        raise MalformedPacket("ERROR packet too short: %d bytes" % len(data))
    (code,) = struct.unpack("!H", data[2:4])
    (message,), _ = _split_strings(data[4:], 1)
    return ErrorPacket(code, message)


_DECODERS = {
    constants.OPCODE_RRQ: lambda data: _decode_request(ReadRequest, data),
    constants.OPCODE_WRQ: lambda data: _decode_request(WriteRequest, data),
    constants.OPCODE_DATA: _decode_data,
    constants.OPCODE_ACK: _decode_ack,
    constants.OPCODE_ERROR: _decode_error,
}


def decode(data):
    """
    Parses a datagram payload.

    Returns:
        one of `ReadRequest`, `WriteRequest`, `Data`, `Ack`, `ErrorPacket`.

    Raises:
        MalformedPacket: for any input that is not a valid TFTP packet.
    """
    if len(data) < 2:
        raise MalformedPacket("packet too short: %d bytes" % len(data))
    (opcode,) = struct.unpack("!H", data[:2])
    try:
        decoder = _DECODERS[opcode]
    except KeyError:
        raise MalformedPacket("unknown opcode %d" % opcode) from None
    return decoder(bytes(data))
