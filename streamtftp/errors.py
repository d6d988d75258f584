#!/usr/bin/env python3
# Copyright (c) Facebook, Inc. and its affiliates.

# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

from . import constants


class TftpError(Exception):
    """
    Base class of every error raised by this package.

    It carries the RFC 1350 error code that should be reported to the peer
    when the error ends a transfer, and a human readable message.

    Args:
        message (str): description of the problem.

        error_code (int): one of the `constants.ERR_*` codes. Defaults to the
            class level `error_code`.
    """

    error_code = constants.ERR_UNDEFINED

    def __init__(self, message="", error_code=None):
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code


class MalformedPacket(TftpError, ValueError):
    """A datagram that cannot be decoded into a TFTP packet."""

    error_code = constants.ERR_ILLEGAL_OPERATION


class ForeignPeer(TftpError):
    """A datagram coming from somebody other than the pinned peer."""

    error_code = constants.ERR_UNKNOWN_TRANSFER_ID


class ProtocolTimeout(TftpError):
    """The retry budget of a session has been exhausted."""


class PeerAbort(TftpError):
    """The peer sent an ERROR packet, which terminates the transfer."""


class TransportFailure(TftpError):
    """The session socket failed to send or receive."""


class HandlerFailure(TftpError):
    """The user handler closed its end of the stream too early."""


def error_code_for(exc):
    """
    Maps an exception raised by (or on behalf of) a user handler to the error
    code that is sent to the peer.
    """
    if isinstance(exc, TftpError):
        return exc.error_code
    if isinstance(exc, FileNotFoundError):
        return constants.ERR_FILE_NOT_FOUND
    if isinstance(exc, PermissionError):
        return constants.ERR_ACCESS_VIOLATION
    if isinstance(exc, FileExistsError):
        return constants.ERR_FILE_EXISTS
    return constants.ERR_UNDEFINED
