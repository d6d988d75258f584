#!/usr/bin/env python3
# Copyright (c) Facebook, Inc. and its affiliates.

# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import logging

from .base_server import BaseServer
from .base_session import SessionStats
from .client import Client
from .config import RetryPolicy
from .errors import (
    ForeignPeer,
    HandlerFailure,
    MalformedPacket,
    PeerAbort,
    ProtocolTimeout,
    TftpError,
    TransportFailure,
)
from .pipe import PipeReader, PipeWriter, pipe
from .receiver import ReceiverSession
from .sender import SenderSession

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "BaseServer",
    "Client",
    "ForeignPeer",
    "HandlerFailure",
    "MalformedPacket",
    "PeerAbort",
    "PipeReader",
    "PipeWriter",
    "ProtocolTimeout",
    "ReceiverSession",
    "RetryPolicy",
    "SenderSession",
    "SessionStats",
    "TftpError",
    "TransportFailure",
    "pipe",
]
