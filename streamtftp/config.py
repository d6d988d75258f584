#!/usr/bin/env python3
# Copyright (c) Facebook, Inc. and its affiliates.

# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import collections

from . import constants


class RetryPolicy(collections.namedtuple("RetryPolicy", ["retries", "timeout"])):
    """
    Retransmission settings shared by every session of a server or client.

    Args:
        retries (int): how many times a datagram is retransmitted before the
            session gives up. A packet is thus sent at most `retries + 1`
            times.

        timeout (float): time in seconds to wait for the peer before
            retransmitting. It is used in two ways:
                - as timeout in `socket.socket.recvfrom()`.
                - as maximum time to expect an answer from the peer.
    """

    __slots__ = ()

    def __new__(
        cls, retries=constants.DEFAULT_RETRIES, timeout=constants.DEFAULT_TIMEOUT
    ):
        if retries < 0:
            raise ValueError("retries must not be negative, got %r" % retries)
        if timeout < 0:
            raise ValueError("timeout must not be negative, got %r" % timeout)
        return super().__new__(cls, int(retries), timeout)
