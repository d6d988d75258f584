#!/usr/bin/env python3
# Copyright (c) Facebook, Inc. and its affiliates.

# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import threading


class _Pipe:
    """
    State shared by the two ends of a pipe.

    There is no buffer: a write parks its data here and blocks until readers
    have consumed all of it, or until either end is closed.
    """

    def __init__(self):
        self._cond = threading.Condition()
        # only one write can be in flight at any time
        self._write_lock = threading.Lock()
        self._pending = None
        # reads blocked waiting for data, a zero-length write needs one
        self._waiting_reads = 0
        self._reader_closed = False
        self._writer_closed = False
        # what writers get after the reader end was closed, and vice versa
        self._reader_error = None
        self._writer_error = None

    def read(self, size):
        with self._cond:
            while True:
                if self._reader_closed:
                    raise ValueError("read from closed pipe")
                if self._pending is not None:
                    chunk = bytes(self._pending[:size])
                    self._pending = self._pending[len(chunk) :]
                    if not len(self._pending):
                        self._pending = None
                        self._cond.notify_all()
                    return chunk
                if self._writer_closed:
                    if self._writer_error is not None:
                        raise self._writer_error
                    return b""
                self._waiting_reads += 1
                self._cond.notify_all()
                try:
                    self._cond.wait()
                finally:
                    self._waiting_reads -= 1

    def write(self, data):
        view = memoryview(bytes(data))
        with self._write_lock, self._cond:
            self._check_writable()
            if not len(view):
                # no data to hand over: wait for a reader to show up instead
                while not self._waiting_reads:
                    self._cond.wait()
                    self._check_writable()
                return 0
            self._pending = view
            self._cond.notify_all()
            while self._pending is not None:
                if self._reader_closed or self._writer_closed:
                    self._pending = None
                    self._check_writable()
                self._cond.wait()
            return len(view)

    def _check_writable(self):
        if self._writer_closed:
            raise ValueError("write to closed pipe")
        if self._reader_closed:
            if self._reader_error is not None:
                raise self._reader_error
            raise BrokenPipeError("read end of the pipe is closed")

    def close_reader(self, error):
        with self._cond:
            if not self._reader_closed:
                self._reader_closed = True
                self._reader_error = error
            self._cond.notify_all()

    def close_writer(self, error):
        with self._cond:
            if not self._writer_closed:
                self._writer_closed = True
                self._writer_error = error
            self._cond.notify_all()

    @property
    def reader_closed(self):
        return self._reader_closed

    @property
    def writer_closed(self):
        return self._writer_closed


class PipeReader:
    """
    Read end of a pipe created by `pipe()`.

    `read()` returns `b""` once the writer closed its end cleanly, and raises
    the writer's exception if it was closed with `close_with_error()`.
    Using the reader as a context manager closes it on exit, with the
    exception that interrupted the block, if any.
    """

    def __init__(self, pipe):
        self._pipe = pipe

    def read(self, size=-1):
        """
        Reads up to `size` bytes, blocking until a writer provides some.
        A negative `size` reads until end of stream.
        """
        if size is None or size < 0:
            chunks = []
            while True:
                chunk = self._pipe.read(None)
                if not chunk:
                    return b"".join(chunks)
                chunks.append(chunk)
        if size == 0:
            return b""
        return self._pipe.read(size)

    def close(self):
        """Closes the reader; pending and future writes get BrokenPipeError."""
        self._pipe.close_reader(None)

    def close_with_error(self, error):
        """Closes the reader; pending and future writes raise `error`."""
        self._pipe.close_reader(error)

    @property
    def closed(self):
        return self._pipe.reader_closed

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc is not None:
            self.close_with_error(exc)
        else:
            self.close()


class PipeWriter:
    """
    Write end of a pipe created by `pipe()`.

    `write()` returns only once readers consumed all the data it was given.
    Using the writer as a context manager closes it on exit, with the
    exception that interrupted the block, if any.
    """

    def __init__(self, pipe):
        self._pipe = pipe

    def write(self, data):
        """
        Writes `data`, blocking until it has been read entirely. Writing `b""`
        blocks until a read is waiting for data, without ending that read.
        """
        return self._pipe.write(data)

    def close(self):
        """Closes the writer; readers will see end of stream."""
        self._pipe.close_writer(None)

    def close_with_error(self, error):
        """Closes the writer; pending and future reads raise `error`."""
        self._pipe.close_writer(error)

    @property
    def closed(self):
        return self._pipe.writer_closed

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc is not None:
            self.close_with_error(exc)
        else:
            self.close()


def pipe():
    """
    Creates a synchronous in-memory pipe and returns its
    `(PipeReader, PipeWriter)` ends.
    """
    state = _Pipe()
    return PipeReader(state), PipeWriter(state)
