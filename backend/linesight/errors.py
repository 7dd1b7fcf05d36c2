# linesight/errors.py
from __future__ import annotations


class LinesightError(Exception):
    """Base class for errors raised by the analytics engine."""


class StoreReadError(LinesightError):
    """The upstream store failed while serving a read; the whole computation is void."""


class NotFoundError(LinesightError):
    """A requested entity (unit serial, episode id, CTQ id) does not exist."""

    def __init__(self, kind: str, key: object):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")
