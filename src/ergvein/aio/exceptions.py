# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later


__all__ = 'ClosedResourceError', 'BrokenResourceError'


class ClosedResourceError(Exception):
    """
    Raised when attempting to use a connection that is closed.

    This covers both a connection that was explicitly closed by calling
    its ``close`` method (or by exiting its context manager) and one that
    was closed in an orderly way by the remote peer.

    """


class BrokenResourceError(Exception):
    """
    Raised when using a connection fails due to external causes.

    For example, writing to a connection that was reset by the network,
    or a read that timed out at the socket level.

    This exception's ``__cause__`` attribute will often contain more
    information about the underlying error.

    """
