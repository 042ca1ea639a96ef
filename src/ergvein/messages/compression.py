# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Compression for the bulk payloads (gzip container, default level)"""

import gzip
import zlib

from .exceptions import CompressionError

__all__ = 'compress', 'decompress'


COMPRESSION_LEVEL = 6


def compress(data: bytes) -> bytes:
    # mtime is fixed so that the same data always compresses to the same bytes
    return gzip.compress(data, compresslevel=COMPRESSION_LEVEL, mtime=0)


def decompress(data: bytes) -> bytes:
    try:
        return gzip.decompress(data)
    except (OSError, EOFError, zlib.error) as exc:
        raise CompressionError(f'Cannot decompress data: {exc}') from exc
