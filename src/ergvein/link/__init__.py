# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from .common import MessageBuffer
from .stream import MessageStream

__all__ = 'MessageBuffer', 'MessageStream'
