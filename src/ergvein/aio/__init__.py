# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from .exceptions import BrokenResourceError, ClosedResourceError

__all__ = 'BrokenResourceError', 'ClosedResourceError'
