# Copyright (C) 2021 The Noteident Contributors
#
# This file is part of Noteident.
#
# Noteident is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# Noteident is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with Noteident.  If not, see <http://www.gnu.org/licenses/>.
"""Errors raised by Noteident.

Only `ValidationError` and an exhausted `ProvisioningConflictError` reach callers in normal operation.
The others are recovered where they are raised and reported through `logging`.
"""
from typing import Optional


class NoteidentError(Exception):
    """Base class of all Noteident errors."""


class ValidationError(NoteidentError):
    """A record field does not satisfy its format, e.g. a malformed email address."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__("{}: {}".format(field, message))


class ProfileDecodeError(NoteidentError):
    """The stored provider profile payload cannot be decoded.

    ..note:: Recovered by `noteident.usrsys.profile.parse_profile`, never raised to callers of `get_profile`.
    """


class IntegrityError(NoteidentError):
    """The stored password hash is malformed.

    ..note:: `noteident.utils.asec.verify` turns it into `False`.
    """


class ProvisioningConflictError(NoteidentError):
    """Another folder was created for the same owner concurrently.

    ..note:: `noteident.usrsys.folder.FolderProvisioner` retries on it, and only raises it once retries are exhausted.
    """

    def __init__(self, owner_id: str, message: Optional[str] = None) -> None:
        self.owner_id = owner_id
        super().__init__(message or "folder already exists for owner {}".format(owner_id))
