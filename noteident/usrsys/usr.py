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
"""This module contains definitions about users, folders and the canonical profile.
"""
from dataclasses import dataclass
from typing import Optional, Union
from uuid import uuid4

from flanker.addresslib import address

from ..errors import ValidationError
from ..utils.asec import hash_password, verify


def new_identity() -> str:
    """Return a new random identity string (UUID4 hex)."""
    return uuid4().hex


def validate_email(email: str) -> None:
    """Raise `noteident.errors.ValidationError` if `email` is not a single addr-spec like `alice@example.com`."""
    if not isinstance(email, str) or address.parse(email, addr_spec_only=True) is None:
        raise ValidationError("email", "{!r} is not a valid email address".format(email))


@dataclass
class UserRecord(object):
    """Infomation about user.

    Attributes:
        id: `str`. Unique identity, generated at creation and never changed.
        profileid: `Optional[str]`. The identity issued by the third-party provider; unique across users when present.
        profile: `Optional[str]`. The last seen provider profile, JSON encoded. See `noteident.usrsys.profile`.
        history: `Optional[str]`. The serialised note history of the user, opaque here.
        access_token: `Optional[str]`. Provider credential.
        refresh_token: `Optional[str]`. Provider credential.
        email: `Optional[str]`. The user's email address, validated when present.
        password_hash: `Optional[str]`. Hashed password, only for password users. See `noteident.utils.asec.hash_password`.
        folder_id: `Optional[str]`. The personal folder of the user.
            Every record returned by `noteident.Noteident` has it set, see `noteident.usrsys.folder.FolderProvisioner`.
    """

    id: str
    profileid: Optional[str] = None
    profile: Optional[str] = None
    history: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    email: Optional[str] = None
    password_hash: Optional[str] = None
    folder_id: Optional[str] = None

    @classmethod
    def new(cls, **fields) -> "UserRecord":
        """Shortcut to create a user record with a new identity.

        ..Note:: this method just create an object, you should store it before using.
        """
        return cls(id=new_identity(), **fields)

    def set_password(self, password: Union[str, bytes]) -> None:
        """Replace `password_hash` with a new hash of `password`. The plaintext is not kept.

        ..caution:: Hashing is slow and blocks the thread,
            `noteident.usrsys.storage.UserRecordStorage.change_password` does it in a thread pool.
        """
        self.password_hash = hash_password(password)

    def verify_password(self, attempt: Union[str, bytes]) -> bool:
        """Check `attempt` against the stored hash. Always `False` for users without password."""
        return verify(self.password_hash, attempt)

    def validate(self) -> None:
        """Raise `noteident.errors.ValidationError` if any field has a wrong format."""
        if self.email is not None:
            validate_email(self.email)


@dataclass
class FolderRecord(object):
    """The personal storage folder of a user. There is at most one folder for each owner.

    Attributes:
        identity: `str`. The folder identity.
        owner_id: `str`. The `UserRecord.id` of the owner.
    """

    identity: str
    owner_id: str


@dataclass(frozen=True)
class CanonicalProfile(object):
    """The display identity of a user, regardless of how the user signed in. Computed on demand, never stored.

    Attributes:
        name: `Optional[str]`. Display name.
        photo: `Optional[str]`. Small avatar URL (96px).
        bigger_photo: `Optional[str]`. Large avatar URL (400px).
    """

    name: Optional[str]
    photo: Optional[str]
    bigger_photo: Optional[str]
