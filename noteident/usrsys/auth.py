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
"""`AuthRequest`, `AuthAnswer` and `AuthProvider`: The authentication tools for the user system.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from .folder import FolderProvisioner
from .storage import UserRecordStorage
from .usr import UserRecord


@dataclass
class AuthRequest(object):
    """The request for authentication.

    Attributes:
        email: `Optional[str]`.
        password: `Optional[str]`. Not part of the representation, so it does not end up in logs.

    Typical usages:

    Verify the user with email and password:
    ````python
    AuthRequest(
        email = "...",
        password = "...",
    )
    ````
    """

    email: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)


@dataclass
class AuthAnswer(object):
    """The answer for authentication.

    Attributes:
        handled: `bool`. If the request can be handled correctly.
        success: `bool`. The result of the authentication.
            A failure does not tell if the user does not exist or the password is wrong.
        user: `Optional[UserRecord]`. The authenticated user, provisioned, only on success.
    """

    handled: bool
    success: bool
    user: Optional[UserRecord] = None


class AuthProvider(object):
    """Provide authentication to other concepts of Noteident."""

    __logger = logging.getLogger("noteident.usrsys.auth.AuthProvider")

    def __init__(
        self,
        user_record_storage: UserRecordStorage,
        folder_provisioner: FolderProvisioner,
    ) -> None:
        self.user_record_storage = user_record_storage
        self.folder_provisioner = folder_provisioner
        super().__init__()

    async def auth(self, request: AuthRequest) -> AuthAnswer:
        """Process an authentication request."""
        if not (request.email and request.password):
            return AuthAnswer(handled=False, success=False)
        user = await self.user_record_storage.check_user_password(
            request.email, request.password
        )
        if user is None:
            self.__logger.info("authentication failed", extra={"event": "auth_failed"})
            return AuthAnswer(handled=True, success=False)
        user = await self.folder_provisioner.ensure_folder(user)
        return AuthAnswer(handled=True, success=True, user=user)
