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

"""Noteident: the user identity of a collaborative notes service.

- Password credentials, hashed with scrypt (`noteident.utils.asec`)
- Canonical profiles from third-party providers (`noteident.usrsys.profile`)
- One personal folder for every user, created on first load (`noteident.usrsys.folder`)
"""
import json
import logging
from typing import Any, Dict, Optional, Union

from unqlite import UnQLite

from .storagehub import StorageHub
from .usrsys.auth import AuthAnswer, AuthProvider, AuthRequest
from .usrsys.avatar import LetterAvatar, letter_avatar as default_letter_avatar
from .usrsys.folder import FolderProvisioner
from .usrsys.profile import get_profile
from .usrsys.usr import CanonicalProfile, UserRecord


class Noteident(object):
    """The entry of Noteident. This class stores configuration and tools to keep other components running.

    Every user record returned by this class has its personal folder, see `noteident.usrsys.folder.FolderProvisioner`.

    .. caution:: Though many properties could be changed in runtime, be notice on the side effect!
    """

    __logger = logging.getLogger("noteident.Noteident")

    def __init__(
        self,
        *,
        database_path: str,
        folder_provision_retries: int = 5,
        folder_provision_retry_delay: float = 0.01,
        letter_avatar: Optional[LetterAvatar] = None,
        debug: bool = False,
    ) -> None:
        self.debug = debug
        """`bool`. Log everything of `noteident` when it's set."""
        if debug:
            logging.getLogger("noteident").setLevel(logging.DEBUG)
        self.database_path = database_path
        """`str`. The path to database. Currently it's a file path or ":mem:".
        ":mem:" tells UnQLite open database in memory."""
        self.database = UnQLite(database_path)
        """Database instance. Notice that this property may not be avaliable in future."""
        self.storage_hub = StorageHub(self.database)
        """`noteident.StorageHub`. The references to all storages in Noteident."""
        self.letter_avatar: LetterAvatar = letter_avatar or default_letter_avatar
        """The generator of avatars for users without photo and email. See `noteident.usrsys.avatar`."""
        self.folder_provisioner = FolderProvisioner(
            self.storage_hub.user_records,
            self.storage_hub.folder_records,
            max_retries=folder_provision_retries,
            retry_delay=folder_provision_retry_delay,
        )
        """`noteident.usrsys.folder.FolderProvisioner`. The folder provisioner for this instance."""
        self.auth_provider = AuthProvider(
            self.storage_hub.user_records, self.folder_provisioner
        )
        """`noteident.usrsys.auth.AuthProvider`. The auth provider for this instance."""
        super().__init__()

    def close(self) -> None:
        """Close the database."""
        self.database.close()

    async def find_user(self, query: Dict[str, Any]) -> Optional[UserRecord]:
        """Load one user matching `query`, provisioning its folder in the same transaction."""
        async with self.storage_hub.transaction() as tx:
            user = await self.storage_hub.user_records.find_one(query)
            return await self.folder_provisioner.ensure_folder(user, transaction=tx)

    async def load_user(self, user_id: str) -> Optional[UserRecord]:
        """Load the user `user_id`. See `find_user`."""
        return await self.find_user({"id": user_id})

    async def new_user(self, email: str, password: str) -> UserRecord:
        """Create a password user. Raise `noteident.errors.ValidationError` on a malformed `email`."""
        user = await self.storage_hub.user_records.create_new_user(email, password)
        self.__logger.info("created user %s", user.id)
        return await self.folder_provisioner.ensure_folder(user)

    async def upsert_oauth_user(
        self,
        profileid: str,
        profile: Union[str, Dict[str, Any]],
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
    ) -> Optional[UserRecord]:
        """Find or create the user signed in with a third-party provider, and save its latest profile and tokens.

        `profile` is the provider profile, as a `dict` or already JSON encoded.
        """
        user_records = self.storage_hub.user_records
        if not isinstance(profile, str):
            profile = json.dumps(profile)
        user = await user_records.find_by_profileid(profileid)
        if user is None:
            try:
                user = await user_records.create_oauth_user(profileid)
                self.__logger.info("created user %s for profile %s", user.id, profileid)
            except KeyError:
                user = await user_records.find_by_profileid(profileid)
                if user is None:
                    raise
        await user_records.update_provider_profile(
            user.id, profile, access_token, refresh_token
        )
        return await self.find_user({"id": user.id})

    def get_profile(self, user: Optional[UserRecord]) -> Optional[CanonicalProfile]:
        """Return the canonical profile of `user`. See `noteident.usrsys.profile.get_profile`."""
        return get_profile(user, self.letter_avatar)

    async def change_password(self, user: UserRecord, password: str) -> Optional[UserRecord]:
        """Set a new password for `user` and save it. The other fields of the stored user are kept."""
        return await self.storage_hub.user_records.change_password(user, password)

    async def login(self, email: str, password: str) -> AuthAnswer:
        """Authenticate with email and password. See `noteident.usrsys.auth.AuthProvider`."""
        return await self.auth_provider.auth(AuthRequest(email=email, password=password))
