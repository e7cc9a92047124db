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
"""This module contains all storage classes for the user system.
"""
from typing import Any, Dict, Optional, Sequence, Union

from ..errors import ProvisioningConflictError
from ..utils.asec import password_check, password_hashing
from ..utils.storage import (
    CommonStorage,
    CommonStorageRecordWrapper,
    DataclassCommonStorageAdapter,
    Transaction,
)
from .usr import FolderRecord, UserRecord, new_identity, validate_email


class UserRecordStorage(CommonStorageRecordWrapper[UserRecord]):
    """
    A `noteident.utils.storage.RecordStorage` for `noteident.usrsys.usr.UserRecord`.

    Records are validated (see `UserRecord.validate`) before every write.
    """

    def __init__(self, common_storage: CommonStorage) -> None:
        super().__init__(common_storage, DataclassCommonStorageAdapter(UserRecord))

    async def store(self, record: UserRecord) -> UserRecord:
        record.validate()
        return await super().store(record)

    async def store_unique(self, record: UserRecord, keys: Sequence[str]) -> UserRecord:
        record.validate()
        return await super().store_unique(record, keys)

    async def update_one(
        self, query: Dict[str, Any], updated: UserRecord
    ) -> Optional[UserRecord]:
        updated.validate()
        return await super().update_one(query, updated)

    async def patch_one(
        self, query: Dict[str, Any], fields: Dict[str, Any]
    ) -> Optional[UserRecord]:
        if fields.get("email") is not None:
            validate_email(fields["email"])
        return await super().patch_one(query, fields)

    async def find_by_id(self, user_id: str) -> Optional[UserRecord]:
        return await self.find_one({"id": user_id})

    async def find_by_profileid(self, profileid: str) -> Optional[UserRecord]:
        return await self.find_one({"profileid": profileid})

    async def find_by_email(self, email: str) -> Optional[UserRecord]:
        return await self.find_one({"email": email})

    async def create_new_user(
        self, email: str, password: Union[str, bytes]
    ) -> UserRecord:
        """Create a password user, then save it.
        ..note:: The user has no folder yet, it is created on the first load. See `noteident.usrsys.folder`."""
        rec = UserRecord.new(email=email)
        rec.validate()
        rec.password_hash = await password_hashing(password)
        await self.store(rec)
        return rec

    async def create_oauth_user(self, profileid: str, **fields) -> UserRecord:
        """Create a user signed in though a third-party provider, then save it.
        Raise `KeyError` if another user has the same `profileid`."""
        rec = UserRecord.new(profileid=profileid, **fields)
        await self.store_unique(rec, ["profileid"])
        return rec

    async def check_user_password(
        self, email: str, password: Union[str, bytes]
    ) -> Optional[UserRecord]:
        """Return the user of `email` if `password` matchs, `None` in any other case.
        ..note:: The `password` is the password in plaintext."""
        doc = await self.find_by_email(email)
        if not doc:
            return None
        if await password_check(password, doc.password_hash):
            return doc
        return None

    async def change_password(
        self, user: UserRecord, password: Union[str, bytes]
    ) -> Optional[UserRecord]:
        """Hash `password` in the thread pool, then save it as the password of `user`.

        Only `password_hash` is written, the other fields stay as stored.
        Return the stored user, or `None` if it does not exist anymore.
        """
        user.password_hash = await password_hashing(password)
        return await self.patch_one(
            {"id": user.id}, {"password_hash": user.password_hash}
        )

    async def update_provider_profile(
        self,
        user_id: str,
        profile: Optional[str],
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
    ) -> Optional[UserRecord]:
        """Save the latest provider profile and tokens of `user_id`, keeping the other fields as stored."""
        return await self.patch_one(
            {"id": user_id},
            {
                "profile": profile,
                "access_token": access_token,
                "refresh_token": refresh_token,
            },
        )

    async def set_folder_id(
        self,
        user_id: str,
        folder_id: str,
        transaction: Optional[Transaction] = None,
    ) -> Optional[UserRecord]:
        """Attach the folder `folder_id` to the user `user_id`, only if the user has no folder yet.

        Return `None` if the user does not exist.
        Raise `noteident.errors.ProvisioningConflictError` if the user already has another folder.
        If `transaction` is given, the user is detached from `folder_id` when it rolls back.
        """
        updated = await self.patch_one(
            {"id": user_id, "folder_id": None}, {"folder_id": folder_id}
        )
        if updated is None:
            current = await self.find_by_id(user_id)
            if current is None or current.folder_id == folder_id:
                return current
            raise ProvisioningConflictError(
                user_id,
                "user {} already has folder {}".format(user_id, current.folder_id),
            )
        if transaction is not None:
            transaction.add_rollback(
                lambda: self.patch_one(
                    {"id": user_id, "folder_id": folder_id}, {"folder_id": None}
                )
            )
        return updated


class FolderRecordStorage(CommonStorageRecordWrapper[FolderRecord]):
    """
    A `noteident.utils.storage.RecordStorage` for `noteident.usrsys.usr.FolderRecord`.
    """

    def __init__(self, common_storage: CommonStorage) -> None:
        super().__init__(common_storage, DataclassCommonStorageAdapter(FolderRecord))

    async def create_folder(
        self, owner_id: str, transaction: Optional[Transaction] = None
    ) -> FolderRecord:
        """Create and save the folder of `owner_id`.

        Raise `noteident.errors.ProvisioningConflictError` if the owner already has one.
        If `transaction` is given, the folder is removed when it rolls back.
        """
        rec = FolderRecord(identity=new_identity(), owner_id=owner_id)
        try:
            await self.store_unique(rec, ["owner_id"])
        except KeyError as e:
            raise ProvisioningConflictError(owner_id) from e
        if transaction is not None:
            transaction.add_rollback(
                lambda: self.remove_one({"identity": rec.identity})
            )
        return rec

    async def find_by_owner(self, owner_id: str) -> Optional[FolderRecord]:
        return await self.find_one({"owner_id": owner_id})
