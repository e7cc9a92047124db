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
"""`FolderProvisioner`: every user owns exactly one personal folder, created on the first load.

A user record goes one way from unprovisioned (`folder_id` is `None`) to provisioned.
Callers run `FolderProvisioner.ensure_folder` on each record they load, before handing it to anything else;
on a provisioned record it does nothing.

Creating the folder and attaching it to the user happen in one `noteident.utils.storage.Transaction`:
either both stay, or neither does (also when the task is cancelled in between).
Two loads of the same new user may race; the folder storage allows one folder per owner,
so the loser gets `noteident.errors.ProvisioningConflictError`, reloads the user and uses the winner's folder.
A folder stored for a user who never got it attached (the process stopped in between) is adopted on a later load.
"""
import asyncio
import logging
from typing import Optional

from ..errors import ProvisioningConflictError
from ..utils.storage import Transaction, transaction_scope
from .storage import FolderRecordStorage, UserRecordStorage
from .usr import UserRecord


class FolderProvisioner(object):
    """Create the missing personal folders of users.

    Attributes:
        user_records: `noteident.usrsys.storage.UserRecordStorage`.
        folder_records: `noteident.usrsys.storage.FolderRecordStorage`.
        max_retries: `int`. Attempts before a conflict is raised to the caller.
        retry_delay: `float`. Seconds to wait after the n-th conflict is `retry_delay * n`.
    """

    __logger = logging.getLogger("noteident.usrsys.folder.FolderProvisioner")

    def __init__(
        self,
        user_records: UserRecordStorage,
        folder_records: FolderRecordStorage,
        *,
        max_retries: int = 5,
        retry_delay: float = 0.01,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries should be positive, got {!r}".format(max_retries))
        self.user_records = user_records
        self.folder_records = folder_records
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        super().__init__()

    async def ensure_folder(
        self,
        record: Optional[UserRecord],
        transaction: Optional[Transaction] = None,
    ) -> Optional[UserRecord]:
        """Return `record` with `folder_id` set, creating the folder if needed.

        `None` is returned as is. A provisioned record is returned as is, without touching the storage.
        If `transaction` is given (typically the one of the load), the provisioning joins it.

        After a conflict, the user is reloaded. If it is still unprovisioned after a wait,
        the folder already stored for it (left by an interrupted provisioning) is attached instead.

        Raise `noteident.errors.ProvisioningConflictError` if every attempt conflicted
        and the user still has no folder.
        """
        if record is None or record.folder_id is not None:
            return record
        __logger = self.__logger.getChild("ensure_folder")
        for attempt in range(1, self.max_retries + 1):
            try:
                return await self._provision(record, transaction)
            except ProvisioningConflictError as e:
                reloaded = await self.user_records.find_by_id(record.id)
                if reloaded is None:
                    return None
                if reloaded.folder_id is None and attempt > 1:
                    reloaded = await self._adopt(record, transaction)
                    if reloaded is None:
                        return None
                if reloaded.folder_id is not None:
                    __logger.debug(
                        "user %s was provisioned concurrently with folder %s",
                        record.id,
                        reloaded.folder_id,
                    )
                    record.folder_id = reloaded.folder_id
                    return reloaded
                __logger.warning(
                    "folder conflict for user %s (attempt %d/%d): %s",
                    record.id,
                    attempt,
                    self.max_retries,
                    e,
                    extra={"event": "provisioning_conflict"},
                )
                await asyncio.sleep(self.retry_delay * attempt)
        __logger.error(
            "giving up provisioning folder for user %s after %d attempts",
            record.id,
            self.max_retries,
            extra={"event": "provisioning_conflict_exhausted"},
        )
        raise ProvisioningConflictError(
            record.id,
            "cannot provision folder for user {} after {} attempts".format(
                record.id, self.max_retries
            ),
        )

    async def _adopt(
        self, record: UserRecord, transaction: Optional[Transaction]
    ) -> Optional[UserRecord]:
        """Attach the stored folder of `record` to it. Return the user as stored, `None` if it does not exist."""
        folder = await self.folder_records.find_by_owner(record.id)
        if folder is None:
            return await self.user_records.find_by_id(record.id)
        try:
            updated = await self.user_records.set_folder_id(
                record.id, folder.identity, transaction=transaction
            )
        except ProvisioningConflictError:
            return await self.user_records.find_by_id(record.id)
        if updated is not None:
            self.__logger.warning(
                "attached existing folder %s to user %s",
                folder.identity,
                record.id,
                extra={"event": "orphan_folder_adopted"},
            )
        return updated

    async def _provision(
        self, record: UserRecord, transaction: Optional[Transaction]
    ) -> Optional[UserRecord]:
        try:
            async with transaction_scope(transaction) as tx:
                folder = await self.folder_records.create_folder(
                    record.id, transaction=tx
                )
                updated = await self.user_records.set_folder_id(
                    record.id, folder.identity, transaction=tx
                )
                if updated is None:
                    raise _UserVanished(record.id)
        except _UserVanished:
            self.__logger.warning(
                "user %s was removed while provisioning its folder", record.id
            )
            return None
        self.__logger.info("created folder %s for user %s", folder.identity, record.id)
        record.folder_id = updated.folder_id
        return updated


class _UserVanished(Exception):
    """Undo the provisioning transaction of a user which does not exist anymore."""
