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
"""This module contains `StorageHub`, the storage centre of Noteident.
"""
import threading
from typing import Dict, Optional

from unqlite import UnQLite

from .usrsys.storage import FolderRecordStorage, UserRecordStorage
from .utils.storage import CommonStorage, Transaction, UnQLiteStorage, transaction_scope


class StorageHub(object):
    """The storage centre for Noteident. This class keeps the storages of the records.

    ..note:: Typically you use the one from `noteident.Noteident`.

    There is one `noteident.utils.storage.CommonStorage` for each collection name, shared by every record storage of the hub,
    so their uniqueness checks (see `noteident.utils.storage.RecordStorage.store_unique`) see each other.

    Related:

    - `noteident.utils.storage` The abstract storage layer of Noteident.
    """

    def __init__(self, database: UnQLite) -> None:
        self.database = database
        """The database instance.
        .. important:: Don't depends on this property, Noteident may support more database backend in future."""
        self._common_storages: Dict[str, CommonStorage] = {}
        self._database_lock = threading.Lock()
        super().__init__()

    def get_common_storage(self, name: str) -> CommonStorage:
        """Get the common storage with `name`, create it if it does not exists."""
        if name not in self._common_storages:
            self._common_storages[name] = UnQLiteStorage(
                self.database, name, lock=self._database_lock
            )
        return self._common_storages[name]

    @property
    def user_records(self) -> UserRecordStorage:
        """
        Related:

        - `noteident.usrsys.usr.UserRecord` The object being stored.
        """
        return UserRecordStorage(self.get_common_storage("users"))

    @property
    def folder_records(self) -> FolderRecordStorage:
        """
        Related:

        - `noteident.usrsys.usr.FolderRecord` The object being stored.
        """
        return FolderRecordStorage(self.get_common_storage("folders"))

    def transaction(self, parent: Optional[Transaction] = None):
        """Open a transaction over the storages of this hub. See `noteident.utils.storage.transaction_scope`."""
        return transaction_scope(parent)
