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
import pytest
from noteident import Noteident
from noteident.usrsys.folder import FolderProvisioner
from noteident.usrsys.storage import FolderRecordStorage, UserRecordStorage
from noteident.utils.storage import MemoryStorage


@pytest.fixture
def noteident():
    instance = Noteident(
        database_path=":mem:",
        folder_provision_retry_delay=0.001,
        debug=True,
    )
    try:
        yield instance
    finally:
        instance.close()


@pytest.fixture
def user_records() -> UserRecordStorage:
    return UserRecordStorage(MemoryStorage())


@pytest.fixture
def folder_records() -> FolderRecordStorage:
    return FolderRecordStorage(MemoryStorage())


@pytest.fixture
def provisioner(
    user_records: UserRecordStorage, folder_records: FolderRecordStorage
) -> FolderProvisioner:
    return FolderProvisioner(user_records, folder_records, retry_delay=0.001)


async def all_records(storage) -> list:
    return [r async for r in storage.find({})]
