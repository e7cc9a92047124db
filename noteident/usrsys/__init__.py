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

"""The user system for Noteident.

User system process all the things about users:

- Users and their credentials (`usr`, `auth`)
- Canonical profiles from third-party providers or email addresses (`profile`, `avatar`)
- Personal folders (`folder`)

## Credentials
Passwords are hashed when they are set (`usr.UserRecord.set_password`, `storage.UserRecordStorage.change_password`)
and never stored or logged in plaintext. See `noteident.utils.asec`.

## Folders
Every user owns one folder. It is created the first time the user is loaded, by `folder.FolderProvisioner`;
loading through `noteident.Noteident` always does it, other callers should call `FolderProvisioner.ensure_folder` themselves.
"""
