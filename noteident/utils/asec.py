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
"""Security tools, including password hashing.

Passwords are hashed with scrypt at a fixed work factor (about 0.1 second per derivation on reference hardware).
The modular crypt string produced by libsodium embeds the salt and the parameters; it is stored hex encoded.

Related:

- [nacl.pwhash - PyNaCL documentation](https://pynacl.readthedocs.io/en/latest/api/pwhash/)
- [Password hashing - libsodium documentation](https://doc.libsodium.org/password_hashing)
"""
import logging
from asyncio import Future, ensure_future, get_running_loop
from typing import Optional, Union

from nacl.exceptions import InvalidkeyError
from nacl.exceptions import ValueError as NaclValueError
from nacl.pwhash import scrypt

from ..errors import IntegrityError
from . import global_executor

OPSLIMIT = scrypt.OPSLIMIT_INTERACTIVE
MEMLIMIT = scrypt.MEMLIMIT_INTERACTIVE

_logger = logging.getLogger("noteident.utils.asec")


def _to_bytes(password: Union[str, bytes]) -> bytes:
    if isinstance(password, str):
        return password.encode("utf-8")
    return password


def hash_password(password: Union[str, bytes]) -> str:
    """Hash `password`. A fresh salt is used on every call, so two hashes of the same password differ.
    The result is an ASCII hex string.

    ..caution:: This function is synchrounous and deliberately slow.
        Use `password_hashing` from coroutines.
    """
    return scrypt.str(_to_bytes(password), opslimit=OPSLIMIT, memlimit=MEMLIMIT).hex()


def decode_password_hash(password_hash: str) -> bytes:
    """Decode a stored hash back to the modular crypt string.
    Raise `noteident.errors.IntegrityError` if it is not a hex encoded scrypt string."""
    try:
        decoded = bytes.fromhex(password_hash)
    except (ValueError, TypeError) as e:
        raise IntegrityError("password hash is not hex encoded") from e
    if not decoded.startswith(scrypt.STRPREFIX):
        raise IntegrityError("password hash is not a scrypt string")
    return decoded


def verify(password_hash: Optional[str], attempt: Union[str, bytes]) -> bool:
    """Check if the `password_hash` matchs `attempt`.

    The comparison happens in constant time inside libsodium.
    A malformed `password_hash` is reported and fails closed: the result is `False`, nothing is raised.

    ..caution:: This function is synchrounous.
        It may unexecptly block the thread.
    """
    if not password_hash:
        return False
    try:
        decoded = decode_password_hash(password_hash)
        return scrypt.verify(decoded, _to_bytes(attempt))
    except InvalidkeyError:
        return False
    except (IntegrityError, NaclValueError) as e:
        _logger.error(
            "stored password hash is malformed: %s",
            e,
            extra={"event": "password_hash_integrity_error"},
        )
        return False


def password_hashing(password: Union[str, bytes]) -> Future[str]:
    """Hash `password` in another thread.

    ..note:: A thread pool executor wrapper for `hash_password`.
    """
    return ensure_future(
        get_running_loop().run_in_executor(
            global_executor.get(), hash_password, password
        )
    )


def password_check(attempt: Union[str, bytes], password_hash: Optional[str]) -> Future[bool]:
    """Check if the `password_hash` matchs `attempt`, in another thread.

    ..note:: A thread pool executor wrapper for `verify`.
    """
    return ensure_future(
        get_running_loop().run_in_executor(
            global_executor.get(), verify, password_hash, attempt
        )
    )
