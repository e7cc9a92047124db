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
"""Canonical profiles: one display identity (`CanonicalProfile`) for users of every sign-in method.

`get_profile` picks the source:

1. the stored provider profile (`UserRecord.profile`), see `parse_profile`;
2. if there is none or it cannot be decoded, the email address, see `parse_profile_by_email`;
3. otherwise there is no profile.

Avatars of provider profiles are resolved by `Provider`, one rule for each supported provider:

| provider | small (96px) | large (400px) |
|---|---|---|
| facebook | graph API picture, `?width=96` | `?width=400` |
| twitter | profile image, `?size=bigger` | `?size=original` |
| github | avatars host, `?s=96` | `?s=400` |
| gitlab | `avatarUrl`, trailing `?s=` rewritten | same |
| dropbox | gravatar of the first email | same |
| google | first photo, trailing `?sz=` rewritten | same |
| ldap | gravatar of the first email, or a letter avatar of the username | same |

Unknown providers have no avatar.
Rewriting a size parameter is permissive: an URL without the parameter is kept as is.

Every function here is free of side effects except error logging, so the same record always gives the same profile.
"""
import json
import logging
import re
from enum import Enum
from hashlib import md5
from typing import Any, Callable, Dict, Optional

from ..errors import ProfileDecodeError
from .avatar import LetterAvatar, letter_avatar as default_letter_avatar
from .usr import CanonicalProfile, UserRecord

ProfilePayload = Dict[str, Any]

SMALL_SIZE = 96
BIGGER_SIZE = 400

GRAVATAR_URL = "https://www.gravatar.com/avatar/"

_logger = logging.getLogger("noteident.usrsys.profile")


def gravatar(email: str, bigger: bool = False) -> str:
    """Return the gravatar URL for `email`. The hash is taken on the address exactly as given."""
    return "{}{}?s={}".format(
        GRAVATAR_URL,
        md5(email.encode("utf-8")).hexdigest(),
        BIGGER_SIZE if bigger else SMALL_SIZE,
    )


def rewrite_size_param(url: str, param: str, size: int) -> str:
    """Replace the number of the trailing `?<param>=<n>` of `url` with `size`.
    Unchanged if `url` does not end with the parameter."""
    pattern = r"(\?{}=)\d*$".format(re.escape(param))
    return re.sub(pattern, r"\g<1>{}".format(size), url, flags=re.IGNORECASE)


def _first_value(payload: ProfilePayload, key: str) -> Optional[str]:
    """Return the first entry of the list `payload[key]`.
    Entries are either `{"value": ...}` objects (passport style) or plain strings."""
    items = payload.get(key)
    if not isinstance(items, list) or not items:
        return None
    first = items[0]
    if isinstance(first, dict):
        first = first.get("value")
    return first if isinstance(first, str) and first else None


def _size(bigger: bool) -> int:
    return BIGGER_SIZE if bigger else SMALL_SIZE


def _facebook_avatar(payload: ProfilePayload, bigger: bool, _: LetterAvatar) -> Optional[str]:
    user_id = payload.get("id")
    if user_id in (None, ""):
        return None
    return "https://graph.facebook.com/{}/picture?width={}".format(
        user_id, _size(bigger)
    )


def _twitter_avatar(payload: ProfilePayload, bigger: bool, _: LetterAvatar) -> Optional[str]:
    username = payload.get("username")
    if not username:
        return None
    return "https://twitter.com/{}/profile_image?size={}".format(
        username, "original" if bigger else "bigger"
    )


def _github_avatar(payload: ProfilePayload, bigger: bool, _: LetterAvatar) -> Optional[str]:
    user_id = payload.get("id")
    if user_id in (None, ""):
        return None
    return "https://avatars.githubusercontent.com/u/{}?s={}".format(
        user_id, _size(bigger)
    )


def _gitlab_avatar(payload: ProfilePayload, bigger: bool, _: LetterAvatar) -> Optional[str]:
    url = payload.get("avatarUrl")
    if not isinstance(url, str):
        return None
    return rewrite_size_param(url, "s", _size(bigger))


def _dropbox_avatar(payload: ProfilePayload, bigger: bool, _: LetterAvatar) -> Optional[str]:
    # dropbox has no image api
    email = _first_value(payload, "emails")
    return gravatar(email, bigger) if email else None


def _google_avatar(payload: ProfilePayload, bigger: bool, _: LetterAvatar) -> Optional[str]:
    url = _first_value(payload, "photos")
    if url is None:
        return None
    return rewrite_size_param(url, "sz", _size(bigger))


def _ldap_avatar(
    payload: ProfilePayload, bigger: bool, letter_avatar: LetterAvatar
) -> Optional[str]:
    email = _first_value(payload, "emails")
    if email:
        return gravatar(email, bigger)
    return letter_avatar(payload.get("username") or "")


AvatarRule = Callable[[ProfilePayload, bool, LetterAvatar], Optional[str]]


class Provider(Enum):
    """The third-party identity providers with a known profile payload.

    Each member owns the avatar rule for its payload shape, see `Provider.avatar`.
    """

    FACEBOOK = "facebook"
    TWITTER = "twitter"
    GITHUB = "github"
    GITLAB = "gitlab"
    DROPBOX = "dropbox"
    GOOGLE = "google"
    LDAP = "ldap"

    @classmethod
    def lookup(cls, tag: Any) -> Optional["Provider"]:
        """Return the provider for the payload tag `tag`, or `None` if it is not supported."""
        try:
            return cls(tag)
        except ValueError:
            return None

    def avatar(
        self,
        payload: ProfilePayload,
        bigger: bool = False,
        letter_avatar: LetterAvatar = default_letter_avatar,
    ) -> Optional[str]:
        return _AVATAR_RULES[self](payload, bigger, letter_avatar)


_AVATAR_RULES: Dict[Provider, AvatarRule] = {
    Provider.FACEBOOK: _facebook_avatar,
    Provider.TWITTER: _twitter_avatar,
    Provider.GITHUB: _github_avatar,
    Provider.GITLAB: _gitlab_avatar,
    Provider.DROPBOX: _dropbox_avatar,
    Provider.GOOGLE: _google_avatar,
    Provider.LDAP: _ldap_avatar,
}


def resolve_avatar(
    payload: ProfilePayload,
    bigger: bool = False,
    letter_avatar: LetterAvatar = default_letter_avatar,
) -> Optional[str]:
    """Return the avatar URL of a decoded provider profile, `None` for unsupported providers."""
    provider = Provider.lookup(payload.get("provider"))
    if provider is None:
        return None
    return provider.avatar(payload, bigger, letter_avatar)


def decode_profile(raw: str) -> ProfilePayload:
    """Decode the stored profile. Raise `noteident.errors.ProfileDecodeError` if it is not a JSON object."""
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ProfileDecodeError("profile is not valid JSON") from e
    if not isinstance(payload, dict):
        raise ProfileDecodeError(
            "profile is a JSON {}, not an object".format(type(payload).__name__)
        )
    return payload


def parse_profile(
    raw: str, letter_avatar: LetterAvatar = default_letter_avatar
) -> Optional[CanonicalProfile]:
    """Build the canonical profile from a stored provider profile.
    Return `None` if it cannot be decoded; the failure is logged."""
    try:
        payload = decode_profile(raw)
    except ProfileDecodeError as e:
        _logger.error(
            "cannot decode stored profile: %s", e, extra={"event": "profile_decode_error"}
        )
        return None
    return CanonicalProfile(
        name=payload.get("displayName") or payload.get("username"),
        photo=resolve_avatar(payload, False, letter_avatar),
        bigger_photo=resolve_avatar(payload, True, letter_avatar),
    )


def parse_profile_by_email(email: str) -> CanonicalProfile:
    """Build the canonical profile from an email address: the local part as name, gravatar as avatar."""
    return CanonicalProfile(
        name=email[: max(email.rfind("@"), 0)],
        photo=gravatar(email),
        bigger_photo=gravatar(email, bigger=True),
    )


def get_profile(
    user: Optional[UserRecord], letter_avatar: LetterAvatar = default_letter_avatar
) -> Optional[CanonicalProfile]:
    """Return the canonical profile of `user`, or `None` if nothing is known to build one."""
    if user is None:
        return None
    profile = None
    if user.profile:
        profile = parse_profile(user.profile, letter_avatar)
    if profile is None and user.email:
        profile = parse_profile_by_email(user.email)
    return profile
