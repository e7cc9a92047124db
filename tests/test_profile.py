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
import json
import logging
from base64 import standard_b64decode
from hashlib import md5

import pytest
from noteident.errors import ProfileDecodeError
from noteident.usrsys.avatar import letter_avatar
from noteident.usrsys.profile import (
    _AVATAR_RULES,
    Provider,
    decode_profile,
    get_profile,
    parse_profile,
    parse_profile_by_email,
    resolve_avatar,
    rewrite_size_param,
)
from noteident.usrsys.usr import CanonicalProfile, UserRecord


def gravatar_hash(email: str) -> str:
    return md5(email.encode("utf-8")).hexdigest()


class TestResolveAvatar:
    def test_github(self):
        payload = {"provider": "github", "id": "42", "username": "octocat"}
        assert resolve_avatar(payload).endswith(
            "avatars.githubusercontent.com/u/42?s=96"
        )
        assert resolve_avatar(payload, bigger=True).endswith(
            "avatars.githubusercontent.com/u/42?s=400"
        )

    def test_facebook(self):
        payload = {"provider": "facebook", "id": "1001"}
        assert (
            resolve_avatar(payload)
            == "https://graph.facebook.com/1001/picture?width=96"
        )
        assert (
            resolve_avatar(payload, bigger=True)
            == "https://graph.facebook.com/1001/picture?width=400"
        )

    def test_twitter(self):
        payload = {"provider": "twitter", "id": "7", "username": "jack"}
        assert (
            resolve_avatar(payload)
            == "https://twitter.com/jack/profile_image?size=bigger"
        )
        assert (
            resolve_avatar(payload, bigger=True)
            == "https://twitter.com/jack/profile_image?size=original"
        )

    def test_gitlab_rewrites_size(self):
        payload = {"provider": "gitlab", "avatarUrl": "https://x/avatar.png?s=50"}
        assert resolve_avatar(payload) == "https://x/avatar.png?s=96"
        assert resolve_avatar(payload, bigger=True) == "https://x/avatar.png?s=400"

    def test_gitlab_without_size_param_is_kept(self):
        payload = {"provider": "gitlab", "avatarUrl": "https://x/avatar.png"}
        assert resolve_avatar(payload) == "https://x/avatar.png"
        assert resolve_avatar(payload, bigger=True) == "https://x/avatar.png"

    def test_gitlab_without_avatar(self):
        assert resolve_avatar({"provider": "gitlab"}) is None

    def test_google_rewrites_size(self):
        payload = {
            "provider": "google",
            "photos": [{"value": "https://lh3.example.com/photo.jpg?sz=50"}],
        }
        assert resolve_avatar(payload) == "https://lh3.example.com/photo.jpg?sz=96"
        assert (
            resolve_avatar(payload, bigger=True)
            == "https://lh3.example.com/photo.jpg?sz=400"
        )

    def test_google_without_photo(self):
        assert resolve_avatar({"provider": "google", "photos": []}) is None

    def test_dropbox_uses_gravatar_of_first_email(self):
        payload = {
            "provider": "dropbox",
            "emails": [{"value": "box@example.com"}, {"value": "other@example.com"}],
        }
        digest = gravatar_hash("box@example.com")
        assert resolve_avatar(payload) == (
            "https://www.gravatar.com/avatar/{}?s=96".format(digest)
        )
        assert resolve_avatar(payload, bigger=True) == (
            "https://www.gravatar.com/avatar/{}?s=400".format(digest)
        )

    def test_ldap_with_email_uses_gravatar(self):
        payload = {"provider": "ldap", "username": "bob", "emails": ["bob@corp.example"]}
        assert resolve_avatar(payload) == "https://www.gravatar.com/avatar/{}?s=96".format(
            gravatar_hash("bob@corp.example")
        )

    def test_ldap_without_email_uses_letter_avatar(self):
        payload = {"provider": "ldap", "username": "bob", "emails": []}
        assert resolve_avatar(payload) == letter_avatar("bob")
        assert resolve_avatar(payload, bigger=True) == letter_avatar("bob")

    def test_ldap_letter_avatar_can_be_injected(self):
        calls = []

        def fake_letter_avatar(name: str) -> str:
            calls.append(name)
            return "https://letters.example/{}".format(name)

        payload = {"provider": "ldap", "username": "bob", "emails": []}
        assert (
            resolve_avatar(payload, letter_avatar=fake_letter_avatar)
            == "https://letters.example/bob"
        )
        assert calls == ["bob"]

    @pytest.mark.parametrize("tag", ["myspace", None, 42, "GitHub"])
    def test_unknown_provider_has_no_avatar(self, tag):
        payload = {"provider": tag, "id": "1", "username": "x"}
        assert resolve_avatar(payload) is None
        assert resolve_avatar(payload, bigger=True) is None

    def test_every_provider_has_a_rule(self):
        assert set(_AVATAR_RULES) == set(Provider)
        for provider in Provider:
            assert Provider.lookup(provider.value) is provider
        assert Provider.lookup("unknown") is None

    @pytest.mark.parametrize(
        "payload",
        [
            {"provider": "facebook"},
            {"provider": "facebook", "id": ""},
            {"provider": "twitter", "id": "7"},
            {"provider": "twitter", "username": None},
            {"provider": "github", "username": "octocat"},
        ],
    )
    def test_missing_identity_has_no_avatar(self, payload):
        assert resolve_avatar(payload) is None
        assert resolve_avatar(payload, bigger=True) is None

    def test_numeric_github_id(self):
        payload = {"provider": "github", "id": 42}
        assert resolve_avatar(payload) == "https://avatars.githubusercontent.com/u/42?s=96"


class TestRewriteSizeParam:
    def test_only_trailing_param_is_rewritten(self):
        assert rewrite_size_param("https://x/a?s=1&t=2", "s", 96) == "https://x/a?s=1&t=2"

    def test_case_insensitive(self):
        assert rewrite_size_param("https://x/a?S=10", "s", 400) == "https://x/a?S=400"

    def test_empty_value(self):
        assert rewrite_size_param("https://x/a?sz=", "sz", 96) == "https://x/a?sz=96"


class TestParseProfile:
    def test_display_name_is_preferred(self):
        raw = json.dumps(
            {"provider": "github", "id": "42", "displayName": "Octo Cat", "username": "octocat"}
        )
        profile = parse_profile(raw)
        assert profile == CanonicalProfile(
            name="Octo Cat",
            photo="https://avatars.githubusercontent.com/u/42?s=96",
            bigger_photo="https://avatars.githubusercontent.com/u/42?s=400",
        )

    def test_username_when_no_display_name(self):
        raw = json.dumps({"provider": "twitter", "username": "jack", "displayName": ""})
        assert parse_profile(raw).name == "jack"

    def test_unknown_provider_keeps_name(self):
        profile = parse_profile(json.dumps({"provider": "myspace", "username": "tom"}))
        assert profile == CanonicalProfile(name="tom", photo=None, bigger_photo=None)

    def test_invalid_json_returns_none_and_logs(self, caplog):
        with caplog.at_level(logging.ERROR, logger="noteident.usrsys.profile"):
            assert parse_profile("{not json") is None
        assert any(
            getattr(r, "event", None) == "profile_decode_error" for r in caplog.records
        )

    def test_decode_profile_rejects_non_objects(self):
        with pytest.raises(ProfileDecodeError):
            decode_profile("[1, 2, 3]")
        with pytest.raises(ProfileDecodeError):
            decode_profile("null")


class TestParseProfileByEmail:
    def test_name_is_local_part(self):
        profile = parse_profile_by_email("alice@example.com")
        digest = gravatar_hash("alice@example.com")
        assert profile.name == "alice"
        assert profile.photo == "https://www.gravatar.com/avatar/{}?s=96".format(digest)
        assert profile.bigger_photo == "https://www.gravatar.com/avatar/{}?s=400".format(
            digest
        )

    def test_name_is_before_last_at(self):
        assert parse_profile_by_email('"a@b"@example.com').name == '"a@b"'


class TestGetProfile:
    def test_stored_profile_wins_over_email(self):
        user = UserRecord.new(
            profile=json.dumps({"provider": "github", "id": "42", "username": "octocat"}),
            email="alice@example.com",
        )
        assert get_profile(user).name == "octocat"

    def test_email_profile(self):
        user = UserRecord.new(email="alice@example.com")
        assert get_profile(user) == parse_profile_by_email("alice@example.com")

    def test_invalid_profile_falls_back_to_email(self):
        user = UserRecord.new(profile="{broken", email="alice@example.com")
        assert get_profile(user) == parse_profile_by_email("alice@example.com")

    def test_invalid_profile_without_email_is_none(self):
        user = UserRecord.new(profile="{broken")
        assert get_profile(user) is None

    def test_nothing_known_is_none(self):
        assert get_profile(UserRecord.new()) is None
        assert get_profile(None) is None

    def test_get_profile_is_pure(self):
        user = UserRecord.new(
            profile=json.dumps({"provider": "ldap", "username": "bob", "emails": []})
        )
        before = UserRecord(**vars(user))
        assert get_profile(user) == get_profile(user)
        assert user == before


class TestLetterAvatar:
    def test_is_deterministic_svg_data_url(self):
        url = letter_avatar("bob")
        assert url == letter_avatar("bob")
        prefix = "data:image/svg+xml;base64,"
        assert url.startswith(prefix)
        svg = standard_b64decode(url[len(prefix):]).decode("utf-8")
        assert ">B</text>" in svg

    def test_empty_name(self):
        svg = standard_b64decode(letter_avatar("").split(",", 1)[1]).decode("utf-8")
        assert ">?</text>" in svg

    def test_letter_is_escaped(self):
        svg = standard_b64decode(letter_avatar("<x").split(",", 1)[1]).decode("utf-8")
        assert ">&lt;</text>" in svg
