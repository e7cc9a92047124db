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
"""Letter avatars: a generated picture for users who have neither a provider photo nor an email address.
"""
from base64 import standard_b64encode
from hashlib import md5
from typing import Callable
from xml.sax.saxutils import escape

LetterAvatar = Callable[[str], str]
"""A type for a generator which turns a display name into an avatar URL."""

LETTER_AVATAR_COLORS = [
    "#1abc9c",
    "#2ecc71",
    "#3498db",
    "#9b59b6",
    "#34495e",
    "#16a085",
    "#27ae60",
    "#2980b9",
    "#8e44ad",
    "#2c3e50",
    "#f1c40f",
    "#e67e22",
    "#e74c3c",
    "#95a5a6",
    "#f39c12",
    "#d35400",
    "#c0392b",
    "#7f8c8d",
]

_SVG_TEMPLATE = (
    '<svg xmlns="http://www.w3.org/2000/svg" width="400" height="400" viewBox="0 0 400 400">'
    '<rect width="400" height="400" fill="{color}"/>'
    '<text x="50%" y="50%" dy=".35em" text-anchor="middle" fill="#ffffff" '
    'font-family="sans-serif" font-size="200">{letter}</text>'
    "</svg>"
)


def letter_avatar(name: str) -> str:
    """Return a `data:` URL of an SVG picture with the first letter of `name`.
    The background colour depends only on `name`, so one name always gets the same picture."""
    letter = name[:1].upper() or "?"
    color = LETTER_AVATAR_COLORS[
        int(md5(name.encode("utf-8")).hexdigest(), 16) % len(LETTER_AVATAR_COLORS)
    ]
    svg = _SVG_TEMPLATE.format(color=color, letter=escape(letter))
    return "data:image/svg+xml;base64," + standard_b64encode(svg.encode("utf-8")).decode(
        "ascii"
    )
