"""Item name normalization and variant grouping.

Store listings often name the same reviewed item in several cosmetically
different ways ("Final Fantasy VII Remake", "Final Fantasy 7", "... Deluxe
Edition"). This module turns raw display names into item keys and groups
keys that should share a cached score.

Example:
    >>> normalize("Ghost of Tsushima™ Director's Cut")
    'ghost-of-tsushima-directors-cut'
    >>> base_identity("god-of-war-ii")
    'god-of-war'
    >>> numeral_variants("god-of-war-ii")
    ['god-of-war-ii', 'god-of-war-2']
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from score_resolver.errors import NormalizationError
from score_resolver.utils import strip_diacritics

__all__ = [
    "EDITION_TOKENS",
    "ROMAN_NUMERALS",
    "VariantGroup",
    "base_identity",
    "cache_lookup_keys",
    "group_keys",
    "normalize",
    "numeral_variants",
]

# ------------- Constants & Regex -------------

KEY_SEPARATOR = "-"

ROMAN_NUMERALS = {
    2: "ii",
    3: "iii",
    4: "iv",
    5: "v",
    6: "vi",
    7: "vii",
    8: "viii",
    9: "ix",
    10: "x",
}
ARABIC_NUMERALS = {roman: arabic for arabic, roman in ROMAN_NUMERALS.items()}

# Edition tokens as they appear after normalization (apostrophes dropped,
# spaces turned into separators).
EDITION_TOKENS = (
    "remastered",
    "remake",
    "redux",
    "definitive",
    "goty",
    "collection",
    "deluxe",
    "ultimate",
    "gold",
    "premium",
    "special",
    "complete",
    "collectors",
    "anniversary",
    "cross-gen-bundle",
    "ps4-and-ps5",
    "ps5-and-ps4",
    "ps4-ps5",
    "ps5-ps4",
    "ps4",
    "ps5",
)

_DECORATION_RE = re.compile(r"[™®©℠]")
_APOSTROPHE_RE = re.compile(r"['‘’`]")
_NON_KEY_RE = re.compile(r"[^a-z0-9]+")

_ARABIC_SUFFIX_RE = re.compile(r"-(10|[2-9])$")
_ROMAN_SUFFIX_RE = re.compile(r"-(" + "|".join(sorted(ARABIC_NUMERALS, key=len, reverse=True)) + r")$")
_EDITION_SUFFIX_RE = re.compile(
    r"-(?:" + "|".join(re.escape(t) for t in sorted(EDITION_TOKENS, key=len, reverse=True)) + r")(?:-edition)?$"
)


# ------------- Normalization -------------


def normalize(raw_name: str) -> str:
    """Normalize a raw display name into an item key.

    Lowercases, strips diacritics, trademark decorations and punctuation,
    and joins the remaining words with single separators.

    Args:
        raw_name: Display name as scraped from a listing

    Returns:
        The item key

    Raises:
        NormalizationError: If the name is not a string or nothing is left
            after normalization
    """
    if not isinstance(raw_name, str):
        raise NormalizationError(f"Item name must be a string, got {type(raw_name).__name__}")
    t = _DECORATION_RE.sub(" ", raw_name)
    t = strip_diacritics(t).lower()
    t = t.replace("&", " and ")
    t = _APOSTROPHE_RE.sub("", t)
    t = _NON_KEY_RE.sub(KEY_SEPARATOR, t).strip(KEY_SEPARATOR)
    if not t:
        raise NormalizationError(f"Item name {raw_name!r} normalizes to an empty key")
    return t


def base_identity(key: str) -> str:
    """Strip one trailing sequel numeral or edition suffix from a key.

    Sequel numerals (2-10, ii-x) are tried first; the edition vocabulary is
    only consulted when no numeral was stripped. Keys whose suffix is the
    whole key, or that carry no known suffix, are returned unchanged.
    """
    for pattern in (_ARABIC_SUFFIX_RE, _ROMAN_SUFFIX_RE, _EDITION_SUFFIX_RE):
        m = pattern.search(key)
        if m and m.start() > 0:
            return key[: m.start()]
    return key


def numeral_variants(key: str) -> list[str]:
    """Return the key plus its alternate sequel-numeral spelling, if any.

    "foo-2" yields ["foo-2", "foo-ii"]; "foo-ii" yields ["foo-ii", "foo-2"].
    Keys without a numeral suffix yield just [key].
    """
    m = _ARABIC_SUFFIX_RE.search(key)
    if m and m.start() > 0:
        return [key, f"{key[: m.start()]}{KEY_SEPARATOR}{ROMAN_NUMERALS[int(m.group(1))]}"]
    m = _ROMAN_SUFFIX_RE.search(key)
    if m and m.start() > 0:
        return [key, f"{key[: m.start()]}{KEY_SEPARATOR}{ARABIC_NUMERALS[m.group(1)]}"]
    return [key]


# ------------- Grouping -------------


@dataclass
class VariantGroup:
    """Item keys that share a base identity.

    Attributes:
        base: Base identity shared by every member
        members: Member keys in first-seen order
    """

    base: str
    members: list[str] = field(default_factory=list)


def group_keys(keys: Iterable[str]) -> list[VariantGroup]:
    """Partition keys into variant groups by base identity.

    Groups and their members keep the order in which keys were first seen.
    Duplicate keys are ignored.
    """
    groups: dict[str, VariantGroup] = {}
    seen: set[str] = set()
    for key in keys:
        if key in seen:
            continue
        seen.add(key)
        base = base_identity(key)
        group = groups.get(base)
        if group is None:
            group = groups[base] = VariantGroup(base=base)
        group.members.append(key)
    return list(groups.values())


def cache_lookup_keys(group: VariantGroup) -> list[str]:
    """Keys to consult in the cache for a group, in priority order.

    Each member is followed by its numeral variant so that a score cached
    under "foo-2" satisfies a request for "foo-ii" and vice versa.
    """
    out: list[str] = []
    for member in group.members:
        for candidate in numeral_variants(member):
            if candidate not in out:
                out.append(candidate)
    return out
