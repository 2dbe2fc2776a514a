"""
Tag normalization and validation.

A track's tag set is always kept in canonical form:
    - case-folded, surrounding whitespace trimmed, inner runs collapsed
    - ASCII letters a-z, digits 0-9, space and hyphen only; accented
      letters and other Unicode letters or digits are rejected
    - at most MAX_TAG_LENGTH characters per tag
    - deduplicated and sorted
    - at most MAX_TAGS_PER_TRACK tags per track
"""

import re
from typing import Iterable

from playlist_notes.core.exceptions import ValidationError


MAX_TAGS_PER_TRACK = 32
MAX_TAG_LENGTH = 50

_WHITESPACE = re.compile(r"\s+")
_ALLOWED_CHARS = re.compile(r"[a-z0-9 -]*")


def normalize_tag(raw: str) -> str:
    """Trim, collapse inner whitespace and case-fold a tag. No validation."""
    return _WHITESPACE.sub(" ", raw.strip()).casefold()


def _has_only_allowed_chars(tag: str) -> bool:
    return _ALLOWED_CHARS.fullmatch(tag) is not None


def validate_tag(raw: str) -> str:
    """
    Normalize a single tag and check it against the tag rules.
    
    Args:
        raw: Tag as typed by the user.
    
    Returns:
        The normalized tag.
    
    Raises:
        ValidationError: If the tag is empty after trimming, too long,
                         or contains characters other than letters,
                         digits, space and hyphen.
    """
    if not isinstance(raw, str):
        raise ValidationError("Tag must be a string", details={"tag": raw})
    
    tag = normalize_tag(raw)
    if not tag:
        raise ValidationError("Tag is empty", details={"tag": raw})
    
    if len(tag) > MAX_TAG_LENGTH:
        raise ValidationError(
            f"Tag exceeds {MAX_TAG_LENGTH} characters",
            details={"tag": raw, "length": len(tag)}
        )
    
    if not _has_only_allowed_chars(tag):
        raise ValidationError(
            "Tag may only contain letters, digits, spaces and hyphens",
            details={"tag": raw}
        )
    
    return tag


def is_valid_tag(raw: str) -> bool:
    try:
        validate_tag(raw)
    except ValidationError:
        return False
    return True


def canonicalize_tags(tags: Iterable[str], limit: int = MAX_TAGS_PER_TRACK) -> tuple[str, ...]:
    """
    Bring an arbitrary collection of tags into canonical form.
    
    Invalid entries are dropped silently; callers that need to report
    rejections validate individual tags with validate_tag() first.
    When more than `limit` distinct valid tags remain, the first `limit`
    in sorted order are kept.
    
    Example:
        canonicalize_tags(["Rock", " jazz ", "rock", "bad!"])  # ("jazz", "rock")
    """
    accepted = set()
    for raw in tags or ():
        if not isinstance(raw, str):
            continue
        tag = normalize_tag(raw)
        if tag and len(tag) <= MAX_TAG_LENGTH and _has_only_allowed_chars(tag):
            accepted.add(tag)
    return tuple(sorted(accepted)[:limit])


def add_tag(existing: tuple[str, ...], raw: str) -> tuple[str, ...]:
    """
    Return the canonical tag set with one more tag.
    
    Adding a tag that is already present returns the set unchanged.
    
    Raises:
        ValidationError: If the tag is invalid or the track already holds
                         MAX_TAGS_PER_TRACK tags.
    """
    tag = validate_tag(raw)
    if tag in existing:
        return existing
    
    if len(existing) >= MAX_TAGS_PER_TRACK:
        raise ValidationError(
            f"A track can hold at most {MAX_TAGS_PER_TRACK} tags",
            details={"tag": tag, "count": len(existing)}
        )
    
    return tuple(sorted((*existing, tag)))


def remove_tag(existing: tuple[str, ...], raw: str) -> tuple[str, ...]:
    """Return the tag set without `raw` (normalized). Absent tags are a no-op."""
    if not isinstance(raw, str):
        return existing
    tag = normalize_tag(raw)
    if tag not in existing:
        return existing
    return tuple(t for t in existing if t != tag)
