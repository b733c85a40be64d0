"""Version string helpers."""

from __future__ import annotations

_SHORT_HASH_LENGTH = 7


def short_hash(revision: str, modified: bool) -> str:
    """Abbreviated revision hash, marked dirty when the tree was modified."""
    if not revision:
        return ""
    short = revision[:_SHORT_HASH_LENGTH]
    return short + "-dirty" if modified else short


def version_or_hash(version: str, revision_hash: str) -> str:
    """The version if it is set, otherwise the revision hash."""
    return version if version else revision_hash