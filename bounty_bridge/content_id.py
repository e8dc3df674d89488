"""Soft convention for embedding a GitHub repository id in a content id.

Registry entries store an opaque content id. Entries created by this service
use ``github_<githubRepoId>_<suffix>`` where the suffix is the CID of the
pinned metadata document. Older entries used a base64 digest as the suffix.
Nothing on-chain enforces this, so a parsed id is only ever a hint.
"""

import re
from typing import NamedTuple, Optional

PREFIX = "github"
_CID_PREFIXES = ("Qm", "baf")
# ASCII only: str.isdigit() also accepts characters such as "²" that int() rejects
_GITHUB_ID = re.compile(r"[0-9]+")


class ParsedContentId(NamedTuple):
    github_repo_id: int
    suffix: str


def make_content_id(github_repo_id: int, suffix: str) -> str:
    """Build a convention content id for a GitHub repository."""
    return f"{PREFIX}_{int(github_repo_id)}_{suffix}"


def parse_content_id(content_id: Optional[str]) -> Optional[ParsedContentId]:
    """Parse a convention content id, or return None if it does not follow it."""
    if not content_id or not content_id.startswith(f"{PREFIX}_"):
        return None

    parts = content_id.split("_", 2)
    if len(parts) < 2 or not _GITHUB_ID.fullmatch(parts[1]):
        return None

    suffix = parts[2] if len(parts) == 3 else ""
    return ParsedContentId(github_repo_id=int(parts[1]), suffix=suffix)


def github_repo_id_from(content_id: Optional[str]) -> Optional[int]:
    """Return the GitHub repository id encoded in ``content_id``, if any."""
    parsed = parse_content_id(content_id)
    return parsed.github_repo_id if parsed else None


def storage_cid(content_id: str) -> str:
    """Return the CID to fetch from the gateway for a registry content id."""
    parsed = parse_content_id(content_id)
    if parsed and parsed.suffix.startswith(_CID_PREFIXES):
        return parsed.suffix
    return content_id
