import hashlib
from typing import Iterable


def stable_hash(text: str) -> str:
    """Short sha256 hex digest of text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


def fingerprint_ids(ids: Iterable[int]) -> str:
    """Order-sensitive fingerprint of an id list, e.g. a change feed window."""
    return "ids:" + stable_hash(",".join(str(int(i)) for i in ids))
