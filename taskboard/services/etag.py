"""
Entity tags for HTTP caching and optimistic concurrency.

A tag is the quoted MD5 hex digest of the canonical JSON form of a response
payload. Only response fields go into the hash, so the same entity state always
yields the same tag no matter which request produced it.
"""

import hashlib
import json
from typing import Any, Optional

from pydantic import BaseModel

WILDCARD = "*"


def canonical_payload(payload: Any) -> Any:
    """Dump response models the way they are sent: JSON mode, camelCase aliases."""
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json", by_alias=True)
    if isinstance(payload, (list, tuple)):
        return [canonical_payload(item) for item in payload]
    return payload


def canonical_dumps(payload: Any) -> str:
    """Return deterministic JSON with sorted keys and tight separators."""
    return json.dumps(
        canonical_payload(payload),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
        default=str,
    )


def generate_token(payload: Any) -> str:
    if payload is None:
        return ""
    digest = hashlib.md5(canonical_dumps(payload).encode("utf-8"), usedforsecurity=False)
    return f'"{digest.hexdigest()}"'


def _normalize(tag: str) -> str:
    tag = tag.strip()
    if tag[:2].upper() == "W/":
        tag = tag[2:]
    return tag.lower()


def parse_validators(header: Optional[str]) -> list[str]:
    if not header:
        return []
    return [part.strip() for part in header.split(",") if part.strip()]


def is_not_modified(if_none_match: Optional[str], current_token: str) -> bool:
    """True when If-None-Match lists the current tag or the wildcard."""
    if not current_token:
        return False
    current = _normalize(current_token)
    for validator in parse_validators(if_none_match):
        if validator == WILDCARD or _normalize(validator) == current:
            return True
    return False


def validate_token(payload: Any, supplied_token: Optional[str]) -> bool:
    """Recompute the tag for the current state and compare to the client's."""
    if not supplied_token or not supplied_token.strip():
        return False
    return generate_token(payload).lower() == supplied_token.strip().lower()
