"""Hashing helpers for cache integrity checks."""
import hashlib
import json
from typing import Iterable

from lotto_refresh.refresh.models import DrawRecord


def stable_json_dumps(payload: object) -> str:
    """Dump JSON with stable ordering for hashing."""
    return json.dumps(payload, ensure_ascii=True, sort_keys=True, separators=(",", ":"))


def hash_records(records: Iterable[DrawRecord]) -> str:
    """
    SHA-256 of the identifying fields of each record, in list order.

    Jackpot values are not part of the hash.
    """
    payload = [record.canonical() for record in records]
    return hashlib.sha256(stable_json_dumps(payload).encode("utf-8")).hexdigest()
