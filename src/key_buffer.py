"""Request-scoped buffer for keys observed during one unit of work."""
from typing import List, Set, Tuple


class RequestKeyBuffer:
    """
    Accumulates keys in memory while a single page render runs.

    Source-locale keys are deduplicated; target-locale keys are kept as a
    plain list because the ledger upsert counts repeats anyway. The buffer is
    owned by exactly one unit of work and drained once when it finishes.
    """

    def __init__(self):
        self._source_keys: Set[str] = set()
        self._target_keys: List[Tuple[str, str]] = []

    def add_source_key(self, key: str) -> None:
        self._source_keys.add(key)

    def add_target_key(self, key: str, locale: str) -> None:
        self._target_keys.append((key, locale))

    def has_keys(self) -> bool:
        return bool(self._source_keys) or bool(self._target_keys)

    def drain(self) -> Tuple[Set[str], List[Tuple[str, str]]]:
        """
        Return everything buffered so far and empty the buffer.

        Returns:
            A ``(source_keys, target_keys)`` tuple, where ``target_keys`` is a
            list of ``(key, locale)`` pairs in observation order.
        """
        source_keys, target_keys = self._source_keys, self._target_keys
        self._source_keys = set()
        self._target_keys = []
        return source_keys, target_keys

    def __len__(self) -> int:
        return len(self._source_keys) + len(self._target_keys)
