"""
Policies deciding which looked-up keys count as translatable end-user text.

Filtering happens before a key reaches a request buffer. The default policy
drops three kinds of noise:

- empty or whitespace-only keys
- short dot-delimited identifiers such as ``validation.required``, which are
  framework lookup names rather than literal sentences
- keys containing a path separator, typically left over from a misresolved
  lookup

The heuristic is fuzzy (``Node.js`` looks like an identifier), so policies
are swappable: anything with an ``accepts(key) -> bool`` method works.
"""
import re
from dataclasses import dataclass, field
from typing import List, Protocol

IDENTIFIER_PATTERN = re.compile(r'^[\w-]+(?:\.[\w-]+)+$')


class KeyPolicy(Protocol):
    def accepts(self, key: str) -> bool:
        ...


@dataclass(frozen=True)
class DefaultKeyFilter:
    """The dot-notation / path-separator heuristic, with tunable limits."""
    max_identifier_length: int = 64
    path_separators: List[str] = field(default_factory=lambda: ['/', '\\'])

    def is_internal_identifier(self, key: str) -> bool:
        stripped = key.strip()
        return len(stripped) <= self.max_identifier_length and bool(IDENTIFIER_PATTERN.match(stripped))

    def has_path_separator(self, key: str) -> bool:
        return any(separator in key for separator in self.path_separators)

    def accepts(self, key: str) -> bool:
        if not isinstance(key, str) or not key.strip():
            return False
        if self.is_internal_identifier(key):
            return False
        if self.has_path_separator(key):
            return False
        return True


class AcceptAllKeys:
    """Policy that keeps every non-empty key. Useful for catalogs keyed by identifiers."""

    def accepts(self, key: str) -> bool:
        return isinstance(key, str) and bool(key.strip())
