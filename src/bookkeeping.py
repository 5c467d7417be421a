"""Best-effort bookkeeping around units of work."""
import logging
from contextlib import contextmanager
from typing import Iterator

from src.catalog_store import CatalogStore
from src.key_buffer import RequestKeyBuffer
from src.missing_key_ledger import MissingKeyLedger

logger = logging.getLogger(__name__)


@contextmanager
def best_effort(description: str) -> Iterator[None]:
    """
    Run a bookkeeping step whose failure must not fail the surrounding work.

    Errors are logged with their traceback and then dropped.
    """
    try:
        yield
    except Exception as exc:
        logger.error(f"Bookkeeping step '{description}' failed: {exc}", exc_info=True)


def flush_key_buffer(
        buffer: RequestKeyBuffer,
        catalog_store: CatalogStore,
        ledger: MissingKeyLedger,
        source_locale: str
) -> None:
    """
    Drain ``buffer`` into the source catalog and the missing-key ledger.

    Each destination is written independently, so a ledger failure still
    leaves the source catalog updated and the other way round.
    """
    if not buffer.has_keys():
        return

    source_keys, target_keys = buffer.drain()

    with best_effort(f"merge {len(source_keys)} key(s) into '{source_locale}' catalog"):
        catalog_store.merge_new_keys(source_locale, source_keys)

    recorded = 0
    for key, locale in target_keys:
        with best_effort(f"record missing key for '{locale}'"):
            if ledger.record(key, locale):
                recorded += 1

    logger.debug(
        f"Flushed {len(source_keys)} source key(s) and {recorded}/{len(target_keys)} missing key observation(s)."
    )
