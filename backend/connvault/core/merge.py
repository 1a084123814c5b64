import logging
from typing import Dict, List, Optional, Sequence, Tuple, TypeVar

from connvault.models import EncryptedPayload, SecurityContext, VaultRecord

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=VaultRecord)


def _is_blank(value: object) -> bool:
    return isinstance(value, str) and not value.strip()


def merge_untouched_secrets(record: R, previous: Optional[VaultRecord]) -> Tuple[R, int]:
    """
    Carry stored ciphertext over into secret fields the caller never resolved.

    A blank in-memory field is taken to mean "never decrypted" unless the record lists it
    in `cleared_secrets`. The previous payload is copied as-is, never decrypted, so this
    works while the vault is locked. Returns the merged copy and the number of fields
    carried over.
    """
    r = record.model_copy(deep=True)
    if previous is None:
        return r, 0
    prior_paths = set(previous.secret_paths())
    carried = 0
    for path in r.secret_paths():
        if path in r.cleared_secrets or path not in prior_paths:
            continue
        if not _is_blank(r.get_secret(path)):
            continue
        prior = previous.get_secret(path)
        if isinstance(prior, EncryptedPayload):
            r.set_secret(path, prior)
            carried += 1
    return r, carried


def count_plaintext_secrets(record: VaultRecord) -> int:
    return sum(
        1
        for path in record.secret_paths()
        if isinstance(record.get_secret(path), str) and not _is_blank(record.get_secret(path))
    )


def apply_merge_policy(
    records: Sequence[R],
    on_disk: Sequence[VaultRecord],
    ctx: SecurityContext,
) -> List[R]:
    """
    Merge step run before serialization. Only active while a configured vault is locked
    and secrets are being persisted; otherwise records pass through untouched.
    `on_disk` must be read right before this call to keep the lost-update window short.
    """
    if not ctx.merge_on_save:
        return list(records)
    previous_by_id: Dict[str, VaultRecord] = {p.id: p for p in on_disk}
    merged: List[R] = []
    carried_total = 0
    for record in records:
        m, carried = merge_untouched_secrets(record, previous_by_id.get(record.id))
        carried_total += carried
        typed = count_plaintext_secrets(m)
        if typed:
            logger.warning(
                "record %s: %d secret field(s) entered while locked will be stored unencrypted",
                record.id,
                typed,
            )
        merged.append(m)
    if carried_total:
        logger.info("kept %d stored encrypted secret(s) during locked save", carried_total)
    return merged
