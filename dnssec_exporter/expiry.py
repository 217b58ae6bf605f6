from typing import Iterable, Optional

from .dns_utils import Signature


def _rank(sig: Signature):
    return (sig.expiration, sig.owner.to_text(), sig.covered_type)


def earliest_signature(signatures: Iterable[Signature]) -> Optional[Signature]:
    """Return the signature that expires first, or None if there is none.

    A zero expiration is treated as unset and never selected. Equal
    expirations are ordered by owner and covered type so the result does not
    depend on the order records arrived in, which is arbitrary for a zone
    transfer.
    """
    best: Optional[Signature] = None
    for sig in signatures:
        if sig.expiration == 0:
            continue
        if best is None or _rank(sig) < _rank(best):
            best = sig
    return best
