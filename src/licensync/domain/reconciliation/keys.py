"""License keys for internal records discovered only on the external side."""

from __future__ import annotations

import secrets
import string
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from random import Random

    from licensync.domain.model import ExternalLicenseRecord

KEY_PREFIX: Final[str] = "EXT"
KEY_MAX_LENGTH: Final[int] = 255
SUFFIX_LENGTH: Final[int] = 3
SUFFIX_ALPHABET: Final[str] = string.ascii_uppercase + string.digits


def _key_identifier(external: ExternalLicenseRecord, now: datetime) -> str:
    if external.appid:
        return external.appid
    if external.countid is not None:
        return f"C{external.countid}"
    return str(int(now.timestamp() * 1000))[-6:]


def _suffix(rng: Random | None) -> str:
    if rng is None:
        return "".join(secrets.choice(SUFFIX_ALPHABET) for _ in range(SUFFIX_LENGTH))
    return "".join(rng.choice(SUFFIX_ALPHABET) for _ in range(SUFFIX_LENGTH))


def generate_license_key(
    external: ExternalLicenseRecord,
    *,
    now: datetime | None = None,
    rng: Random | None = None,
) -> str:
    """Return ``EXT-<identifier>-<suffix>`` for ``external``.

    The identifier is the appid, else ``C<countid>``, else the last six digits of
    the millisecond timestamp. Three random characters do not make the key
    unique; the internal store's unique constraint does.
    """

    identifier = _key_identifier(external, now or datetime.now(UTC))
    suffix = _suffix(rng)
    head = f"{KEY_PREFIX}-{identifier}"
    max_head = KEY_MAX_LENGTH - len(suffix) - 1
    return f"{head[:max_head]}-{suffix}"
