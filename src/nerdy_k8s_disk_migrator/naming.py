from __future__ import annotations

from dataclasses import dataclass
import time

from .models import MigrationError

DEFAULT_MAX_NAME_LENGTH = 63
DEFAULT_MIGRATION_SUFFIX = "-hd"
TOKEN_WIDTH = 6
NAME_SEPARATOR = "-"


class NamingError(MigrationError):
    """Raised when a bounded resource name cannot keep any of its base."""


@dataclass(frozen=True)
class MigrationNames:
    token: str
    snapshot: str
    disk: str
    volume: str
    claim: str


def disambiguator_token(now: float | None = None) -> str:
    seconds = int(time.time() if now is None else now)
    return str(seconds)[-TOKEN_WIDTH:].rjust(TOKEN_WIDTH, "0")


def bounded_name(base: str, suffix: str, *, max_length: int = DEFAULT_MAX_NAME_LENGTH) -> str:
    room = max_length - len(suffix)
    if room < 1:
        raise NamingError(
            f"suffix '{suffix}' leaves no room for a base name within {max_length} characters"
        )

    truncated = base[:room].rstrip(NAME_SEPARATOR)
    if not truncated:
        raise NamingError(f"base name '{base}' is empty after truncation to {room} characters")
    return f"{truncated}{suffix}"


def derive_names(
    *,
    template_name: str,
    claim_name: str,
    token: str,
    migration_suffix: str = DEFAULT_MIGRATION_SUFFIX,
    max_length: int = DEFAULT_MAX_NAME_LENGTH,
) -> MigrationNames:
    return MigrationNames(
        token=token,
        snapshot=bounded_name(template_name, f"{NAME_SEPARATOR}{token}", max_length=max_length),
        disk=bounded_name(
            template_name,
            f"{migration_suffix}{NAME_SEPARATOR}{token}",
            max_length=max_length,
        ),
        volume=volume_name_for(claim_name, migration_suffix=migration_suffix, max_length=max_length),
        claim=claim_name_for(claim_name, migration_suffix=migration_suffix, max_length=max_length),
    )


def claim_name_for(
    claim_name: str,
    *,
    migration_suffix: str = DEFAULT_MIGRATION_SUFFIX,
    max_length: int = DEFAULT_MAX_NAME_LENGTH,
) -> str:
    return bounded_name(claim_name, migration_suffix, max_length=max_length)


def volume_name_for(
    claim_name: str,
    *,
    migration_suffix: str = DEFAULT_MIGRATION_SUFFIX,
    max_length: int = DEFAULT_MAX_NAME_LENGTH,
) -> str:
    return bounded_name(claim_name, f"{migration_suffix}{NAME_SEPARATOR}pv", max_length=max_length)


def carries_migration_suffix(claim_name: str | None, migration_suffix: str = DEFAULT_MIGRATION_SUFFIX) -> bool:
    return bool(claim_name) and claim_name.endswith(migration_suffix)
