from __future__ import annotations

import pytest

from nerdy_k8s_disk_migrator.naming import (
    NamingError,
    bounded_name,
    carries_migration_suffix,
    derive_names,
    disambiguator_token,
)


def test_disambiguator_token_with_epoch_seconds_returns_last_six_digits() -> None:
    assert disambiguator_token(1751225960.9) == "225960"


def test_disambiguator_token_with_short_epoch_pads_to_fixed_width() -> None:
    assert disambiguator_token(42) == "000042"


def test_derive_names_with_short_template_returns_expected_resource_names() -> None:
    names = derive_names(template_name="data", claim_name="data-db-0", token="225960")

    assert names.snapshot == "data-225960"
    assert names.disk == "data-hd-225960"
    assert names.volume == "data-db-0-hd-pv"
    assert names.claim == "data-db-0-hd"


def test_derive_names_with_custom_suffix_uses_suffix_for_every_purpose() -> None:
    names = derive_names(
        template_name="data",
        claim_name="data-db-0",
        token="000001",
        migration_suffix="-ssd",
    )

    assert names.disk == "data-ssd-000001"
    assert names.volume == "data-db-0-ssd-pv"
    assert names.claim == "data-db-0-ssd"


def test_derive_names_with_template_at_length_ceiling_truncates_to_limit() -> None:
    template = "a" * 63

    names = derive_names(template_name=template, claim_name=template, token="123456")

    assert names.snapshot == f"{'a' * 56}-123456"
    assert names.disk == f"{'a' * 53}-hd-123456"
    for name in (names.snapshot, names.disk, names.volume, names.claim):
        assert len(name) == 63


def test_bounded_name_with_separator_at_cut_point_strips_trailing_separator() -> None:
    base = "x" * 52 + "-" + "tail"

    name = bounded_name(base, "-hd-123456")

    assert name == f"{'x' * 52}-hd-123456"
    assert "--" not in name


@pytest.mark.parametrize("purpose_suffix", ["-123456", "-hd-123456", "-hd-pv", "-hd"])
@pytest.mark.parametrize("base_length", [1, 10, 52, 53, 56, 57, 62, 63])
def test_bounded_name_with_any_base_length_stays_within_limit_and_separator_clean(
    purpose_suffix: str,
    base_length: int,
) -> None:
    base = ("ab-" * 30)[:base_length]

    name = bounded_name(base, purpose_suffix)

    assert 0 < len(name) <= 63
    assert not name.endswith("-")
    assert not name[: len(name) - len(purpose_suffix)].endswith("-")
    assert name.endswith(purpose_suffix)


def test_bounded_name_with_suffix_filling_limit_raises_naming_error() -> None:
    with pytest.raises(NamingError, match="no room"):
        bounded_name("data", "-" * 63)


def test_bounded_name_with_only_separators_left_after_truncation_raises_naming_error() -> None:
    with pytest.raises(NamingError, match="empty after truncation"):
        bounded_name("---data", "-hd", max_length=6)


def test_carries_migration_suffix_with_migrated_and_source_claims_distinguishes_them() -> None:
    assert carries_migration_suffix("data-db-0-hd")
    assert not carries_migration_suffix("data-db-0")
    assert not carries_migration_suffix("data-hdfs-0")
    assert not carries_migration_suffix(None)
