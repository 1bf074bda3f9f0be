"""Tests for driver identity matching by WhatsApp number."""

import pytest

from fretebot.domain.identity import (
    Driver,
    find_matching_drivers,
    match_driver,
    normalize_phone,
    numbers_match,
    phone_variations,
)


class TestPhoneVariations:
    def test_local_mobile_gets_country_code_and_eight_digit_variant(self):
        assert phone_variations("31991570107") == ["5531991570107", "553191570107"]

    def test_eight_digit_local_part_gets_ninth_digit_variant(self):
        assert phone_variations("553191570107") == ["553191570107", "5531991570107"]

    def test_formatting_is_stripped(self):
        assert phone_variations("+55 (31) 99157-0107")[0] == "5531991570107"

    def test_landline_ten_digits(self):
        assert phone_variations("3132221111") == ["553132221111", "5531932221111"]

    def test_foreign_number_has_no_variants(self):
        assert phone_variations("447911123456") == ["447911123456"]

    def test_empty_input(self):
        assert phone_variations("") == [""]

    @pytest.mark.parametrize(
        "raw",
        ["31991570107", "5531991570107", "553191570107", "(31) 9157-0107", "14155552671"],
    )
    def test_normalization_is_idempotent(self, raw):
        once = normalize_phone(raw)
        assert normalize_phone(once) == once

    def test_ninth_digit_forms_intersect(self):
        assert set(phone_variations("5531991570107")) & set(phone_variations("553191570107"))


class TestMatching:
    DRIVERS = [
        Driver(id="d1", name="Joao", whatsapp="5531991570107"),
        Driver(id="d2", name="Maria", whatsapp="11 98888-7777"),
        Driver(id="d3", name="Sem Numero", whatsapp=None),
        Driver(id="d4", name="Antigo", whatsapp="5521977776666", active=False),
    ]

    def test_number_without_country_code_matches_stored_full_number(self):
        assert numbers_match("31991570107", "5531991570107")
        assert match_driver("31991570107", self.DRIVERS).id == "d1"

    def test_eight_digit_sender_matches_nine_digit_registration(self):
        assert match_driver("553191570107", self.DRIVERS).id == "d1"

    def test_no_match(self):
        assert match_driver("5531900000000", self.DRIVERS) is None

    def test_inactive_driver_never_matches(self):
        assert match_driver("5521977776666", self.DRIVERS) is None

    def test_ambiguous_match_returns_none(self):
        drivers = self.DRIVERS + [Driver(id="d5", name="Dup", whatsapp="(31) 99157-0107")]

        assert len(find_matching_drivers("5531991570107", drivers)) == 2
        assert match_driver("5531991570107", drivers) is None
