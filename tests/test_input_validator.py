from datetime import date, datetime

import pytest

from votee9ja.security.validators import (
    InputValidator,
    calculate_age,
    password_strength_label,
    years_before,
)

TODAY = date(2026, 10, 16)


@pytest.fixture
def validator():
    return InputValidator()


# --- phone numbers -------------------------------------------------------

@pytest.mark.parametrize("raw", [
    "08031234567",
    "+2348031234567",
    "2348031234567",
    "0803 123 4567",
    "(0803) 123-4567",
])
def test_phone_number_forms_normalize_to_local(validator, raw):
    result = validator.validate_phone_number(raw)
    assert result.is_valid
    assert result.cleaned_value == "08031234567"


@pytest.mark.parametrize("raw", [
    "07991234567",   # unknown prefix
    "0803123456",    # too short
    "0803123456a",   # non-digit tail
    "18031234567",   # no leading zero
    "0803\u0661\u0662\u0663\u0664\u0665\u0666\u0667",  # Arabic-Indic digits
    "",
])
def test_invalid_phone_numbers(validator, raw):
    assert not validator.validate_phone_number(raw)


@pytest.mark.parametrize("value", [None, 8031234567, ["08031234567"]])
def test_phone_validator_is_total(validator, value):
    result = validator.validate_phone_number(value)
    assert result.is_valid is False
    assert result.message


# --- NIN -----------------------------------------------------------------

def test_nin_is_optional(validator):
    assert validator.validate_nin("").is_valid
    assert validator.validate_nin(None).is_valid
    assert "optional" in validator.validate_nin("  ").message


def test_nin_strips_separators(validator):
    result = validator.validate_nin("1234-5678 901")
    assert result.is_valid
    assert result.cleaned_value == "12345678901"


@pytest.mark.parametrize("raw", ["1234567890", "123456789012", "1234567890a", "11111111111", 12345678901,
                                 "\u0661" * 11, "1234567890\u0661"])
def test_invalid_nin(validator, raw):
    assert not validator.validate_nin(raw)


# --- email ---------------------------------------------------------------

def test_email_is_trimmed_and_lowercased(validator):
    result = validator.validate_email("  Ada.Okafor@Example.COM ")
    assert result.is_valid
    assert result.cleaned_value == "ada.okafor@example.com"


def test_common_domain_typo_gets_a_suggestion(validator):
    result = validator.validate_email("user@gmail.co")
    assert result.is_valid is False
    assert result.suggestion == "user@gmail.com"


@pytest.mark.parametrize("raw", [
    "not-an-email",
    "ada..okafor@example.com",
    "a" * 65 + "@example.com",
    "user@" + "d" * 250 + ".com",
    None,
])
def test_invalid_emails(validator, raw):
    assert not validator.validate_email(raw)


# --- passwords -----------------------------------------------------------

def test_password_strength_grows_with_length_tiers(validator):
    eight = validator.calculate_password_strength("Kq7#mZ2!")
    twelve = validator.calculate_password_strength("Kq7#mZ2!vLp9")
    sixteen = validator.calculate_password_strength("Kq7#mZ2!vLp9wRt4")
    assert (eight, twelve, sixteen) == (3.0, 4.0, 5.0)


def test_password_strength_penalties(validator):
    # 12 chars (+2), four classes (+2), "123" run (-0.5), contains "password" (-1)
    assert validator.calculate_password_strength("Password123!") == 2.5


def test_sequential_penalty_only_covers_known_runs(validator):
    # 12 chars (+2), lower and digit (+1), no listed run
    assert validator.calculate_password_strength("xklmzxq012zq") == 3.0
    assert validator.calculate_password_strength("xlmnzxq012zq") == 2.5


def test_password_strength_is_clamped(validator):
    assert validator.calculate_password_strength("abc123") == 0.0
    assert validator.calculate_password_strength("") == 0
    assert validator.calculate_password_strength("Kq7#mZ2!vLp9wRt4xN8$") == 5.0


def test_validate_password(validator):
    assert validator.validate_password("Kq7#mZ2!vLp9").is_valid
    assert not validator.validate_password("Kq7#mZ2")  # too short
    assert not validator.validate_password("x" * 129)
    weak = validator.validate_password("password")
    assert weak.is_valid is False
    assert weak.strength < 2


def test_password_confirmation(validator):
    assert validator.validate_password_confirmation("Kq7#mZ2!vLp9", "Kq7#mZ2!vLp9")
    assert not validator.validate_password_confirmation("Kq7#mZ2!vLp9", "")
    assert validator.validate_password_confirmation("Kq7#mZ2!vLp9", "other").message == "Passwords do not match"


def test_password_strength_label():
    assert password_strength_label(0) == "Very Weak"
    assert password_strength_label(3.5) == "Good"
    assert password_strength_label(5) == "Very Strong"


# --- date of birth -------------------------------------------------------

def test_eighteenth_birthday_is_old_enough(validator):
    result = validator.validate_date_of_birth(date(2008, 10, 16), today=TODAY)
    assert result.is_valid
    assert result.age == 18


def test_day_before_eighteenth_birthday_is_too_young(validator):
    result = validator.validate_date_of_birth(date(2008, 10, 17), today=TODAY)
    assert result.is_valid is False
    assert result.age == 17


@pytest.mark.parametrize("raw", ["2027-01-01", "1900-01-01", "not-a-date", "", None])
def test_invalid_dates_of_birth(validator, raw):
    assert not validator.validate_date_of_birth(raw, today=TODAY)


def test_date_of_birth_accepts_strings_and_datetimes(validator):
    assert validator.validate_date_of_birth("1990-05-17", today=TODAY).cleaned_value == "1990-05-17"
    assert validator.validate_date_of_birth(datetime(1990, 5, 17, 8, 30), today=TODAY).is_valid


def test_calculate_age_on_leap_day_birthdays():
    assert calculate_age(date(2000, 2, 29), date(2018, 2, 28)) == 17
    assert calculate_age(date(2000, 2, 29), date(2018, 3, 1)) == 18
    assert years_before(date(2024, 2, 29), 18) == date(2006, 2, 28)


# --- free text -----------------------------------------------------------

def test_required_text(validator):
    assert validator.validate_required_text("O'Brien-Smith", "Last name").cleaned_value == "O'Brien-Smith"
    assert not validator.validate_required_text("A", "First name")
    assert not validator.validate_required_text("Ada1", "First name")
    assert not validator.validate_required_text(None, "First name")


def test_sanitize_strips_scripts_and_markup(validator):
    assert validator.sanitize_string("<script>alert(1)</script>Hello") == "Hello"
    assert validator.sanitize_string("<b>Bold</b> text") == "Bold text"
    cleaned = validator.sanitize_string('<img src=x onerror="alert(1)">')
    assert "onerror" not in cleaned
    assert "<" not in cleaned


def test_sanitize_truncates_and_rejects_non_strings(validator):
    assert len(validator.sanitize_string("a" * 300)) == 255
    with pytest.raises(ValueError):
        validator.sanitize_string(None)
