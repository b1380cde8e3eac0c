# votee9ja/security/validators.py

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

import bleach

# Field validation for registration and profile data. Every validator is
# total: bad input of any type yields an invalid ValidationResult, never an
# exception.

VOTING_AGE = 18
MAX_AGE_YEARS = 120

# NCC-assigned mobile prefixes, local 4-digit form.
NIGERIAN_NETWORK_PREFIXES = frozenset([
    # MTN
    '0803', '0806', '0813', '0816', '0810', '0814', '0903', '0906', '0913', '0916',
    # Airtel
    '0802', '0808', '0812', '0701', '0708', '0902', '0907', '0901', '0904', '0912',
    # Glo
    '0805', '0807', '0815', '0811', '0905', '0915',
    # 9mobile
    '0809', '0817', '0818', '0908', '0909',
    # Visafone, Multilinks and others
    '0704', '0706', '0702',
])

COMMON_DOMAIN_TYPOS = {
    'gmail.co': 'gmail.com',
    'gmail.cm': 'gmail.com',
    'gmial.com': 'gmail.com',
    'yahoo.co': 'yahoo.com',
    'yahoo.cm': 'yahoo.com',
    'hotmail.co': 'hotmail.com',
    'outlook.co': 'outlook.com',
}

COMMON_PASSWORDS = (
    'password', '123456', '123456789', 'qwerty', 'abc123',
    'password123', 'admin', 'letmein', 'welcome', 'monkey',
    'nigeria', 'lagos', 'abuja', 'naija',
)

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128
PASSWORD_MIN_STRENGTH = 2

EMAIL_MAX_LENGTH = 254
EMAIL_LOCAL_MAX_LENGTH = 64

STRENGTH_LABELS = ('Very Weak', 'Weak', 'Fair', 'Good', 'Strong', 'Very Strong')


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    message: str
    cleaned_value: Optional[str] = None
    suggestion: Optional[str] = None
    strength: Optional[float] = None
    age: Optional[int] = None

    def __bool__(self):
        return self.is_valid


class InputValidator:
    def __init__(self):
        self.allowed_html_tags = set()
        self.allowed_html_attributes = {}

        self.patterns = {
            'email': re.compile(
                r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
                r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
            ),
            'phone_noise': re.compile(r'[\s\-()]'),
            'nin_noise': re.compile(r'[\s\-]'),
            'seven_digits': re.compile(r'^[0-9]{7}$'),
            'nin': re.compile(r'^[0-9]{11}$'),
            'repeated_nin': re.compile(r'^([0-9])\1{10}$'),
            'name_text': re.compile(r"^[a-zA-Z\s\-'.]+$"),
            'lower': re.compile(r'[a-z]'),
            'upper': re.compile(r'[A-Z]'),
            'digit': re.compile(r'[0-9]'),
            'symbol': re.compile(r'[^a-zA-Z0-9]'),
            'repeated_run': re.compile(r'(.)\1{2,}'),
            'sequential_run': re.compile(
                r'(?:abc|bcd|cde|def|efg|fgh|ghi|hij|ijk|jkl|lmn|mno|nop|opq|pqr|qrs|rst|'
                r'stu|tuv|uvw|vwx|wxy|xyz|123|234|345|456|567|678|789)',
                re.IGNORECASE,
            ),
            'xss_script': re.compile(r'<script[^>]*>.*?</script>', re.IGNORECASE | re.DOTALL),
            'xss_event': re.compile(r'\bon\w+\s*=', re.IGNORECASE),
        }

    # ------------------------------------------------------------------ #

    def validate_phone_number(self, phone) -> ValidationResult:
        if not phone or not isinstance(phone, str):
            return ValidationResult(False, 'Phone number is required')

        clean_phone = self.patterns['phone_noise'].sub('', phone)

        local_phone = clean_phone
        if clean_phone.startswith('+234'):
            local_phone = '0' + clean_phone[4:]
        elif clean_phone.startswith('234') and len(clean_phone) == 13:
            local_phone = '0' + clean_phone[3:]

        if len(local_phone) != 11:
            return ValidationResult(False, 'Phone number must be 11 digits (e.g., 08012345678)')

        if not local_phone.startswith('0'):
            return ValidationResult(False, 'Phone number must start with 0 (e.g., 08012345678)')

        if local_phone[:4] not in NIGERIAN_NETWORK_PREFIXES:
            return ValidationResult(
                False,
                'Invalid network prefix. Phone number must start with a valid '
                'Nigerian network code (e.g., 080, 081, 070)',
            )

        if not self.patterns['seven_digits'].match(local_phone[4:]):
            return ValidationResult(False, 'Phone number must contain only digits')

        return ValidationResult(True, 'Valid Nigerian phone number', cleaned_value=local_phone)

    def validate_nin(self, nin) -> ValidationResult:
        # NIN is optional at registration.
        if nin is None or (isinstance(nin, str) and not nin.strip()):
            return ValidationResult(True, 'NIN is optional but recommended for enhanced security')
        if not isinstance(nin, str):
            return ValidationResult(False, 'NIN must be text of 11 digits')

        clean_nin = self.patterns['nin_noise'].sub('', nin)

        if len(clean_nin) != 11:
            return ValidationResult(False, 'NIN must be exactly 11 digits')
        if not self.patterns['nin'].match(clean_nin):
            return ValidationResult(False, 'NIN must contain only digits')
        if self.patterns['repeated_nin'].match(clean_nin):
            return ValidationResult(False, 'Invalid NIN format')

        return ValidationResult(True, 'Valid NIN format', cleaned_value=clean_nin)

    def validate_email(self, email) -> ValidationResult:
        if not email or not isinstance(email, str):
            return ValidationResult(False, 'Email address is required')

        clean_email = email.strip().lower()

        if len(clean_email) > EMAIL_MAX_LENGTH:
            return ValidationResult(False, 'Email address is too long')

        if not self.patterns['email'].match(clean_email):
            return ValidationResult(False, 'Please enter a valid email address (e.g., user@example.com)')

        local_part, domain = clean_email.split('@', 1)

        if len(local_part) > EMAIL_LOCAL_MAX_LENGTH:
            return ValidationResult(False, 'Email address local part is too long')

        if '..' in local_part:
            return ValidationResult(False, 'Email address cannot contain consecutive dots')

        corrected = COMMON_DOMAIN_TYPOS.get(domain)
        if corrected:
            suggestion = f'{local_part}@{corrected}'
            return ValidationResult(False, f'Did you mean {suggestion}?', suggestion=suggestion)

        return ValidationResult(True, 'Valid email address', cleaned_value=clean_email)

    def calculate_password_strength(self, password) -> float:
        if not password or not isinstance(password, str):
            return 0

        score = 0.0
        length = len(password)

        if length >= 8:
            score += 1
        if length >= 12:
            score += 1
        if length >= 16:
            score += 1

        for pattern in ('lower', 'upper', 'digit', 'symbol'):
            if self.patterns[pattern].search(password):
                score += 0.5

        if self.patterns['repeated_run'].search(password):
            score -= 0.5
        if self.patterns['sequential_run'].search(password):
            score -= 0.5

        lowered = password.lower()
        if any(common in lowered for common in COMMON_PASSWORDS):
            score -= 1

        return max(0.0, min(5.0, score))

    def validate_password(self, password) -> ValidationResult:
        if not password or not isinstance(password, str):
            return ValidationResult(False, 'Password is required', strength=0)

        if len(password) < PASSWORD_MIN_LENGTH:
            return ValidationResult(
                False, f'Password must be at least {PASSWORD_MIN_LENGTH} characters long', strength=0
            )

        if len(password) > PASSWORD_MAX_LENGTH:
            return ValidationResult(
                False, f'Password is too long (maximum {PASSWORD_MAX_LENGTH} characters)', strength=0
            )

        strength = self.calculate_password_strength(password)
        if strength < PASSWORD_MIN_STRENGTH:
            return ValidationResult(
                False,
                'Password is too weak. Please include uppercase, lowercase, numbers, and symbols.',
                strength=strength,
            )

        return ValidationResult(True, 'Password meets security requirements', strength=strength)

    def validate_password_confirmation(self, password, confirm_password) -> ValidationResult:
        if not confirm_password:
            return ValidationResult(False, 'Please confirm your password')
        if password != confirm_password:
            return ValidationResult(False, 'Passwords do not match')
        return ValidationResult(True, 'Passwords match')

    def validate_date_of_birth(self, date_of_birth, today: date = None) -> ValidationResult:
        if not date_of_birth:
            return ValidationResult(False, 'Date of birth is required')

        birth_date = parse_date(date_of_birth)
        if birth_date is None:
            return ValidationResult(False, 'Please enter a valid date')

        today = today or date.today()

        if birth_date > today:
            return ValidationResult(False, 'Date of birth cannot be in the future')

        if birth_date < years_before(today, MAX_AGE_YEARS):
            return ValidationResult(False, 'Please enter a valid date of birth')

        age = calculate_age(birth_date, today)
        if age < VOTING_AGE:
            return ValidationResult(
                False, f'You must be at least {VOTING_AGE} years old to register to vote', age=age
            )

        return ValidationResult(
            True, f'Valid date of birth (Age: {age})', cleaned_value=birth_date.isoformat(), age=age
        )

    def validate_required_text(self, value, field_name, min_length=2, max_length=100) -> ValidationResult:
        if not value or not isinstance(value, str) or not value.strip():
            return ValidationResult(False, f'{field_name} is required')

        trimmed = value.strip()

        if len(trimmed) < min_length:
            return ValidationResult(False, f'{field_name} must be at least {min_length} characters long')

        if len(trimmed) > max_length:
            return ValidationResult(False, f'{field_name} must be no more than {max_length} characters long')

        if not self.patterns['name_text'].match(trimmed):
            return ValidationResult(
                False, f'{field_name} can only contain letters, spaces, hyphens, and apostrophes'
            )

        return ValidationResult(True, f'Valid {field_name.lower()}', cleaned_value=trimmed)

    def sanitize_string(self, input_str, max_length=255):
        if not isinstance(input_str, str):
            raise ValueError("Input must be a string")
        if len(input_str) > max_length:
            input_str = input_str[:max_length]

        sanitized = self.patterns['xss_script'].sub('', input_str)
        sanitized = self.patterns['xss_event'].sub('', sanitized)
        sanitized = bleach.clean(
            sanitized,
            tags=self.allowed_html_tags,
            attributes=self.allowed_html_attributes,
            strip=True,
        )
        return sanitized.strip()


def password_strength_label(strength) -> str:
    level = int(strength or 0)
    if 0 <= level < len(STRENGTH_LABELS):
        return STRENGTH_LABELS[level]
    return STRENGTH_LABELS[0]


def parse_date(value) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def years_before(day: date, years: int) -> date:
    try:
        return day.replace(year=day.year - years)
    except ValueError:
        # 29 February in a non-leap target year
        return day.replace(year=day.year - years, day=28)


def calculate_age(birth_date: date, on: date) -> int:
    """Whole years between ``birth_date`` and ``on``, calendar style.

    The year difference is reduced by one when the birthday has not yet
    come round in ``on``'s year.
    """
    age = on.year - birth_date.year
    if (on.month, on.day) < (birth_date.month, birth_date.day):
        age -= 1
    return age
