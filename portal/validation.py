"""
Form Validation Utilities

Pure validation and normalization functions for every value the storefront
accepts from a user or from the hotspot redirect:
- MAC address (device identity)
- Phone number (M-Pesa, Kenya format)
- Email, password, name (account forms)
- Voucher code

Validation and normalization are independent contracts: a value that
normalization could repair is still rejected by validation.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

# MAC address: six hex octet pairs separated by colons or hyphens
MAC_REGEX = re.compile(r"^([0-9A-Fa-f]{2}[:-]){5}([0-9A-Fa-f]{2})$")

# Phone validation for Kenya (254, +254, 0, or nothing before 7/1)
PHONE_REGEX = re.compile(r"^(?:\+?254|0)?(?:7|1)\d{8}$")

# Minimum digits a checkout phone number must carry after stripping formatting
MIN_PHONE_DIGITS = 9

EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# At least 8 chars with at least one letter and one number
PASSWORD_REGEX = re.compile(r"^(?=.*[A-Za-z])(?=.*\d)[A-Za-z\d@$!%*#?&]{8,}$")

VOUCHER_REGEX = re.compile(r"^[A-Z0-9-]{4,20}$")

_MAC_STRIP = re.compile(r"[^0-9A-Fa-f:-]")
_BARE_MAC = re.compile(r"^[0-9A-F]{12}$")


@dataclass
class ValidationResult:
    """Outcome of a single field validation"""
    is_valid: bool
    message: str = ""

    def __bool__(self) -> bool:
        return self.is_valid


@dataclass
class FormValidationResult:
    """Outcome of validating a whole form"""
    is_valid: bool
    errors: Dict[str, str] = field(default_factory=dict)
    data: Dict[str, Any] = field(default_factory=dict)


_VALID = ValidationResult(True, "")


# ========== MAC Address ==========

def validate_mac_address(mac: Optional[str]) -> ValidationResult:
    """Validate a MAC address in AA:BB:CC:DD:EE:FF (or hyphenated) form."""
    if not mac:
        return ValidationResult(False, "MAC address is required")

    if not MAC_REGEX.match(mac):
        return ValidationResult(
            False, "Invalid MAC address format. Use format: AA:BB:CC:DD:EE:FF"
        )

    return _VALID


def normalize_mac_address(mac: Optional[str]) -> str:
    """
    Normalize a MAC address to uppercase colon-separated form.

    Characters outside [0-9A-Fa-f:-] are dropped and hyphens become colons.
    Only a bare 12-hex-digit string gets colons inserted; any other shape is
    returned uppercased and otherwise unchanged, leaving rejection to
    validate_mac_address. Idempotent.
    """
    if not mac:
        return ""

    upper = _MAC_STRIP.sub("", mac).upper()

    if "-" in upper:
        return upper.replace("-", ":")

    if ":" not in upper and _BARE_MAC.match(upper):
        return ":".join(upper[i:i + 2] for i in range(0, 12, 2))

    return upper


# ========== Phone ==========

def phone_digits(phone: Optional[str]) -> str:
    """Strip everything but digits"""
    return re.sub(r"\D", "", phone or "")


def validate_phone(phone: Optional[str]) -> ValidationResult:
    """Validate a Kenyan mobile number"""
    if not phone:
        return ValidationResult(False, "Phone number is required")

    if not PHONE_REGEX.match(phone):
        return ValidationResult(
            False,
            "Invalid phone number. Use: 07XXXXXXXX, 01XXXXXXXX, 7XXXXXXXX, "
            "1XXXXXXXX, 254XXXXXXXXX, or +254XXXXXXXXX",
        )

    return _VALID


def validate_checkout_phone(phone: Optional[str]) -> ValidationResult:
    """Checkout precondition: at least MIN_PHONE_DIGITS digits once formatting is stripped."""
    if not phone or not phone.strip():
        return ValidationResult(False, "Phone number is required")

    if len(phone_digits(phone)) < MIN_PHONE_DIGITS:
        return ValidationResult(
            False, f"Phone number must contain at least {MIN_PHONE_DIGITS} digits"
        )

    return _VALID


def normalize_phone(phone: Optional[str]) -> str:
    """Normalize a Kenyan phone number to 254XXXXXXXXX"""
    digits = phone_digits(phone)
    if not digits:
        return ""

    if digits.startswith("0"):
        return "254" + digits[1:]
    if digits.startswith("254"):
        return digits
    if digits.startswith("7") or digits.startswith("1"):
        return "254" + digits
    return digits


# ========== Account fields ==========

def validate_email(email: Optional[str]) -> ValidationResult:
    """Email is optional; when present it must look like an address"""
    if not email:
        return _VALID

    if not EMAIL_REGEX.match(email):
        return ValidationResult(False, "Invalid email address format")

    return _VALID


def validate_password(password: Optional[str]) -> ValidationResult:
    if not password:
        return ValidationResult(False, "Password is required")

    if len(password) < 8:
        return ValidationResult(False, "Password must be at least 8 characters long")

    if not PASSWORD_REGEX.match(password):
        return ValidationResult(
            False, "Password must contain at least one letter and one number"
        )

    return _VALID


def validate_password_confirmation(password: Optional[str], confirm_password: Optional[str]) -> ValidationResult:
    if not confirm_password:
        return ValidationResult(False, "Please confirm your password")

    if password != confirm_password:
        return ValidationResult(False, "Passwords do not match")

    return _VALID


def validate_name(name: Optional[str]) -> ValidationResult:
    if not name:
        return ValidationResult(False, "Name is required")

    stripped = name.strip()
    if len(stripped) < 2:
        return ValidationResult(False, "Name must be at least 2 characters long")
    if len(stripped) > 50:
        return ValidationResult(False, "Name must be less than 50 characters")

    return _VALID


# ========== Voucher ==========

def normalize_voucher_code(code: Optional[str]) -> str:
    """Vouchers are printed uppercase; accept what users type"""
    return (code or "").strip().upper()


def validate_voucher_code(code: Optional[str]) -> ValidationResult:
    if not code:
        return ValidationResult(False, "Voucher code is required")

    if not VOUCHER_REGEX.match(code):
        return ValidationResult(
            False, "Invalid voucher code format. Use 4-20 characters (A-Z, 0-9, -)"
        )

    return _VALID


# ========== Forms ==========

Rule = Callable[[Any, Dict[str, Any]], ValidationResult]

VALIDATION_RULES: Dict[str, Rule] = {
    "mac": lambda value, data: validate_mac_address(value),
    "phone": lambda value, data: validate_phone(value),
    "email": lambda value, data: validate_email(value),
    "password": lambda value, data: validate_password(value),
    "name": lambda value, data: validate_name(value),
    "voucher_code": lambda value, data: validate_voucher_code(value),
    "confirm_password": lambda value, data: validate_password_confirmation(
        data.get("password"), value
    ),
}


def validate_form(data: Dict[str, Any], rules: Optional[Dict[str, Rule]] = None) -> FormValidationResult:
    """Run every field that has a rule; collect the first message per field."""
    rules = VALIDATION_RULES if rules is None else rules
    errors: Dict[str, str] = {}

    for field_name, value in data.items():
        rule = rules.get(field_name)
        if rule is None:
            continue
        result = rule(value, data)
        if not result.is_valid:
            errors[field_name] = result.message

    return FormValidationResult(is_valid=not errors, errors=errors, data=data)
