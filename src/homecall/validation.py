import re

E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")


def validate_e164(phone: str) -> bool:
    return bool(phone) and bool(E164_PATTERN.match(phone))


def format_to_e164(phone: str) -> str:
    """Best-effort E.164 normalization, assuming US numbers when no country code is given."""
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    if phone and phone.startswith("+"):
        return phone
    return f"+1{digits}"


def normalize_transfer_number(phone: str) -> str:
    if validate_e164(phone):
        return phone
    return format_to_e164(phone)


def speak_digits(phone: str) -> str:
    """Space out every digit so text-to-speech reads the number one digit at a time."""
    return re.sub(r"(\d)", r"\1 ", phone or "")
