"""
Input Validation Utilities

Phone number normalization for recipients (Bulgarian numbering plan by
default) and message text sanitization.
"""
import re

from app.core.config import settings


class ValidationPatterns:
    """Regex patterns for validation"""

    # Bulgarian mobile: +359 8X/9X followed by 7 digits
    PHONE_BULGARIAN_MOBILE = re.compile(r"^\+359[89]\d{8}$")

    # International phone (E.164 format)
    PHONE_INTERNATIONAL = re.compile(r"^\+[1-9]\d{6,14}$")

    # {variableName} placeholders inside template content
    TEMPLATE_PLACEHOLDER = re.compile(r"\{([^{}]+)\}")


class PhoneNumberValidator:
    """Phone number validation and normalization"""

    @staticmethod
    def normalize(phone: str, country_code: str | None = None) -> str:
        """
        Normalize phone number to E.164.

        Local numbers (leading 0) and bare country-code numbers get the
        configured country code, e.g. 0888123456 → +359888123456.
        """
        code = country_code or settings.DEFAULT_COUNTRY_CODE
        cleaned = re.sub(r"[^\d+]", "", phone or "")

        if cleaned.startswith("00"):
            cleaned = "+" + cleaned[2:]
        elif cleaned.startswith("0"):
            cleaned = f"+{code}" + cleaned[1:]
        elif cleaned.startswith(code) and not cleaned.startswith("+"):
            cleaned = "+" + cleaned

        return cleaned

    @staticmethod
    def validate(phone: str) -> bool:
        """True if the normalized number is a valid E.164 number"""
        if not phone:
            return False
        return bool(ValidationPatterns.PHONE_INTERNATIONAL.match(PhoneNumberValidator.normalize(phone)))

    @staticmethod
    def is_bulgarian_mobile(phone: str) -> bool:
        """Viber and WhatsApp only deliver to mobile numbers"""
        if not phone:
            return False
        return bool(ValidationPatterns.PHONE_BULGARIAN_MOBILE.match(PhoneNumberValidator.normalize(phone)))

    @staticmethod
    def mask(phone: str) -> str:
        """
        Mask phone number for logging (privacy).

        Returns:
            Masked phone number (e.g., +35988812****)
        """
        if not phone or len(phone) < 4:
            return "****"
        return phone[:-4] + "****"


class TextSanitizer:
    """Text sanitization for outgoing messages"""

    @staticmethod
    def sanitize(text: str, max_length: int = 4096) -> str:
        """
        Trim, drop null bytes and control characters, enforce max length.

        Newlines and tabs are kept - templates use them for layout.
        """
        if not text:
            return ""

        sanitized = text.strip().replace("\x00", "")
        sanitized = "".join(
            char for char in sanitized
            if char >= " " or char in "\n\r\t"
        )
        return sanitized[:max_length]


def extract_placeholders(content: str) -> list[str]:
    """Placeholder keys in order of appearance, e.g. '{a} {b}' → ['a', 'b']"""
    return ValidationPatterns.TEMPLATE_PLACEHOLDER.findall(content or "")
