"""Free-text helpers for customer input."""


def sanitize_user_input(text: str, max_length: int = 10000) -> str:
    """
    Strip null bytes and control characters, truncate to max_length.

    Newlines and tabs are kept so notes keep their formatting.
    """
    if not text:
        return ""

    if len(text) > max_length:
        text = text[:max_length]

    text = text.replace('\x00', '')
    text = ''.join(char for char in text if ord(char) >= 32 or char in '\n\r\t')

    return text.strip()


def normalize_phone(phone: str) -> str:
    """Collapse whitespace in a phone number: '0905 123 456' -> '0905123456'."""
    return "".join(str(phone).split())
