from __future__ import annotations

import re
import secrets
import unicodedata

TOKEN_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
TOKEN_LENGTH = 6

_LOCALE_SYMBOLS: dict[str, dict[str, str]] = {
    "fr": {
        "&": " et ",
        "%": " pourcent ",
        "€": " euro ",
        "$": " dollar ",
        "<": " inferieur ",
        ">": " superieur ",
    },
    "en": {
        "&": " and ",
        "%": " percent ",
        "€": " euro ",
        "$": " dollar ",
        "<": " less ",
        ">": " greater ",
    },
}
# Letters NFKD does not decompose into ASCII.
_LIGATURES: dict[str, str] = {
    "œ": "oe",
    "Œ": "OE",
    "æ": "ae",
    "Æ": "AE",
    "ß": "ss",
    "ø": "o",
    "Ø": "O",
    "ł": "l",
    "Ł": "L",
    "đ": "d",
    "Đ": "D",
}
_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9]+")


def random_token(length: int = TOKEN_LENGTH) -> str:
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def slugify(text: str, *, locale: str = "fr") -> str:
    symbols = _LOCALE_SYMBOLS.get(locale, {})
    replaced = "".join(symbols.get(char, _LIGATURES.get(char, char)) for char in text)
    ascii_text = (
        unicodedata.normalize("NFKD", replaced).encode("ascii", "ignore").decode("ascii")
    )
    return _NON_ALPHANUMERIC.sub("-", ascii_text.lower()).strip("-")


def generate_slug(title: str, *, locale: str = "fr", token: str | None = None) -> str:
    """Slug of the title plus a random suffix, so every creation attempt gets a fresh one."""
    suffix = token if token is not None else random_token()
    return slugify(f"{title} {suffix}", locale=locale)
