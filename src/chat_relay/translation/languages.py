"""Language resolution for chat messages and recipients.

``LanguageResolver`` answers two questions for the interceptor:

* what language is this message written in? (``resolve_source``)
* what language does this player want to read? (``resolve_target``)

Both are pure lookups over the in-memory preference map plus a cheap
script heuristic. Neither ever raises: missing information degrades to the
configured default language.

Language codes
--------------
Everything inside the relay uses short ISO 639-1 codes (``"en"``,
``"uk"``). Game clients report locales in many shapes (``"en_US"``,
``"uk-UA"``, ``"UK_ua"``); ``normalize_language`` folds them all down.

Script heuristic
----------------
Only scripts that identify a language (or a small family) well are
detected. Latin text is ambiguous between dozens of languages, so it is
reported as unknown and the resolver falls back to the default.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping

# A script must make up at least this share of the message for detection
# to trust it. Mixed "gg ура" style messages still resolve.
SCRIPT_THRESHOLD = 0.3

# Shorter messages are too noisy to classify.
MIN_DETECT_LENGTH = 3

# Letters that occur in Ukrainian but not Russian.
_UKRAINIAN_LETTERS = frozenset("ієїґІЄЇҐ")

# (language, pattern) in precedence order. Kana is checked before Han so
# Japanese text with kanji is not reported as Chinese.
_SCRIPTS: list[tuple[str, re.Pattern]] = [
    ("cyrillic", re.compile(r"[\u0400-\u04FF]")),
    ("el", re.compile(r"[\u0370-\u03FF]")),
    ("he", re.compile(r"[\u0590-\u05FF]")),
    ("ar", re.compile(r"[\u0600-\u06FF]")),
    ("th", re.compile(r"[\u0E00-\u0E7F]")),
    ("ko", re.compile(r"[\uAC00-\uD7AF\u1100-\u11FF]")),
    ("ja", re.compile(r"[\u3040-\u30FF]")),
    ("zh", re.compile(r"[\u4E00-\u9FFF]")),
]

# Region or legacy tags that do not share a prefix with their language.
_REGION_ALIASES = {
    "ua": "uk",
    "jp": "ja",
    "kr": "ko",
    "cn": "zh",
    "tw": "zh",
    "gr": "el",
    "il": "he",
    "iw": "he",
    "se": "sv",
    "dk": "da",
    "cz": "cs",
    "vn": "vi",
    "br": "pt",
    "nb": "no",
    "nn": "no",
}

# ISO 639-2 (T and B forms) for the languages above, as some clients report them.
_ISO639_2 = {
    "ara": "ar",
    "bul": "bg",
    "ces": "cs",
    "cze": "cs",
    "chi": "zh",
    "dan": "da",
    "deu": "de",
    "dut": "nl",
    "ell": "el",
    "eng": "en",
    "fil": "tl",
    "fin": "fi",
    "fra": "fr",
    "fre": "fr",
    "ger": "de",
    "gre": "el",
    "heb": "he",
    "hin": "hi",
    "hun": "hu",
    "ita": "it",
    "jpn": "ja",
    "kor": "ko",
    "nld": "nl",
    "nob": "no",
    "nor": "no",
    "pol": "pl",
    "por": "pt",
    "ron": "ro",
    "rum": "ro",
    "rus": "ru",
    "spa": "es",
    "swe": "sv",
    "tha": "th",
    "tur": "tr",
    "ukr": "uk",
    "vie": "vi",
    "zho": "zh",
}

LANGUAGE_NAMES = {
    "ar": "Arabic",
    "bg": "Bulgarian",
    "cs": "Czech",
    "da": "Danish",
    "de": "German",
    "el": "Greek",
    "en": "English",
    "es": "Spanish",
    "fi": "Finnish",
    "fr": "French",
    "he": "Hebrew",
    "hi": "Hindi",
    "hu": "Hungarian",
    "it": "Italian",
    "ja": "Japanese",
    "ko": "Korean",
    "nl": "Dutch",
    "no": "Norwegian",
    "pl": "Polish",
    "pt": "Portuguese",
    "ro": "Romanian",
    "ru": "Russian",
    "sv": "Swedish",
    "th": "Thai",
    "tl": "Filipino",
    "tr": "Turkish",
    "uk": "Ukrainian",
    "vi": "Vietnamese",
    "zh": "Chinese",
}

_NAME_CODES = {name.lower(): code for code, name in LANGUAGE_NAMES.items()}


def normalize_language(code: str | None) -> str | None:
    """Fold a locale or language tag to a short lowercase language code.

    ``"en_US"`` → ``"en"``, ``"uk-UA"`` → ``"uk"``, ``"UA"`` → ``"uk"``,
    ``"eng"`` → ``"en"``, ``"german"`` → ``"de"``. Anything longer that is
    not a known three-letter code or language name keeps its first two
    letters. Returns ``None`` for empty or non-alphabetic input.
    """
    if not code:
        return None
    head = re.split(r"[_\-.@\s]", code.strip().lower(), maxsplit=1)[0]
    if len(head) < 2 or not head.isalpha():
        return None
    if len(head) == 2:
        return _REGION_ALIASES.get(head, head)
    return _ISO639_2.get(head) or _NAME_CODES.get(head) or head[:2]


def display_name(code: str) -> str:
    """Human-readable name for a language code, or the code itself."""
    normalized = normalize_language(code) or code
    return LANGUAGE_NAMES.get(normalized, normalized)


def detect_language(text: str) -> str | None:
    """Guess the language of ``text`` from the scripts it uses.

    Returns ``None`` when no single identifying script reaches
    ``SCRIPT_THRESHOLD`` of the (whitespace-stripped) text.
    """
    if not text:
        return None
    compact = "".join(text.split())
    if len(compact) < MIN_DETECT_LENGTH:
        return None

    total = len(compact)
    for language, pattern in _SCRIPTS:
        matches = pattern.findall(compact)
        if len(matches) / total < SCRIPT_THRESHOLD:
            continue
        if language == "cyrillic":
            return "uk" if any(ch in _UKRAINIAN_LETTERS for ch in compact) else "ru"
        return language
    return None


class LanguageResolver:
    """Resolve source and target languages for the chat pipeline.

    Args:
        preferences:      Live mapping of player id to language code. The
                          resolver only reads it; ``PlayerLanguages``
                          owns writes.
        default_language: Fallback for everything unknown.
        locale_lookup:    Optional callable returning the client locale
                          reported by the host for a player.
    """

    def __init__(
        self,
        preferences: Mapping[str, str],
        default_language: str,
        *,
        locale_lookup: Callable[[str], str | None] | None = None,
    ) -> None:
        self._preferences = preferences
        self.default_language = normalize_language(default_language) or "en"
        self._locale_lookup = locale_lookup

    def resolve_source(self, player_id: str, raw_text: str) -> str:
        """Language the sender wrote in.

        An explicit sender preference wins, then script detection, then the
        default.
        """
        explicit = normalize_language(self._preferences.get(player_id))
        if explicit:
            return explicit
        return detect_language(raw_text) or self.default_language

    def resolve_target(self, player_id: str) -> str:
        """Language ``player_id`` wants to read."""
        explicit = normalize_language(self._preferences.get(player_id))
        if explicit:
            return explicit
        if self._locale_lookup is not None:
            from_locale = normalize_language(self._locale_lookup(player_id))
            if from_locale:
                return from_locale
        return self.default_language
