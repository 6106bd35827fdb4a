"""Output validator for provider responses.

``OutputValidator`` takes raw model text from a provider client and decides
whether it can be shown to a player as the translation of a chat line.
Unsuitable output is rejected (returning ``None``); the provider client
turns that into a transient ``ProviderError`` so the dispatcher can retry
or fail over.

Validation pipeline (applied in order)
---------------------------------------
1. **Empty check**: blank string → ``None``.
2. **Preamble stripping**: chatty models sometimes prefix the answer with
   ``Translation:`` or ``Here is the translation:``; the label is removed.
3. **Multi-line check**: chat lines are single-line. If the source had no
   newline, strict mode rejects; non-strict takes the first non-empty line.
4. **Quote stripping**: models often wrap the answer in ``"..."`` even
   when told not to. Quotes the source itself did not have are removed.
5. **Max-length enforcement**: output far longer than the source usually
   means the model explained instead of translating. Strict mode rejects;
   non-strict truncates.
6. **Final empty check**.
"""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

_PREAMBLE = re.compile(
    r"^(?:here is the translation|here's the translation|translation|translated text)\s*:\s*",
    re.IGNORECASE,
)

_QUOTES = "\"'«»“”„"


class OutputValidator:
    """Validates and cleans raw provider output.

    Attributes:
        _strict_mode:  When ``True``, any constraint violation → ``None``.
        _max_chars:    Absolute ceiling on output length.
        _max_ratio:    Output may be at most this many times the source
                       length (plus a small allowance for short lines).
    """

    def __init__(
        self, *, strict_mode: bool = True, max_chars: int = 512, max_ratio: float = 4.0
    ) -> None:
        self._strict_mode = strict_mode
        self._max_chars = max_chars
        self._max_ratio = max_ratio

    def _limit_for(self, source: str) -> int:
        return min(self._max_chars, int(len(source) * self._max_ratio) + 32)

    def validate(self, raw: str | None, source: str) -> str | None:
        """Validate and clean ``raw`` as a translation of ``source``.

        Args:
            raw:    Text returned by the provider.
            source: The text that was sent for translation.

        Returns:
            Cleaned translation, or ``None`` if the output is unusable.
        """
        # ── 1. Empty check ────────────────────────────────────────────────────
        if not raw or not raw.strip():
            return None

        text = raw.strip()

        # ── 2. Preamble stripping ─────────────────────────────────────────────
        text = _PREAMBLE.sub("", text, count=1)

        # ── 3. Multi-line check ───────────────────────────────────────────────
        if "\n" in text and "\n" not in source:
            if self._strict_mode:
                logger.warning("OutputValidator: strict_mode rejected multi-line output.")
                return None
            text = next((line.strip() for line in text.splitlines() if line.strip()), "")

        # ── 4. Quote stripping ────────────────────────────────────────────────
        if len(text) >= 2 and text[0] in _QUOTES and text[-1] in _QUOTES:
            if not (source[:1] in _QUOTES and source[-1:] in _QUOTES):
                text = text[1:-1].strip()

        # ── 5. Max-length enforcement ─────────────────────────────────────────
        limit = self._limit_for(source)
        if len(text) > limit:
            if self._strict_mode:
                logger.warning(
                    "OutputValidator: rejected output exceeding length limit (%d > %d).",
                    len(text),
                    limit,
                )
                return None
            text = text[:limit].rstrip()

        # ── 6. Final empty check ─────────────────────────────────────────────
        return text if text else None
