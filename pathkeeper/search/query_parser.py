"""Search query syntax.

    fire damage          plain terms, scored
    "magic missile"      phrase, boosts documents containing it
    +evocation           required term
    -cantrip             excluded term
    *                    everything
"""

import re

from .models import ParsedQuery

PHRASE_PATTERN = re.compile(r'"([^"]*)"')
WORD_PATTERN = re.compile(r"\w+")


def _words(token: str) -> list[str]:
    return WORD_PATTERN.findall(token.lower())


def parse_query(text: str | None) -> ParsedQuery:
    """Split a query string into terms, phrases, required and excluded terms."""
    text = (text or "").strip()
    if not text or text == "*":
        return ParsedQuery(main_query="", has_wildcards=text == "*")

    phrases = [p.strip().lower() for p in PHRASE_PATTERN.findall(text) if p.strip()]
    remainder = PHRASE_PATTERN.sub(" ", text)

    parsed = ParsedQuery(
        phrases=phrases,
        has_wildcards="*" in remainder or "?" in remainder,
        is_fuzzy="~" in remainder,
    )
    plain = []
    for token in remainder.split():
        if token.startswith("+") and len(token) > 1:
            parsed.required_terms.extend(_words(token[1:]))
        elif token.startswith("-") and len(token) > 1:
            parsed.excluded_terms.extend(_words(token[1:]))
        else:
            words = _words(token)
            parsed.terms.extend(words)
            plain.extend(words)

    parsed.main_query = " ".join(plain + parsed.required_terms + parsed.phrases)
    return parsed
