"""
Command Resolver: deterministic text → canonical command mapping.

Responsibility:
- Detect a one-off '<locale>: ' override prefix
- Normalize the remaining text (trim + lowercase)
- Map exact canonical keys and localized aliases to CanonicalCommand
- Pick the effective locale

Resolution is pure: it never reads or writes any stored preference.
"""

from __future__ import annotations

import re

from shared.models import (
    DEFAULT_LOCALE,
    SUPPORTED_LOCALES,
    CanonicalCommand,
    ResolvedCommand,
)

_LOCALE_OVERRIDE_PATTERN = re.compile(r"^\s*(en|fi)\s*:\s*(.*)$", re.IGNORECASE | re.DOTALL)

# Finnish synonyms for canonical commands.
FI_ALIASES: dict[CanonicalCommand, tuple[str, ...]] = {
    CanonicalCommand.ABOUT: ("tietoa",),
    CanonicalCommand.PROJECTS: ("projektit",),
    CanonicalCommand.SKILLS: ("taidot",),
    CanonicalCommand.EXPERIENCE: ("kokemus",),
    CanonicalCommand.FEATURES: ("ominaisuudet",),
    CanonicalCommand.TIPS: ("vinkit",),
    CanonicalCommand.CREDITS: ("tekijät", "krediitit"),
    CanonicalCommand.VERSION: ("versio", "ver"),
    CanonicalCommand.CHANGELOG: ("muutokset",),
    CanonicalCommand.FAQ: ("ukk", "kysymykset"),
    CanonicalCommand.STORY: ("tarina",),
    CanonicalCommand.GITHUB: ("github",),
    CanonicalCommand.INTERNSHIP: ("harjoittelu",),
    CanonicalCommand.LANGUAGES: ("kielet",),
    CanonicalCommand.TECHNOLOGIES: ("teknologiat",),
    CanonicalCommand.EDUCATION: ("koulutus",),
    CanonicalCommand.DIR: ("hakemisto",),
    CanonicalCommand.LS: ("lista",),
    CanonicalCommand.COMMANDS: ("komennot",),
}

_CANONICAL_TABLE: dict[str, CanonicalCommand] = {
    command.value: command for command in CanonicalCommand if command is not CanonicalCommand.FREEFORM
}

_ALIAS_TABLE: dict[str, tuple[CanonicalCommand, str]] = {
    alias: (command, "fi")
    for command, aliases in FI_ALIASES.items()
    for alias in aliases
}


def normalize_locale(value: str | None) -> str | None:
    """Return a supported locale code, or None for anything else."""
    if not value:
        return None
    code = str(value).strip().lower()
    return code if code in SUPPORTED_LOCALES else None


def parse_locale_override(raw_input: str) -> tuple[str | None, str]:
    """Split a leading 'en: ' / 'fi: ' tag from the input."""
    match = _LOCALE_OVERRIDE_PATTERN.match(raw_input or "")
    if not match:
        return None, raw_input or ""
    return match.group(1).lower(), match.group(2)


def lookup_command(text: str) -> tuple[CanonicalCommand, str | None]:
    """Map normalized text to (command, inferred_locale)."""
    command = _CANONICAL_TABLE.get(text)
    if command is not None:
        return command, None
    alias_hit = _ALIAS_TABLE.get(text)
    if alias_hit is not None:
        return alias_hit
    return CanonicalCommand.FREEFORM, None


def resolve(raw_input: str, explicit_locale: str | None = None) -> ResolvedCommand:
    """
    Resolve raw terminal input.

    Locale precedence: one-off override > caller locale > alias-inferred > default.
    """
    override_locale, stripped = parse_locale_override(raw_input)
    normalized = stripped.strip().lower()
    command, inferred_locale = lookup_command(normalized)

    locale = (
        override_locale
        or normalize_locale(explicit_locale)
        or inferred_locale
        or DEFAULT_LOCALE
    )
    return ResolvedCommand(
        command=command,
        locale=locale,
        processed_text=stripped.strip(),
        raw_text=raw_input or "",
        override_locale=override_locale,
    )
