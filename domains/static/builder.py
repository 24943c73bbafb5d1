"""
Static Response Builder: deterministic, localized terminal blocks.

Responsibility:
- Render canonical commands from the curated knowledge record
- Answer easter-egg commands with fixed strings
- Detect the contact intent and produce its hint / acknowledgment
- Render the recruiter panel

Nothing here calls a model: every output is a pure function of its inputs.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Callable

from domains.static.knowledge import DirectoryListing, KnowledgeRecord
from shared.models import CanonicalCommand

HEADERS: dict[str, dict[str, str]] = {
    "en": {
        "about": "> ABOUT",
        "skills": "> SKILLS",
        "experience": "> EXPERIENCE",
        "features": "> FEATURES",
        "tips": "> TIPS",
        "credits": "> CREDITS",
        "version": "> VERSION",
        "changelog": "> CHANGELOG",
        "faq": "> FAQ",
        "story": "> STORY",
        "github": "> GITHUB",
        "internship": "> INTERNSHIP",
        "languages": "> LANGUAGES",
        "technologies": "> TECHNOLOGIES",
        "education": "> EDUCATION",
    },
    "fi": {
        "about": "> TIETOA",
        "skills": "> TAIDOT",
        "experience": "> KOKEMUS",
        "features": "> OMINAISUUDET",
        "tips": "> VIHJEET",
        "credits": "> KREDIITIT",
        "version": "> VERSIO",
        "changelog": "> MUUTOSLOKI",
        "faq": "> UKK",
        "story": "> TARINA",
        "github": "> GITHUB",
        "internship": "> HARJOITTELU",
        "languages": "> KIELET",
        "technologies": "> TEKNOLOGIAT",
        "education": "> KOULUTUS",
    },
}

EASTER_EGGS: dict[CanonicalCommand, str] = {
    CanonicalCommand.BANDERSNATCH: "> WARNING: Narrative instability detected. You are not making these choices.",
    CanonicalCommand.CONTROL: "> You were never in control.",
    CanonicalCommand.MIRROR: "> The reflection blinked first.",
}

HELP_TEXT = "\n".join(
    [
        "Available commands:",
        " about | projects | skills | experience | features | tips | credits | version | changelog | faq | story",
        " github | internship | languages | technologies | education | dir | ls | bandersnatch | control | mirror",
    ]
)

CONTACT_PATTERN = re.compile(r"^\s*(contact|message)\b\s*[:\-]?\s*(.*)$", re.IGNORECASE | re.DOTALL)


def _headers(locale: str) -> dict[str, str]:
    return HEADERS.get(locale, HEADERS["en"])


def _bulleted(header: str, lines: list[str], prefix: str = "- ") -> str | None:
    if not lines:
        return None
    return "\n".join([header, *(f"{prefix}{line}" for line in lines)])


def _about(record: KnowledgeRecord, h: dict[str, str]) -> str | None:
    if not (record.name or record.role or record.based_in or record.skills):
        return None
    return "\n".join(
        [
            h["about"],
            f"Name: {record.name}",
            f"Role: {record.role}",
            f"Based in: {record.based_in}",
            f"Skills: {', '.join(record.skills)}",
        ]
    )


def _projects(record: KnowledgeRecord, h: dict[str, str]) -> str | None:
    if not record.projects:
        return None
    return "\n".join(
        f"> [{i}] {project.name}: {project.description}"
        for i, project in enumerate(record.projects, start=1)
    )


def _skills(record: KnowledgeRecord, h: dict[str, str]) -> str | None:
    if not record.skills:
        return None
    return "\n".join([h["skills"], f"Installed modules: {', '.join(record.skills)}"])


def _version(record: KnowledgeRecord, h: dict[str, str]) -> str | None:
    info = record.version_info
    if not (info.title or info.ui or info.server):
        return None
    return "\n".join([h["version"], info.title, info.ui, info.server])


def _faq(record: KnowledgeRecord, h: dict[str, str]) -> str | None:
    if not record.faq:
        return None
    lines = [h["faq"]]
    for item in record.faq:
        lines.append(f"Q: {item.q}")
        lines.append(f"A: {item.a}")
    return "\n".join(lines)


def _story(record: KnowledgeRecord, h: dict[str, str]) -> str | None:
    if not record.story:
        return None
    return "\n".join([h["story"], *record.story])


def _credits(record: KnowledgeRecord, h: dict[str, str]) -> str | None:
    if not record.credits_lines:
        return None
    return "\n".join([h["credits"], *record.credits_lines])


def _github(record: KnowledgeRecord, h: dict[str, str]) -> str | None:
    github = record.github
    if not (github.profile or github.repositories):
        return None
    return "\n".join(
        [
            h["github"],
            f" - Profile: {github.profile}",
            " - Repositories:",
            *(f"   - {repo}" for repo in github.repositories),
        ]
    )


def _internship(record: KnowledgeRecord, h: dict[str, str]) -> str | None:
    internship = record.internship
    if not (internship.company or internship.duration or internship.role):
        return None
    return "\n".join(
        [
            h["internship"],
            f" - Company: {internship.company}",
            f" - Duration: {internship.duration}",
            f" - Role: {internship.role}",
        ]
    )


def render_directory(directory: DirectoryListing, now: datetime) -> str | None:
    """DOS-style listing: one row per entry, timestamped with `now`."""
    if not (directory.volume or directory.path or directory.entries):
        return None
    stamp = f"{now.strftime('%d/%m/%Y')}  {now.strftime('%H:%M:%S')}"
    rows = [
        f" Volume in drive C is {directory.volume}",
        f" Directory of {directory.path}",
        "",
    ]
    for entry in directory.entries:
        if entry.type == "dir":
            rows.append(f"{stamp}    <DIR>          {entry.name}")
        else:
            rows.append(f"{stamp}                 {entry.size:>5} {entry.name}")
    return "\n".join(rows)


def _commands(record: KnowledgeRecord, locale: str) -> str:
    subject = record.name.split()[0] if record.name else ""
    if locale == "fi":
        target = f" ja välitän sen henkilölle {subject}" if subject else " ja välitän sen eteenpäin"
        return "\n".join(
            [
                "> YHTEYSTIEDOT",
                f" - Voit ottaa yhteyttä: kirjoita contact <viestisi>{target}.",
                "",
                "> HUOMAUTUS",
                " - Komentoja ei ole. Vain polkuja. Valitse viisaasti.",
            ]
        )
    target = f"To contact {subject}" if subject else "To get in touch"
    return "\n".join(
        [
            "> CONTACT",
            f" - {target}: type contact <your message> and I will pass it on.",
            "",
            "> NOTE",
            " - There are no commands. Only paths. Choose wisely.",
        ]
    )


_BlockRenderer = Callable[[KnowledgeRecord, dict[str, str]], str | None]

_BLOCKS: dict[CanonicalCommand, _BlockRenderer] = {
    CanonicalCommand.ABOUT: _about,
    CanonicalCommand.PROJECTS: _projects,
    CanonicalCommand.SKILLS: _skills,
    CanonicalCommand.EXPERIENCE: lambda r, h: _bulleted(h["experience"], r.experience),
    CanonicalCommand.FEATURES: lambda r, h: _bulleted(h["features"], r.features),
    CanonicalCommand.TIPS: lambda r, h: _bulleted(h["tips"], r.tips),
    CanonicalCommand.CREDITS: _credits,
    CanonicalCommand.VERSION: _version,
    CanonicalCommand.CHANGELOG: lambda r, h: _bulleted(h["changelog"], r.changelog),
    CanonicalCommand.FAQ: _faq,
    CanonicalCommand.STORY: _story,
    CanonicalCommand.GITHUB: _github,
    CanonicalCommand.INTERNSHIP: _internship,
    CanonicalCommand.LANGUAGES: lambda r, h: _bulleted(h["languages"], r.languages_list, " - "),
    CanonicalCommand.TECHNOLOGIES: lambda r, h: _bulleted(h["technologies"], r.technologies_list, " - "),
    CanonicalCommand.EDUCATION: lambda r, h: _bulleted(h["education"], r.education_list, " - "),
}


def build(
    command: CanonicalCommand,
    locale: str,
    record: KnowledgeRecord,
    now: datetime | None = None,
) -> str | None:
    """
    Render the static block for a canonical command.

    Returns None when the command has no static block (freeform, easter eggs)
    or when the record holds no data for it.
    """
    if command in (CanonicalCommand.DIR, CanonicalCommand.LS):
        return render_directory(record.directory, now or datetime.now())
    if command is CanonicalCommand.HELP:
        return HELP_TEXT
    if command is CanonicalCommand.COMMANDS:
        return _commands(record, locale)
    renderer = _BLOCKS.get(command)
    if renderer is None:
        return None
    return renderer(record, _headers(locale))


def easter_egg(command: CanonicalCommand) -> str | None:
    return EASTER_EGGS.get(command)


def match_contact(text: str) -> str | None:
    """Return the contact payload (possibly empty) when text is a contact request, else None."""
    match = CONTACT_PATTERN.match(text or "")
    if not match:
        return None
    return match.group(2).strip()


def contact_hint(locale: str, subject: str = "") -> str:
    if locale == "fi":
        target = f"Välitän viestin henkilölle {subject}." if subject else "Välitän viestin eteenpäin."
        return f"Jos haluat ottaa yhteyttä, kirjoita: contact <viestisi>. {target}"
    target = f"I'll pass it on to {subject}." if subject else "I'll pass it on."
    return f"If you'd like to get in touch, type: contact <your message>. {target}"


def contact_ack(locale: str, subject: str = "") -> str:
    if locale == "fi":
        target = f"henkilölle {subject}" if subject else "eteenpäin"
        return f"Selvä. Välitän tämän viestin {target}. Lisää yhteystietosi, jos haluat vastauksen."
    target = f"to {subject}" if subject else "on"
    return f"Got it. I'll pass this message {target}. Include your contact info if you'd like a reply."


def contact_forward(conversation_id: str, locale: str, payload: str) -> str:
    """Operator-channel text for a forwarded contact message."""
    return f"📩 CONTACT | cid:{conversation_id} | lang:{locale}\n{payload}"


def recruiter_message(locale: str, record: KnowledgeRecord) -> str:
    """The recruiter-mode panel."""
    rule = "> ==============================="
    if locale == "fi":
        lines = [
            "> PÄÄSY MYÖNNETTY: REKRYTOIJAN TILA",
            rule,
            f"> Nimi: {record.name}",
            f"> Rooli: {record.role}",
            f"> Sijainti: {record.based_in}",
            f"> Yhteys: {record.recruiter.contact}",
            f"> GitHub: {record.github.profile}",
            f"> CV: {record.recruiter.resume}",
            rule,
            "> Järjestelmähuomautus: Vain harvat näkevät tämän tilan. Sinä olet yksi heistä.",
            "> Yhteys katkaistu.",
        ]
    else:
        lines = [
            "> ACCESS GRANTED: RECRUITER MODE",
            rule,
            f"> Name: {record.name}",
            f"> Role: {record.role}",
            f"> Location: {record.based_in}",
            f"> Contact: {record.recruiter.contact}",
            f"> GitHub: {record.github.profile}",
            f"> Resume: {record.recruiter.resume}",
            rule,
            "> System note: Only select few see this mode. You're one of them.",
            "> End of transmission.",
        ]
    return "\n" + "\n".join(lines) + "\n"
