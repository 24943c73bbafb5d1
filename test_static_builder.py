from __future__ import annotations

import json
from datetime import datetime

from domains.static import builder
from domains.static.knowledge import KnowledgeBase, KnowledgeRecord
from shared.config import DEFAULT_KNOWLEDGE_DIR
from shared.models import CanonicalCommand

NOW = datetime(2024, 3, 5, 14, 7, 9)


def _record(**overrides) -> KnowledgeRecord:
    base = {
        "name": "Ada Example",
        "role": "Backend Developer",
        "based_in": "Helsinki",
        "skills": ["Python", "SQL"],
        "projects": [{"name": "Atlas", "description": "Map tiles"}, {"name": "Bolt", "description": "Queue"}],
        "experience": ["Built APIs"],
        "faq": [{"q": "Remote?", "a": "Yes."}],
        "languagesList": ["English"],
        "directory": {
            "volume": "PORTFOLIO",
            "path": "C:\\USERS\\ADA",
            "entries": [{"type": "dir", "name": "PROJECTS"}, {"type": "file", "name": "CV.PDF", "size": 512}],
        },
    }
    base.update(overrides)
    return KnowledgeRecord.model_validate(base)


def test_about_block_uses_locale_header():
    record = _record()
    en = builder.build(CanonicalCommand.ABOUT, "en", record)
    fi = builder.build(CanonicalCommand.ABOUT, "fi", record)

    assert en.splitlines()[0] == "> ABOUT"
    assert fi.splitlines()[0] == "> TIETOA"
    assert "Name: Ada Example" in en
    assert "Skills: Python, SQL" in en


def test_projects_are_numbered_without_header():
    text = builder.build(CanonicalCommand.PROJECTS, "en", _record())
    assert text == "> [1] Atlas: Map tiles\n> [2] Bolt: Queue"


def test_faq_renders_question_answer_pairs():
    text = builder.build(CanonicalCommand.FAQ, "fi", _record())
    assert text == "> UKK\nQ: Remote?\nA: Yes."


def test_empty_block_returns_none():
    record = _record(experience=[], tips=[])
    assert builder.build(CanonicalCommand.EXPERIENCE, "en", record) is None
    assert builder.build(CanonicalCommand.TIPS, "en", record) is None
    assert builder.build(CanonicalCommand.ABOUT, "en", KnowledgeRecord()) is None


def test_freeform_and_easter_eggs_have_no_static_block():
    record = _record()
    assert builder.build(CanonicalCommand.FREEFORM, "en", record) is None
    assert builder.build(CanonicalCommand.MIRROR, "en", record) is None


def test_directory_listing_is_dos_style():
    text = builder.build(CanonicalCommand.DIR, "en", _record(), now=NOW)
    lines = text.splitlines()

    assert lines[0] == " Volume in drive C is PORTFOLIO"
    assert lines[1] == " Directory of C:\\USERS\\ADA"
    assert lines[2] == ""
    assert lines[3] == "05/03/2024  14:07:09    <DIR>          PROJECTS"
    assert lines[4] == "05/03/2024  14:07:09                   512 CV.PDF"
    assert builder.build(CanonicalCommand.LS, "en", _record(), now=NOW) == text


def test_help_is_identical_in_every_locale():
    record = _record()
    assert builder.build(CanonicalCommand.HELP, "en", record) == builder.build(CanonicalCommand.HELP, "fi", record)


def test_commands_block_is_localized():
    record = _record()
    assert builder.build(CanonicalCommand.COMMANDS, "en", record).startswith("> CONTACT")
    fi = builder.build(CanonicalCommand.COMMANDS, "fi", record)
    assert fi.startswith("> YHTEYSTIEDOT")
    assert "> HUOMAUTUS" in fi


def test_easter_eggs_are_invariant_strings():
    assert builder.easter_egg(CanonicalCommand.CONTROL) == "> You were never in control."
    assert builder.easter_egg(CanonicalCommand.MIRROR) == "> The reflection blinked first."
    assert builder.easter_egg(CanonicalCommand.BANDERSNATCH).startswith("> WARNING")
    assert builder.easter_egg(CanonicalCommand.ABOUT) is None


def test_contact_intent_detection():
    assert builder.match_contact("contact") == ""
    assert builder.match_contact("Contact: hi there") == "hi there"
    assert builder.match_contact("message - call me") == "call me"
    assert builder.match_contact("contactless payments?") is None
    assert builder.match_contact("how do I contact him") is None


def test_contact_texts_mention_subject_and_locale():
    assert "contact <your message>" in builder.contact_hint("en", "Ada")
    assert "Ada" in builder.contact_ack("en", "Ada")
    assert builder.contact_hint("fi", "Ada").startswith("Jos haluat ottaa yhteyttä")
    assert builder.contact_forward("abc", "fi", "hello") == "📩 CONTACT | cid:abc | lang:fi\nhello"


def test_recruiter_message_is_localized():
    record = _record(recruiter={"contact": "ada@example.com", "resume": "https://example.com/cv.pdf"})
    en = builder.recruiter_message("en", record)
    fi = builder.recruiter_message("fi", record)

    assert "> ACCESS GRANTED: RECRUITER MODE" in en
    assert "> Contact: ada@example.com" in en
    assert "> PÄÄSY MYÖNNETTY: REKRYTOIJAN TILA" in fi
    assert "> CV: https://example.com/cv.pdf" in fi


def test_knowledge_base_falls_back_to_default_locale(tmp_path):
    (tmp_path / "knowledge.en.json").write_text(json.dumps({"name": "Ada"}), encoding="utf-8")
    knowledge = KnowledgeBase(tmp_path)

    assert knowledge.load("fi").name == "Ada"
    assert knowledge.subject_name("fallback") == "Ada"


def test_knowledge_base_returns_empty_record_when_nothing_loads(tmp_path):
    (tmp_path / "knowledge.en.json").write_text("{not json", encoding="utf-8")
    knowledge = KnowledgeBase(tmp_path)

    assert knowledge.load("en") == KnowledgeRecord()
    assert knowledge.subject_name("Someone") == "Someone"


def test_bundled_knowledge_files_cover_both_locales():
    knowledge = KnowledgeBase(DEFAULT_KNOWLEDGE_DIR)
    en = knowledge.load("en")
    fi = knowledge.load("fi")

    assert en.name and fi.name
    assert builder.build(CanonicalCommand.SKILLS, "fi", fi).startswith("> TAIDOT")
    assert en.recruiter.contact
