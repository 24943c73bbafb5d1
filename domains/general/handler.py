"""
General Domain Handler: Grounded free-form answers.

Responsibility:
- Build the instruction set (format, persona, grounding policy)
- Pick the sampling temperature from grounding presence
- Map recent conversation history to chat roles
- Sanitize model output before it reaches the terminal

Performance:
- Uses ModelSelector for connection pooling, retries, and reliability
"""

import logging
import re

from domains.static.knowledge import KnowledgeRecord
from models.selector import ModelSelector
from shared.errors import ConfigurationMissing, ProviderFailure
from shared.models import CompletionResult, HistoryEntry, ModelPolicy

logger = logging.getLogger(__name__)

OFFLINE_NOTICE = (
    "> AI is offline (no API key configured). Static commands still work. "
    "Set the key to enable dynamic replies."
)
FAILURE_NOTICE = "> AI processing failed. Please try again shortly."
EMPTY_NOTICE = "> (no response)"

GROUNDED_TEMPERATURE = 0.25
UNGROUNDED_TEMPERATURE = 0.65
HISTORY_WINDOW = 6

_EMPHASIZED_PROMPT = re.compile(r"^\s*\*{1,3}\s*([^\n]*?)\s*\*{1,3}\s*", re.DOTALL)
_SHELL_PROMPT = re.compile(r"^\s*C:\\[^\n>]*>\s*", re.IGNORECASE)
_BLOCKQUOTE = re.compile(r"^\s*>\s+")


def sanitize_output(text: str) -> str:
    """Strip echoed shell prompts and a leading blockquote marker."""
    out = text or ""
    emphasized = _EMPHASIZED_PROMPT.match(out)
    if emphasized and "C:\\" in emphasized.group(1) and ">" in emphasized.group(1):
        out = out[emphasized.end():]
    out = _SHELL_PROMPT.sub("", out, count=1)
    out = _BLOCKQUOTE.sub("", out, count=1)
    return out.lstrip()


def history_role(author: str) -> str:
    if author in ("bot", "admin") or author.startswith("bridge:"):
        return "assistant"
    return "user"


def pick_temperature(grounding_context: str) -> float:
    return GROUNDED_TEMPERATURE if grounding_context.strip() else UNGROUNDED_TEMPERATURE


class CompletionHandler:
    """Answers free-form questions about the subject."""

    def __init__(
        self,
        model_selector: ModelSelector,
        model_name: str = "gpt-4o-mini",
        subject_name: str = "",
        timeout_seconds: float = 60.0,
        max_retries: int = 2,
    ):
        self.model_selector = model_selector
        self.model_name = model_name
        self.subject_name = subject_name
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries

    def policy_for(self, grounding_context: str) -> ModelPolicy:
        return ModelPolicy(
            model_name=self.model_name,
            temperature=pick_temperature(grounding_context),
            timeout_seconds=self.timeout_seconds,
            max_retries=self.max_retries,
            max_tokens=900,
            presence_penalty=0.2,
            frequency_penalty=0.2,
        )

    def build_instructions(self, locale: str, grounding_context: str, record: KnowledgeRecord) -> str:
        subject = record.name or self.subject_name or "the portfolio owner"
        language = "Finnish" if locale == "fi" else "English"
        if grounding_context.strip():
            context_block = (
                "Retrieved knowledge base snippets (authoritative, up-to-date; always prefer these):\n"
                f"{grounding_context}\n\n"
                "Only answer using these snippets. If the info is missing, say you don't know."
            )
        else:
            context_block = (
                f"Curated context about {subject} (lower confidence): {record.to_prompt_json()}\n"
                "Use this context to answer accurately. If unsure, say you don't know."
            )

        return "\n".join(
            [
                f"You are an interactive terminal for {subject}'s portfolio.",
                "Your tone is calm, confident and friendly, professional enough for potential employers.",
                "",
                "### Output format",
                "- Reply with plain lines of text.",
                "- Never echo the user's prompt and never print a shell prompt such as C:\\>.",
                "- No markdown, code fences or timestamps unless explicitly requested.",
                "",
                "### Persona",
                f"- Always refer to {subject} in the third person. Never describe them with 'I' or 'me'.",
                "- If a source is written in the first person, rewrite it into the third person.",
                "- When answering in Finnish, use 'hän' and 'hänen' (never 'minä' or 'mun').",
                f"- Pronouns such as 'he', 'his' or 'him' refer to {subject} unless context says otherwise.",
                "",
                "### Language",
                f"- Answer in {language}.",
                "",
                "### Contact",
                f"- If the user wants to reach {subject}, tell them to type: contact <message>.",
                "",
                "### Context",
                context_block,
            ]
        )

    def build_messages(
        self,
        query: str,
        locale: str,
        grounding_context: str,
        recent_history: list[HistoryEntry],
        record: KnowledgeRecord,
    ) -> list[dict[str, str]]:
        messages = [{"role": "system", "content": self.build_instructions(locale, grounding_context, record)}]
        for entry in recent_history[-HISTORY_WINDOW:]:
            messages.append({"role": history_role(entry.author), "content": entry.text})
        messages.append({"role": "user", "content": query})
        return messages

    async def complete(
        self,
        query: str,
        locale: str,
        grounding_context: str,
        recent_history: list[HistoryEntry],
        record: KnowledgeRecord,
        session_id: str | None = None,
    ) -> CompletionResult:
        """Generate a reply. Provider problems come back as textual status replies."""
        grounded = bool(grounding_context.strip())
        if not self.model_selector.is_configured:
            return CompletionResult(text=OFFLINE_NOTICE, status="unavailable", grounded=grounded)

        messages = self.build_messages(query, locale, grounding_context, recent_history, record)
        try:
            raw = await self.model_selector.generate(
                messages,
                self.policy_for(grounding_context),
                session_id=session_id,
            )
        except ConfigurationMissing:
            return CompletionResult(text=OFFLINE_NOTICE, status="unavailable", grounded=grounded)
        except ProviderFailure as e:
            logger.error("Completion failed: %s", e)
            return CompletionResult(text=FAILURE_NOTICE, status="failed", grounded=grounded)

        text = sanitize_output(str(raw)) or EMPTY_NOTICE
        return CompletionResult(text=text, status="ok", grounded=grounded)
