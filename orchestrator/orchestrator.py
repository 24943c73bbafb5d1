"""
Orchestrator: Command pipeline router.

Responsibility:
- Resolve the command and effective locale
- Route to static block, contact intent, easter egg, or grounded completion
- Log both sides of the exchange on the conversation

Prohibitions:
- No provider calls of its own (delegates to assembler and completion handler)
- No persistent state
"""

import logging
from datetime import datetime
from typing import Callable

from conversation.manager import ConversationService, new_conversation_id
from domains.general.handler import CompletionHandler
from domains.static import builder
from domains.static.knowledge import KnowledgeBase
from entry.telegram import TelegramReplyBridge
from intent.resolver import resolve
from observability.best_effort import BestEffort
from observability.logger import Observability
from retrieval.assembler import ContextAssembler
from shared.errors import RequestValidationError
from shared.models import CommandResult

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 6


class CommandOrchestrator:
    """Turns one terminal input into one reply."""

    def __init__(
        self,
        knowledge: KnowledgeBase,
        conversations: ConversationService,
        assembler: ContextAssembler,
        completion: CompletionHandler,
        best_effort: BestEffort,
        bridge: TelegramReplyBridge | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.knowledge = knowledge
        self.conversations = conversations
        self.assembler = assembler
        self.completion = completion
        self.best_effort = best_effort
        self.bridge = bridge
        self._clock = clock

    async def handle(
        self,
        input_text: str | None,
        locale: str | None = None,
        conversation_id: str | None = None,
    ) -> CommandResult:
        """
        Resolve and answer one input.

        Raises RequestValidationError for missing input; every other
        failure comes back as a textual reply.
        """
        if not input_text or not str(input_text).strip():
            raise RequestValidationError("No input provided")

        cid = str(conversation_id or new_conversation_id())
        resolved = resolve(str(input_text), locale)
        record = self.knowledge.load(resolved.locale)
        obs = Observability(cid, locale=resolved.locale, command=resolved.command.value)
        obs.log_event("command_resolved", {"override": resolved.override_locale})

        prior_history = self.conversations.store.recent(cid, HISTORY_WINDOW)
        self.conversations.log_message(cid, "user", resolved.raw_text)

        static_text = builder.build(resolved.command, resolved.locale, record, now=self._clock())
        if static_text is not None:
            return self._reply(obs, cid, static_text, route="static")

        contact_payload = builder.match_contact(resolved.processed_text)
        if contact_payload is not None:
            subject = record.name.split()[0] if record.name else ""
            if not contact_payload:
                return self._reply(obs, cid, builder.contact_hint(resolved.locale, subject), route="contact")
            self._forward_contact(cid, resolved.locale, contact_payload)
            return self._reply(obs, cid, builder.contact_ack(resolved.locale, subject), route="contact")

        egg = builder.easter_egg(resolved.command)
        if egg is not None:
            return self._reply(obs, cid, egg, route="easter_egg")

        grounding = await self.assembler.assemble(resolved.processed_text, resolved.locale, session_id=cid)
        result = await self.completion.complete(
            resolved.processed_text,
            resolved.locale,
            grounding,
            prior_history,
            record,
            session_id=cid,
        )
        obs.bind(grounded=result.grounded)
        return self._reply(obs, cid, result.text, route="ai", status=result.status)

    def _forward_contact(self, cid: str, locale: str, payload: str) -> None:
        if self.bridge is None:
            logger.warning("Contact message for %s dropped: no operator bridge configured", cid)
            return
        self.best_effort.fire(
            "contact_forward",
            self.bridge.send_message(builder.contact_forward(cid, locale, payload)),
            conversation_id=cid,
        )

    def _reply(self, obs: Observability, cid: str, text: str, route: str, status: str = "ok") -> CommandResult:
        obs.bind(route=route).log_event("command_answered", {"status": status, "chars": len(text)})
        self.conversations.log_message(cid, "bot", text)
        return CommandResult(response_text=text, conversation_id=cid, status=status, route=route)
