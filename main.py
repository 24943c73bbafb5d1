"""
Terminal Command Orchestrator: Main CLI Entrypoint.

Wires all layers and runs the HTTP server or the interactive terminal.
"""

import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from conversation.bus import BroadcastBus
from conversation.manager import ConversationService, ConversationStore
from domains.general.handler import CompletionHandler
from domains.static.knowledge import KnowledgeBase
from entry.cli import CLIAdapter
from entry.telegram import InboundReply, TelegramReplyBridge
from memory.store import SupabaseVectorStore, VectorStore
from models.selector import ModelSelector
from observability.best_effort import BestEffort, NonCriticalErrors
from orchestrator.orchestrator import CommandOrchestrator
from ratelimit.limiter import AI_SCOPE, GLOBAL_SCOPE, RateLimiter, RateScope
from retrieval.assembler import ContextAssembler
from retrieval.ingestion import KnowledgeIngestor
from shared.config import Settings
from shared.errors import AppError
from shared.models import SUPPORTED_LOCALES

# ─── Configuration ──────────────────────────────────────────────

logger = logging.getLogger(__name__)

# Ensure local .env is loaded before reading runtime configuration.
load_dotenv(override=False)

# ─── Rich Console ───────────────────────────────────────────────

console = Console()


def setup_logging(level: str = "INFO") -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def build_rate_limiter(settings: Settings) -> RateLimiter:
    return RateLimiter(
        scopes=[
            RateScope(
                prefix=GLOBAL_SCOPE,
                window_ms=settings.rate_limit_window_ms,
                max_requests=settings.rate_limit_max,
            ),
            RateScope(
                prefix=AI_SCOPE,
                window_ms=settings.rate_limit_ai_window_ms,
                max_requests=settings.rate_limit_ai_max,
                message="Too many AI requests. Please slow down and try again shortly.",
            ),
        ],
        sweep_interval_seconds=settings.rate_limit_sweep_seconds,
    )


class AppContext:
    """Process-wide state: limiter buckets, histories, subscribers, provider clients."""

    def __init__(
        self,
        settings: Settings,
        knowledge: KnowledgeBase,
        model_selector: ModelSelector,
        store: VectorStore | None,
        bridge: TelegramReplyBridge | None,
        limiter: RateLimiter,
    ):
        self.settings = settings
        self.knowledge = knowledge
        self.model_selector = model_selector
        self.store = store
        self.bridge = bridge
        self.limiter = limiter

        self.errors = NonCriticalErrors()
        self.best_effort = BestEffort("conversation", self.errors)
        self.bus = BroadcastBus(self.best_effort)
        self.conversation_store = ConversationStore()
        self.conversations = ConversationService(
            self.conversation_store,
            self.bus,
            self.best_effort,
            mirror=bridge.mirror_out if bridge is not None else None,
        )

        subject_name = knowledge.subject_name(settings.subject_name)
        self.assembler = ContextAssembler(model_selector, store, subject_name=subject_name)
        self.completion = CompletionHandler(
            model_selector,
            model_name=settings.chat_model,
            subject_name=subject_name,
            timeout_seconds=settings.model_timeout_seconds,
            max_retries=settings.model_max_retries,
        )
        self.ingestor = KnowledgeIngestor(
            model_selector,
            store,
            table=settings.rag_table,
            chat_model=settings.chat_model,
        )
        self.orchestrator = CommandOrchestrator(
            knowledge=knowledge,
            conversations=self.conversations,
            assembler=self.assembler,
            completion=self.completion,
            best_effort=self.best_effort,
            bridge=bridge,
        )

    def on_bridge_reply(self, reply: InboundReply) -> None:
        self.conversations.log_message(reply.conversation_id, reply.author, reply.text)

    def bridge_status(self) -> dict:
        if self.bridge is None:
            return {"configured": False, "connected": False}
        return self.bridge.status()

    async def start(self) -> None:
        """Start background tasks on the running loop."""
        self.limiter.start()
        if self.store is not None and not await self.store.ping():
            logger.warning("Vector store did not answer the startup ping; retrieval may degrade")
        if self.bridge is not None:
            self.bridge.start(self.on_bridge_reply)

    async def aclose(self) -> None:
        """Stop background tasks, then always release provider and store clients."""
        try:
            await self.limiter.stop()
            if self.bridge is not None:
                await self.bridge.stop()
        finally:
            try:
                await self.best_effort.drain()
            finally:
                await self.model_selector.aclose()
                if self.store is not None:
                    await self.store.aclose()


def build_pipeline(
    settings: Settings | None = None,
    model_selector: ModelSelector | None = None,
    store: VectorStore | None = None,
    bridge: TelegramReplyBridge | None = None,
    knowledge: KnowledgeBase | None = None,
) -> AppContext:
    """Wire all layers together. Explicit arguments replace the settings-derived defaults."""
    settings = settings or Settings.from_env()
    return AppContext(
        settings=settings,
        knowledge=knowledge or KnowledgeBase(settings.knowledge_dir),
        model_selector=model_selector or ModelSelector.from_settings(settings),
        store=store if store is not None else SupabaseVectorStore.from_settings(settings),
        bridge=bridge if bridge is not None else TelegramReplyBridge.from_settings(settings),
        limiter=build_rate_limiter(settings),
    )


# ─── Commands ───────────────────────────────────────────────────

def run_server(settings: Settings) -> None:
    import uvicorn

    uvicorn.run("api.server:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())


async def run_terminal_loop(settings: Settings) -> None:
    """Interactive terminal over the same command pipeline."""
    context = build_pipeline(settings)
    cli = CLIAdapter()

    console.print(Panel(
        Text.from_markup(
            "[bold cyan]Terminal Command Orchestrator[/bold cyan]\n"
            f"[dim]Chat: {settings.chat_model} • AI: {'on' if context.model_selector.is_configured else 'off'}[/dim]\n"
            "[dim]Type 'help', a question, or 'exit' to quit. Prefix with 'fi:' for Finnish.[/dim]"
        ),
        title="⌨",
        border_style="cyan",
        box=box.DOUBLE,
    ))
    console.print(f"[dim]Conversation: {cli.session_id}[/dim]")
    console.print()

    await context.start()
    try:
        while True:
            try:
                raw_input = await asyncio.to_thread(console.input, "[bold cyan]C:\\> [/]")
            except (KeyboardInterrupt, EOFError):
                console.print("\n[dim]Goodbye! 👋[/dim]")
                break

            if raw_input.strip().lower() in ("exit", "quit", "q"):
                console.print("[dim]Goodbye! 👋[/dim]")
                break
            if not raw_input.strip():
                continue

            entry_request = cli.read_input(raw_input)
            try:
                with console.status("[yellow]Thinking...[/yellow]", spinner="dots"):
                    result = await context.orchestrator.handle(
                        entry_request.input_text,
                        locale=entry_request.locale,
                        conversation_id=entry_request.session_id,
                    )
            except AppError as e:
                console.print(f"[bold red]Error:[/] {e.message}")
                continue
            cli.render(result)
    finally:
        await context.aclose()


async def rag_query(settings: Settings, query: str, match_count: int, min_similarity: float) -> None:
    context = build_pipeline(settings)
    try:
        console.print(f"[bold]Query:[/] {query}")
        outcome = await context.assembler.search(query, match_count=match_count, min_similarity=min_similarity)
        table = Table(title=f"Results ({len(outcome.results)}) via {outcome.strategy_used}", box=box.SIMPLE)
        table.add_column("#", style="cyan")
        table.add_column("Similarity", style="magenta")
        table.add_column("Lang", style="green")
        table.add_column("Content", style="white")
        for i, result in enumerate(outcome.results, start=1):
            snippet = " ".join(result.content.split())[:120]
            table.add_row(str(i), f"{result.similarity_score:.3f}", result.language_tag or "-", snippet)
        console.print(table)
    finally:
        await context.aclose()


async def rag_seed(settings: Settings) -> int:
    context = build_pipeline(settings)
    try:
        records = {locale: context.knowledge.load(locale) for locale in SUPPORTED_LOCALES}
        inserted = await context.ingestor.seed_from_knowledge(records)
        console.print(f"[bold green]Done.[/] Inserted {inserted} rows into {settings.rag_table}.")
        return inserted
    finally:
        await context.aclose()


def main() -> None:
    """Entrypoint with CLI args."""
    settings = Settings.from_env()
    setup_logging(settings.log_level)

    parser = argparse.ArgumentParser(description="Terminal Command Orchestrator")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("serve", help="Run the HTTP API")
    subparsers.add_parser("run", help="Run the interactive terminal")

    query_parser = subparsers.add_parser("rag-query", help="Query the knowledge base")
    query_parser.add_argument("--q", default="What has he built?", help="Query text")
    query_parser.add_argument("--k", type=int, default=4, help="Max results")
    query_parser.add_argument("--min", type=float, default=0.3, help="Minimum similarity")

    subparsers.add_parser("rag-seed", help="Embed the curated knowledge records into the vector store")

    args = parser.parse_args()

    try:
        if args.command == "serve":
            run_server(settings)
        elif args.command == "rag-query":
            asyncio.run(rag_query(settings, args.q, args.k, args.min))
        elif args.command == "rag-seed":
            asyncio.run(rag_seed(settings))
        elif args.command == "run" or args.command is None:
            asyncio.run(run_terminal_loop(settings))
        else:
            parser.print_help()
    except AppError as e:
        console.print(f"[bold red]{type(e).__name__}:[/] {e.message}")
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
