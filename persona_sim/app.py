from __future__ import annotations

import argparse
import asyncio
import logging
import uuid

from .config import Settings
from .errors import PersonaEngineError, UpstreamUnavailable
from .personas.catalog import load_persona_catalog
from .personas.selector import CatalogPersonaSelector, SelectionHints
from .services.responder import build_responder
from .session.engine import PersonaSessionEngine
from .session.models import BusinessContext, ConversationContext
from .store.factory import build_store

logger = logging.getLogger("persona_sim")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def build_engine(settings: Settings) -> PersonaSessionEngine:
    catalog = load_persona_catalog(settings.persona_catalog_path)
    return PersonaSessionEngine(
        settings=settings,
        store=build_store(settings),
        selector=CatalogPersonaSelector(catalog),
        responder=build_responder(settings, catalog),
        catalog=catalog,
    )


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="persona-sim", description="Practice an IT-support conversation.")
    parser.add_argument("--user", default="trainee", help="trainee id used for persona memory")
    parser.add_argument("--ticket-type", default="email_connectivity_problems")
    parser.add_argument("--category", default="email")
    parser.add_argument("--priority", default="medium", choices=["low", "medium", "high", "critical"])
    parser.add_argument("--complexity", default="moderate", choices=["simple", "moderate", "complex"])
    parser.add_argument("--persona", default=None, help="force a persona id from the catalog")
    return parser.parse_args(argv)


async def _run_console(settings: Settings, args: argparse.Namespace) -> None:
    context = ConversationContext(
        ticket_type=args.ticket_type,
        ticket_category=args.category,
        complexity=args.complexity,
        business_context=BusinessContext(priority=args.priority),
    )
    session_id = uuid.uuid4().hex
    async with build_engine(settings) as engine:
        session = await engine.start_session(
            session_id,
            args.user,
            context,
            SelectionHints(override_persona=args.persona),
        )
        persona = engine.catalog.get(session.persona_id)
        print(f"Customer: {persona.name if persona else session.persona_id} ({session.state.current_mood})")
        print("Type your replies. /resolved or /end closes the ticket.")

        resolved = False
        while True:
            line = (await asyncio.to_thread(input, "you> ")).strip()
            if not line:
                continue
            if line in {"/resolved", "/end"}:
                resolved = line == "/resolved"
                break
            try:
                result = await engine.process_interaction(session_id, line)
            except UpstreamUnavailable as exc:
                print(f"[no reply: {exc}; send the message again]")
                continue
            print(f"customer> {result.response}")
            print(
                f"  [{result.interaction.interaction_type}] mood={result.state.current_mood} "
                f"frustration={result.state.frustration_level} trust={result.state.trust_level}"
            )

        analytics = await engine.end_session(session_id, resolved)
        print(f"Overall performance: {analytics.overall_performance:.2f}/10")
        for recommendation in analytics.recommendations:
            print(f"  - {recommendation}")


def main(argv: list[str] | None = None) -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    settings.validate()
    args = _parse_args(argv)
    try:
        asyncio.run(_run_console(settings, args))
    except (KeyboardInterrupt, EOFError):
        logger.info("Shutdown requested, exiting.")
    except PersonaEngineError as exc:
        logger.error("Session aborted: %s", exc)
        raise SystemExit(1) from exc
