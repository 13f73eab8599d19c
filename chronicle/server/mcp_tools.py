"""
Chronicle MCP Server.

Exposes journal question answering and tagging as MCP tools over stdio.

Expected MCP Tool Return Format:
{
    "ok": bool,
    ...                     # Tool-specific fields if ok is True
    "error": str,           # Present if ok is False
    "code": str             # Error code if ok is False
}
"""

import argparse
import logging
import os
import signal
from datetime import datetime
from pathlib import Path
from typing import Annotated, Any, Dict, List, Optional

from dotenv import load_dotenv
from fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import Field

from ..common.config import ensure_directories, load_config
from ..common.errors import ChronicleError, InvalidInput
from ..common.schemas import DateRange
from ..engine import JournalEngine

logger = logging.getLogger("chronicle.mcp")
load_dotenv()


def _parse_date(value: str, field: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise InvalidInput(f"{field} is not an ISO-8601 date: {value!r}")


def _date_range(start: Optional[str], end: Optional[str]) -> Optional[DateRange]:
    if not start and not end:
        return None
    if not start or not end:
        raise InvalidInput("Date range needs both context_start and context_end")
    return DateRange(start=_parse_date(start, "context_start"), end=_parse_date(end, "context_end"))


class ChronicleMCPApp:
    """MCP tool surface over a JournalEngine."""

    def __init__(self, engine: JournalEngine, server_name: str = "chronicle") -> None:
        """
        Args:
            engine: Engine serving every tool
            server_name: Advertised MCP server name
        """
        self.engine = engine
        self.mcp = FastMCP(name=server_name)

        # ---------- MCP Tools: Question Answering ---------- #
        @self.mcp.tool(
            name="ask_question",
            description=(
                "Answer a question from the user's journal. The answer cites journal "
                "entries with numbered markers like [1] that refer to the returned citations. "
                "Pass conversation_id to continue an earlier conversation."
            ),
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=False)
        )
        async def tool_ask_question(
            question: Annotated[str, Field(description="The question to answer")],
            conversation_id: Annotated[Optional[str], Field(description="Existing conversation to continue")] = None,
            max_context_entries: Annotated[Optional[int], Field(description="Maximum entries used as context")] = None,
            context_start: Annotated[Optional[str], Field(description="ISO date; only entries on or after it")] = None,
            context_end: Annotated[Optional[str], Field(description="ISO date; only entries on or before it")] = None,
            context_tags: Annotated[Optional[List[str]], Field(description="Only entries carrying any of these tags")] = None,
            provider: Annotated[Optional[str], Field(description="'ollama' or 'openai'")] = None,
            model: Annotated[Optional[str], Field(description="Model name for the provider")] = None,
        ) -> Dict[str, Any]:
            try:
                response = await self.engine.ask_question(
                    question,
                    conversation_id=conversation_id,
                    max_context_entries=max_context_entries,
                    context_date_range=_date_range(context_start, context_end),
                    context_tags=context_tags,
                    provider=provider,
                    model=model,
                )
            except ChronicleError as e:
                logger.warning("ask_question failed: %s", e.message)
                return e.to_dict()
            return {"ok": True, **response.model_dump(mode="json")}

        # ---------- MCP Tools: Conversations ---------- #
        @self.mcp.tool(
            name="list_conversations",
            description="List journal conversations, most recently updated first.",
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_list_conversations() -> Dict[str, Any]:
            try:
                conversations = self.engine.get_conversations_list()
            except ChronicleError as e:
                return e.to_dict()
            return {"ok": True, "conversations": [c.model_dump(mode="json") for c in conversations]}

        @self.mcp.tool(
            name="get_conversation_history",
            description="Get the messages of a conversation, oldest first.",
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_get_conversation_history(
            conversation_id: Annotated[str, Field(description="Conversation id")],
        ) -> Dict[str, Any]:
            try:
                messages = self.engine.get_conversation_history(conversation_id)
            except ChronicleError as e:
                return e.to_dict()
            return {
                "ok": True,
                "conversation_id": conversation_id,
                "messages": [m.model_dump(mode="json") for m in messages],
            }

        @self.mcp.tool(
            name="delete_conversation",
            description="Delete a conversation and its messages. Deleting twice is harmless.",
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=True)
        )
        async def tool_delete_conversation(
            conversation_id: Annotated[str, Field(description="Conversation id")],
        ) -> Dict[str, Any]:
            try:
                deleted = self.engine.delete_conversation(conversation_id)
            except ChronicleError as e:
                return e.to_dict()
            return {"ok": True, "deleted": deleted}

        # ---------- MCP Tools: Tagging ---------- #
        @self.mcp.tool(
            name="extract_tags",
            description=(
                "Suggest controlled-vocabulary tags for a journal entry (by entry_id) "
                "or for free text, with confidence and evidence spans."
            ),
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_extract_tags(
            entry_id: Annotated[Optional[str], Field(description="Entry to tag")] = None,
            text: Annotated[Optional[str], Field(description="Text to tag instead of the entry body")] = None,
            max_tags: Annotated[Optional[int], Field(description="Maximum suggestions")] = None,
            confidence_threshold: Annotated[Optional[float], Field(description="Minimum confidence, 0..1")] = None,
            provider: Annotated[Optional[str], Field(description="Enables model-assisted suggestions")] = None,
            model: Annotated[Optional[str], Field(description="Model for model-assisted suggestions")] = None,
        ) -> Dict[str, Any]:
            try:
                result = await self.engine.extract_tags_for_entry(
                    entry_id=entry_id,
                    text=text,
                    max_tags=max_tags,
                    confidence_threshold=confidence_threshold,
                    provider=provider,
                    model=model,
                )
            except ChronicleError as e:
                return e.to_dict()
            return {"ok": True, **result.model_dump(mode="json")}

        @self.mcp.tool(
            name="bulk_extract_tags",
            description="Suggest tags for many entries. One result per entry id, in order.",
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_bulk_extract_tags(
            entry_ids: Annotated[List[str], Field(description="Entries to tag")],
            max_tags: Annotated[Optional[int], Field(description="Maximum suggestions per entry")] = None,
            confidence_threshold: Annotated[Optional[float], Field(description="Minimum confidence, 0..1")] = None,
            provider: Annotated[Optional[str], Field(description="Enables model-assisted suggestions")] = None,
            model: Annotated[Optional[str], Field(description="Model for model-assisted suggestions")] = None,
        ) -> Dict[str, Any]:
            try:
                results = await self.engine.bulk_extract_tags(
                    entry_ids,
                    max_tags=max_tags,
                    confidence_threshold=confidence_threshold,
                    provider=provider,
                    model=model,
                )
            except ChronicleError as e:
                return e.to_dict()
            return {"ok": True, "results": [r.model_dump(mode="json") for r in results]}

        @self.mcp.tool(
            name="apply_tags",
            description="Accept vocabulary tags (names or aliases) for an entry.",
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=False)
        )
        async def tool_apply_tags(
            entry_id: Annotated[str, Field(description="Entry to tag")],
            tags: Annotated[List[str], Field(description="Tag names or aliases")],
            confidence: Annotated[Optional[float], Field(description="Confidence recorded with the tags")] = None,
        ) -> Dict[str, Any]:
            try:
                applied = self.engine.apply_tags(entry_id, tags, confidence)
            except ChronicleError as e:
                return e.to_dict()
            return {"ok": True, "entry_id": entry_id, "tags": applied}

        # ---------- MCP Tools: Vocabulary ---------- #
        @self.mcp.tool(
            name="create_custom_tag",
            description="Add a tag to the controlled vocabulary. Names and aliases must be unused.",
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=False)
        )
        async def tool_create_custom_tag(
            name: Annotated[str, Field(description="Canonical tag name")],
            description: Annotated[str, Field(description="What the tag covers")] = "",
            category: Annotated[str, Field(description="Tag category")] = "general",
            aliases: Annotated[Optional[List[str]], Field(description="Alternative names")] = None,
            parent: Annotated[Optional[str], Field(description="Parent tag name")] = None,
        ) -> Dict[str, Any]:
            try:
                tag = self.engine.create_custom_tag(name, description, category, aliases or (), parent)
            except ChronicleError as e:
                return e.to_dict()
            return {"ok": True, "tag": tag.model_dump(mode="json")}

        @self.mcp.tool(
            name="get_vocabulary",
            description="Get the controlled vocabulary with aliases and categories.",
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_get_vocabulary() -> Dict[str, Any]:
            try:
                vocabulary = self.engine.get_vocabulary()
            except ChronicleError as e:
                return e.to_dict()
            return {"ok": True, **vocabulary.model_dump(mode="json")}

        @self.mcp.tool(
            name="get_tag_statistics",
            description="Per-tag entry counts, share of entries and most recent use.",
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_get_tag_statistics() -> Dict[str, Any]:
            try:
                stats = self.engine.get_tag_statistics()
            except ChronicleError as e:
                return e.to_dict()
            return {"ok": True, "statistics": [s.model_dump(mode="json") for s in stats]}

        # ---------- MCP Tools: Health ---------- #
        @self.mcp.tool(
            name="health",
            description="Report journal size, vocabulary size and model reachability.",
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_health(
            provider: Annotated[Optional[str], Field(description="Provider to check")] = None,
            model: Annotated[Optional[str], Field(description="Model to check")] = None,
        ) -> Dict[str, Any]:
            try:
                return await self.engine.health(provider, model)
            except ChronicleError as e:
                return e.to_dict()

    def run(self) -> None:
        """Run the MCP server over stdio."""
        self.mcp.run(transport="stdio")


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the Chronicle MCP server (stdio).")
    parser.add_argument(
        "--server-name",
        default=os.getenv("MCP_SERVER_NAME", "chronicle"),
        help="Advertised MCP server name.",
    )
    parser.add_argument(
        "--config",
        default=os.getenv("CHRONICLE_CONFIG", None),
        help="Path to config.json (default: ~/.chronicle/config.json).",
    )
    parser.add_argument(
        "--db-path",
        default=None,
        help="Journal database path (overrides config).",
    )
    args = parser.parse_args()

    # stdout carries the MCP protocol; logs go to stderr
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    ensure_directories()
    config = load_config(Path(args.config) if args.config else None)
    if args.db_path:
        config.storage.db_path = args.db_path

    engine = JournalEngine(config)
    seeded = engine.vocabulary.seed_defaults()
    logger.info("Chronicle MCP server starting (db: %s, seeded tags: %d)", config.storage.db_path, seeded)

    app = ChronicleMCPApp(engine, server_name=args.server_name)

    def _handle_shutdown(signum, frame):
        raise SystemExit(0)
    for sig in (signal.SIGINT, getattr(signal, "SIGTERM", None)):
        if sig is not None:
            signal.signal(sig, _handle_shutdown)

    try:
        app.run()
    finally:
        engine.close()


if __name__ == "__main__":
    main()
