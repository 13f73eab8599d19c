"""
Chronicle HTTP API

FastAPI surface over JournalEngine.

Endpoints:
- GET /health: Health check and model reachability
- POST /ask: Ask a question over the journal
- GET /conversations: Conversation summaries, most recent first
- GET /conversations/{conversation_id}: Message history
- DELETE /conversations/{conversation_id}: Delete a conversation (idempotent)
- POST /tags/extract: Tag suggestions for one entry or free text
- POST /tags/bulk: Tag suggestions for many entries
- POST /tags: Create a custom tag
- GET /vocabulary: Controlled vocabulary
- GET /tags/statistics: Tag usage statistics
- POST /entries/{entry_id}/tags: Accept tags for an entry

Typed engine errors map to HTTP status codes; the body is the error's
{"ok": false, "error", "code"} shape.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..common.config import ensure_directories, load_config
from ..common.errors import (
    ChronicleError,
    Conflict,
    Internal,
    InvalidInput,
    NotFound,
    UpstreamTimeout,
    UpstreamUnavailable,
)
from ..common.schemas import DateRange
from ..engine import JournalEngine

logger = logging.getLogger("chronicle.server.api")

_STATUS_CODES = {
    NotFound: 404,
    Conflict: 409,
    InvalidInput: 422,
    UpstreamTimeout: 504,
    UpstreamUnavailable: 503,
    Internal: 500,
}


def status_for(error: ChronicleError) -> int:
    for cls in type(error).__mro__:
        if cls in _STATUS_CODES:
            return _STATUS_CODES[cls]
    return 500


# =============================================================================
# Request Models
# =============================================================================

class AskRequest(BaseModel):
    """Question over the journal"""
    question: str
    conversation_id: Optional[str] = None
    max_context_entries: Optional[int] = None
    context_start: Optional[datetime] = None
    context_end: Optional[datetime] = None
    context_tags: Optional[List[str]] = None
    provider: Optional[str] = None
    model: Optional[str] = None

    def date_range(self) -> Optional[DateRange]:
        if self.context_start is None and self.context_end is None:
            return None
        if self.context_start is None or self.context_end is None:
            raise InvalidInput("Date range needs both context_start and context_end")
        window = DateRange(start=self.context_start, end=self.context_end)
        if window.start > window.end:
            raise InvalidInput("Date range start is after its end")
        return window


class TagExtractRequest(BaseModel):
    """Tag extraction for one entry or free text"""
    entry_id: Optional[str] = None
    text: Optional[str] = None
    max_tags: Optional[int] = None
    confidence_threshold: Optional[float] = None
    provider: Optional[str] = None
    model: Optional[str] = None


class BulkTagRequest(BaseModel):
    """Tag extraction over many entries"""
    entry_ids: List[str]
    max_tags: Optional[int] = None
    confidence_threshold: Optional[float] = None
    provider: Optional[str] = None
    model: Optional[str] = None


class CreateTagRequest(BaseModel):
    """New custom tag"""
    name: str
    description: str = ""
    category: str = "general"
    aliases: List[str] = Field(default_factory=list)
    parent: Optional[str] = None


class ApplyTagsRequest(BaseModel):
    """Tags accepted for an entry"""
    tags: List[str]
    confidence: Optional[float] = None


# =============================================================================
# Application
# =============================================================================

def create_app(engine: Optional[JournalEngine] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        engine: Engine to serve; built from ~/.chronicle/config.json on
            startup when omitted
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = engine is None
        if owned:
            ensure_directories()
            config = load_config()
            app.state.engine = JournalEngine(config)
            seeded = app.state.engine.vocabulary.seed_defaults()
            logger.info(
                "Chronicle API ready (db: %s, provider: %s, seeded tags: %d)",
                config.storage.db_path, config.llm.provider, seeded,
            )
        else:
            app.state.engine = engine
        yield
        if owned:
            app.state.engine.close()
            logger.info("Chronicle API shut down")

    app = FastAPI(
        title="Chronicle",
        description="Question answering and tagging over a personal journal",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.exception_handler(ChronicleError)
    async def chronicle_error_handler(request: Request, exc: ChronicleError):
        return JSONResponse(status_code=status_for(exc), content=exc.to_dict())

    def _engine(request: Request) -> JournalEngine:
        return request.app.state.engine

    # =========================================================================
    # Endpoints
    # =========================================================================

    @app.get("/health")
    async def health(request: Request, provider: Optional[str] = None, model: Optional[str] = None):
        """Health check endpoint"""
        return await _engine(request).health(provider, model)

    @app.post("/ask")
    async def ask(request: Request, body: AskRequest):
        response = await _engine(request).ask_question(
            body.question,
            conversation_id=body.conversation_id,
            max_context_entries=body.max_context_entries,
            context_date_range=body.date_range(),
            context_tags=body.context_tags,
            provider=body.provider,
            model=body.model,
        )
        return response.model_dump(mode="json")

    @app.get("/conversations")
    def list_conversations(request: Request):
        return [c.model_dump(mode="json") for c in _engine(request).get_conversations_list()]

    @app.get("/conversations/{conversation_id}")
    def conversation_history(request: Request, conversation_id: str):
        messages = _engine(request).get_conversation_history(conversation_id)
        return {
            "conversation_id": conversation_id,
            "messages": [m.model_dump(mode="json") for m in messages],
        }

    @app.delete("/conversations/{conversation_id}")
    def delete_conversation(request: Request, conversation_id: str):
        deleted = _engine(request).delete_conversation(conversation_id)
        return {"ok": True, "deleted": deleted}

    @app.post("/tags/extract")
    async def extract_tags(request: Request, body: TagExtractRequest):
        result = await _engine(request).extract_tags_for_entry(
            entry_id=body.entry_id,
            text=body.text,
            max_tags=body.max_tags,
            confidence_threshold=body.confidence_threshold,
            provider=body.provider,
            model=body.model,
        )
        return result.model_dump(mode="json")

    @app.post("/tags/bulk")
    async def bulk_extract_tags(request: Request, body: BulkTagRequest):
        results = await _engine(request).bulk_extract_tags(
            body.entry_ids,
            max_tags=body.max_tags,
            confidence_threshold=body.confidence_threshold,
            provider=body.provider,
            model=body.model,
        )
        return [r.model_dump(mode="json") for r in results]

    @app.post("/tags", status_code=201)
    def create_tag(request: Request, body: CreateTagRequest):
        tag = _engine(request).create_custom_tag(
            body.name, body.description, body.category, body.aliases, body.parent
        )
        return tag.model_dump(mode="json")

    @app.get("/vocabulary")
    def vocabulary(request: Request):
        return _engine(request).get_vocabulary().model_dump(mode="json")

    @app.get("/tags/statistics")
    def tag_statistics(request: Request):
        return [s.model_dump(mode="json") for s in _engine(request).get_tag_statistics()]

    @app.post("/entries/{entry_id}/tags")
    def apply_tags(request: Request, entry_id: str, body: ApplyTagsRequest):
        tags = _engine(request).apply_tags(entry_id, body.tags, body.confidence)
        return {"entry_id": entry_id, "tags": tags}

    return app


app = create_app()


# =============================================================================
# CLI Entry Point
# =============================================================================

def run_server():
    """Run the Chronicle API server"""
    import uvicorn

    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    config = load_config()

    logger.info("Starting Chronicle API on %s:%d", config.server.host, config.server.port)
    uvicorn.run(
        "chronicle.server.api:app",
        host=config.server.host,
        port=config.server.port,
        reload=False,
    )


if __name__ == "__main__":
    run_server()
