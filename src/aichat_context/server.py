"""FastAPI web server for aichat-context."""

import logging
from dataclasses import asdict
from typing import Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import Response
from pydantic import BaseModel, Field

from . import __version__
from .backends import open_store
from .compact import CompactOptions
from .config import COMPACT_MAX_TOKENS, DEFAULT_MODEL, get_settings_path
from .context import (
    get_context_status,
    get_recommended_trim_target,
    plan_context_action,
    trim_conversation,
)
from .core import Conversation, FileAttachment, Message, classify_file
from .export import ExportOptions, export_conversation
from .settings import SettingsStore, available_models, validate_api_key
from .store import ConversationNotFound, ConversationStore
from .tokens import calculate_cost, conversation_cost, count_tokens, format_cost

logger = logging.getLogger(__name__)

EXPORT_FORMATS = {"md": "markdown", "markdown": "markdown", "json": "json", "compact": "compact"}


# ── Request bodies ───────────────────────────────────────────────


class AttachmentIn(BaseModel):
    name: str
    mime_type: str = ""
    size: int = Field(0, ge=0)
    content: Optional[str] = None


class MessageIn(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    files: list[AttachmentIn] = []


class ConversationIn(BaseModel):
    title: Optional[str] = None


class TrimIn(BaseModel):
    target_tokens: Optional[int] = Field(None, ge=0)
    model: Optional[str] = None
    apply: bool = False


class TokensIn(BaseModel):
    text: str
    model: Optional[str] = None
    direction: Literal["input", "output"] = "input"


class SettingsIn(BaseModel):
    api_key: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = Field(None, ge=0.0, le=1.0)
    max_tokens: Optional[int] = Field(None, ge=1)
    auto_trim: Optional[bool] = None
    auto_trim_threshold: Optional[float] = Field(None, gt=0.0, le=1.0)
    dark_mode: Optional[bool] = None


# ── Serialization ────────────────────────────────────────────────


def _message_to_dict(msg: Message) -> dict:
    return {
        "id": msg.id,
        "role": msg.role,
        "content": msg.content,
        "timestamp": msg.timestamp.isoformat(),
        "tokens": count_tokens(msg.content) if msg.tokens is None else msg.tokens,
        "files": [
            {"name": f.name, "mime_type": f.mime_type, "size": f.size, "kind": f.kind}
            for f in msg.files
        ],
    }


def _conversation_to_dict(conversation: Conversation) -> dict:
    return {
        "id": conversation.id,
        "title": conversation.display_title,
        "created_at": conversation.created_at.isoformat(),
        "updated_at": conversation.updated_at.isoformat(),
        "message_count": len(conversation.messages),
        "messages": [_message_to_dict(m) for m in conversation.messages],
    }


def _settings_to_dict(settings) -> dict:
    data = asdict(settings)
    # Never echo the key itself
    data["api_key_set"] = bool(data.pop("api_key"))
    return data


# ── Dependencies ─────────────────────────────────────────────────


def get_store(request: Request) -> ConversationStore:
    """Open the configured store on first use."""
    state = request.app.state
    if state.store is None:
        state.store = open_store()
        logger.info("Opened %s conversation store", state.store.name)
    return state.store


def get_settings_store(request: Request) -> SettingsStore:
    state = request.app.state
    if state.settings is None:
        state.settings = SettingsStore(get_settings_path())
        state.settings.load()
    return state.settings


def _load_conversation(store: ConversationStore, conversation_id: str) -> Conversation:
    try:
        return store.get_conversation(conversation_id)
    except ConversationNotFound:
        raise HTTPException(status_code=404, detail="Conversation not found")
    except Exception as e:
        logger.error("Failed to load conversation %s: %s", conversation_id, e)
        raise HTTPException(status_code=500, detail="Failed to load conversation")


def create_app(
    store: Optional[ConversationStore] = None,
    settings: Optional[SettingsStore] = None,
) -> FastAPI:
    """Build the application. Missing collaborators are opened lazily from config."""
    app = FastAPI(title="aichat-context", version=__version__)
    app.state.store = store
    app.state.settings = settings

    # ── Models & settings ───────────────────────────────────────

    @app.get("/api/models")
    async def list_models():
        return available_models()

    @app.get("/api/settings")
    async def read_settings(settings: SettingsStore = Depends(get_settings_store)):
        return _settings_to_dict(settings.get())

    @app.put("/api/settings")
    async def write_settings(
        body: SettingsIn,
        settings: SettingsStore = Depends(get_settings_store),
    ):
        changes = body.model_dump(exclude_none=True)
        if "api_key" in changes and not validate_api_key(changes["api_key"]):
            raise HTTPException(status_code=400, detail="Invalid API key format")
        return _settings_to_dict(settings.update(**changes))

    @app.post("/api/settings/reset")
    async def reset_settings(settings: SettingsStore = Depends(get_settings_store)):
        return _settings_to_dict(settings.reset())

    # ── Conversations ───────────────────────────────────────────

    @app.get("/api/conversations")
    async def list_conversations(store: ConversationStore = Depends(get_store)):
        try:
            summaries = store.list_conversations()
        except Exception as e:
            logger.error("Failed to list conversations: %s", e)
            raise HTTPException(status_code=500, detail="Failed to fetch conversations")

        return [
            {
                "id": s.id,
                "title": s.title,
                "message_count": s.message_count,
                "created_at": s.created_at.isoformat(),
                "updated_at": s.updated_at.isoformat(),
            }
            for s in summaries
        ]

    @app.post("/api/conversations", status_code=201)
    async def create_conversation(
        body: ConversationIn,
        store: ConversationStore = Depends(get_store),
    ):
        return _conversation_to_dict(store.create_conversation(body.title))

    @app.get("/api/conversations/{conversation_id}")
    async def get_conversation(conversation_id: str, store: ConversationStore = Depends(get_store)):
        return _conversation_to_dict(_load_conversation(store, conversation_id))

    @app.delete("/api/conversations/{conversation_id}", status_code=204)
    async def delete_conversation(conversation_id: str, store: ConversationStore = Depends(get_store)):
        try:
            store.delete_conversation(conversation_id)
        except ConversationNotFound:
            raise HTTPException(status_code=404, detail="Conversation not found")
        return Response(status_code=204)

    @app.post("/api/conversations/{conversation_id}/messages", status_code=201)
    async def append_message(
        conversation_id: str,
        body: MessageIn,
        store: ConversationStore = Depends(get_store),
        settings: SettingsStore = Depends(get_settings_store),
    ):
        files = [
            FileAttachment(
                name=f.name,
                mime_type=f.mime_type,
                size=f.size,
                kind=classify_file(f.name, f.mime_type),
                content=f.content,
            )
            for f in body.files
        ]
        message = Message.create(body.role, body.content, files)

        try:
            conversation = store.append_message(conversation_id, message)
        except ConversationNotFound:
            raise HTTPException(status_code=404, detail="Conversation not found")

        plan = plan_context_action(conversation.messages, settings.get())
        if plan.action == "auto_trim" and plan.trim is not None:
            conversation = store.replace_messages(conversation_id, plan.trim.trimmed_messages)

        return {
            "message": _message_to_dict(message),
            "context": {
                **asdict(plan.status),
                "action": plan.action,
                "removed_count": plan.trim.removed_count if plan.trim else 0,
            },
        }

    # ── Context management ──────────────────────────────────────

    @app.get("/api/conversations/{conversation_id}/context")
    async def context_status(
        conversation_id: str,
        model: str = Query(DEFAULT_MODEL, description="Model to measure against"),
        store: ConversationStore = Depends(get_store),
    ):
        conversation = _load_conversation(store, conversation_id)
        status = get_context_status(conversation.messages, model)
        cost = conversation_cost(conversation.messages, model)

        return {
            **asdict(status),
            "model": model,
            "recommended_trim_target": get_recommended_trim_target(model),
            "cost": {
                "input_tokens": cost.input_tokens,
                "output_tokens": cost.output_tokens,
                "input_cost": cost.input_cost,
                "output_cost": cost.output_cost,
                "total_cost": cost.total_cost,
                "formatted": format_cost(cost.total_cost),
            },
        }

    @app.post("/api/conversations/{conversation_id}/trim")
    async def trim(
        conversation_id: str,
        body: TrimIn,
        store: ConversationStore = Depends(get_store),
    ):
        conversation = _load_conversation(store, conversation_id)
        model = body.model or DEFAULT_MODEL
        target = body.target_tokens
        if target is None:
            target = get_recommended_trim_target(model)

        result = trim_conversation(conversation.messages, target)
        if body.apply and result.removed_count:
            store.replace_messages(conversation_id, result.trimmed_messages)
            logger.info("Trimmed %d messages from %s", result.removed_count, conversation_id)

        return {
            "target_tokens": target,
            "removed_count": result.removed_count,
            "tokens_saved": result.tokens_saved,
            "over_budget": result.over_budget,
            "applied": body.apply and result.removed_count > 0,
            "messages": [_message_to_dict(m) for m in result.trimmed_messages],
        }

    @app.post("/api/tokens")
    async def count(body: TokensIn):
        model = body.model or DEFAULT_MODEL
        tokens = count_tokens(body.text)
        cost = calculate_cost(tokens, model, body.direction)
        return {"tokens": tokens, "cost": cost, "formatted_cost": format_cost(cost)}

    # ── Export & search ─────────────────────────────────────────

    @app.get("/api/export/{conversation_id}")
    async def export(
        conversation_id: str,
        format: str = Query("md", description="Export format: md, json or compact"),
        timestamps: bool = Query(True),
        tokens: bool = Query(False),
        max_tokens: int = Query(COMPACT_MAX_TOKENS, ge=1),
        preserve_code: bool = Query(True),
        store: ConversationStore = Depends(get_store),
    ):
        export_format = EXPORT_FORMATS.get(format)
        if export_format is None:
            raise HTTPException(status_code=400, detail=f"Unknown export format: {format}")

        conversation = _load_conversation(store, conversation_id)
        artifact = export_conversation(
            conversation,
            export_format,
            options=ExportOptions(include_timestamps=timestamps, include_token_counts=tokens),
            compact_options=CompactOptions(max_tokens=max_tokens, preserve_code_blocks=preserve_code),
        )
        return Response(
            content=artifact.content,
            media_type=artifact.media_type,
            headers={"Content-Disposition": f'attachment; filename="{artifact.filename}"'},
        )

    @app.get("/api/search")
    async def search(
        q: str = Query("", description="Search text"),
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
        store: ConversationStore = Depends(get_store),
    ):
        try:
            found = store.search(q, limit=limit, offset=offset)
        except Exception as e:
            logger.error("Search for %r failed: %s", q, e)
            raise HTTPException(status_code=500, detail="Search failed")

        return {
            "query": found.query,
            "total": found.total,
            "has_more": found.has_more,
            "results": [
                {
                    "type": r.type,
                    "id": r.id,
                    "conversation_id": r.conversation_id,
                    "conversation_title": r.conversation_title,
                    "excerpt": r.excerpt,
                    "updated_at": r.updated_at.isoformat(),
                    "message_role": r.message_role,
                    "timestamp": r.timestamp.isoformat() if r.timestamp else None,
                }
                for r in found.results
            ],
        }

    return app


app = create_app()
