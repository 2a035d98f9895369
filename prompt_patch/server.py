#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Patch ▸ HTTP API (FastAPI)
===============================================================================

| Endpoint                      | Success                | Failure                      |
|-------------------------------|------------------------|------------------------------|
| POST /api/processPrompt       | {commits}              | 400 bad body; 500 {commits, error} |
| GET  /api/commits             | CommitRecord[]         | 400 no path; 500 {error}     |
| GET  /api/sourceFiles         | SourceFile[]           | 400 no path; 500 {error}     |
| POST /api/revertLastCommit    | CommitRecord           | 400 bad body; 500 {error}    |

Bodies and query parameters are checked with the bundled JSON Schema
(`prompt_patch.request_validator`) before any work starts. Handlers are plain
``def`` functions; FastAPI runs them on its worker threads, and runs for the
same project are serialised by the processor's per‑root locks.
"""
from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import jsonschema
from fastapi import APIRouter, Body, FastAPI, HTTPException, Query
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from prompt_patch import get_logger, get_version
from prompt_patch.config import Settings, load_settings
from prompt_patch.errors import PromptPatchError
from prompt_patch.file_collector import get_source_files
from prompt_patch.git_ops import GitOps
from prompt_patch.orchestrator import PromptProcessor
from prompt_patch.request_validator import pretty_pointer, validate_request

log = get_logger(__name__)


def _checked(kind: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a request or raise HTTP 400 with a readable reason."""
    try:
        return validate_request(kind, payload)
    except jsonschema.ValidationError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid request at {pretty_pointer(exc)}: {exc.message}")
    except (ValueError, json.JSONDecodeError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))


def _query_path(source_absolute_path: Optional[str]) -> str:
    if not source_absolute_path:
        raise HTTPException(status_code=400, detail="sourceAbsolutePath is required")
    return _checked("repositoryQuery", {"sourceAbsolutePath": source_absolute_path})["sourceAbsolutePath"]


def build_router(processor: PromptProcessor, settings: Settings) -> APIRouter:
    router = APIRouter()

    @router.post("/processPrompt")
    def process_prompt(body: Dict[str, Any] = Body(...)):
        data = _checked("processPrompt", body)
        try:
            result = processor.process(
                data["prompt"],
                data["sourceAbsolutePath"],
                data["selectedFilePaths"],
                max_attempts=data.get("maxAttempts"),
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        if not result.ok:
            return JSONResponse(status_code=500, content=result.to_dict())
        return result.to_dict()

    @router.get("/commits")
    def list_commits(source_absolute_path: Optional[str] = Query(None, alias="sourceAbsolutePath")):
        root = _query_path(source_absolute_path)
        try:
            commits = GitOps(root).recent_commits(settings.commit_limit)
        except PromptPatchError as exc:
            log.error("Listing commits failed: %s", exc)
            return JSONResponse(status_code=500, content={"error": str(exc)})
        return [c.to_dict() for c in commits]

    @router.get("/sourceFiles")
    def list_source_files(source_absolute_path: Optional[str] = Query(None, alias="sourceAbsolutePath")):
        root = _query_path(source_absolute_path)
        try:
            files = get_source_files(root, model=settings.model, concurrency=settings.concurrency)
        except PromptPatchError as exc:
            log.error("Listing source files failed: %s", exc)
            return JSONResponse(status_code=500, content={"error": str(exc)})
        return [f.to_dict() for f in files]

    @router.post("/revertLastCommit")
    def revert_last_commit(body: Dict[str, Any] = Body(...)):
        root = _checked("revertLastCommit", body)["sourceAbsolutePath"]
        try:
            with processor.locks.hold(root):
                record = GitOps(root).revert_last()
        except PromptPatchError as exc:
            log.error("Revert failed: %s", exc)
            return JSONResponse(status_code=500, content={"error": str(exc)})
        return record.to_dict()

    return router


def create_app(processor: Optional[PromptProcessor] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory. Without a *processor*, the default OpenAI‑backed one
    is wired from *settings* (itself loaded from the environment if omitted).
    """
    settings = settings or load_settings()
    processor = processor or PromptProcessor.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if processor.dev_servers is not None:
            log.info("Shutting down: stopping dev servers")
            processor.dev_servers.stop_all()

    app = FastAPI(title="Prompt-Patch", version=get_version(), lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.exception_handler(RequestValidationError)
    async def _bad_request(request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"detail": "Request body must be a JSON object"})

    app.include_router(build_router(processor, settings), prefix="/api")

    @app.get("/health")
    def health_check():
        return {"status": "healthy", "version": get_version()}

    log.info("API ready (cors=%s, commit_limit=%d)", ",".join(settings.cors_origins), settings.commit_limit)
    return app


def serve(settings: Optional[Settings] = None) -> None:
    """Run the API with uvicorn on the configured host/port."""
    import uvicorn

    settings = settings or load_settings()
    log.info("Serving on http://%s:%d", settings.host, settings.port)
    uvicorn.run(create_app(settings=settings), host=settings.host, port=settings.port)


__all__ = ["build_router", "create_app", "serve"]
