"""
FastAPI signaling service exposing a negotiation store over HTTP.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from fastapi import FastAPI, HTTPException, Path as PathParam, Query, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from .. import PeerConfig
from ..config import read_profiles
from ..coordinator import CALLS_COLLECTION
from ..errors import AlreadySet, DocumentNotFound
from ..store.memory import InMemoryNegotiationStore
from . import schemas
from .feed import ChangeFeed

LOG = logging.getLogger(__name__)

NAME_PATTERN = r"^[A-Za-z0-9_-]{1,64}$"


def create_app(
    *,
    store: Optional[InMemoryNegotiationStore] = None,
    config: Optional[PeerConfig] = None,
    lifespan: Optional[Callable[..., object]] = None,
) -> FastAPI:
    backing = store or InMemoryNegotiationStore()
    peer_config = config or PeerConfig()

    app = FastAPI(title="peerlink signaling API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.store = backing
    app.state.config = peer_config

    def _validate_call_fields(collection: str, fields: dict) -> None:
        if collection != CALLS_COLLECTION:
            return
        try:
            schemas.CallDocumentModel.model_validate(fields)
        except ValidationError as exc:
            detail = exc.errors(include_url=False, include_context=False, include_input=False)
            raise HTTPException(status_code=400, detail=detail) from exc

    @app.get("/healthz")
    async def healthz() -> dict:
        return {"status": "ok", "profile": peer_config.profile}

    @app.get("/profiles")
    async def list_profiles() -> dict:
        return {"profiles": sorted(read_profiles())}

    @app.get("/ice")
    async def ice_configuration() -> dict:
        return peer_config.ice.to_dict()

    @app.post("/v1/{collection}", response_model=schemas.DocumentCreated)
    async def create_document(
        collection: str = PathParam(..., pattern=NAME_PATTERN),
    ) -> schemas.DocumentCreated:
        doc_id = await backing.create_document(collection)
        LOG.info("Created %s/%s", collection, doc_id)
        return schemas.DocumentCreated(id=doc_id)

    @app.get("/v1/{collection}/{doc_id}", response_model=schemas.DocumentModel)
    async def get_document(
        collection: str = PathParam(..., pattern=NAME_PATTERN),
        doc_id: str = PathParam(..., pattern=NAME_PATTERN),
    ) -> schemas.DocumentModel:
        snapshot = backing.snapshot(collection, doc_id)
        if snapshot is None:
            raise HTTPException(status_code=404, detail=f"{collection}/{doc_id} not found")
        return schemas.DocumentModel(**snapshot.to_dict())

    @app.patch("/v1/{collection}/{doc_id}", response_model=schemas.DocumentModel)
    async def set_fields(
        payload: schemas.SetFieldsRequest,
        collection: str = PathParam(..., pattern=NAME_PATTERN),
        doc_id: str = PathParam(..., pattern=NAME_PATTERN),
    ) -> schemas.DocumentModel:
        _validate_call_fields(collection, payload.fields)
        try:
            await backing.set_fields(
                collection, doc_id, payload.fields, only_if_absent=payload.only_if_absent
            )
        except DocumentNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except AlreadySet as exc:
            raise HTTPException(
                status_code=409, detail={"message": str(exc), "field": exc.field}
            ) from exc
        snapshot = backing.snapshot(collection, doc_id)
        if snapshot is None:
            raise HTTPException(status_code=404, detail=f"{collection}/{doc_id} not found")
        return schemas.DocumentModel(**snapshot.to_dict())

    @app.post("/v1/{collection}/{doc_id}/{subcollection}", response_model=schemas.DocumentCreated)
    async def append_entry(
        payload: schemas.AppendRequest,
        collection: str = PathParam(..., pattern=NAME_PATTERN),
        doc_id: str = PathParam(..., pattern=NAME_PATTERN),
        subcollection: str = PathParam(..., pattern=NAME_PATTERN),
    ) -> schemas.DocumentCreated:
        try:
            entry_id = await backing.append(collection, doc_id, subcollection, payload.fields)
        except DocumentNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return schemas.DocumentCreated(id=entry_id)

    @app.get("/v1/{collection}/{doc_id}/{subcollection}", response_model=schemas.EntryPage)
    async def list_entries(
        collection: str = PathParam(..., pattern=NAME_PATTERN),
        doc_id: str = PathParam(..., pattern=NAME_PATTERN),
        subcollection: str = PathParam(..., pattern=NAME_PATTERN),
        offset: int = Query(0, ge=0),
    ) -> schemas.EntryPage:
        try:
            entries = backing.entries(collection, doc_id, subcollection, offset)
        except DocumentNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return schemas.EntryPage(
            entries=[schemas.EntryModel(id=entry_id, fields=fields) for entry_id, fields in entries],
            next=offset + len(entries),
        )

    @app.websocket("/v1/{collection}/{doc_id}/changes")
    async def watch_document(
        websocket: WebSocket,
        collection: str = PathParam(..., pattern=NAME_PATTERN),
        doc_id: str = PathParam(..., pattern=NAME_PATTERN),
    ) -> None:
        subcollections = websocket.query_params.getlist("sub")
        await ChangeFeed(backing, websocket, collection, doc_id).run(subcollections)

    return app


__all__ = ["create_app"]
