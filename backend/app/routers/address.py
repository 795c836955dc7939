"""Address autocomplete endpoints: geocoding proxy plus a live form-field socket."""
import asyncio
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.requests import HTTPConnection

from app.schemas import (
    MAX_RESULT_LIMIT,
    AddressForm,
    AddressSearchResponse,
    Candidate,
    PipelineConfig,
    normalize_locale_filter,
)
from app.services.geocoding import GeocodingError, GeocodingProvider, GeocodingTimeout
from app.services.suggestions import SuggestionPipeline, UnknownCandidateError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/address", tags=["address"])


def get_provider(connection: HTTPConnection) -> GeocodingProvider:
    return connection.app.state.geocoding_provider


def get_pipeline_config(connection: HTTPConnection) -> PipelineConfig:
    return connection.app.state.pipeline_config


@router.get("/search", response_model=AddressSearchResponse)
async def search_addresses(
    q: str = Query(..., description="Free-text address query"),
    countrycodes: str | None = Query(None, description="Comma-separated ISO country codes, empty for unrestricted"),
    limit: int | None = Query(None, ge=1, le=MAX_RESULT_LIMIT, description="Maximum number of results"),
    provider: GeocodingProvider = Depends(get_provider),
    pipeline_config: PipelineConfig = Depends(get_pipeline_config),
):
    """
    Forward an address query to the geocoding provider.

    - **q**: Address fragment (e.g., "123 Main St")
    - **countrycodes**: Locale filter, defaults to the configured country codes
    - **limit**: Max results to return (1-20, defaults to the configured limit)

    Queries shorter than the configured minimum return no results.
    """
    query = q.strip()
    if len(query) < pipeline_config.min_query_length:
        return AddressSearchResponse(
            query=q,
            results=[],
            total=0,
            message=f"Query must be at least {pipeline_config.min_query_length} characters",
        )

    locale_filter = pipeline_config.locale_filter if countrycodes is None else normalize_locale_filter(countrycodes)
    try:
        results = await provider.search(query, locale_filter, limit or pipeline_config.result_limit)
    except GeocodingTimeout:
        raise HTTPException(status_code=504, detail="Geocoding request timed out")
    except GeocodingError:
        raise HTTPException(status_code=502, detail="Geocoding service unavailable")

    return AddressSearchResponse(query=q, results=results, total=len(results))


@router.get("/details/{provider_id}", response_model=Candidate)
async def get_address_details(provider_id: str, provider: GeocodingProvider = Depends(get_provider)):
    """Full address decomposition for one provider id (e.g. "W123456")."""
    try:
        candidate = await provider.details(provider_id)
    except GeocodingTimeout:
        raise HTTPException(status_code=504, detail="Geocoding request timed out")
    except GeocodingError:
        raise HTTPException(status_code=502, detail="Geocoding service unavailable")

    if candidate is None:
        raise HTTPException(status_code=404, detail="Address not found")
    return candidate


async def _pump(websocket: WebSocket, outbox: asyncio.Queue) -> None:
    while True:
        message = await outbox.get()
        await websocket.send_json(message)


@router.websocket("/ws")
async def address_field_socket(
    websocket: WebSocket,
    provider: GeocodingProvider = Depends(get_provider),
    pipeline_config: PipelineConfig = Depends(get_pipeline_config),
):
    """
    Drive one suggestion pipeline per connected address field.

    Client messages: {"type": "input", "value"}, {"type": "select", "provider_id"},
    {"type": "blur"} or {"type": "cancel"}.
    Server messages: {"type": "candidates", "candidates", "loading"},
    {"type": "error", "message"}, {"type": "selected", "form"}.
    """
    await websocket.accept()
    outbox: asyncio.Queue = asyncio.Queue()

    def publish_candidates(candidates: list[Candidate], loading: bool) -> None:
        outbox.put_nowait({
            "type": "candidates",
            "candidates": [c.model_dump() for c in candidates],
            "loading": loading,
        })

    def publish_error(message: str) -> None:
        outbox.put_nowait({"type": "error", "message": message})

    pipeline = SuggestionPipeline(
        provider,
        pipeline_config,
        form=AddressForm(),
        on_candidates=publish_candidates,
        on_error=publish_error,
    )
    sender = asyncio.create_task(_pump(websocket, outbox))

    try:
        while True:
            text = await websocket.receive_text()
            try:
                message = json.loads(text)
            except ValueError:
                logger.debug("Ignoring malformed address field message")
                publish_error("Unknown message type")
                continue
            kind = message.get("type") if isinstance(message, dict) else None

            if kind == "input":
                pipeline.on_input(str(message.get("value") or ""))
            elif kind == "select":
                try:
                    form = await pipeline.select(str(message.get("provider_id") or ""))
                except UnknownCandidateError:
                    publish_error("Unknown address selection")
                    continue
                if form is not None:
                    outbox.put_nowait({"type": "selected", "form": form.model_dump()})
            elif kind in ("blur", "cancel"):
                pipeline.dismiss()
            else:
                publish_error("Unknown message type")
    except WebSocketDisconnect:
        logger.info("Address field socket disconnected")
    finally:
        await pipeline.aclose()
        sender.cancel()
