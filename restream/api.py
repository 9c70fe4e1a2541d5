"""REST API endpoints for the restream manager."""

import asyncio
import logging

from fastapi import APIRouter, Depends

from restream.models.dto import (
    InitializeRequest,
    StreamCreateRequest,
    StreamListResponse,
    StreamStopResponse,
)
from restream.services.stream_service import StreamService, get_stream_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/initialize")
async def initialize(
    request: InitializeRequest,
    stream_service: StreamService = Depends(get_stream_service),
):
    """Bind the manager to an application instance and open its store."""
    await asyncio.to_thread(stream_service.initialize, request.instance_id)
    return {"status": "initialized", "instance_id": request.instance_id}


@router.get("/streams", response_model=StreamListResponse)
async def list_streams(
    stream_service: StreamService = Depends(get_stream_service),
):
    """List all streams with elapsed time."""
    streams = await asyncio.to_thread(stream_service.list_streams)
    return StreamListResponse(streams=streams, total=len(streams))


@router.post("/streams", status_code=201)
async def add_stream(
    request: StreamCreateRequest,
    stream_service: StreamService = Depends(get_stream_service),
):
    """Create a stream, optionally starting it immediately."""
    stream = await asyncio.to_thread(stream_service.add_stream, request)
    return stream.model_dump()


@router.get("/streams/{stream_id}")
async def get_stream(
    stream_id: str,
    stream_service: StreamService = Depends(get_stream_service),
):
    """Get one stream."""
    stream = await asyncio.to_thread(stream_service.get_stream, stream_id)
    return stream.model_dump()


@router.post("/streams/{stream_id}/start")
async def start_stream(
    stream_id: str,
    stream_service: StreamService = Depends(get_stream_service),
):
    """Start streaming. Blocks for the startup grace period."""
    logger.info("[START] stream_id=%s", stream_id)
    stream = await asyncio.to_thread(stream_service.start_stream, stream_id)
    return stream.model_dump()


@router.post("/streams/{stream_id}/stop", response_model=StreamStopResponse)
async def stop_stream(
    stream_id: str,
    stream_service: StreamService = Depends(get_stream_service),
):
    """Stop streaming."""
    stopped = await asyncio.to_thread(stream_service.stop_stream, stream_id)
    return StreamStopResponse(
        status="stopped" if stopped else "not_running",
        stream_id=stream_id,
    )


@router.delete("/streams/{stream_id}")
async def delete_stream(
    stream_id: str,
    stream_service: StreamService = Depends(get_stream_service),
):
    """Delete a stream, stopping it first if live."""
    await asyncio.to_thread(stream_service.delete_stream, stream_id)
    return {"status": "deleted", "stream_id": stream_id}
