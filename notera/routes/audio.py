import os

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import FileResponse

from notera.recording.audio_utils import mime_type_for_key

router = APIRouter(prefix="/api", tags=["audio"])


@router.get("/audio/{key}")
async def play_audio(key: str, expires: int, token: str, request: Request) -> FileResponse:
    """Serve an audio object through a signed, expiring URL."""
    store = request.app.state.audio_store
    if not store.verify_signed_url(key, expires, token):
        raise HTTPException(status_code=403, detail="Invalid or expired link")
    path = store.path_for(key)
    if not os.path.exists(path):
        raise HTTPException(status_code=404, detail="Audio not found")
    return FileResponse(path, media_type=mime_type_for_key(key))
