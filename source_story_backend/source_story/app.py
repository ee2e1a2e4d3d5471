from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.responses import Response
from fastapi.middleware.cors import CORSMiddleware
import logging
from typing import Dict

# Ensure .env is loaded before importing modules that initialize API clients
from .settings import has_all_keys, ALLOWED_ORIGINS, MAX_UPLOAD_BYTES
from .errors import DecodeError, GatewayFailure, MalformedResponse, SessionStateError
from .models import (
    ChatPanelRequest, ChatRequest, GenerationResult, SelectTypeRequest, SessionSnapshot, UrlRequest,
)
from .session import StorySession

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Source Story Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS or ["*"],
    allow_credentials=True,
    allow_methods=["POST", "GET", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Sessions live in process memory only
SESSIONS: Dict[str, StorySession] = {}

def _session(session_id: str) -> StorySession:
    session = SESSIONS.get(session_id)
    if session is None:
        raise HTTPException(404, "session not found")
    return session

@app.get("/health")
def health():
    keys_ok = has_all_keys()
    logger.info(f"Health check: API keys present = {keys_ok}")
    return {"ok": True, "has_keys": keys_ok}

@app.post("/v1/sessions", response_model=SessionSnapshot)
def create_session():
    session = StorySession()
    SESSIONS[session.session_id] = session
    logger.info(f"Created session {session.session_id}")
    return session.snapshot()

@app.get("/v1/sessions/{session_id}", response_model=SessionSnapshot)
def get_session(session_id: str):
    return _session(session_id).snapshot()

@app.delete("/v1/sessions/{session_id}")
def close_session(session_id: str):
    _session(session_id)
    SESSIONS.pop(session_id, None)
    return {"ok": True}

@app.post("/v1/sessions/{session_id}/source-type", response_model=SessionSnapshot)
def select_source_type(session_id: str, req: SelectTypeRequest):
    session = _session(session_id)
    session.select_type(req.source_type)
    return session.snapshot()

@app.post("/v1/sessions/{session_id}/upload", response_model=SessionSnapshot)
async def upload_source(session_id: str, file: UploadFile = File(...)):
    session = _session(session_id)
    # one byte past the limit is enough to know the file is too big
    data = await file.read(MAX_UPLOAD_BYTES + 1)
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(413, f"file exceeds {MAX_UPLOAD_BYTES} bytes")
    filename = file.filename or "upload"
    try:
        await session.upload(data, filename, file.content_type)
    except DecodeError as e:
        logger.error(f"Upload rejected for session {session_id}: {e}")
        raise HTTPException(422, str(e))
    return session.snapshot()

@app.put("/v1/sessions/{session_id}/url", response_model=SessionSnapshot)
def set_source_url(session_id: str, req: UrlRequest):
    session = _session(session_id)
    try:
        session.set_url(req.url)
    except SessionStateError as e:
        raise HTTPException(409, str(e))
    return session.snapshot()

@app.delete("/v1/sessions/{session_id}/source", response_model=SessionSnapshot)
def reset_source(session_id: str):
    session = _session(session_id)
    session.reset()
    return session.snapshot()

@app.post("/v1/sessions/{session_id}/generate", response_model=GenerationResult)
async def generate(session_id: str):
    session = _session(session_id)
    try:
        result = await session.generate()
    except SessionStateError as e:
        raise HTTPException(409, str(e))
    except MalformedResponse as e:
        raise HTTPException(502, f"story generation returned an unusable response: {e}")
    except GatewayFailure as e:
        raise HTTPException(502, f"story generation failed: {e}")
    if result is None:
        raise HTTPException(409, "source changed while generating")
    return result

@app.post("/v1/sessions/{session_id}/narration")
async def toggle_narration(session_id: str):
    session = _session(session_id)
    try:
        status = await session.toggle_narration()
    except SessionStateError as e:
        raise HTTPException(409, str(e))
    return {"narration_status": status}

@app.post("/v1/sessions/{session_id}/narration/ended")
def narration_ended(session_id: str):
    session = _session(session_id)
    session.playback_ended()
    return {"narration_status": session.narration_status}

@app.get("/v1/sessions/{session_id}/narration/audio")
def narration_audio(session_id: str):
    session = _session(session_id)
    if session.audio is None:
        raise HTTPException(404, "no narration available")
    return Response(content=session.audio.data, media_type=session.audio.media_type)

@app.post("/v1/sessions/{session_id}/chat", response_model=SessionSnapshot)
async def send_chat(session_id: str, req: ChatRequest):
    session = _session(session_id)
    await session.send_message(req.message)
    return session.snapshot()

@app.post("/v1/sessions/{session_id}/chat-panel", response_model=SessionSnapshot)
def set_chat_panel(session_id: str, req: ChatPanelRequest):
    session = _session(session_id)
    session.set_chat_open(req.open)
    return session.snapshot()
