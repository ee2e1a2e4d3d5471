"""
Per-session state for one source and everything derived from it.

A session holds the selected source type, at most one payload, and the
derived state built on top of it: the generation result, the narration
clip and the conversation log. Any change of source advances ``token``;
a gateway call started under an older token has its result dropped when
it resolves.
"""
import logging
import uuid
from typing import Dict, List, Optional

from .decoders import decode_upload
from .elevenlabs_client import tts_to_bytes
from .errors import GatewayFailure, SessionStateError, SourceMismatchError
from .llm import chat_reply, generate_story
from .models import (
    AudioClip, ChatContext, ChatStatus, ConversationEntry, GenerationResult,
    GenerationStatus, ImagePayload, NarrationStatus, RemoteUrlPayload,
    SessionSnapshot, SourcePayload, SourcePreview, SourceType, source_type_of,
)
from .prompts import CHAT_ERROR_REPLY, CHAT_FALLBACK_REPLY

logger = logging.getLogger(__name__)

TEXT_EXCERPT_CHARS = 280


class StorySession:
    def __init__(self, session_id: Optional[str] = None, generate=None, narrate=None, chat=None):
        self.session_id = session_id or str(uuid.uuid4())
        self._generate = generate or generate_story
        self._narrate = narrate or tts_to_bytes
        self._chat = chat or chat_reply

        self.source_type = SourceType.IMAGE
        self.payload: Optional[SourcePayload] = None
        self.source_name: Optional[str] = None
        self.token = 0
        self.chat_open = False
        self._clear_derived()

    def _clear_derived(self):
        self.result: Optional[GenerationResult] = None
        self.generation_status = GenerationStatus.IDLE
        self.generation_error: Optional[str] = None
        self.narration_status = NarrationStatus.IDLE
        self.audio: Optional[AudioClip] = None
        self.messages: List[ConversationEntry] = []
        self._next_seq = 0
        self._next_reply_seq = 0
        self._early_replies: Dict[int, str] = {}
        self._chats_in_flight = 0

    def _invalidate(self):
        self.payload = None
        self.source_name = None
        self.token += 1
        self._clear_derived()

    # --- source state ---

    def select_type(self, source_type) -> None:
        source_type = SourceType(source_type)
        logger.info(f"Session {self.session_id}: selecting source type {source_type.value}")
        self._invalidate()
        self.source_type = source_type

    def ingest(self, payload, name: Optional[str] = None) -> None:
        payload_type = source_type_of(payload)
        if payload_type != self.source_type:
            raise SourceMismatchError(
                f"Cannot ingest a {payload_type.value} payload while {self.source_type.value} is selected"
            )
        self._invalidate()
        self.payload = payload
        self.source_name = name
        logger.info(f"Session {self.session_id}: ingested {payload.kind} source {name or '(unnamed)'}")

    def reset(self) -> None:
        logger.info(f"Session {self.session_id}: clearing source")
        self._invalidate()

    def set_url(self, url: str) -> None:
        if self.source_type != SourceType.URL:
            raise SourceMismatchError(f"Cannot set a URL while {self.source_type.value} is selected")
        if isinstance(self.payload, RemoteUrlPayload) and self.payload.url == url:
            return
        self._invalidate()
        self.payload = RemoteUrlPayload(url=url)

    async def upload(self, data: bytes, filename: str, media_type: Optional[str] = None):
        """Decode a file and make it the active source.

        DecodeError propagates before anything is touched, so a bad file
        leaves the previous source in place.
        """
        payload = await decode_upload(data, filename, media_type)
        self.select_type(source_type_of(payload))
        self.ingest(payload, name=filename)
        return payload

    def _require_source(self):
        if self.payload is None:
            raise SessionStateError("No source selected")
        if isinstance(self.payload, RemoteUrlPayload) and not self.payload.url.strip():
            raise SessionStateError("No URL entered")
        return self.payload

    # --- generation ---

    async def generate(self) -> Optional[GenerationResult]:
        payload = self._require_source()
        token = self.token
        self.generation_status = GenerationStatus.GENERATING
        self.generation_error = None
        try:
            result = await self._generate(payload)
        except GatewayFailure as e:
            if token == self.token:
                # earlier result, if any, stays on screen
                self.generation_status = GenerationStatus.READY if self.result else GenerationStatus.FAILED
                self.generation_error = str(e)
            logger.error(f"Session {self.session_id}: generation failed: {e}")
            raise

        if token != self.token:
            logger.info(f"Session {self.session_id}: dropping generation result for a replaced source")
            return None

        previous = self.result
        self.result = result
        self.generation_status = GenerationStatus.READY
        if previous is None or previous.story != result.story:
            # a synthesis still running for the old story is dropped when it lands
            self.audio = None
            self.narration_status = NarrationStatus.IDLE
        return result

    # --- narration ---

    async def toggle_narration(self) -> NarrationStatus:
        if self.result is None:
            raise SessionStateError("No story to narrate")
        story = self.result.story

        if self.audio is not None and self.audio.story == story:
            if self.narration_status == NarrationStatus.PLAYING:
                self.narration_status = NarrationStatus.PAUSED
            else:
                self.narration_status = NarrationStatus.PLAYING
            return self.narration_status

        if self.narration_status == NarrationStatus.SYNTHESIZING:
            return self.narration_status

        token = self.token
        self.narration_status = NarrationStatus.SYNTHESIZING
        try:
            data = await self._narrate(story)
        except GatewayFailure as e:
            logger.warning(f"Session {self.session_id}: narration unavailable: {e}")
            data = None

        if token != self.token or self.result is None or self.result.story != story:
            logger.info(f"Session {self.session_id}: dropping narration for a replaced story")
            return self.narration_status

        if not data:
            self.narration_status = NarrationStatus.IDLE
            return self.narration_status

        self.audio = AudioClip(data=data, story=story)
        self.narration_status = NarrationStatus.PLAYING
        return self.narration_status

    def playback_ended(self) -> None:
        if self.audio is not None:
            self.narration_status = NarrationStatus.READY

    # --- chat ---

    def chat_context(self) -> ChatContext:
        image = None
        if self.source_type == SourceType.IMAGE and isinstance(self.payload, ImagePayload):
            image = self.payload
        return ChatContext(
            story=self.result.story if self.result else None,
            analysis=self.result.analysis if self.result else None,
            image=image,
        )

    @property
    def chat_status(self) -> ChatStatus:
        return ChatStatus.AWAITING_REPLY if self._chats_in_flight else ChatStatus.IDLE

    def set_chat_open(self, is_open: bool) -> None:
        self.chat_open = is_open

    async def send_message(self, text: str) -> Optional[str]:
        """Append a user turn and, once the gateway settles, its reply.

        Replies are appended in send order: a reply that resolves before an
        earlier one is held until the earlier one lands.
        """
        text = text.strip()
        if not text:
            return None

        token = self.token
        seq = self._next_seq
        self._next_seq += 1
        self.messages.append(ConversationEntry(speaker="user", text=text))
        self._chats_in_flight += 1
        context = self.chat_context()

        try:
            reply = await self._chat(text, context)
        except GatewayFailure as e:
            logger.error(f"Session {self.session_id}: chat failed: {e}")
            reply = CHAT_ERROR_REPLY
        reply = reply or CHAT_FALLBACK_REPLY

        if token != self.token:
            logger.info(f"Session {self.session_id}: dropping chat reply for a cleared conversation")
            return None

        self._chats_in_flight -= 1
        self._early_replies[seq] = reply
        while self._next_reply_seq in self._early_replies:
            self.messages.append(ConversationEntry(
                speaker="assistant", text=self._early_replies.pop(self._next_reply_seq),
            ))
            self._next_reply_seq += 1
        return reply

    # --- presentation ---

    def _preview(self) -> Optional[SourcePreview]:
        p = self.payload
        if p is None:
            return None
        if p.kind in ("image", "document"):
            return SourcePreview(kind=p.kind, name=self.source_name, media_type=p.media_type, size=len(p.data))
        if p.kind == "url":
            return SourcePreview(kind=p.kind, url=p.url)
        return SourcePreview(kind=p.kind, name=self.source_name, text_excerpt=p.text[:TEXT_EXCERPT_CHARS])

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.session_id,
            source_type=self.source_type,
            source=self._preview(),
            generation_status=self.generation_status,
            analysis=self.result.analysis if self.result else None,
            story=self.result.story if self.result else None,
            narration_status=self.narration_status,
            chat_status=self.chat_status,
            chat_open=self.chat_open,
            messages=list(self.messages),
        )
