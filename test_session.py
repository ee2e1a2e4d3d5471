#!/usr/bin/env python3
"""
Tests for session state: source selection, generation, narration and chat.
Gateways are replaced with local async stubs.
"""
import asyncio
import sys
import os

import pytest

# Add the backend to the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'source_story_backend'))

from source_story.errors import (
    DecodeError, GatewayFailure, MalformedResponse, SessionStateError, SourceMismatchError,
)
from source_story.llm import parse_generation_response
from source_story.models import (
    ChatStatus, GenerationResult, GenerationStatus, ImagePayload, NarrationStatus,
    PlainTextPayload, RemoteUrlPayload, SourceType,
)
from source_story.prompts import CHAT_ERROR_REPLY, CHAT_FALLBACK_REPLY
from source_story.session import StorySession

HARBOR = GenerationResult(analysis="a misty harbor at dawn", story="The fog rolled in...")


class Recorder:
    def __init__(self, result=None, error=None):
        self.calls = []
        self.result = result
        self.error = error

    async def __call__(self, *args):
        self.calls.append(args)
        if self.error is not None:
            raise self.error
        return self.result


def _session(generate=None, narrate=None, chat=None):
    return StorySession(
        generate=generate or Recorder(HARBOR),
        narrate=narrate or Recorder(b"ID3audio"),
        chat=chat or Recorder("Try a lighthouse keeper."),
    )


async def _populated(session):
    await session.upload(b"\x89PNG fake", "photo.png", "image/png")
    await session.generate()
    await session.toggle_narration()
    await session.send_message("Who lives here?")
    return session


def test_upload_and_generate_scenario():
    generate = Recorder(HARBOR)
    session = _session(generate=generate)

    async def run():
        payload = await session.upload(b"\x89PNG fake", "photo.png", "image/png")
        assert payload == ImagePayload(data=b"\x89PNG fake", media_type="image/png")
        await session.generate()

    asyncio.run(run())
    assert session.payload == ImagePayload(data=b"\x89PNG fake", media_type="image/png")
    assert session.result.analysis == "a misty harbor at dawn"
    assert session.result.story == "The fog rolled in..."
    assert session.generation_status == GenerationStatus.READY
    assert generate.calls == [(session.payload,)]


@pytest.mark.parametrize("clear", [
    lambda s: s.reset(),
    lambda s: s.select_type(SourceType.TEXT),
    lambda s: s.select_type(SourceType.IMAGE),
])
def test_changing_source_clears_derived_state(clear):
    session = asyncio.run(_populated(_session()))
    assert session.result is not None
    assert session.audio is not None
    assert len(session.messages) == 2

    clear(session)

    assert session.payload is None
    assert session.result is None
    assert session.audio is None
    assert session.narration_status == NarrationStatus.IDLE
    assert session.messages == []


def test_reset_keeps_selector():
    session = _session()
    session.select_type(SourceType.URL)
    session.set_url("https://example.com/harbor")
    session.reset()
    assert session.source_type == SourceType.URL
    assert session.payload is None


def test_malformed_generation_keeps_previous_story():
    async def missing_story(payload):
        return parse_generation_response('{"analysis": "stormy"}')

    session = _session()
    asyncio.run(session.upload(b"some notes", "notes.txt", "text/plain"))
    asyncio.run(session.generate())

    session._generate = missing_story
    with pytest.raises(MalformedResponse):
        asyncio.run(session.generate())
    assert session.result == HARBOR
    assert session.generation_status == GenerationStatus.READY
    assert session.payload == PlainTextPayload(text="some notes")


def test_failed_first_generation_leaves_story_unset():
    session = _session(generate=Recorder(error=GatewayFailure("provider down")))
    asyncio.run(session.upload(b"some notes", "notes.txt", "text/plain"))
    with pytest.raises(GatewayFailure):
        asyncio.run(session.generate())
    assert session.result is None
    assert session.generation_status == GenerationStatus.FAILED
    assert session.generation_error == "provider down"
    assert session.payload is not None


def test_generate_without_source_is_rejected():
    session = _session()
    with pytest.raises(SessionStateError):
        asyncio.run(session.generate())
    session.select_type(SourceType.URL)
    session.set_url("   ")
    with pytest.raises(SessionStateError):
        asyncio.run(session.generate())


def test_chat_failure_appends_fallback_pair():
    session = _session(chat=Recorder(error=GatewayFailure("timeout")))
    before = len(session.messages)
    asyncio.run(session.send_message("Describe the harbor"))
    assert len(session.messages) == before + 2
    assert session.messages[-2].speaker == "user"
    assert session.messages[-1].speaker == "assistant"
    assert session.messages[-1].text == CHAT_ERROR_REPLY
    assert session.chat_status == ChatStatus.IDLE


def test_empty_chat_reply_uses_fallback():
    session = _session(chat=Recorder(""))
    asyncio.run(session.send_message("Hello?"))
    assert session.messages[-1].text == CHAT_FALLBACK_REPLY


def test_blank_chat_message_is_ignored():
    chat = Recorder("unused")
    session = _session(chat=chat)
    asyncio.run(session.send_message("   "))
    assert session.messages == []
    assert chat.calls == []


def test_narration_synthesized_once():
    narrate = Recorder(b"ID3audio")
    session = _session(narrate=narrate)

    async def run():
        await session.upload(b"story seed", "seed.txt", "text/plain")
        await session.generate()
        first = await session.toggle_narration()
        second = await session.toggle_narration()
        third = await session.toggle_narration()
        return first, second, third

    first, second, third = asyncio.run(run())
    assert len(narrate.calls) == 1
    assert narrate.calls[0] == ("The fog rolled in...",)
    assert (first, second, third) == (NarrationStatus.PLAYING, NarrationStatus.PAUSED, NarrationStatus.PLAYING)
    assert session.audio.data == b"ID3audio"


def test_new_story_triggers_new_narration():
    narrate = Recorder(b"ID3audio")
    generate = Recorder(HARBOR)
    session = _session(generate=generate, narrate=narrate)

    async def run():
        await session.upload(b"seed", "seed.txt", "text/plain")
        await session.generate()
        await session.toggle_narration()
        generate.result = GenerationResult(analysis="dry", story="Sand everywhere.")
        await session.generate()
        assert session.narration_status == NarrationStatus.IDLE
        await session.toggle_narration()

    asyncio.run(run())
    assert [c[0] for c in narrate.calls] == ["The fog rolled in...", "Sand everywhere."]


def test_narration_failure_is_soft():
    session = _session(narrate=Recorder(error=GatewayFailure("quota")))

    async def run():
        await session.upload(b"seed", "seed.txt", "text/plain")
        await session.generate()
        return await session.toggle_narration()

    assert asyncio.run(run()) == NarrationStatus.IDLE
    assert session.audio is None
    assert session.result == HARBOR


def test_narration_missing_audio_is_soft():
    session = _session(narrate=Recorder(None))

    async def run():
        await session.upload(b"seed", "seed.txt", "text/plain")
        await session.generate()
        return await session.toggle_narration()

    assert asyncio.run(run()) == NarrationStatus.IDLE


def test_narration_requires_story():
    session = _session()
    with pytest.raises(SessionStateError):
        asyncio.run(session.toggle_narration())


def test_playback_ended_returns_to_ready():
    session = asyncio.run(_populated(_session()))
    session.playback_ended()
    assert session.narration_status == NarrationStatus.READY


def test_ingest_mismatch_is_rejected():
    session = _session()
    session.select_type(SourceType.PDF)
    with pytest.raises(SourceMismatchError):
        session.ingest(PlainTextPayload(text="hello"))
    assert session.payload is None


def test_set_url_requires_url_selector():
    session = _session()
    with pytest.raises(SourceMismatchError):
        session.set_url("https://example.com")
    session.select_type(SourceType.URL)
    session.set_url("not even a url")
    assert session.payload == RemoteUrlPayload(url="not even a url")


def test_decode_error_keeps_previous_source():
    session = _session()
    asyncio.run(session.upload(b"first", "first.txt", "text/plain"))
    asyncio.run(session.generate())
    with pytest.raises(DecodeError):
        asyncio.run(session.upload(b"not a zip", "broken.docx", None))
    assert session.payload == PlainTextPayload(text="first")
    assert session.result == HARBOR


def test_chat_context_includes_image_only_for_image_sources():
    chat = Recorder("ok")
    session = _session(chat=chat)
    asyncio.run(_populated(session))
    context = chat.calls[-1][1]
    assert context.image == session.payload
    assert context.story == "The fog rolled in..."
    assert context.analysis == "a misty harbor at dawn"

    asyncio.run(session.upload(b"plain", "plain.txt", "text/plain"))
    asyncio.run(session.send_message("Any ideas?"))
    context = chat.calls[-1][1]
    assert context.image is None
    assert context.story is None


def test_stale_generation_result_is_dropped():
    release = None

    async def slow_generate(payload):
        await release.wait()
        return HARBOR

    session = _session(generate=slow_generate)

    async def run():
        nonlocal release
        release = asyncio.Event()
        await session.upload(b"seed", "seed.txt", "text/plain")
        task = asyncio.create_task(session.generate())
        await asyncio.sleep(0)
        session.reset()
        release.set()
        return await task

    assert asyncio.run(run()) is None
    assert session.result is None


def test_chat_replies_keep_send_order():
    gates = {}

    async def chat(message, context):
        await gates[message].wait()
        return f"re: {message}"

    session = _session(chat=chat)

    async def run():
        gates["first"] = asyncio.Event()
        gates["second"] = asyncio.Event()
        t1 = asyncio.create_task(session.send_message("first"))
        t2 = asyncio.create_task(session.send_message("second"))
        await asyncio.sleep(0)
        assert session.chat_status == ChatStatus.AWAITING_REPLY
        gates["second"].set()
        await t2
        # second reply is held until the first lands
        assert [m.text for m in session.messages] == ["first", "second"]
        gates["first"].set()
        await t1

    asyncio.run(run())
    assert [(m.speaker, m.text) for m in session.messages] == [
        ("user", "first"),
        ("user", "second"),
        ("assistant", "re: first"),
        ("assistant", "re: second"),
    ]
    assert session.chat_status == ChatStatus.IDLE


def test_regenerate_during_synthesis_allows_new_narration():
    gate = None
    spoken = []

    async def narrate(story):
        spoken.append(story)
        if story == "one":
            await gate.wait()
        return f"audio:{story}".encode()

    generate = Recorder(GenerationResult(analysis="calm", story="one"))
    session = _session(generate=generate, narrate=narrate)

    async def run():
        nonlocal gate
        gate = asyncio.Event()
        await session.upload(b"seed", "seed.txt", "text/plain")
        await session.generate()
        pending = asyncio.create_task(session.toggle_narration())
        await asyncio.sleep(0)
        assert session.narration_status == NarrationStatus.SYNTHESIZING

        generate.result = GenerationResult(analysis="stormy", story="two")
        await session.generate()
        assert session.narration_status == NarrationStatus.IDLE

        gate.set()
        dropped = await pending
        again = await session.toggle_narration()
        return dropped, again

    dropped, again = asyncio.run(run())
    assert dropped == NarrationStatus.IDLE
    assert again == NarrationStatus.PLAYING
    assert spoken == ["one", "two"]
    assert session.audio.story == "two"
    assert session.audio.data == b"audio:two"


def test_reset_during_synthesis_allows_new_narration():
    gate = None
    spoken = []

    async def narrate(story):
        spoken.append(story)
        if len(spoken) == 1:
            await gate.wait()
        return b"ID3audio"

    session = _session(narrate=narrate)

    async def run():
        nonlocal gate
        gate = asyncio.Event()
        await session.upload(b"seed", "seed.txt", "text/plain")
        await session.generate()
        pending = asyncio.create_task(session.toggle_narration())
        await asyncio.sleep(0)

        session.reset()
        gate.set()
        dropped = await pending
        assert session.audio is None

        await session.upload(b"another seed", "other.txt", "text/plain")
        await session.generate()
        again = await session.toggle_narration()
        return dropped, again

    dropped, again = asyncio.run(run())
    assert dropped == NarrationStatus.IDLE
    assert again == NarrationStatus.PLAYING
    assert len(spoken) == 2
