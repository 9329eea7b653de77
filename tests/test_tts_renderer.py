"""
Tests for the speech rendering adapter: fallback without double speech,
interruption, and local speech as the last resort.
"""

import asyncio

import httpx
import pytest

from src.pitchroom.config import VoiceOptions, get_config
from src.pitchroom.tts import RenderStatus, SpeechCancelled, SpeechRenderer, build_renderer
from src.pitchroom.tts_providers.base import TTSProviderError
from src.pitchroom.tts_providers.elevenlabs import ElevenLabsTTS, ElevenLabsTTSMetrics
from src.pitchroom.tts_providers.smallest import SmallestTTS
from tests.fakes import FakeSink, FakeTTSProvider


@pytest.mark.asyncio
async def test_primary_streams_to_sink(fake_sink):
    primary = FakeTTSProvider("primary")
    renderer = SpeechRenderer([primary], fake_sink)

    await renderer.speak("Tell me about your users")

    assert primary.calls == ["Tell me about your users."]
    assert fake_sink.events[0] == ("begin", "audio/mpeg")
    assert fake_sink.count("write") == 2
    assert fake_sink.events[-1] == ("finish",)
    assert renderer.status == RenderStatus.IDLE
    assert renderer.has_fallen_back is False
    assert renderer.active_provider == "primary"


@pytest.mark.asyncio
async def test_text_is_prepared_before_synthesis():
    primary = FakeTTSProvider("primary")
    renderer = SpeechRenderer([primary], FakeSink())

    await renderer.speak("We need $15000")

    assert primary.calls == ["We need $15K."]


@pytest.mark.asyncio
async def test_empty_text_is_a_no_op(fake_sink):
    primary = FakeTTSProvider("primary")
    renderer = SpeechRenderer([primary], fake_sink)

    await renderer.speak("   ")

    assert primary.calls == []
    assert fake_sink.events == []


@pytest.mark.asyncio
async def test_failure_mid_stream_aborts_then_falls_back_once(fake_sink):
    primary = FakeTTSProvider("primary", fail_after=1)
    secondary = FakeTTSProvider("secondary", chunks=(b"\x03" * 4,))
    renderer = SpeechRenderer([primary, secondary], fake_sink)

    await renderer.speak("Why now?")

    # Partial primary audio is cut before the secondary speaks the same text.
    abort_at = fake_sink.events.index(("abort",))
    assert fake_sink.events[abort_at + 1] == ("begin", "audio/mpeg")
    assert fake_sink.count("finish") == 1
    assert secondary.calls == ["Why now?"]
    assert fake_sink.spoken_local == []
    assert renderer.has_fallen_back is True
    assert renderer.active_provider == "secondary"


@pytest.mark.asyncio
async def test_local_speech_is_last_resort(fake_sink):
    primary = FakeTTSProvider("primary", fail_after=0)
    renderer = SpeechRenderer([primary], fake_sink)

    await renderer.speak("What's your moat?")

    assert fake_sink.spoken_local == ["What's your moat?"]
    assert renderer.active_provider == "local"
    assert renderer.has_fallen_back is True
    assert renderer.status == RenderStatus.IDLE


@pytest.mark.asyncio
async def test_provider_with_no_audio_counts_as_failure(fake_sink):
    renderer = SpeechRenderer([FakeTTSProvider("primary", chunks=())], fake_sink)

    await renderer.speak("Hello there")

    assert fake_sink.spoken_local == ["Hello there."]
    assert renderer.has_fallen_back is True


@pytest.mark.asyncio
async def test_everything_fails_sets_error_without_raising():
    sink = FakeSink(local_speech=False)
    renderer = SpeechRenderer([FakeTTSProvider("primary", fail_after=0)], sink)

    await renderer.speak("Anyone there?")

    assert renderer.status == RenderStatus.ERROR
    assert renderer.error


@pytest.mark.asyncio
async def test_each_speak_retries_primary(fake_sink):
    primary = FakeTTSProvider("primary", fail_after=0)
    renderer = SpeechRenderer([primary], fake_sink)

    await renderer.speak("One.")
    primary.fail_after = None
    await renderer.speak("Two.")

    assert primary.calls == ["One.", "Two."]
    assert renderer.active_provider == "primary"
    assert renderer.has_fallen_back is True


@pytest.mark.asyncio
async def test_stop_interrupts_speak(fake_sink):
    primary = FakeTTSProvider("primary", chunks=(b"\x01",) * 20, delay=0.05)
    renderer = SpeechRenderer([primary], fake_sink)

    task = asyncio.create_task(renderer.speak("This will take a while"))
    await asyncio.sleep(0.08)
    assert renderer.is_speaking

    await renderer.stop()

    with pytest.raises(SpeechCancelled):
        await task
    assert primary.cancelled is True
    assert fake_sink.events[-1] == ("abort",)
    assert renderer.status == RenderStatus.IDLE
    assert renderer.is_speaking is False


@pytest.mark.asyncio
async def test_stop_when_idle_is_safe(fake_sink):
    renderer = SpeechRenderer([FakeTTSProvider()], fake_sink)

    await renderer.stop()
    await renderer.stop()

    assert renderer.status == RenderStatus.IDLE


@pytest.mark.asyncio
async def test_non_streaming_sink_plays_buffered():
    sink = FakeSink(streaming=False)
    renderer = SpeechRenderer([FakeTTSProvider("primary")], sink)

    await renderer.speak("Buffered please")

    assert sink.count("write") == 1
    assert len(sink.written) == 16


@pytest.mark.asyncio
async def test_close_closes_providers():
    primary = FakeTTSProvider()
    renderer = SpeechRenderer([primary], FakeSink())

    await renderer.close()

    assert primary.closed is True


class TestBuildRenderer:
    def test_primary(self, voice_options, fake_sink):
        renderer = build_renderer(voice_options, fake_sink)
        assert [type(p) for p in renderer._providers] == [ElevenLabsTTS]

    def test_secondary(self):
        renderer = build_renderer(VoiceOptions(render_provider="secondary"), FakeSink())
        assert [type(p) for p in renderer._providers] == [SmallestTTS]

    def test_local(self):
        renderer = build_renderer(VoiceOptions(render_provider="local"), FakeSink())
        assert renderer._providers == []
        assert renderer.active_provider == "local"


class TestElevenLabs:
    @pytest.mark.asyncio
    async def test_streams_and_records_shared_metrics(self):
        def handler(request):
            assert request.headers["xi-api-key"] == "test_elevenlabs_key"
            return httpx.Response(200, content=b"ID3" + b"\xff\xfb" * 10)

        shared = ElevenLabsTTSMetrics()
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = ElevenLabsTTS(get_config(), client=client, metrics=shared)
            chunks = [c async for c in provider.synthesize_streaming("Who pays?")]

        assert b"".join(c.audio_bytes for c in chunks) == b"ID3" + b"\xff\xfb" * 10
        assert chunks[-1].is_final is True
        assert provider.metrics is shared
        assert shared.to_dict()["total_requests"] == 1
        assert shared.total_bytes == 23
        assert shared.total_characters == len("Who pays?")

    @pytest.mark.asyncio
    async def test_upstream_error_raises(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(401, text="bad key"))
        async with httpx.AsyncClient(transport=transport) as client:
            provider = ElevenLabsTTS(get_config(), client=client)
            with pytest.raises(TTSProviderError):
                async for _ in provider.synthesize_streaming("Hello."):
                    pass

        assert provider.metrics.total_requests == 0
