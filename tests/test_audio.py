import binascii

import numpy as np
import pytest

from entorno.audio import (
    SAMPLE_RATE,
    AudioPlayer,
    decode,
    decode_audio_data,
    synthesize_chime,
)

from conftest import FakeOutput, pcm_base64


class TestDecode:
    def test_round_trips_pcm_bytes(self):
        samples = [0, 1, -1, 32767, -32768, 1234]
        raw = np.array(samples, dtype="<i2").tobytes()
        assert decode(pcm_base64(samples)) == raw

    def test_tolerates_line_breaks(self):
        encoded = pcm_base64([1, 2, 3, 4])
        wrapped = encoded[:4] + "\n" + encoded[4:]
        assert decode(wrapped) == decode(encoded)

    def test_rejects_malformed_input(self):
        with pytest.raises(binascii.Error):
            decode("not base64!!")


class TestDecodeAudioData:
    def test_normalizes_samples(self):
        samples = [0, 16384, -16384, 32767, -32768]
        buffer = decode_audio_data(np.array(samples, dtype="<i2").tobytes())

        assert buffer.number_of_channels == 1
        assert buffer.length == len(samples)
        assert buffer.sample_rate == SAMPLE_RATE
        expected = np.array(samples, dtype=np.float32) / 32768.0
        np.testing.assert_allclose(buffer.get_channel_data(0), expected)

    def test_drops_trailing_odd_byte(self):
        data = np.array([100, -100], dtype="<i2").tobytes() + b"\x7f"
        buffer = decode_audio_data(data)
        assert buffer.length == 2

    def test_empty_input_gives_empty_buffer(self):
        buffer = decode_audio_data(b"")
        assert buffer.length == 0
        assert buffer.duration == 0

    def test_deinterleaves_stereo_and_drops_partial_frame(self):
        data = np.array([10, 20, 30, 40, 50], dtype="<i2").tobytes()
        buffer = decode_audio_data(data, channels=2)

        assert buffer.number_of_channels == 2
        assert buffer.length == 2
        np.testing.assert_allclose(buffer.get_channel_data(0), np.array([10, 30]) / 32768.0)
        np.testing.assert_allclose(buffer.get_channel_data(1), np.array([20, 40]) / 32768.0)

    def test_rejects_zero_channels(self):
        with pytest.raises(ValueError):
            decode_audio_data(b"\x00\x00", channels=0)

    def test_duration(self):
        buffer = decode_audio_data(np.zeros(SAMPLE_RATE // 2, dtype="<i2").tobytes())
        assert buffer.duration == pytest.approx(0.5)

    def test_to_pcm16_restores_samples(self):
        samples = np.array([0, 1000, -1000, 32767, -32768], dtype="<i2")
        buffer = decode_audio_data(samples.tobytes())
        np.testing.assert_array_equal(buffer.to_pcm16()[:, 0], samples)


def test_chime_is_short_and_quiet():
    chime = synthesize_chime()
    assert chime.number_of_channels == 1
    assert chime.duration == pytest.approx(0.5)
    assert np.abs(chime.samples).max() <= 0.1 + 1e-6
    # Fades out
    assert np.abs(chime.samples[0, -100:]).max() < np.abs(chime.samples[0, :2400]).max()


class TestAudioPlayer:
    def test_opens_output_lazily(self, player, fake_output):
        player.play_raw_audio(pcm_base64([1, 2, 3]), lambda: None)
        assert fake_output.is_open
        assert len(fake_output.voices) == 1
        assert player.is_playing

    def test_resumes_suspended_output(self, player, fake_output):
        player.open()
        fake_output.suspended = True
        player.play_raw_audio(pcm_base64([1, 2]), lambda: None)
        assert not fake_output.suspended
        assert fake_output.resume_calls == 1

    def test_natural_end_fires_on_ended_once(self, player, fake_output):
        ended = []
        player.play_raw_audio(pcm_base64([1, 2, 3]), lambda: ended.append("a"))

        player.poll()
        assert ended == []

        fake_output.voices[0].finish()
        player.poll()
        player.poll()
        assert ended == ["a"]
        assert not player.is_playing

    def test_new_sound_stops_previous_without_callback(self, player, fake_output):
        ended = []
        player.play_raw_audio(pcm_base64([1, 2]), lambda: ended.append("a"))
        player.play_raw_audio(pcm_base64([3, 4]), lambda: ended.append("b"))

        first, second = fake_output.voices
        assert first.stopped
        assert not second.stopped

        for voice in fake_output.voices:
            voice.finish()
        player.poll()
        assert ended == ["b"]

    def test_stop_audio_suppresses_on_ended(self, player, fake_output):
        ended = []
        player.play_raw_audio(pcm_base64([1, 2]), lambda: ended.append("a"))
        player.stop_audio()
        player.poll()

        assert fake_output.voices[0].stopped
        assert ended == []
        assert not player.is_playing

    def test_stop_audio_is_a_noop_when_idle(self, player):
        player.stop_audio()
        player.stop_audio()
        assert not player.is_playing

    def test_malformed_audio_reports_end_immediately(self, player, fake_output):
        ended = []
        player.play_raw_audio("@@not-audio@@", lambda: ended.append("x"))

        assert ended == ["x"]
        assert fake_output.voices == []
        assert not player.is_playing

    def test_output_failure_reports_end(self, fake_output):
        def broken_play(buffer):
            raise RuntimeError("device gone")

        fake_output.play = broken_play
        player = AudioPlayer(output=fake_output, watch=False)
        ended = []
        player.play_raw_audio(pcm_base64([1, 2]), lambda: ended.append("x"))
        assert ended == ["x"]

    def test_callback_errors_are_contained(self, player, fake_output):
        def explode():
            raise ValueError("boom")

        player.play_raw_audio(pcm_base64([1, 2]), explode)
        fake_output.voices[0].finish()
        player.poll()
        assert not player.is_playing

    def test_success_sound_does_not_interrupt_speech(self, player, fake_output):
        ended = []
        player.play_raw_audio(pcm_base64([1, 2]), lambda: ended.append("speech"))
        player.play_success_sound()

        speech, chime = fake_output.voices
        assert not speech.stopped
        assert chime.buffer.duration == pytest.approx(0.5)
        assert player.is_playing

        speech.finish()
        player.poll()
        assert ended == ["speech"]

    def test_close_stops_and_closes_output(self, player, fake_output):
        ended = []
        player.play_raw_audio(pcm_base64([1, 2]), lambda: ended.append("a"))
        player.close()

        assert fake_output.voices[0].stopped
        assert not fake_output.is_open
        assert ended == []

    def test_watcher_thread_fires_on_ended(self):
        import threading

        output = FakeOutput()
        done = threading.Event()
        with AudioPlayer(output=output, poll_interval=0.01) as player:
            player.play_raw_audio(pcm_base64([1, 2]), done.set)
            output.voices[0].finish()
            assert done.wait(2.0)

    def test_stop_audio_fires_on_interrupted(self, player, fake_output):
        ended, interrupted = [], []
        player.play_raw_audio(
            pcm_base64([1, 2]),
            lambda: ended.append("a"),
            on_interrupted=lambda: interrupted.append("a"),
        )
        player.stop_audio()
        fake_output.voices[0].finish()
        player.poll()

        assert interrupted == ["a"]
        assert ended == []

    def test_replaced_sound_fires_on_interrupted(self, player, fake_output):
        calls = []
        player.play_raw_audio(
            pcm_base64([1, 2]),
            lambda: calls.append("a ended"),
            on_interrupted=lambda: calls.append("a interrupted"),
        )
        player.play_raw_audio(
            pcm_base64([3, 4]),
            lambda: calls.append("b ended"),
            on_interrupted=lambda: calls.append("b interrupted"),
        )
        for voice in fake_output.voices:
            voice.finish()
        player.poll()

        assert calls == ["a interrupted", "b ended"]

    def test_natural_end_does_not_fire_on_interrupted(self, player, fake_output):
        interrupted = []
        player.play_raw_audio(pcm_base64([1, 2]), lambda: None, on_interrupted=lambda: interrupted.append("a"))
        fake_output.voices[0].finish()
        player.poll()
        player.stop_audio()
        assert interrupted == []

    def test_callbacks_go_through_dispatch(self, fake_output):
        pending = []
        player = AudioPlayer(output=fake_output, watch=False, dispatch=pending.append)
        ended = []
        player.play_raw_audio(pcm_base64([1, 2]), lambda: ended.append("a"))
        fake_output.voices[0].finish()
        player.poll()

        assert ended == []
        assert len(pending) == 1
        pending.pop()()
        assert ended == ["a"]

    def test_suspend_then_play_resumes(self, player, fake_output):
        player.suspend()
        assert not fake_output.suspended

        player.open()
        player.suspend()
        assert fake_output.suspended

        player.play_raw_audio(pcm_base64([1, 2]), lambda: None)
        assert not fake_output.suspended
        assert fake_output.resume_calls == 1
