"""PlayerState transport operations against a fake output device."""

import math
import os
from types import SimpleNamespace
from unittest.mock import Mock, patch

import numpy as np
import pytest

from conftest import FakeSoundDevice, write_png, write_wav
from engine.errors import AudioOutputError, InvalidVolumeError, NoAudioTracksError, TrackNotFoundError
from engine.player_state import PlayerState, TransportState
from engine.sink import OutputDevice


def _stream(fake_sd, index=-1):
    return fake_sd.streams[index]


@pytest.mark.parametrize("level", [0.0, 0.25, 0.5, 0.75, 1.0])
def test_set_volume_reads_back_from_sink(player, two_second_wav, level):
    path, _ = two_second_wav
    player.play(path)
    player.set_volume(level)
    assert player.sink.volume == level
    assert player.volume == level


@pytest.mark.parametrize("level", [-0.1, 1.5, 2.0, float("nan")])
def test_invalid_volume_is_rejected_and_sink_untouched(player, two_second_wav, level):
    path, _ = two_second_wav
    player.play(path, volume=0.3)
    with pytest.raises(InvalidVolumeError):
        player.set_volume(level)
    assert player.sink.volume == 0.3
    assert player.state is TransportState.PLAYING


def test_volume_scales_output(player, fake_sd, two_second_wav):
    path, expected = two_second_wav
    player.play(path)
    player.set_volume(0.5)
    out = _stream(fake_sd).tick()
    assert np.allclose(out[:, 0], expected[:1024] * 0.5, atol=1e-4)


def test_set_volume_without_track_succeeds(player):
    player.set_volume(0.4)
    assert player.state is TransportState.IDLE
    assert player.volume == pytest.approx(0.4)


def test_play_without_volume_uses_last_level(player, two_second_wav):
    path, _ = two_second_wav
    player.set_volume(0.2)
    player.play(path)
    assert player.sink.volume == pytest.approx(0.2)


def test_pause_resume_loses_and_repeats_nothing(player, fake_sd, two_second_wav):
    path, expected = two_second_wav
    player.play(path)
    stream = _stream(fake_sd)

    played = [stream.tick() for _ in range(10)]
    before_pause = player.sink.samples_played
    assert before_pause == 10 * 1024

    player.pause()
    assert player.state is TransportState.PAUSED
    for _ in range(25):
        silent = stream.tick()
        assert not silent.any(), "Paused sink must output silence"
    assert player.sink.samples_played == before_pause

    player.resume()
    assert player.state is TransportState.PLAYING
    played += stream.run_until_done()

    out = np.concatenate([b[:, 0] for b in played])
    assert player.sink.samples_played == 88200
    assert np.allclose(out[:88200], expected, atol=1e-4)
    assert not out[88200:].any()


def test_natural_end_returns_to_idle(player, fake_sd, two_second_wav):
    path, _ = two_second_wav
    player.play(path)
    sink = player.sink
    _stream(fake_sd).run_until_done()

    assert sink.finished
    assert sink.samples_played == 88200
    assert player.state is TransportState.IDLE
    assert sink.source.closed
    assert _stream(fake_sd).closed, "Drained stream must be released once idle is observed"


def test_play_replaces_previous_track(player, fake_sd, tmp_path):
    a = tmp_path / "a.wav"
    b = tmp_path / "b.wav"
    write_wav(a, 1.0)
    write_wav(b, 1.0)

    player.play(a)
    sink_a = player.sink
    player.play(b)

    assert player.current_track == b
    assert player.sink is not sink_a
    assert sink_a.finished
    assert sink_a.source.closed, "Decode session of A must be released"
    assert fake_sd.streams[0].closed and not fake_sd.streams[0].active
    assert [s.active for s in fake_sd.streams] == [False, True]

    os.replace(a, tmp_path / "a_renamed.wav")


def test_stop_on_idle_player_is_noop(player):
    player.stop()
    player.stop()
    assert player.state is TransportState.IDLE
    assert player.sink is None and player.current_track is None


def test_pause_and_resume_on_idle_player_are_noops(player):
    player.pause()
    player.resume()
    assert player.state is TransportState.IDLE


def test_stop_clears_track_and_releases_session(player, fake_sd, two_second_wav):
    path, _ = two_second_wav
    player.play(path)
    sink = player.sink
    player.stop()

    assert player.sink is None and player.current_track is None
    assert sink.source.closed
    assert _stream(fake_sd).tick() is None, "No samples after stop returns"


def test_file_without_audio_tracks_leaves_player_idle(player, tmp_path):
    path = tmp_path / "cover.mp3"
    path.write_bytes(b"\x89PNG\r\n\x1a\n")
    container = SimpleNamespace(streams=[SimpleNamespace(type="video")], close=Mock())

    with patch("engine.decoders.av.open", return_value=container):
        with pytest.raises(NoAudioTracksError):
            player.play(path)

    assert player.state is TransportState.IDLE
    assert player.sink is None and player.current_track is None


def test_real_image_file_without_audio_leaves_player_idle(player, fake_sd, tmp_path):
    path = write_png(tmp_path / "cover.mp3")

    with pytest.raises(NoAudioTracksError):
        player.play(path)

    assert player.state is TransportState.IDLE
    assert player.sink is None and player.current_track is None
    assert fake_sd.streams == []


def test_failed_play_after_success_leaves_player_idle(player, fake_sd, two_second_wav, tmp_path):
    path, _ = two_second_wav
    player.play(path)
    previous = player.sink

    with pytest.raises(TrackNotFoundError):
        player.play(tmp_path / "missing.flac")

    assert previous.finished
    assert player.state is TransportState.IDLE
    assert player.current_track is None


def test_unavailable_device_raises_audio_output_error(tuning, two_second_wav):
    path, _ = two_second_wav
    player = PlayerState(OutputDevice(tuning, backend=FakeSoundDevice(device_available=False)))
    with pytest.raises(AudioOutputError):
        player.play(path)
    assert player.state is TransportState.IDLE


def test_stream_open_failure_releases_source(tuning, two_second_wav):
    path, _ = two_second_wav
    backend = FakeSoundDevice()
    backend.OutputStream = Mock(side_effect=backend.PortAudioError("Invalid sample rate"))
    opened = []

    def open_source(p):
        from engine.sample_source import SampleSource
        src = SampleSource.open(p)
        opened.append(src)
        return src

    player = PlayerState(OutputDevice(tuning, backend=backend), open_source=open_source)
    with pytest.raises(AudioOutputError):
        player.play(path)
    assert opened[0].closed
    assert player.sink is None


def test_stop_one_second_in_then_replay_restarts_from_first_sample(player, fake_sd, two_second_wav):
    path, expected = two_second_wav
    player.play(path)
    stream = _stream(fake_sd)
    while player.sink.samples_played < 44100:
        stream.tick()
    assert player.elapsed_seconds == pytest.approx(1.0, abs=0.03)

    player.stop()
    assert player.state is TransportState.IDLE

    player.play(path)
    restarted = _stream(fake_sd)
    assert restarted is not stream
    blocks = restarted.run_until_done()
    out = np.concatenate([b[:, 0] for b in blocks])
    assert player.sink.samples_played == 88200
    assert np.allclose(out[:1024], expected[:1024], atol=1e-4)


def test_status_snapshot(player, fake_sd, two_second_wav):
    path, _ = two_second_wav
    assert player.status().track is None

    player.play(path, volume=0.6)
    for _ in range(43):
        _stream(fake_sd).tick()
    status = player.status()
    assert status.track == path
    assert status.state is TransportState.PLAYING
    assert status.volume == pytest.approx(0.6)
    assert math.isclose(status.elapsed_seconds, 43 * 1024 / 44100)
    assert status.duration_seconds == pytest.approx(2.0, abs=0.05)
