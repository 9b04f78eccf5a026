import json
import wave

import pytest

import stt
from stt import TranscriptionProvider, VoskProvider


class FakeModel:
    def __init__(self, path):
        self.path = path


class FakeRecognizer:
    """Every second block completes an utterance named after the block count."""

    def __init__(self, model, rate):
        self.model = model
        self.rate = rate
        self.blocks = 0

    def SetWords(self, enabled):
        pass

    def AcceptWaveform(self, data):
        self.blocks += 1
        return self.blocks % 2 == 0

    def Result(self):
        return json.dumps({"text": f"word{self.blocks}"})

    def PartialResult(self):
        return json.dumps({"partial": f"partial{self.blocks}"})

    def FinalResult(self):
        return json.dumps({"text": "" if self.blocks % 2 == 0 else "tail"})


class FakePortAudioError(Exception):
    pass


class FakeStream:
    def __init__(self, samplerate, blocksize, dtype, channels, callback, device):
        self.samplerate = samplerate
        self.callback = callback
        self.device = device
        self.started = False
        self.closed = False

    def start(self):
        self.started = True

    def stop(self):
        self.started = False

    def close(self):
        self.closed = True


class FakeSoundDevice:
    PortAudioError = FakePortAudioError

    def __init__(self, fail=False):
        self.fail = fail
        self.streams = []

    def RawInputStream(self, **kwargs):
        if self.fail:
            raise FakePortAudioError("no input device")
        stream = FakeStream(**kwargs)
        self.streams.append(stream)
        return stream

    def query_devices(self):
        return [{"name": "mic", "max_input_channels": 1}]


@pytest.fixture
def model_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(stt, "Model", FakeModel)
    monkeypatch.setattr(stt, "KaldiRecognizer", FakeRecognizer)
    root = tmp_path / "model"
    (root / "am").mkdir(parents=True)
    (root / "am" / "final.mdl").write_bytes(b"x")
    (root / "conf").mkdir()
    (root / "conf" / "model.conf").write_text("")
    return str(root)


def _write_wav(path, frames, channels=1, rate=16000):
    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(2)
        wf.setframerate(rate)
        wf.writeframes(b"\x00\x00" * channels * frames)
    return str(path)


def test_base_provider_is_abstract():
    with pytest.raises(TypeError):
        TranscriptionProvider()

    class Partial(TranscriptionProvider):
        def start_listening(self):
            pass

    with pytest.raises(TypeError):
        Partial()


def test_provider_requires_model(tmp_path):
    with pytest.raises(FileNotFoundError):
        VoskProvider(str(tmp_path / "missing"))


def test_feed_fires_partial_and_final(model_dir):
    partials, finals = [], []
    provider = VoskProvider(model_dir, on_partial=partials.append, on_final=finals.append)
    provider.feed(b"\x00" * 10)
    provider.feed(b"\x00" * 10)
    provider.feed(b"\x00" * 10)
    provider.flush()
    assert partials == ["partial1", "partial3"]
    assert finals == ["word2", "tail"]


def test_transcribe_wav(model_dir, tmp_path):
    finals = []
    provider = VoskProvider(model_dir, on_final=finals.append)
    # 5 blocks of 4000 frames -> finals after blocks 2 and 4, tail flushed
    path = _write_wav(tmp_path / "a.wav", 20000, rate=8000)
    assert provider.transcribe_wav(path) == "word2 word4 tail"
    assert finals == ["word2", "word4", "tail"]
    # the file's rate is not kept for later sessions
    assert provider.sample_rate == 16000
    assert provider.recognizer.rate == 16000


def test_listen_after_transcribing_uses_configured_rate(model_dir, tmp_path, monkeypatch):
    sd = FakeSoundDevice()
    monkeypatch.setattr(stt, "_import_sounddevice", lambda: sd)
    finals = []
    provider = VoskProvider(model_dir, sample_rate=16000, on_final=finals.append)
    provider.transcribe_wav(_write_wav(tmp_path / "a.wav", 8000, rate=8000))
    finals.clear()

    provider.start_listening()
    stream = sd.streams[0]
    assert stream.samplerate == 16000
    assert provider.recognizer.rate == 16000
    stream.callback(b"\x00" * 8, 4, None, None)
    stream.callback(b"\x00" * 8, 4, None, None)
    provider.stop_listening()
    # fresh recognizer: block counting restarts for the microphone session
    assert finals == ["word2"]


class BrokenRecognizer(FakeRecognizer):
    def AcceptWaveform(self, data):
        raise RuntimeError("recognizer failed")


def test_worker_failure_reaches_on_error(model_dir, monkeypatch):
    sd = FakeSoundDevice()
    monkeypatch.setattr(stt, "_import_sounddevice", lambda: sd)
    monkeypatch.setattr(stt, "KaldiRecognizer", BrokenRecognizer)
    errors, finals = [], []
    provider = VoskProvider(model_dir, on_error=errors.append, on_final=finals.append)
    provider.start_listening()
    stream = sd.streams[0]
    worker = provider._worker
    stream.callback(b"\x00" * 8, 4, None, None)
    worker.join(timeout=5)

    assert not worker.is_alive()
    assert len(errors) == 1
    assert isinstance(errors[0], RuntimeError)

    # audio arriving after the failure is not buffered
    stream.callback(b"\x00" * 8, 4, None, None)
    assert provider._audio.empty()
    provider.stop_listening()
    assert stream.closed
    assert finals == []


def test_transcribe_wav_rejects_stereo(model_dir, tmp_path):
    provider = VoskProvider(model_dir)
    path = _write_wav(tmp_path / "s.wav", 100, channels=2)
    with pytest.raises(ValueError, match="mono"):
        provider.transcribe_wav(path)


def test_listening_cycle(model_dir, monkeypatch):
    sd = FakeSoundDevice()
    monkeypatch.setattr(stt, "_import_sounddevice", lambda: sd)
    finals = []
    provider = VoskProvider(model_dir, device=3, on_final=finals.append)
    provider.start_listening()
    stream = sd.streams[0]
    assert stream.started and stream.device == 3
    for _ in range(4):
        stream.callback(b"\x00" * 8, 4, None, None)
    provider.stop_listening()
    assert stream.closed
    assert finals == ["word2", "word4"]


def test_listening_reports_portaudio_error(model_dir, monkeypatch):
    monkeypatch.setattr(stt, "_import_sounddevice", lambda: FakeSoundDevice(fail=True))
    errors = []
    provider = VoskProvider(model_dir, on_error=errors.append)
    provider.start_listening()
    assert len(errors) == 1
    assert isinstance(errors[0], FakePortAudioError)


def test_list_audio_devices(monkeypatch, capsys):
    monkeypatch.setattr(stt, "_import_sounddevice", lambda: FakeSoundDevice())
    stt.list_audio_devices()
    assert "0: mic | inputs: 1" in capsys.readouterr().out


def test_main_transcribe_scores_against_reference(model_dir, tmp_path, capsys):
    path = _write_wav(tmp_path / "a.wav", 8000)
    code = stt.main(["transcribe", path, "--model", model_dir, "--reference", "word2 word4"])
    out = capsys.readouterr().out
    assert code == 0
    assert "RECOGNIZED: word2" in out
    # block 2 is the only final; "word4" is deleted
    assert "WER: 0.500" in out


def test_main_transcribe_missing_model(tmp_path, capsys):
    path = _write_wav(tmp_path / "a.wav", 100)
    assert stt.main(["transcribe", path, "--model", str(tmp_path / "none")]) == 1
    assert "Transcription failed" in capsys.readouterr().err


def test_main_listen_portaudio_error(model_dir, monkeypatch, capsys):
    monkeypatch.setattr(stt, "_import_sounddevice", lambda: FakeSoundDevice(fail=True))
    assert stt.main(["listen", "--model", model_dir, "--seconds", "0"]) == 1
    assert "PortAudio error" in capsys.readouterr().err


def test_main_download(model_dir, monkeypatch, capsys):
    monkeypatch.setattr(stt, "download_model", lambda url, dest: model_dir)
    assert stt.main(["download", "--dest", "unused"]) == 0
    assert "Model ready" in capsys.readouterr().out
