#!/usr/bin/env python3
"""Offline speech-to-text (VOSK) with WER scoring against a known sentence.

Usage:
  python stt.py listen --model ./model
  python stt.py transcribe recording.wav --model ./model
  python stt.py download --dest .
  python stt.py devices

`listen` records from the microphone until Ctrl+C (or --seconds), `transcribe`
reads a mono 16-bit WAV file. Both print the transcript and its WER against
--reference (default: the built-in ground-truth sentence).
"""
import argparse
import json
import queue
import sys
import threading
import time
import wave
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

import requests

try:
    from vosk import Model, KaldiRecognizer
except Exception:
    print("Missing dependency 'vosk'. Install with: pip install vosk", file=sys.stderr)
    raise

from aligner import align
from models import DEFAULT_MODEL_URL, download_model, verify_model
from wer import GROUND_TRUTH, report, tokenize


def _import_sounddevice():
    try:
        import sounddevice as sd
    except Exception:
        # sounddevice raises OSError when the PortAudio system library is missing
        print("Missing dependency 'sounddevice' or PortAudio system library.", file=sys.stderr)
        print("On Debian/Ubuntu/Raspbian install PortAudio with:", file=sys.stderr)
        print("  sudo apt update && sudo apt install -y libportaudio2 portaudio19-dev", file=sys.stderr)
        print("Then (in your virtualenv) reinstall the Python package:", file=sys.stderr)
        print("  pip install --upgrade pip && pip install sounddevice", file=sys.stderr)
        raise
    return sd


def list_audio_devices():
    """Print available audio devices with their indices and input channel counts."""
    sd = _import_sounddevice()
    try:
        devices = sd.query_devices()
    except Exception as e:
        print("Failed to query audio devices:", e, file=sys.stderr)
        return
    print("Available audio devices (index: name | max_input_channels):")
    for i, dev in enumerate(devices):
        name = dev.get('name') if isinstance(dev, dict) else str(dev)
        max_in = dev.get('max_input_channels', 'N/A') if isinstance(dev, dict) else 'N/A'
        print(f"{i}: {name} | inputs: {max_in}")


def _ignore(_):
    pass


class TranscriptionProvider(ABC):
    """Capability interface shared by speech engines.

    Engines report through the callbacks given at construction: `on_partial`
    with interim text, `on_final` with each finished utterance and `on_error`
    with an exception raised while listening.
    """

    def __init__(self,
                 on_partial: Callable[[str], None] = _ignore,
                 on_final: Callable[[str], None] = _ignore,
                 on_error: Callable[[Exception], None] = _ignore):
        self.on_partial = on_partial
        self.on_final = on_final
        self.on_error = on_error

    @abstractmethod
    def start_listening(self) -> None:
        """Begin capturing audio; results arrive through the callbacks."""
        pass

    @abstractmethod
    def stop_listening(self) -> None:
        """Stop capturing and report any buffered result through `on_final`."""
        pass


class VoskProvider(TranscriptionProvider):
    def __init__(self, model_path: str, sample_rate: int = 16000, device: Optional[int] = None,
                 **callbacks):
        super().__init__(**callbacks)
        verify_model(model_path)
        self.model_path = model_path
        self.sample_rate = sample_rate
        self.device = device
        self.model = Model(model_path)
        self.recognizer = self._new_recognizer()
        self._audio: "queue.Queue[bytes]" = queue.Queue()
        self._stop = threading.Event()
        self._failed = threading.Event()
        self._worker: Optional[threading.Thread] = None
        self._stream = None

    def _new_recognizer(self, sample_rate: Optional[int] = None):
        rec = KaldiRecognizer(self.model, sample_rate or self.sample_rate)
        rec.SetWords(True)
        return rec

    def feed(self, data: bytes) -> None:
        """Push raw 16-bit PCM into the recognizer and fire callbacks."""
        if self.recognizer.AcceptWaveform(data):
            text = json.loads(self.recognizer.Result()).get('text', '')
            if text:
                self.on_final(text)
        else:
            partial = json.loads(self.recognizer.PartialResult()).get('partial', '')
            if partial:
                self.on_partial(partial)

    def flush(self) -> None:
        """Emit whatever the recognizer still buffers as a final result."""
        text = json.loads(self.recognizer.FinalResult()).get('text', '')
        if text:
            self.on_final(text)

    def transcribe_wav(self, path: str, block_frames: int = 4000) -> str:
        """Transcribe a mono 16-bit PCM WAV file and return the joined text."""
        pieces: List[str] = []
        on_final = self.on_final
        recognizer = self.recognizer

        def collect(text: str):
            pieces.append(text)
            on_final(text)

        self.on_final = collect
        try:
            with wave.open(path, 'rb') as wf:
                if wf.getnchannels() != 1 or wf.getsampwidth() != 2 or wf.getcomptype() != 'NONE':
                    raise ValueError(f"{path}: audio must be WAV format mono PCM 16-bit")
                # the file's own rate applies to this file only
                self.recognizer = self._new_recognizer(wf.getframerate())
                while True:
                    data = wf.readframes(block_frames)
                    if not data:
                        break
                    self.feed(data)
            self.flush()
        finally:
            self.on_final = on_final
            self.recognizer = recognizer
        return ' '.join(pieces)

    def _audio_callback(self, indata, frames, time_info, status):
        if status:
            print(status, file=sys.stderr)
        if not self._stop.is_set():
            self._audio.put(bytes(indata))

    def _run(self):
        while not self._stop.is_set():
            try:
                data = self._audio.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                self.feed(data)
            except Exception as e:
                self._failed.set()
                self._stop.set()
                self.on_error(e)
                break

    def _discard_audio(self):
        while not self._audio.empty():
            self._audio.get_nowait()

    def start_listening(self) -> None:
        sd = _import_sounddevice()
        self._stop.clear()
        self._failed.clear()
        self._discard_audio()
        self.recognizer = self._new_recognizer()
        try:
            self._stream = sd.RawInputStream(samplerate=self.sample_rate, blocksize=8000, dtype='int16',
                                             channels=1, callback=self._audio_callback, device=self.device)
            self._stream.start()
        except sd.PortAudioError as e:
            self._stream = None
            self.on_error(e)
            return
        self._worker = threading.Thread(target=self._run, daemon=True)
        self._worker.start()

    def stop_listening(self) -> None:
        self._stop.set()
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None
        if self._worker is not None:
            self._worker.join()
            self._worker = None
        if self._failed.is_set():
            # the recognizer already reported through on_error
            self._discard_audio()
            return
        # drain audio captured before the stream closed
        while not self._audio.empty():
            self.feed(self._audio.get_nowait())
        self.flush()


def score_transcript(transcript: str, reference: str, show_alignment: bool = False) -> int:
    print('RECOGNIZED:', transcript)
    alignment = align(tokenize(reference), tokenize(transcript))
    return report(alignment, show_alignment=show_alignment)


def run_transcribe(args) -> int:
    try:
        provider = VoskProvider(args.model, sample_rate=args.rate)
        transcript = provider.transcribe_wav(args.wav)
    except (FileNotFoundError, ValueError, wave.Error) as e:
        print("Transcription failed:", e, file=sys.stderr)
        return 1
    return score_transcript(transcript, args.reference, args.show_alignment)


def run_listen(args) -> int:
    finals: List[str] = []
    errors: List[Exception] = []

    def on_final(text):
        print('FINAL:', text)
        finals.append(text)

    def on_partial(text):
        print('partial:', text, end='\r')

    try:
        provider = VoskProvider(args.model, sample_rate=args.rate, device=args.device,
                                on_partial=on_partial, on_final=on_final, on_error=errors.append)
    except FileNotFoundError as e:
        print("Model verification failed:", e, file=sys.stderr)
        return 1

    provider.start_listening()
    if errors:
        print("PortAudio error while opening the input stream:", errors[0], file=sys.stderr)
        print("Use the 'devices' command to list available audio devices and their indices.", file=sys.stderr)
        print("Then run: python stt.py listen --model ./model --device <index>", file=sys.stderr)
        return 1

    print("Listening... read the reference sentence, press Ctrl+C to stop")
    start = time.time()
    try:
        while not errors and (args.seconds is None or time.time() - start < args.seconds):
            time.sleep(0.1)
    except KeyboardInterrupt:
        print("\nStopping...")
    finally:
        provider.stop_listening()
    if errors:
        print("Recognition failed:", errors[0], file=sys.stderr)
        return 1
    return score_transcript(' '.join(finals), args.reference, args.show_alignment)


def run_download(args) -> int:
    try:
        path = download_model(args.url, args.dest)
        verify_model(path)
    except (requests.RequestException, OSError) as e:
        print("Model download failed:", e, file=sys.stderr)
        return 1
    print(f"Model ready: {path}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description='Offline speech recognition with WER scoring')
    sub = parser.add_subparsers(dest='cmd')

    def add_scoring_args(p):
        p.add_argument('--model', default='./model', help='Path to VOSK model directory')
        p.add_argument('--rate', type=int, default=16000, help='sample rate')
        p.add_argument('--reference', default=GROUND_TRUTH, help='Text the speaker read (default: ground truth)')
        p.add_argument('--show-alignment', action='store_true', help='Print the aligned words and counts')

    p_listen = sub.add_parser('listen', help='record from the microphone and score the transcript')
    add_scoring_args(p_listen)
    p_listen.add_argument('--device', type=int, default=None, help='sounddevice device id')
    p_listen.add_argument('--seconds', type=float, default=None, help='stop after this many seconds')

    p_transcribe = sub.add_parser('transcribe', help='transcribe a WAV file and score the transcript')
    p_transcribe.add_argument('wav', help='mono 16-bit PCM WAV file')
    add_scoring_args(p_transcribe)

    p_download = sub.add_parser('download', help='download and unzip a VOSK model')
    p_download.add_argument('--url', default=DEFAULT_MODEL_URL, help='model archive URL')
    p_download.add_argument('--dest', default='.', help='directory to unpack the model into')

    sub.add_parser('devices', help='list audio devices and indices')

    args = parser.parse_args(argv)

    if args.cmd == 'listen':
        return run_listen(args)
    elif args.cmd == 'transcribe':
        return run_transcribe(args)
    elif args.cmd == 'download':
        return run_download(args)
    elif args.cmd == 'devices':
        list_audio_devices()
        return 0
    else:
        parser.print_help()
        return 0


if __name__ == '__main__':
    sys.exit(main())
