from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

import numpy as np
import soundfile as sf

from assetbake.core.audio import decode_audio, probe_audio
from assetbake.core.data_structures import AudioFormat
from assetbake.core.errors import BakeIOError, MalformedInput, UnsupportedFeature


def tone(frames: int, channels: int) -> np.ndarray:
    t = np.arange(frames, dtype=np.float32) / 22050.0
    wave = 0.25 * np.sin(2 * np.pi * 440.0 * t)
    return np.repeat(wave[:, None], channels, axis=1)


def ogg_vorbis_available() -> bool:
    return "OGG" in sf.available_formats() and "VORBIS" in sf.available_subtypes("OGG")


class AudioProbeTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.dir = Path(self._tmp.name)

    def write(self, name: str, data: np.ndarray, **kwargs) -> str:
        path = self.dir / name
        sf.write(str(path), data, 22050, **kwargs)
        return str(path)

    def test_mono_wav(self) -> None:
        path = self.write("jump.wav", tone(2205, 1), subtype="PCM_16")
        audio = probe_audio(path, "jump", volume=0.5, looping=True)
        self.assertEqual(audio.format, AudioFormat.WAV)
        self.assertEqual((audio.sample_rate, audio.channels, audio.frames), (22050, 1, 2205))
        self.assertEqual(audio.file, "audio/jump.wav")
        self.assertEqual((audio.volume, audio.looping), (0.5, True))

    def test_float_wav_is_accepted(self) -> None:
        path = self.write("hit.wav", tone(100, 1), subtype="FLOAT")
        self.assertEqual(probe_audio(path, "hit").frames, 100)

    def test_stereo_wav_is_rejected(self) -> None:
        path = self.write("wide.wav", tone(100, 2), subtype="PCM_16")
        with self.assertRaises(UnsupportedFeature):
            probe_audio(path, "wide")

    def test_8_bit_wav_is_rejected(self) -> None:
        path = self.write("lofi.wav", tone(100, 1), subtype="PCM_U8")
        with self.assertRaises(UnsupportedFeature):
            probe_audio(path, "lofi")

    def test_garbage_is_malformed(self) -> None:
        path = self.dir / "noise.wav"
        path.write_bytes(b"RIFF but not really a wave file")
        with self.assertRaises(MalformedInput):
            probe_audio(str(path), "noise")

    def test_missing_file(self) -> None:
        with self.assertRaises(BakeIOError):
            probe_audio(str(self.dir / "absent.wav"), "absent")

    def test_decode_returns_frames_by_channels(self) -> None:
        path = self.write("jump.wav", tone(50, 1), subtype="PCM_16")
        data, rate = decode_audio(path)
        self.assertEqual(data.shape, (50, 1))
        self.assertEqual(data.dtype, np.float32)
        self.assertEqual(rate, 22050)

    @unittest.skipUnless(ogg_vorbis_available(), "libsndfile without Vorbis support")
    def test_stereo_ogg(self) -> None:
        path = self.write("theme.ogg", tone(22050, 2), format="OGG", subtype="VORBIS")
        audio = probe_audio(path, "theme")
        self.assertEqual(audio.format, AudioFormat.OGG)
        self.assertEqual(audio.channels, 2)
        self.assertEqual(audio.file, "audio/theme.ogg")

    @unittest.skipUnless(ogg_vorbis_available(), "libsndfile without Vorbis support")
    def test_mono_ogg_is_rejected(self) -> None:
        path = self.write("voice.ogg", tone(22050, 1), format="OGG", subtype="VORBIS")
        with self.assertRaises(UnsupportedFeature):
            probe_audio(path, "voice")


if __name__ == "__main__":
    unittest.main()
