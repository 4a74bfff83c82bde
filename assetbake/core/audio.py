"""
Audio probing
Validates WAV/OGG sources with SoundFile and collects the metadata the
runtime mixer needs. Audio bytes are shipped unchanged.
"""

import logging
import os
from typing import Tuple

import numpy as np
import soundfile as sf

from .data_structures import AudioFormat, AudioResource
from .errors import BakeIOError, MalformedInput, UnsupportedFeature

logger = logging.getLogger(__name__)

WAV_SUBTYPES = ("PCM_16", "PCM_32", "FLOAT")


def _info(path: str):
    if not os.path.isfile(path):
        raise BakeIOError(path, "file does not exist")
    try:
        return sf.info(path)
    except RuntimeError as exc:
        raise MalformedInput(f"unreadable audio: {exc}", None, path) from exc


def probe_audio(path: str, name: str, volume: float = 1.0, looping: bool = False) -> AudioResource:
    """
    Check that ``path`` is a supported sound file and describe it.

    WAV files must be mono PCM 16/32 bit or 32 bit float (sound effects);
    OGG files must be Vorbis stereo (music).
    """
    info = _info(path)
    extension = os.path.splitext(path)[1].lower()
    if extension == ".wav":
        if info.format != "WAV":
            raise MalformedInput(f"'.wav' file contains {info.format} data", None, path)
        if info.subtype not in WAV_SUBTYPES:
            raise UnsupportedFeature(f"WAV sample format {info.subtype} in '{path}'")
        if info.channels != 1:
            raise UnsupportedFeature(f"WAV with {info.channels} channels in '{path}', sound effects must be mono")
        audio_format = AudioFormat.WAV
    else:
        if info.format != "OGG":
            raise MalformedInput(f"'.ogg' file contains {info.format} data", None, path)
        if info.subtype != "VORBIS":
            raise UnsupportedFeature(f"OGG codec {info.subtype} in '{path}'")
        if info.channels != 2:
            raise UnsupportedFeature(f"OGG with {info.channels} channels in '{path}', music must be stereo")
        audio_format = AudioFormat.OGG

    # A full decode catches truncated payloads that the header alone does not reveal.
    data, _ = decode_audio(path)

    logger.debug("Audio '%s': %s %s, %d Hz, %d frame(s)", name, info.format, info.subtype, info.samplerate, data.shape[0])
    return AudioResource(
        name=name,
        file=f"audio/{name}{extension}",
        format=audio_format,
        sample_rate=info.samplerate,
        channels=info.channels,
        frames=int(data.shape[0]),
        volume=volume,
        looping=looping,
    )


def decode_audio(path: str) -> Tuple[np.ndarray, int]:
    """Decode a sound file into float32 frames of shape (frames, channels)."""
    _info(path)
    try:
        data, sample_rate = sf.read(path, always_2d=True, dtype="float32")
    except RuntimeError as exc:
        raise MalformedInput(f"unreadable audio: {exc}", None, path) from exc
    return np.ascontiguousarray(data, dtype=np.float32), sample_rate
