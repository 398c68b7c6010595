"""
Utility functions for audio and base64 conversion.
"""

import base64
import copy
import logging
import math
import secrets
from typing import Any, Union

import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_FREQUENCY = 24000  # Hz

ID_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"

AudioLike = Union[np.ndarray, bytes, bytearray]


def float_to_16bit_pcm(float32_array: np.ndarray) -> np.ndarray:
    """
    Convert a float32 numpy array to int16 PCM format.

    Args:
        float32_array (np.ndarray): Input array of dtype float32.

    Returns:
        np.ndarray: Output array of dtype int16.
    """
    if float32_array.dtype != np.float32:
        logger.warning("Input array is not float32, attempting conversion.")
        float32_array = float32_array.astype(np.float32)

    clipped = np.clip(float32_array, -1, 1)
    scaled = np.where(clipped < 0, clipped * 32768, clipped * 32767)
    return scaled.astype(np.int16)


def base64_to_array_buffer(base64_string: str) -> np.ndarray:
    """
    Decode a base64 string into a numpy uint8 array buffer.

    Args:
        base64_string (str): Base64-encoded input string.

    Returns:
        np.ndarray: Decoded buffer as uint8 numpy array.
    """
    try:
        binary_data = base64.b64decode(base64_string)
        return np.frombuffer(binary_data, dtype=np.uint8)
    except Exception as e:
        logger.error(f"Failed to decode base64 string: {e}")
        raise


def base64_to_pcm16(base64_string: str) -> np.ndarray:
    """
    Decode a base64 string of little-endian PCM16 into int16 samples.
    """
    return base64_to_array_buffer(base64_string).view("<i2").astype(np.int16)


def to_pcm16(audio: AudioLike) -> np.ndarray:
    """
    View raw PCM16 bytes, int16 or float32 arrays as an int16 sample array.

    Raises:
        TypeError: If the input is not an audio buffer.
    """
    if isinstance(audio, (bytes, bytearray, memoryview)):
        return np.frombuffer(bytes(audio), dtype="<i2").astype(np.int16)
    if isinstance(audio, np.ndarray):
        if audio.dtype == np.int16:
            return audio
        if audio.dtype == np.float32:
            return float_to_16bit_pcm(audio)
        if audio.dtype == np.uint8:
            return audio.view("<i2").astype(np.int16)
    raise TypeError(f"Unsupported audio buffer type: {type(audio).__name__}")


def array_buffer_to_base64(array_buffer: AudioLike) -> str:
    """
    Encode a numpy array buffer into a base64 string.

    Args:
        array_buffer (np.ndarray | bytes): Input array buffer.

    Returns:
        str: Base64-encoded string.
    """
    try:
        if isinstance(array_buffer, (bytes, bytearray, memoryview)):
            return base64.b64encode(bytes(array_buffer)).decode("utf-8")
        if array_buffer.dtype == np.float32:
            logger.debug("Converting float32 array to int16 PCM before encoding.")
            array_buffer = float_to_16bit_pcm(array_buffer)
        array_bytes = array_buffer.astype(array_buffer.dtype.newbyteorder("<")).tobytes()
        return base64.b64encode(array_bytes).decode("utf-8")
    except Exception as e:
        logger.error(f"Failed to encode array buffer: {e}")
        raise


def merge_int16_arrays(left: AudioLike, right: AudioLike) -> np.ndarray:
    """
    Merge two int16 buffers into a single array.

    Args:
        left: First buffer (int16 array or raw PCM16 bytes).
        right: Second buffer (int16 array or raw PCM16 bytes).

    Returns:
        np.ndarray: Concatenated int16 array.

    Raises:
        TypeError: If either input is not int16 audio.
    """
    if isinstance(left, (bytes, bytearray)):
        left = to_pcm16(left)
    if isinstance(right, (bytes, bytearray)):
        right = to_pcm16(right)
    if not (
        isinstance(left, np.ndarray)
        and left.dtype == np.int16
        and isinstance(right, np.ndarray)
        and right.dtype == np.int16
    ):
        logger.error("Attempted to merge arrays that are not int16.")
        raise TypeError("Both items must be int16 arrays.")
    return np.concatenate((left, right))


def ms_to_samples(ms: float, frequency: int = DEFAULT_FREQUENCY) -> int:
    """Sample index reached after ``ms`` milliseconds at ``frequency``."""
    return math.floor(ms * frequency / 1000)


def samples_to_ms(sample_count: int, frequency: int = DEFAULT_FREQUENCY) -> int:
    """Whole milliseconds covered by ``sample_count`` samples."""
    return math.floor(sample_count / frequency * 1000)


def generate_id(prefix: str, size: int = 21) -> str:
    """
    Generate a random identifier such as ``evt_7mKp...``.
    """
    return prefix + "".join(secrets.choice(ID_ALPHABET) for _ in range(size))


def trim_debug_event(event: Any, max_limit: int = 200) -> Any:
    """
    Copy an event with audio payloads redacted and long deltas shortened,
    for logging.
    """
    if not isinstance(event, dict):
        return event

    trimmed = copy.deepcopy(event)
    item = trimmed.get("item")
    if isinstance(item, dict) and isinstance(item.get("content"), list):
        for content in item["content"]:
            if isinstance(content, dict) and content.get("audio"):
                content["audio"] = "<base64 redacted...>"
    if trimmed.get("audio"):
        trimmed["audio"] = "<audio redacted...>"
    delta = trimmed.get("delta")
    if isinstance(delta, str) and len(delta) > max_limit:
        trimmed["delta"] = delta[:max_limit] + "... (truncated)"
    return trimmed
