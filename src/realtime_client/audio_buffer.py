import logging

import numpy as np

from src.realtime_client.utils import AudioLike, to_pcm16

logger = logging.getLogger(__name__)

MAX_BUFFER_SIZE = 5 * 1024 * 1024  # 5MB


class InputAudioBuffer:
    """
    Local mirror of the PCM16 samples forwarded upstream since the last flush.

    Backed by a ``bytearray`` so appends are amortized O(1). Once it holds more
    than ``max_bytes`` the oldest audio is dropped; ``offset`` counts the
    samples dropped that way so callers can still map session-relative
    positions onto ``samples``.
    """

    def __init__(self, max_bytes: int = MAX_BUFFER_SIZE) -> None:
        if max_bytes <= 0 or max_bytes % 2:
            raise ValueError(f"max_bytes must be a positive even number, got {max_bytes}")
        self.max_bytes = max_bytes
        self._buffer = bytearray()
        self.offset = 0

    def __len__(self) -> int:
        return len(self._buffer) // 2

    @property
    def samples(self) -> np.ndarray:
        return np.frombuffer(bytes(self._buffer), dtype="<i2").astype(np.int16)

    @property
    def byte_length(self) -> int:
        return len(self._buffer)

    def append(self, audio: AudioLike) -> np.ndarray:
        """
        Append a chunk and return it as int16 samples.
        """
        chunk = to_pcm16(audio)
        self._buffer.extend(chunk.astype("<i2").tobytes())

        overflow = len(self._buffer) - self.max_bytes
        if overflow > 0:
            logger.warning("Input audio buffer size exceeded threshold, dropping oldest audio.")
            del self._buffer[:overflow]
            self.offset += overflow // 2
        return chunk

    def flush(self) -> np.ndarray:
        samples = self.samples
        self.clear()
        logger.debug(f"Flushed {len(samples)} buffered input samples.")
        return samples

    def clear(self) -> None:
        self._buffer = bytearray()
        self.offset = 0
