"""
Cache Compression Utilities

Uses LZ4 for fast compression of mid-sized entries and ZSTD for large
ones. Every stored value starts with a one-byte marker naming how the
rest was encoded.
"""

import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional, Tuple

import lz4.frame
import zstandard

logger = logging.getLogger(__name__)


# Compression type markers (1-byte prefix)
MARKER_UNCOMPRESSED = b'\x00'
MARKER_LZ4 = b'\x01'
MARKER_ZSTD = b'\x02'


@dataclass
class CompressionStats:
    """Track compression statistics."""
    original_size: int
    compressed_size: int
    algorithm: str

    @property
    def bytes_saved(self) -> int:
        return max(self.original_size - self.compressed_size, 0)


class CacheCompressor:
    """
    Handles compression/decompression of cache entries.

    Entries below `threshold` bytes are stored as-is. LZ4 is used up to
    `zstd_threshold`, ZSTD above it. Compression that does not shrink the
    payload is discarded.
    """

    def __init__(
        self,
        enabled: bool = True,
        threshold: int = 1024,  # 1KB minimum for compression
        zstd_threshold: int = 102400,  # 100KB for ZSTD
    ):
        self.enabled = enabled
        self.threshold = threshold
        self.zstd_threshold = zstd_threshold
        self._zstd_compressor = zstandard.ZstdCompressor(level=3)
        self._zstd_decompressor = zstandard.ZstdDecompressor()

    def compress(self, data: bytes) -> Tuple[bytes, Optional[CompressionStats]]:
        """
        Compress data if beneficial.

        Returns:
            Tuple of (marked_data, stats) or (marked_data, None) when stored raw
        """
        if not self.enabled or len(data) < self.threshold:
            return MARKER_UNCOMPRESSED + data, None

        if len(data) >= self.zstd_threshold:
            compressed = self._zstd_compressor.compress(data)
            marker, algorithm = MARKER_ZSTD, "zstd"
        else:
            compressed = lz4.frame.compress(data)
            marker, algorithm = MARKER_LZ4, "lz4"

        if len(compressed) >= len(data):
            return MARKER_UNCOMPRESSED + data, None

        stats = CompressionStats(
            original_size=len(data),
            compressed_size=len(compressed) + 1,  # +1 for marker
            algorithm=algorithm,
        )
        return marker + compressed, stats

    def decompress(self, data: bytes) -> bytes:
        """
        Strip the marker and decompress.

        Raises:
            ValueError: on an unknown marker
        """
        if not data:
            return data

        marker, payload = data[0:1], data[1:]
        if marker == MARKER_UNCOMPRESSED:
            return payload
        if marker == MARKER_LZ4:
            return lz4.frame.decompress(payload)
        if marker == MARKER_ZSTD:
            return self._zstd_decompressor.decompress(payload)
        raise ValueError(f"Unknown compression marker: {marker!r}")


def serialize_value(value: Any) -> bytes:
    """
    Serialize a Python value to JSON bytes for caching.

    Dataclass-like objects are stored by their attributes, Decimals as floats.
    """
    def default_handler(obj):
        if isinstance(obj, Decimal):
            return float(obj)
        if hasattr(obj, 'isoformat'):
            return obj.isoformat()
        if hasattr(obj, '__dict__'):
            return obj.__dict__
        return str(obj)

    return json.dumps(value, default=default_handler, ensure_ascii=False).encode('utf-8')


def deserialize_value(data: bytes) -> Any:
    """Deserialize JSON bytes back to a Python value."""
    if not data:
        return None
    return json.loads(data.decode('utf-8'))
