"""
Response body compression negotiated through Accept-Encoding.

The transport applies this after the handler chain has produced its final
response, so handlers and transforms always see and write plain bodies.
"""

"""
Copyright 2025 Chris Bunting
File: compression.py | Purpose: gzip/deflate response compression
@author Chris Bunting | @version 1.0.0

CHANGELOG:
2025-09-02 - Chris Bunting: Honour q-values, add Vary header
2025-08-28 - Chris Bunting: Initial implementation
"""

import gzip
import zlib
from typing import Dict, Optional

from multidict import CIMultiDict

MIN_COMPRESS_SIZE = 256
SUPPORTED_ENCODINGS = ("gzip", "deflate")


def parse_accept_encoding(header: str) -> Dict[str, float]:
    """Map each coding in an Accept-Encoding header to its q-value."""
    weights: Dict[str, float] = {}
    for part in header.split(","):
        token, _, params = part.strip().partition(";")
        token = token.strip().lower()
        if not token:
            continue
        quality = 1.0
        params = params.strip()
        if params.startswith("q="):
            try:
                quality = float(params[2:])
            except ValueError:
                quality = 0.0
        weights[token] = quality
    return weights


def negotiate_encoding(accept_encoding: str) -> Optional[str]:
    """Pick the preferred supported coding, or None for identity."""
    if not accept_encoding:
        return None
    weights = parse_accept_encoding(accept_encoding)
    wildcard = weights.get("*", 0.0)
    best, best_quality = None, 0.0
    for encoding in SUPPORTED_ENCODINGS:
        quality = weights.get(encoding, wildcard)
        if quality > best_quality:
            best, best_quality = encoding, quality
    return best


def compress(body: bytes, encoding: str, level: int = 6) -> bytes:
    if encoding == "gzip":
        return gzip.compress(body, compresslevel=level)
    if encoding == "deflate":
        return zlib.compress(body, level)
    raise ValueError(f"Unsupported content coding: {encoding}")


def compress_response(body: bytes, headers: CIMultiDict, accept_encoding: str) -> bytes:
    """Compress ``body`` for the client when worthwhile.

    Updates ``headers`` in place (Content-Encoding, Vary) and returns the body
    to send. Bodies that already carry a Content-Encoding, are too small, or
    would not shrink are returned unchanged.
    """
    if "Content-Encoding" in headers or len(body) < MIN_COMPRESS_SIZE:
        return body
    encoding = negotiate_encoding(accept_encoding)
    if encoding is None:
        return body
    compressed = compress(body, encoding)
    if len(compressed) >= len(body):
        return body
    headers["Content-Encoding"] = encoding
    vary = headers.get("Vary", "")
    if "accept-encoding" not in vary.lower():
        headers["Vary"] = f"{vary}, Accept-Encoding" if vary else "Accept-Encoding"
    return compressed
