import hashlib
from pathlib import Path

from .. import config
from ..exceptions import FileHashError


def content_hash(path: Path) -> str:
    """
    Whole-file BLAKE2b-256 digest, hex encoded.

    Reads HASH_CHUNK_SIZE blocks through an incremental hash state, so memory
    use does not depend on file size.
    """
    h = hashlib.blake2b(digest_size=config.CONTENT_DIGEST_SIZE)
    try:
        with open(path, 'rb') as f:
            while chunk := f.read(config.HASH_CHUNK_SIZE):
                h.update(chunk)
    except OSError as e:
        raise FileHashError(f"Cannot read {path}: {e}") from e
    return h.hexdigest()


def bytes_hash(data: bytes) -> str:
    """Digest of an in-memory buffer, identical to content_hash of a file holding it."""
    h = hashlib.blake2b(digest_size=config.CONTENT_DIGEST_SIZE)
    h.update(data)
    return h.hexdigest()
