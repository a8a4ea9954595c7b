"""Reading the signature block appended to a kernel module file."""

from __future__ import annotations

import struct
from dataclasses import dataclass

SIG_MAGIC = b"~Module signature appended~\n"

PKEY_ALGO = ("DSA", "RSA")
PKEY_HASH_ALGO = ("md4", "md5", "sha1", "rmd160", "sha256", "sha384", "sha512", "sha224")
PKEY_ID_TYPE = ("PGP", "X509", "PKCS#7")

# algo, hash, id_type, signer_len, key_id_len, 3 bytes padding, sig_len (big endian)
_MODSIG = struct.Struct(">BBBBB3xI")


@dataclass(frozen=True)
class SignatureInfo:
    """What a module's signature block says about its signer and key."""

    signer: bytes
    key_id: bytes
    algo: str
    hash_algo: str
    id_type: str

    def key_id_hex(self) -> str:
        """Return the key identifier as colon-separated upper-case hex."""
        return ":".join(f"{b:02X}" for b in self.key_id)


def signature_info(data: bytes) -> SignatureInfo | None:
    """Parse the signature trailer of module ``data``; None if it has none."""
    size = len(data)
    if size < len(SIG_MAGIC):
        return None
    size -= len(SIG_MAGIC)
    if data[size:size + len(SIG_MAGIC)] != SIG_MAGIC:
        return None

    if size < _MODSIG.size:
        return None
    size -= _MODSIG.size
    algo, hash_algo, id_type, signer_len, key_id_len, sig_len = _MODSIG.unpack_from(data, size)
    if algo >= len(PKEY_ALGO) or hash_algo >= len(PKEY_HASH_ALGO) or id_type >= len(PKEY_ID_TYPE):
        return None
    if sig_len == 0 or size < signer_len + key_id_len + sig_len:
        return None

    size -= key_id_len + sig_len
    key_id = bytes(data[size:size + key_id_len])
    size -= signer_len
    signer = bytes(data[size:size + signer_len])

    return SignatureInfo(
        signer=signer,
        key_id=key_id,
        algo=PKEY_ALGO[algo],
        hash_algo=PKEY_HASH_ALGO[hash_algo],
        id_type=PKEY_ID_TYPE[id_type],
    )