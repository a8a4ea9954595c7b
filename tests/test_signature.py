import struct

import pytest

from kmodpy.signature import SIG_MAGIC, SignatureInfo, signature_info


def build(signer=b"Example Signer", key_id=b"\x01\x12\xde\xad\xbe\xef",
          sig=b"SIGDATA", algo=1, hash_algo=4, id_type=1, body=b"\x7fELF module body"):
    block = struct.pack(">BBBBB3xI", algo, hash_algo, id_type, len(signer), len(key_id), len(sig))
    return body + signer + key_id + sig + block + SIG_MAGIC


def test_magic_must_match_exactly():
    assert SIG_MAGIC == b"~Module signature appended~\n"
    signed = build()
    assert signature_info(signed) is not None
    assert signature_info(signed[:-2] + b"!\n") is None


def test_parses_signed_module():
    info = signature_info(build())
    assert info == SignatureInfo(
        signer=b"Example Signer",
        key_id=b"\x01\x12\xde\xad\xbe\xef",
        algo="RSA",
        hash_algo="sha256",
        id_type="X509",
    )


def test_key_id_hex_format():
    info = signature_info(build())
    assert info.key_id_hex() == "01:12:DE:AD:BE:EF"


def test_empty_key_id():
    info = signature_info(build(key_id=b""))
    assert info.key_id == b""
    assert info.key_id_hex() == ""


@pytest.mark.parametrize("idx,name", [(0, "PGP"), (2, "PKCS#7")])
def test_id_types(idx, name):
    assert signature_info(build(id_type=idx)).id_type == name


def test_unsigned_module():
    assert signature_info(b"\x7fELF just a module") is None


def test_too_short():
    assert signature_info(b"") is None
    assert signature_info(SIG_MAGIC) is None


@pytest.mark.parametrize("kwargs", [{"algo": 2}, {"hash_algo": 8}, {"id_type": 3}])
def test_unknown_algorithms_rejected(kwargs):
    assert signature_info(build(**kwargs)) is None


def test_zero_signature_length_rejected():
    assert signature_info(build(sig=b"")) is None


def test_lengths_exceeding_data_rejected():
    block = struct.pack(">BBBBB3xI", 1, 4, 1, 200, 0, 5)
    assert signature_info(b"short" + block + SIG_MAGIC) is None