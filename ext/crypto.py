"""Blue stdlib module `crypto`: digests, encodings, AES-GCM and scrypt password hashes.

Binary data crosses the language boundary as lowercase hex strings.
"""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.exceptions import InvalidKey, InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from ext import expect_int, expect_str
from extensions import ExtensionAPI
from objects import BlueRuntimeError, make_error, make_string, native_bool

BLUE_EXTENSION_NAME = "crypto"
BLUE_EXTENSION_API_VERSION = 1

BLUE_MODULE_SOURCE = r"""
fun sha(data, algorithm="sha256") {
    ## Hex digest of a string. algorithm: sha1, sha224, sha256, sha384, sha512, sha3_256, sha3_512, blake2b, md5.
    return _sha(data, algorithm);
}
fun encode_hex(data) { return _encode_hex(data); }
fun decode_hex(data) { return _decode_hex(data); }
fun encode_base64(data) { return _encode_base64(data); }
fun decode_base64(data) { return _decode_base64(data); }
fun encrypt(password, plaintext) {
    ## AES-256-GCM encrypt with a key derived from `password`; returns hex.
    return _encrypt(password, plaintext);
}
fun decrypt(password, ciphertext) { return _decrypt(password, ciphertext); }
fun generate_from_password(password) {
    ## Salted scrypt hash suitable for storing.
    return _generate_from_password(password);
}
fun compare_hash_and_password(hash, password) { return _compare_hash_and_password(hash, password); }
fun random_bytes(n) { return _random_bytes(n); }
"""

_ALGORITHMS = {
    "sha1": hashes.SHA1,
    "sha224": hashes.SHA224,
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
    "sha3_256": hashes.SHA3_256,
    "sha3_512": hashes.SHA3_512,
    "md5": hashes.MD5,
}

SALT_SIZE = 16
NONCE_SIZE = 12
KEY_SIZE = 32
# scrypt cost parameters shared by key derivation and password hashes
SCRYPT_N = 2 ** 14
SCRYPT_R = 8
SCRYPT_P = 1


def _scrypt(salt: bytes) -> Scrypt:
    return Scrypt(salt=salt, length=KEY_SIZE, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)


def _decode(data: bytes, rule: str) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        raise BlueRuntimeError(f"`{rule}` result is not valid UTF-8", kind="Runtime")


def _from_hex(text: str, rule: str) -> bytes:
    try:
        return bytes.fromhex(text)
    except ValueError:
        raise BlueRuntimeError(f"`{rule}` expects valid hex", kind="Argument")


def _sha(_interpreter, args, _arg_nodes, _env, location):
    data = expect_str(args[0], "sha", 1).encode("utf-8")
    algorithm = expect_str(args[1], "sha", 2).lower() if len(args) > 1 else "sha256"
    if algorithm == "blake2b":
        digest = hashes.Hash(hashes.BLAKE2b(64))
    elif algorithm in _ALGORITHMS:
        digest = hashes.Hash(_ALGORITHMS[algorithm]())
    else:
        return make_error(f"`sha` unknown algorithm {algorithm!r}")
    digest.update(data)
    return make_string(digest.finalize().hex())


def _encode_hex(_interpreter, args, _arg_nodes, _env, location):
    return make_string(expect_str(args[0], "encode_hex").encode("utf-8").hex())


def _decode_hex(_interpreter, args, _arg_nodes, _env, location):
    return make_string(_decode(_from_hex(expect_str(args[0], "decode_hex"), "decode_hex"), "decode_hex"))


def _encode_base64(_interpreter, args, _arg_nodes, _env, location):
    data = expect_str(args[0], "encode_base64").encode("utf-8")
    return make_string(base64.b64encode(data).decode("ascii"))


def _decode_base64(_interpreter, args, _arg_nodes, _env, location):
    text = expect_str(args[0], "decode_base64")
    try:
        data = base64.b64decode(text, validate=True)
    except binascii.Error:
        raise BlueRuntimeError("`decode_base64` expects valid base64", kind="Argument")
    return make_string(_decode(data, "decode_base64"))


def _encrypt(_interpreter, args, _arg_nodes, _env, location):
    password = expect_str(args[0], "encrypt", 1).encode("utf-8")
    plaintext = expect_str(args[1], "encrypt", 2).encode("utf-8")
    salt = os.urandom(SALT_SIZE)
    nonce = os.urandom(NONCE_SIZE)
    key = _scrypt(salt).derive(password)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext, None)
    return make_string((salt + nonce + ciphertext).hex())


def _decrypt(_interpreter, args, _arg_nodes, _env, location):
    password = expect_str(args[0], "decrypt", 1).encode("utf-8")
    blob = _from_hex(expect_str(args[1], "decrypt", 2), "decrypt")
    if len(blob) < SALT_SIZE + NONCE_SIZE + 16:
        return make_error("`decrypt` ciphertext is too short")
    salt, nonce, ciphertext = blob[:SALT_SIZE], blob[SALT_SIZE:SALT_SIZE + NONCE_SIZE], blob[SALT_SIZE + NONCE_SIZE:]
    key = _scrypt(salt).derive(password)
    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext, None)
    except InvalidTag:
        return make_error("`decrypt` failed: wrong password or corrupted data")
    return make_string(_decode(plaintext, "decrypt"))


def _generate_from_password(_interpreter, args, _arg_nodes, _env, location):
    password = expect_str(args[0], "generate_from_password").encode("utf-8")
    salt = os.urandom(SALT_SIZE)
    derived = _scrypt(salt).derive(password)
    return make_string(f"scrypt${salt.hex()}${derived.hex()}")


def _compare_hash_and_password(_interpreter, args, _arg_nodes, _env, location):
    stored = expect_str(args[0], "compare_hash_and_password", 1)
    password = expect_str(args[1], "compare_hash_and_password", 2).encode("utf-8")
    parts = stored.split("$")
    if len(parts) != 3 or parts[0] != "scrypt":
        return make_error("`compare_hash_and_password` expects a hash from generate_from_password")
    salt = _from_hex(parts[1], "compare_hash_and_password")
    expected = _from_hex(parts[2], "compare_hash_and_password")
    try:
        _scrypt(salt).verify(password, expected)
    except InvalidKey:
        return native_bool(False)
    return native_bool(True)


def _random_bytes(_interpreter, args, _arg_nodes, _env, location):
    n = expect_int(args[0], "random_bytes")
    if n <= 0:
        raise BlueRuntimeError("`random_bytes` expects a positive length", kind="Argument")
    return make_string(os.urandom(n).hex())


def blue_register(ext: ExtensionAPI) -> None:
    ext.metadata(name="crypto", version="0.1.0")
    ext.register_builtin("_sha", 1, 2, _sha, doc="_sha(data[, algorithm]) -> STRING hex digest")
    ext.register_builtin("_encode_hex", 1, 1, _encode_hex, doc="_encode_hex(str) -> STRING")
    ext.register_builtin("_decode_hex", 1, 1, _decode_hex, doc="_decode_hex(hex) -> STRING")
    ext.register_builtin("_encode_base64", 1, 1, _encode_base64, doc="_encode_base64(str) -> STRING")
    ext.register_builtin("_decode_base64", 1, 1, _decode_base64, doc="_decode_base64(b64) -> STRING")
    ext.register_builtin("_encrypt", 2, 2, _encrypt, doc="_encrypt(password, plaintext) -> STRING hex(salt||nonce||ct)")
    ext.register_builtin("_decrypt", 2, 2, _decrypt, doc="_decrypt(password, hex) -> STRING")
    ext.register_builtin("_generate_from_password", 1, 1, _generate_from_password, doc="_generate_from_password(pw) -> STRING")
    ext.register_builtin("_compare_hash_and_password", 2, 2, _compare_hash_and_password, doc="_compare_hash_and_password(hash, pw) -> BOOLEAN")
    ext.register_builtin("_random_bytes", 1, 1, _random_bytes, doc="_random_bytes(n) -> STRING hex")
