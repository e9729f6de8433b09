"""Symmetric artifact encryption.

Produces the same envelope as ``openssl enc -aes-256-cbc -salt -pbkdf2``
(``Salted__`` + 8-byte salt + ciphertext, key and IV derived with
PBKDF2-HMAC-SHA256, 10000 iterations), so an artifact can be decrypted by
hand with::

    openssl enc -d -aes-256-cbc -pbkdf2 -in backup.sql.gz.enc -out backup.sql.gz -pass pass:KEY
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import BinaryIO

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from backup_drill.errors import EncryptionError

MAGIC = b"Salted__"
SALT_SIZE = 8
KEY_SIZE = 32
IV_SIZE = 16
ITERATIONS = 10000
CHUNK_SIZE = 1024 * 1024


def _derive(passphrase: str, salt: bytes) -> tuple[bytes, bytes]:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=KEY_SIZE + IV_SIZE, salt=salt, iterations=ITERATIONS)
    material = kdf.derive(passphrase.encode())
    return material[:KEY_SIZE], material[KEY_SIZE:]


def encrypt_stream(src: BinaryIO, dst: BinaryIO, passphrase: str) -> None:
    if not passphrase:
        raise EncryptionError("Encryption key is empty")

    salt = os.urandom(SALT_SIZE)
    key, iv = _derive(passphrase, salt)
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    padder = padding.PKCS7(algorithms.AES.block_size).padder()

    dst.write(MAGIC + salt)
    while chunk := src.read(CHUNK_SIZE):
        dst.write(encryptor.update(padder.update(chunk)))
    dst.write(encryptor.update(padder.finalize()) + encryptor.finalize())


def decrypt_stream(src: BinaryIO, dst: BinaryIO, passphrase: str) -> None:
    header = src.read(len(MAGIC) + SALT_SIZE)
    if len(header) != len(MAGIC) + SALT_SIZE or not header.startswith(MAGIC):
        raise EncryptionError("Artifact is not in OpenSSL salted format")

    key, iv = _derive(passphrase, header[len(MAGIC) :])
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()

    try:
        while chunk := src.read(CHUNK_SIZE):
            dst.write(unpadder.update(decryptor.update(chunk)))
        dst.write(unpadder.update(decryptor.finalize()) + unpadder.finalize())
    except ValueError as e:
        # Bad padding almost always means a wrong key
        raise EncryptionError("Decryption failed: wrong key or corrupt artifact") from e


def encrypt_file(src: Path, dst: Path, passphrase: str) -> None:
    try:
        with open(src, "rb") as fin, open(dst, "wb") as fout:
            encrypt_stream(fin, fout, passphrase)
    except OSError as e:
        raise EncryptionError(f"Encryption failed: {e}") from e


def decrypt_file(src: Path, dst: Path, passphrase: str) -> None:
    try:
        with open(src, "rb") as fin, open(dst, "wb") as fout:
            decrypt_stream(fin, fout, passphrase)
    except OSError as e:
        raise EncryptionError(f"Decryption failed: {e}") from e
