"""
File encryption for backup units.

Each file is encrypted with AES-256-CBC under a fresh 16-byte random IV and
written as ``IV || ciphertext`` next to the original with an ``.enc`` suffix.

Two key derivations are supported:
- legacy: the UTF-8 passphrase right-padded with spaces / truncated to 32 bytes
- pbkdf2: PBKDF2-HMAC-SHA256 with a salt stored once per backup root
"""

import os
import time
from pathlib import Path
from typing import Callable, List, Optional, Union

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


ENCRYPTED_SUFFIX = '.enc'
IV_SIZE = 16
KEY_SIZE = 32
SALT_SIZE = 16
SALT_FILENAME = '.kdf_salt'
SALT_READ_ATTEMPTS = 50
SALT_RETRY_DELAY = 0.02
PBKDF2_ITERATIONS = 480000
CHUNK_SIZE = 64 * 1024

KEY_DERIVATIONS = ('legacy', 'pbkdf2')

PathLike = Union[str, Path]


class EncryptionError(Exception):
    """Raised when a file cannot be encrypted or decrypted."""
    pass


def derive_key(passphrase: str, method: str = 'legacy', salt: Optional[bytes] = None) -> bytes:
    """
    Derive a 32-byte AES key from an operator passphrase.

    Args:
        passphrase: Operator-supplied key string
        method: 'legacy' (pad/truncate) or 'pbkdf2'
        salt: Required for 'pbkdf2'

    Returns:
        32-byte key

    Raises:
        ValueError: If method is unknown or salt is missing for pbkdf2
    """
    if method == 'legacy':
        raw = passphrase.encode('utf-8')
        return raw[:KEY_SIZE].ljust(KEY_SIZE, b' ')

    if method == 'pbkdf2':
        if not salt:
            raise ValueError("pbkdf2 key derivation requires a salt")
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_SIZE,
            salt=salt,
            iterations=PBKDF2_ITERATIONS,
        )
        return kdf.derive(passphrase.encode('utf-8'))

    raise ValueError(
        f"Invalid key derivation: {method}. Valid options: {list(KEY_DERIVATIONS)}"
    )


def load_or_create_salt(backup_root: PathLike) -> bytes:
    """
    Return the per-root PBKDF2 salt, creating it on first use.

    The salt file is created exclusively, so concurrent first starts all end
    up with the salt that reached the disk. A reader that finds the file still
    being written retries until it holds a full salt.

    Raises:
        EncryptionError: If the salt file stays short or cannot be created
    """
    salt_path = Path(backup_root) / SALT_FILENAME
    salt_path.parent.mkdir(parents=True, exist_ok=True)

    for _ in range(SALT_READ_ATTEMPTS):
        try:
            with open(salt_path, 'xb') as f:
                salt = os.urandom(SALT_SIZE)
                f.write(salt)
            return salt
        except FileExistsError:
            salt = salt_path.read_bytes()
            if len(salt) == SALT_SIZE:
                return salt
            time.sleep(SALT_RETRY_DELAY)
        except OSError as e:
            raise EncryptionError(f"Failed to create salt file {salt_path}: {e}")

    raise EncryptionError(f"Salt file {salt_path} is truncated ({len(salt)} bytes)")


class FileCipher:
    """Encrypts and decrypts individual files with a fixed key."""

    def __init__(self, key: bytes):
        if len(key) != KEY_SIZE:
            raise ValueError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")
        self._key = key

    @classmethod
    def from_passphrase(cls, passphrase: str, method: str = 'legacy',
                        backup_root: Optional[PathLike] = None) -> 'FileCipher':
        """
        Build a cipher from a passphrase.

        Args:
            passphrase: Operator-supplied key string
            method: Key derivation method
            backup_root: Backup root holding the pbkdf2 salt (pbkdf2 only)
        """
        salt = None
        if method == 'pbkdf2':
            if backup_root is None:
                raise ValueError("pbkdf2 key derivation requires a backup root for the salt")
            salt = load_or_create_salt(backup_root)
        return cls(derive_key(passphrase, method, salt))

    def encrypt_file(self, path: PathLike) -> Path:
        """
        Encrypt a file to ``<path>.enc`` and delete the plaintext.

        Returns:
            Path to the encrypted file

        Raises:
            EncryptionError: If the file cannot be encrypted
        """
        source = Path(path)
        target = source.with_name(source.name + ENCRYPTED_SUFFIX)
        iv = os.urandom(IV_SIZE)

        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        padder = padding.PKCS7(algorithms.AES.block_size).padder()

        try:
            with open(source, 'rb') as src, open(target, 'wb') as dst:
                dst.write(iv)
                for chunk in iter(lambda: src.read(CHUNK_SIZE), b''):
                    dst.write(encryptor.update(padder.update(chunk)))
                dst.write(encryptor.update(padder.finalize()) + encryptor.finalize())
            source.unlink()
        except OSError as e:
            _remove_quietly(target)
            raise EncryptionError(f"Failed to encrypt {source.name}: {e}")

        return target

    def decrypt_file(self, path: PathLike) -> Path:
        """
        Decrypt ``<name>.enc`` back to ``<name>`` and delete the ciphertext.

        Returns:
            Path to the decrypted file

        Raises:
            EncryptionError: If the file is malformed or the key is wrong
        """
        source = Path(path)
        if not source.name.endswith(ENCRYPTED_SUFFIX):
            raise EncryptionError(f"Not an encrypted file: {source.name}")
        target = source.with_name(source.name[:-len(ENCRYPTED_SUFFIX)])
        target_opened = False

        try:
            with open(source, 'rb') as src:
                iv = src.read(IV_SIZE)
                if len(iv) != IV_SIZE:
                    raise EncryptionError(f"Encrypted file is truncated: {source.name}")

                decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
                unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()

                with open(target, 'wb') as dst:
                    target_opened = True
                    for chunk in iter(lambda: src.read(CHUNK_SIZE), b''):
                        dst.write(unpadder.update(decryptor.update(chunk)))
                    dst.write(unpadder.update(decryptor.finalize()) + unpadder.finalize())
            source.unlink()
        except EncryptionError:
            raise
        except (OSError, ValueError) as e:
            # ValueError: bad padding (wrong key) or ciphertext not block aligned
            if target_opened:
                _remove_quietly(target)
            raise EncryptionError(f"Failed to decrypt {source.name}: {e}")

        return target

    def encrypt_directory(self, directory: PathLike,
                          cancellation_check: Optional[Callable[[], None]] = None) -> List[str]:
        """
        Encrypt every regular file directly under a directory.

        Args:
            directory: Backup unit directory
            cancellation_check: Called before each file; may raise to abort

        Returns:
            Names of the encrypted files (with .enc suffix)
        """
        encrypted = []
        for entry in sorted(Path(directory).iterdir()):
            if not entry.is_file():
                continue
            if cancellation_check:
                cancellation_check()
            encrypted.append(self.encrypt_file(entry).name)
        return encrypted


def encrypt_file(path: PathLike, key: str) -> Path:
    """Encrypt a single file with a passphrase using the legacy derivation."""
    return FileCipher(derive_key(key)).encrypt_file(path)


def decrypt_file(path: PathLike, key: str) -> Path:
    """Decrypt a single ``.enc`` file with a passphrase using the legacy derivation."""
    return FileCipher(derive_key(key)).decrypt_file(path)


def is_encrypted(backup_dir: PathLike) -> bool:
    """True iff the directory holds at least one ``.enc`` entry."""
    try:
        return any(name.endswith(ENCRYPTED_SUFFIX) for name in os.listdir(backup_dir))
    except OSError:
        return False


def _remove_quietly(path: Path):
    try:
        if path.exists():
            path.unlink()
    except OSError:
        pass
