import enum
import hashlib
import importlib
from typing import Protocol, Callable, Dict

import xxhash


class Hasher(Protocol):
	def update(self, b: bytes):
		...

	def hexdigest(self) -> str:
		...


def _blake3_hasher() -> Hasher:
	# optional dependency, see the "blake3" extra
	return importlib.import_module('blake3').blake3()


class HashMethod(enum.Enum):
	"""
	The content hash algorithm of a run. Stored by name in the ledger and in the manifest,
	so a run keeps being verifiable after the configured method changes
	"""
	xxh128 = 'xxh128'
	md5 = 'md5'
	sha256 = 'sha256'
	blake3 = 'blake3'

	def create_hasher(self) -> Hasher:
		return _HASHER_FACTORIES[self]()


_HASHER_FACTORIES: Dict[HashMethod, Callable[[], Hasher]] = {
	HashMethod.xxh128: xxhash.xxh128,
	HashMethod.md5: hashlib.md5,
	HashMethod.sha256: hashlib.sha256,
	HashMethod.blake3: _blake3_hasher,
}
