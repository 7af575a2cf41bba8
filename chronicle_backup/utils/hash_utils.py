import dataclasses
from pathlib import Path
from typing import IO, TYPE_CHECKING

if TYPE_CHECKING:
	from chronicle_backup.types.hash_method import HashMethod

_READ_BUF_SIZE = 128 * 1024


@dataclasses.dataclass(frozen=True)
class SizeAndHash:
	size: int
	hash: str


class HashingReader:
	"""
	Wraps a readable binary stream, counting and hashing every chunk read through it
	"""

	def __init__(self, file_obj: IO[bytes], hash_method: 'HashMethod'):
		self.__file_obj = file_obj
		self.__hasher = hash_method.create_hasher()
		self.__read_len = 0

	def read(self, size: int = -1) -> bytes:
		data = self.__file_obj.read(size)
		self.__read_len += len(data)
		self.__hasher.update(data)
		return data

	def result(self) -> SizeAndHash:
		return SizeAndHash(self.__read_len, self.__hasher.hexdigest())


def calc_file_size_and_hash(path: Path, *, hash_method: 'HashMethod') -> SizeAndHash:
	with open(path, 'rb') as f:
		reader = HashingReader(f, hash_method)
		while reader.read(_READ_BUF_SIZE):
			pass
		return reader.result()


def calc_file_hash(path: Path, *, hash_method: 'HashMethod') -> str:
	return calc_file_size_and_hash(path, hash_method=hash_method).hash
