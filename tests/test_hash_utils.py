import hashlib
import io
import tempfile
import unittest
from pathlib import Path

import xxhash

from chronicle_backup.types.hash_method import HashMethod
from chronicle_backup.utils import hash_utils


class HashUtilsTestCase(unittest.TestCase):
	DATA = b'chronicle' * 100000

	def test_0_hash_methods(self):
		self.assertEqual(xxhash.xxh128(self.DATA).hexdigest(), self.__digest(HashMethod.xxh128))
		self.assertEqual(hashlib.md5(self.DATA).hexdigest(), self.__digest(HashMethod.md5))
		self.assertEqual(hashlib.sha256(self.DATA).hexdigest(), self.__digest(HashMethod.sha256))

	def __digest(self, hash_method: HashMethod) -> str:
		hasher = hash_method.create_hasher()
		hasher.update(self.DATA)
		return hasher.hexdigest()

	def test_1_hashing_reader(self):
		reader = hash_utils.HashingReader(io.BytesIO(self.DATA), HashMethod.sha256)
		chunks = []
		while buf := reader.read(4096):
			chunks.append(buf)
		self.assertEqual(self.DATA, b''.join(chunks))
		self.assertEqual(hash_utils.SizeAndHash(len(self.DATA), hashlib.sha256(self.DATA).hexdigest()), reader.result())

	def test_2_file_hash(self):
		with tempfile.TemporaryDirectory() as temp_dir:
			path = Path(temp_dir) / 'data.bin'
			path.write_bytes(self.DATA)
			sah = hash_utils.calc_file_size_and_hash(path, hash_method=HashMethod.xxh128)
			self.assertEqual(len(self.DATA), sah.size)
			self.assertEqual(xxhash.xxh128(self.DATA).hexdigest(), sah.hash)
			self.assertEqual(sah.hash, hash_utils.calc_file_hash(path, hash_method=HashMethod.xxh128))

			path.write_bytes(b'')
			self.assertEqual(hash_utils.SizeAndHash(0, xxhash.xxh128(b'').hexdigest()), hash_utils.calc_file_size_and_hash(path, hash_method=HashMethod.xxh128))


if __name__ == '__main__':
	unittest.main()
