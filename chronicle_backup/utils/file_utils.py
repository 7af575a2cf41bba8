import os
import shutil
import stat
import uuid
from pathlib import Path
from typing import TYPE_CHECKING

import psutil

from chronicle_backup.utils.hash_utils import SizeAndHash, HashingReader

if TYPE_CHECKING:
	from chronicle_backup.types.hash_method import HashMethod

_COPY_BUF_SIZE = 128 * 1024


def copy_file_hashed(src_path: Path, dst_path: Path, *, hash_method: 'HashMethod') -> SizeAndHash:
	"""
	Streams src to dst, calculating the size and the hash of what has been read
	"""
	with open(src_path, 'rb') as f_src, open(dst_path, 'wb') as f_dst:
		reader = HashingReader(f_src, hash_method)
		while buf := reader.read(_COPY_BUF_SIZE):
			f_dst.write(buf)
	return reader.result()


def rm_rf(path: Path, *, missing_ok: bool = False):
	"""
	Does not follow symlink
	"""
	try:
		is_dir = stat.S_ISDIR(path.lstat().st_mode)
	except FileNotFoundError:
		if not missing_ok:
			raise
	else:
		if is_dir:
			shutil.rmtree(path)
		else:
			path.unlink(missing_ok=missing_ok)


def atomic_write_bytes(path: Path, data: bytes, *, temp_dir: Path):
	"""
	Writes to a temp file in temp_dir, then os.replace it to path.
	Readers either see nothing or the complete file
	"""
	temp_dir.mkdir(parents=True, exist_ok=True)
	temp_path = temp_dir / '{}.{}.tmp'.format(path.name, uuid.uuid4().hex)
	try:
		with open(temp_path, 'wb') as f:
			f.write(data)
			f.flush()
			os.fsync(f.fileno())
		try:
			os.replace(temp_path, path)
		except OSError:
			# temp dir in a different file system? write next to the target, then replace
			sibling = path.parent / temp_path.name
			shutil.copyfile(temp_path, sibling)
			os.replace(sibling, path)
	finally:
		temp_path.unlink(missing_ok=True)


def check_dir_writable(path: Path):
	"""
	:raise OSError: if a probe file cannot be created inside the directory
	"""
	path.mkdir(parents=True, exist_ok=True)
	probe = path / '.write_probe_{}'.format(uuid.uuid4().hex)
	try:
		with open(probe, 'wb') as f:
			f.write(b'probe')
	finally:
		probe.unlink(missing_ok=True)


def get_free_space(path: Path) -> int:
	return psutil.disk_usage(str(path)).free
