import dataclasses
import os
from pathlib import Path
from typing import List, Tuple, Optional

from chronicle_backup.action import Action
from chronicle_backup.action.get_manifest_action import GetManifestAction, get_entry_owners
from chronicle_backup.types.hash_method import HashMethod
from chronicle_backup.types.manifest import ManifestEntry
from chronicle_backup.utils import file_utils, misc_utils
from chronicle_backup.utils.thread_pool import FailFastThreadPool


@dataclasses.dataclass
class RestoreResult:
	run_id: str
	restored_count: int = 0
	restored_bytes: int = 0
	skipped_failed: List[ManifestEntry] = dataclasses.field(default_factory=list)  # failed in the run, nothing to restore
	errors: List[Tuple[ManifestEntry, str]] = dataclasses.field(default_factory=list)  # (entry, reason)


class RestoreRunAction(Action[RestoreResult]):
	"""
	Materializes a committed run into a directory, with the archive paths as the relative paths.

	A differential run is restored as its baseline full run overlaid by its own entries
	"""

	def __init__(self, run_id: str, output_dir: Path, *, verify_hash: bool = True, restore_mtime: bool = True):
		super().__init__()
		self.run_id = run_id
		self.output_dir = output_dir
		self.verify_hash = verify_hash
		self.restore_mtime = restore_mtime

	def is_interruptable(self) -> bool:
		return True

	def __restore_one(self, owner_run_id: str, entry: ManifestEntry, hash_method: HashMethod) -> Optional[str]:
		"""
		:return: the error message, or None if restored
		"""
		ref = entry.get_blob_ref(owner_run_id)
		dst = self.output_dir.joinpath(*entry.archive_path.split('/'))
		try:
			dst.parent.mkdir(parents=True, exist_ok=True)
			sah = file_utils.copy_file_hashed(ref.get_path(), dst, hash_method=hash_method)
			if self.verify_hash and (sah.hash != entry.content_hash or sah.size != entry.size_bytes):
				raise ValueError('blob content mismatch, expected {} ({} bytes), got {} ({} bytes)'.format(
					entry.content_hash, entry.size_bytes, sah.hash, sah.size,
				))
			if self.restore_mtime:
				os.utime(dst, ns=(entry.last_write_time, entry.last_write_time))
		except (OSError, ValueError) as e:
			self.logger.error('Restore {!r} failed: {}'.format(entry.archive_path, e))
			return misc_utils.one_line(e)
		return None

	def run(self) -> RestoreResult:
		manifest = GetManifestAction(self.run_id).run()
		owners = get_entry_owners(manifest)
		result = RestoreResult(self.run_id)

		self.logger.info('Restoring run {} ({} entries) to {!r}'.format(self.run_id, len(owners), str(self.output_dir)))
		self.output_dir.mkdir(parents=True, exist_ok=True)

		to_restore: List[Tuple[str, ManifestEntry]] = []
		for path in sorted(owners.keys()):
			owner_run_id, entry = owners[path]
			if entry.is_failed:
				result.skipped_failed.append(entry)
			else:
				to_restore.append((owner_run_id, entry))

		with FailFastThreadPool('restore') as pool:
			futures = []
			for owner_run_id, entry in to_restore:
				if self.is_interrupted.is_set():
					break
				futures.append((entry, pool.submit(self.__restore_one, owner_run_id, entry, manifest.hash_method)))

		for entry, future in futures:
			if (error := future.result()) is not None:
				result.errors.append((entry, error))
			else:
				result.restored_count += 1
				result.restored_bytes += entry.size_bytes

		if len(result.skipped_failed) > 0:
			self.logger.warning('{} entries of run {} failed during backup and were not restored'.format(len(result.skipped_failed), self.run_id))
		self.logger.info('Restored {} file(s) of run {}, {} error(s)'.format(result.restored_count, self.run_id, len(result.errors)))
		return result
