import threading
from typing import Dict, List, Optional

from chronicle_backup.db.values import RunStrategy, StorageMode
from chronicle_backup.exceptions import DuplicatedArchivePath
from chronicle_backup.ledger.manifest_store import ManifestStore
from chronicle_backup.types.hash_method import HashMethod
from chronicle_backup.types.manifest import ManifestEntry, Manifest, ManifestSummary


class ManifestBuilder:
	"""
	The only writer of a run's manifest. Entries are collected in memory,
	then persisted once, atomically, at the end of the run
	"""

	def __init__(self, run_id: str, backup_type: str, strategy: RunStrategy, parent_run_id: Optional[str], hash_method: HashMethod, created_at: int):
		self.run_id = run_id
		self.backup_type = backup_type
		self.strategy = strategy
		self.parent_run_id = parent_run_id
		self.hash_method = hash_method
		self.created_at = created_at

		self.__lock = threading.Lock()
		self.__entries: Dict[str, ManifestEntry] = {}
		self.__manifest: Optional[Manifest] = None

	def add(self, entry: ManifestEntry):
		with self.__lock:
			if self.__manifest is not None:
				raise RuntimeError('manifest of run {} is already sealed'.format(self.run_id))
			if entry.archive_path in self.__entries:
				raise DuplicatedArchivePath(entry.archive_path)
			self.__entries[entry.archive_path] = entry

	def __len__(self) -> int:
		with self.__lock:
			return len(self.__entries)

	def get_failed_entries(self) -> List[ManifestEntry]:
		with self.__lock:
			return [e for e in self.__entries.values() if e.storage_mode == StorageMode.failed]

	def build(self) -> Manifest:
		"""
		Seals the builder. No more entry can be added after this
		"""
		with self.__lock:
			if self.__manifest is None:
				self.__manifest = Manifest(
					run_id=self.run_id,
					backup_type=self.backup_type,
					strategy=self.strategy,
					parent_run_id=self.parent_run_id,
					hash_method=self.hash_method,
					created_at=self.created_at,
					entries=dict(self.__entries),
				)
			return self.__manifest

	def summarize(self) -> ManifestSummary:
		return self.build().summarize()

	def persist(self, store: ManifestStore) -> Manifest:
		manifest = self.build()
		store.write(manifest)
		return manifest
