import dataclasses
from pathlib import Path
from typing import Optional, Dict, Any, List

from typing_extensions import Self

from chronicle_backup import constants
from chronicle_backup.db.values import StorageMode, RunStrategy
from chronicle_backup.types.hash_method import HashMethod


@dataclasses.dataclass(frozen=True)
class BlobRef:
	"""
	Where the bytes of a stored file physically live
	"""
	run_id: str
	archive_path: str

	def get_path(self) -> Path:
		from chronicle_backup.utils import run_storage_utils
		return run_storage_utils.get_blob_path(self.run_id, self.archive_path)


@dataclasses.dataclass(frozen=True)
class ManifestEntry:
	original_path: str
	archive_path: str  # posix path, relative to the data directory of the run
	category: str
	size_bytes: int
	content_hash: Optional[str]
	last_write_time: int  # mtime in ns
	storage_mode: StorageMode

	ref_run_id: Optional[str] = None
	ref_archive_path: Optional[str] = None
	error: Optional[str] = None

	@property
	def is_failed(self) -> bool:
		return self.storage_mode == StorageMode.failed

	def get_blob_ref(self, owner_run_id: str) -> Optional[BlobRef]:
		if self.storage_mode == StorageMode.stored:
			return BlobRef(owner_run_id, self.archive_path)
		elif self.storage_mode == StorageMode.deduplicated_reference:
			return BlobRef(self.ref_run_id, self.ref_archive_path)
		else:
			return None

	def to_dict(self) -> Dict[str, Any]:
		data = {
			'original_path': self.original_path,
			'category': self.category,
			'size_bytes': self.size_bytes,
			'content_hash': self.content_hash,
			'last_write_time': self.last_write_time,
			'storage_mode': self.storage_mode.value,
		}
		if self.storage_mode == StorageMode.deduplicated_reference:
			data['ref_run_id'] = self.ref_run_id
			data['ref_archive_path'] = self.ref_archive_path
		if self.error is not None:
			data['error'] = self.error
		return data

	@classmethod
	def from_dict(cls, archive_path: str, data: Dict[str, Any]) -> Self:
		return cls(
			original_path=data['original_path'],
			archive_path=archive_path,
			category=data.get('category', ''),
			size_bytes=int(data['size_bytes']),
			content_hash=data.get('content_hash'),
			last_write_time=int(data['last_write_time']),
			storage_mode=StorageMode(data['storage_mode']),
			ref_run_id=data.get('ref_run_id'),
			ref_archive_path=data.get('ref_archive_path'),
			error=data.get('error'),
		)


@dataclasses.dataclass(frozen=True)
class ManifestSummary:
	file_count: int  # failed entries excluded
	total_bytes: int  # failed entries excluded
	stored_count: int
	stored_bytes: int
	deduplicated_count: int
	failed_count: int

	@property
	def entry_count(self) -> int:
		return self.stored_count + self.deduplicated_count + self.failed_count


@dataclasses.dataclass(frozen=True)
class Manifest:
	"""
	The authoritative record of what was stored in one run
	"""
	run_id: str
	backup_type: str
	strategy: RunStrategy
	parent_run_id: Optional[str]
	hash_method: HashMethod
	created_at: int  # timestamp in us
	entries: Dict[str, ManifestEntry]  # archive_path -> entry

	def __len__(self) -> int:
		return len(self.entries)

	def get_entries(self, *, storage_mode: Optional[StorageMode] = None) -> List[ManifestEntry]:
		return [e for e in self.entries.values() if storage_mode is None or e.storage_mode == storage_mode]

	def summarize(self) -> ManifestSummary:
		file_count, total_bytes = 0, 0
		stored_count, stored_bytes = 0, 0
		deduplicated_count, failed_count = 0, 0
		for entry in self.entries.values():
			if entry.storage_mode == StorageMode.failed:
				failed_count += 1
				continue
			file_count += 1
			total_bytes += entry.size_bytes
			if entry.storage_mode == StorageMode.stored:
				stored_count += 1
				stored_bytes += entry.size_bytes
			else:
				deduplicated_count += 1
		return ManifestSummary(
			file_count=file_count,
			total_bytes=total_bytes,
			stored_count=stored_count,
			stored_bytes=stored_bytes,
			deduplicated_count=deduplicated_count,
			failed_count=failed_count,
		)

	def to_dict(self) -> Dict[str, Any]:
		return {
			'manifest_version': constants.MANIFEST_VERSION,
			'run_id': self.run_id,
			'backup_type': self.backup_type,
			'strategy': self.strategy.value,
			'parent_run_id': self.parent_run_id,
			'hash_method': self.hash_method.name,
			'created_at': self.created_at,
			'entries': {path: entry.to_dict() for path, entry in sorted(self.entries.items())},
		}

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> Self:
		version = data.get('manifest_version')
		if version != constants.MANIFEST_VERSION:
			raise ValueError('unsupported manifest version {!r}'.format(version))
		return cls(
			run_id=data['run_id'],
			backup_type=data['backup_type'],
			strategy=RunStrategy(data['strategy']),
			parent_run_id=data.get('parent_run_id'),
			hash_method=HashMethod[data['hash_method']],
			created_at=int(data['created_at']),
			entries={path: ManifestEntry.from_dict(path, e) for path, e in data['entries'].items()},
		)
