import dataclasses
from typing import List, Tuple, Dict

from chronicle_backup.action import Action
from chronicle_backup.action.get_manifest_action import GetManifestAction, get_effective_entries
from chronicle_backup.types.manifest import ManifestEntry


@dataclasses.dataclass(frozen=True)
class DiffResult:
	added: List[ManifestEntry] = dataclasses.field(default_factory=list)
	removed: List[ManifestEntry] = dataclasses.field(default_factory=list)
	changed: List[Tuple[ManifestEntry, ManifestEntry]] = dataclasses.field(default_factory=list)  # (old, new)
	unchanged: List[ManifestEntry] = dataclasses.field(default_factory=list)

	@property
	def diff_count(self) -> int:
		return len(self.added) + len(self.changed) + len(self.removed)


class DiffRunAction(Action[DiffResult]):
	"""
	Compares two committed runs by archive path and content hash.

	With effective=True, a differential run is compared as its baseline overlaid by its own entries,
	otherwise only the entries stored in its manifest count
	"""

	def __init__(self, run_id_old: str, run_id_new: str, *, effective: bool = False):
		super().__init__()
		self.run_id_old = run_id_old
		self.run_id_new = run_id_new
		self.effective = effective

	def __get_entries(self, run_id: str) -> Dict[str, ManifestEntry]:
		manifest = GetManifestAction(run_id).run()
		if self.effective:
			return get_effective_entries(manifest)
		return dict(manifest.entries)

	@classmethod
	def __is_same(cls, a: ManifestEntry, b: ManifestEntry) -> bool:
		if a.is_failed or b.is_failed:
			return False
		return a.content_hash == b.content_hash and a.size_bytes == b.size_bytes

	def run(self) -> DiffResult:
		entries_old = self.__get_entries(self.run_id_old)
		entries_new = self.__get_entries(self.run_id_new)

		result = DiffResult()
		for path in sorted(entries_old.keys()):
			old = entries_old[path]
			if (new := entries_new.get(path)) is None:
				result.removed.append(old)
			elif self.__is_same(old, new):
				result.unchanged.append(new)
			else:
				result.changed.append((old, new))
		for path in sorted(entries_new.keys()):
			if path not in entries_old:
				result.added.append(entries_new[path])
		return result
