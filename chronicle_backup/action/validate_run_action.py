import dataclasses
from typing import List, Tuple

from chronicle_backup.action import Action
from chronicle_backup.action.get_manifest_action import GetManifestAction
from chronicle_backup.types.manifest import ManifestEntry
from chronicle_backup.utils import hash_utils


@dataclasses.dataclass
class ValidateResult:
	run_id: str
	total: int = 0
	ok: int = 0
	skipped_failed: int = 0
	missing: List[ManifestEntry] = dataclasses.field(default_factory=list)
	mismatched: List[Tuple[ManifestEntry, str]] = dataclasses.field(default_factory=list)  # (entry, reason)

	@property
	def bad(self) -> int:
		return len(self.missing) + len(self.mismatched)


class ValidateRunAction(Action[ValidateResult]):
	"""
	Checks that the blob behind every non-failed entry of a committed run exists, with the right size and hash
	"""

	def __init__(self, run_id: str, *, check_hash: bool = True):
		super().__init__()
		self.run_id = run_id
		self.check_hash = check_hash

	def run(self) -> ValidateResult:
		manifest = GetManifestAction(self.run_id).run()
		result = ValidateResult(self.run_id)

		for entry in manifest.entries.values():
			if self.is_interrupted.is_set():
				break
			result.total += 1
			if (ref := entry.get_blob_ref(manifest.run_id)) is None:
				result.skipped_failed += 1
				continue

			blob_path = ref.get_path()
			if not blob_path.is_file():
				result.missing.append(entry)
				continue
			try:
				if self.check_hash:
					sah = hash_utils.calc_file_size_and_hash(blob_path, hash_method=manifest.hash_method)
					size, content_hash = sah.size, sah.hash
				else:
					size, content_hash = blob_path.stat().st_size, entry.content_hash
			except OSError as e:
				result.mismatched.append((entry, 'read failed: {}'.format(e)))
				continue

			if size != entry.size_bytes:
				result.mismatched.append((entry, 'size mismatch, expected {}, found {}'.format(entry.size_bytes, size)))
			elif content_hash != entry.content_hash:
				result.mismatched.append((entry, 'hash mismatch, expected {}, found {}'.format(entry.content_hash, content_hash)))
			else:
				result.ok += 1

		self.logger.info('Validated run {}: total {}, ok {}, bad {}, failed entries {}'.format(
			self.run_id, result.total, result.ok, result.bad, result.skipped_failed,
		))
		return result
