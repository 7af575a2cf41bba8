import json

from chronicle_backup import logger
from chronicle_backup.exceptions import ManifestAlreadyExists, ManifestNotFound, PersistenceError
from chronicle_backup.types.manifest import Manifest
from chronicle_backup.utils import run_storage_utils, file_utils


class ManifestStore:
	"""
	One write-once json document per run, at runs/<run_id>/manifest.json

	Writes are atomic: readers see either no manifest or the complete one.
	Only manifests of runs committed in the ledger should be trusted by readers
	"""

	def __init__(self):
		from chronicle_backup.config.config import Config
		self.logger = logger.get()
		self.config = Config.get()

	def exists(self, run_id: str) -> bool:
		return run_storage_utils.get_manifest_path(run_id).is_file()

	def write(self, manifest: Manifest):
		"""
		:raise ManifestAlreadyExists: if the run already has a persisted manifest
		:raise PersistenceError: if the manifest cannot be written
		"""
		path = run_storage_utils.get_manifest_path(manifest.run_id)
		if path.exists():
			raise ManifestAlreadyExists(manifest.run_id)

		buf = json.dumps(manifest.to_dict(), ensure_ascii=False, indent=1).encode('utf8')
		try:
			path.parent.mkdir(parents=True, exist_ok=True)
			file_utils.atomic_write_bytes(path, buf, temp_dir=self.config.temp_path)
		except OSError as e:
			raise PersistenceError('write manifest of run {} failed: {}'.format(manifest.run_id, e)) from e
		self.logger.debug('Manifest of run {} written, {} entries, {} bytes'.format(manifest.run_id, len(manifest), len(buf)))

	def read(self, run_id: str) -> Manifest:
		"""
		:raise ManifestNotFound: if the manifest does not exist
		"""
		path = run_storage_utils.get_manifest_path(run_id)
		try:
			with open(path, 'r', encoding='utf8') as f:
				data = json.load(f)
		except FileNotFoundError:
			raise ManifestNotFound(run_id) from None
		return Manifest.from_dict(data)

	def delete(self, run_id: str):
		run_storage_utils.get_manifest_path(run_id).unlink(missing_ok=True)
