from typing import Dict, Tuple

from chronicle_backup.action import Action
from chronicle_backup.db.access import DbAccess
from chronicle_backup.exceptions import RunNotCommitted, RunNotFound
from chronicle_backup.ledger.manifest_store import ManifestStore
from chronicle_backup.types.manifest import Manifest, ManifestEntry


class GetManifestAction(Action[Manifest]):
	"""
	Loads the manifest of a committed run. Manifests of uncommitted runs are never exposed

	:raise RunNotCommitted: if the run is still in progress
	:raise RunNotFound: if there's no such run
	"""

	def __init__(self, run_id: str):
		super().__init__()
		self.run_id = run_id

	def run(self) -> Manifest:
		with DbAccess.open_session() as session:
			if not session.has_run(self.run_id):
				if session.get_lease_by_run_id(self.run_id) is not None:
					raise RunNotCommitted(self.run_id)
				raise RunNotFound(self.run_id)
		return ManifestStore().read(self.run_id)


def get_entry_owners(manifest: Manifest) -> Dict[str, Tuple[str, ManifestEntry]]:
	"""
	The complete file set a run represents, as archive path -> (id of the run whose manifest holds the entry, entry).

	For a differential run, that's the entries of its baseline run, overlaid by the entries of the run itself.
	A failed entry does not hide a readable version of the same file from the baseline
	"""
	result: Dict[str, Tuple[str, ManifestEntry]] = {}
	if manifest.parent_run_id is not None:
		parent = GetManifestAction(manifest.parent_run_id).run()
		for path, entry in parent.entries.items():
			result[path] = (parent.run_id, entry)
	for path, entry in manifest.entries.items():
		if entry.is_failed and path in result and not result[path][1].is_failed:
			continue
		result[path] = (manifest.run_id, entry)
	return result


def get_effective_entries(manifest: Manifest) -> Dict[str, ManifestEntry]:
	return {path: entry for path, (_, entry) in get_entry_owners(manifest).items()}
