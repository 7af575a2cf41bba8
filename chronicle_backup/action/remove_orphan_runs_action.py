from typing import List

from chronicle_backup.action import Action
from chronicle_backup.ledger.run_ledger import RunLedger
from chronicle_backup.utils import file_utils


class RemoveOrphanRunsAction(Action[List[str]]):
	"""
	Deletes run directories that are neither committed in the ledger nor held by a live lease,
	e.g. the remains of a killed process. Leases of dead processes on this host are released first

	:return: ids of the removed run directories
	"""

	def __init__(self, *, dry_run: bool = False):
		super().__init__()
		self.dry_run = dry_run

	def run(self) -> List[str]:
		runs_path = self.config.runs_path
		if not runs_path.is_dir():
			return []

		# directories first: a run started after this snapshot is not a candidate
		run_dirs = sorted(p for p in runs_path.iterdir() if p.is_dir())
		ledger = RunLedger()
		if self.dry_run:
			leased = ledger.list_leased_run_ids(live_only=True)
		else:
			ledger.release_stale_leases()
			leased = ledger.list_leased_run_ids()
		known = set(ledger.list_committed_run_ids())
		known.update(leased)

		removed: List[str] = []
		for run_dir in run_dirs:
			if run_dir.name in known:
				continue
			if self.dry_run:
				self.logger.info('Found orphan run directory {}'.format(run_dir.name))
			else:
				self.logger.info('Removing orphan run directory {}'.format(run_dir.name))
				file_utils.rm_rf(run_dir)
			removed.append(run_dir.name)

		temp_path = self.config.temp_path
		# temp files may belong to a run in progress
		if not self.dry_run and len(leased) == 0 and temp_path.is_dir():
			for temp_file in temp_path.iterdir():
				file_utils.rm_rf(temp_file, missing_ok=True)
		return removed
