import dataclasses
from typing import Optional

from chronicle_backup.db.values import RunStrategy, RunOutcome
from chronicle_backup.types.hash_method import HashMethod


@dataclasses.dataclass
class PendingRun:
	"""
	A run in progress. Owned by its CreateRunAction until committed to the ledger, where it gets sealed
	"""
	backup_type: str
	strategy: RunStrategy
	hash_method: HashMethod
	started_at: int  # timestamp in us
	parent_run_id: Optional[str] = None

	id: Optional[str] = None  # assigned by RunLedger.record_run_start
	finished_at: Optional[int] = None
	outcome: Optional[RunOutcome] = None
	message: str = ''

	def get_id(self) -> str:
		if self.id is None:
			raise RuntimeError('run has not been recorded yet')
		return self.id

	@property
	def duration(self) -> float:
		if self.finished_at is None:
			raise RuntimeError('run is not finished yet')
		return max(0.0, (self.finished_at - self.started_at) / 1e6)
