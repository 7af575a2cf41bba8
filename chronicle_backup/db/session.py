from typing import Optional, Sequence, TypeVar, List

from sqlalchemy import select, delete, desc
from sqlalchemy.orm import Session
from typing_extensions import TypedDict, Unpack

from chronicle_backup.db import schema
from chronicle_backup.db.values import RunStrategy, RunOutcome
from chronicle_backup.exceptions import RunNotFound

_T = TypeVar('_T')


# make type checker happy
def _list_it(seq: Sequence[_T]) -> List[_T]:
	if not isinstance(seq, list):
		seq = list(seq)
	return seq


class DbSession:
	def __init__(self, session: Session):
		self.session = session

	# ========================= General Database Operations =========================

	def add(self, obj: schema.Base):
		self.session.add(obj)

	def delete(self, obj: schema.Base):
		self.session.delete(obj)

	def flush(self):
		self.session.flush()

	# =================================== BackupRun ==================================

	class CreateRunKwargs(TypedDict):
		id: str
		backup_type: str
		strategy: str
		parent_run_id: Optional[str]
		outcome: str
		hash_method: str
		started_at: int
		finished_at: int
		duration: float
		file_count: int
		total_bytes: int
		failed_count: int
		deduplicated_count: int
		stored_bytes: int
		message: str

	def create_and_add_run(self, **kwargs: Unpack[CreateRunKwargs]) -> schema.BackupRun:
		run = schema.BackupRun(**kwargs)
		self.add(run)
		return run

	def get_run_opt(self, run_id: str) -> Optional[schema.BackupRun]:
		return self.session.get(schema.BackupRun, run_id)

	def get_run(self, run_id: str) -> schema.BackupRun:
		run = self.get_run_opt(run_id)
		if run is None:
			raise RunNotFound(run_id)
		return run

	def has_run(self, run_id: str) -> bool:
		return self.get_run_opt(run_id) is not None

	def get_last_run_of_strategy(self, backup_type: str, strategy: RunStrategy, outcomes: List[RunOutcome]) -> Optional[schema.BackupRun]:
		s = (
			select(schema.BackupRun).
			where(
				schema.BackupRun.backup_type == backup_type,
				schema.BackupRun.strategy == strategy.value,
				schema.BackupRun.outcome.in_([o.value for o in outcomes]),
			).
			order_by(desc(schema.BackupRun.started_at), desc(schema.BackupRun.id)).
			limit(1)
		)
		return self.session.execute(s).scalars().first()

	def list_runs(self, *, backup_type: Optional[str] = None, limit: Optional[int] = None, offset: Optional[int] = None) -> List[schema.BackupRun]:
		s = select(schema.BackupRun)
		if backup_type is not None:
			s = s.where(schema.BackupRun.backup_type == backup_type)
		s = s.order_by(desc(schema.BackupRun.started_at), desc(schema.BackupRun.id))
		if limit is not None:
			s = s.limit(limit)
		if offset is not None:
			s = s.offset(offset)
		return _list_it(self.session.execute(s).scalars().all())

	def get_all_run_ids(self) -> List[str]:
		return _list_it(self.session.execute(select(schema.BackupRun.id)).scalars().all())

	# ================================= RunStatistics ================================

	def get_statistics_opt(self, backup_type: str) -> Optional[schema.RunStatistics]:
		return self.session.get(schema.RunStatistics, backup_type)

	def get_or_create_statistics(self, backup_type: str) -> schema.RunStatistics:
		stats = self.get_statistics_opt(backup_type)
		if stats is None:
			stats = schema.RunStatistics(
				backup_type=backup_type,
				count=0,
				mean_size=0.0,
				mean_duration=0.0,
				succeeded_count=0,
				partially_failed_count=0,
				failed_count=0,
				aborted_count=0,
			)
			self.add(stats)
		return stats

	# =================================== RunLease ===================================

	def get_lease_opt(self, backup_type: str) -> Optional[schema.RunLease]:
		return self.session.get(schema.RunLease, backup_type)

	def get_lease_by_run_id(self, run_id: str) -> Optional[schema.RunLease]:
		return self.session.execute(select(schema.RunLease).where(schema.RunLease.run_id == run_id)).scalars().first()

	def list_leases(self) -> List[schema.RunLease]:
		return _list_it(self.session.execute(select(schema.RunLease)).scalars().all())

	def create_and_add_lease(self, *, backup_type: str, run_id: str, hostname: str, pid: int, acquired_at: int) -> schema.RunLease:
		lease = schema.RunLease(backup_type=backup_type, run_id=run_id, hostname=hostname, pid=pid, acquired_at=acquired_at)
		self.add(lease)
		return lease

	def delete_lease(self, backup_type: str, run_id: Optional[str] = None) -> int:
		s = delete(schema.RunLease).where(schema.RunLease.backup_type == backup_type)
		if run_id is not None:
			s = s.where(schema.RunLease.run_id == run_id)
		return self.session.execute(s).rowcount
