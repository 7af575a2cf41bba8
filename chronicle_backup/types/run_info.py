import dataclasses
import datetime
import functools
from typing import Optional

from typing_extensions import Self

from chronicle_backup.db import schema
from chronicle_backup.db.values import RunStrategy, RunOutcome
from chronicle_backup.types.hash_method import HashMethod
from chronicle_backup.utils import conversion_utils


@dataclasses.dataclass(frozen=True)
class RunInfo:
	"""
	A sealed, committed backup run
	"""
	id: str
	backup_type: str
	strategy: RunStrategy
	parent_run_id: Optional[str]
	outcome: RunOutcome
	hash_method: HashMethod

	started_at: int  # timestamp in us
	finished_at: int  # timestamp in us
	duration: float  # in seconds

	file_count: int
	total_bytes: int
	failed_count: int
	deduplicated_count: int
	stored_bytes: int
	message: str

	@functools.cached_property
	def started_date(self) -> datetime.datetime:
		return conversion_utils.timestamp_to_local_date_us(self.started_at)

	@functools.cached_property
	def started_date_str(self) -> str:
		return conversion_utils.timestamp_to_local_date_str_us(self.started_at)

	@functools.cached_property
	def finished_date_str(self) -> str:
		return conversion_utils.timestamp_to_local_date_str_us(self.finished_at)

	@classmethod
	def of(cls, run: schema.BackupRun) -> Self:
		"""
		Notes: should be inside a session
		"""
		return cls(
			id=run.id,
			backup_type=run.backup_type,
			strategy=RunStrategy(run.strategy),
			parent_run_id=run.parent_run_id,
			outcome=RunOutcome(run.outcome),
			hash_method=HashMethod[run.hash_method],
			started_at=run.started_at,
			finished_at=run.finished_at,
			duration=run.duration,
			file_count=run.file_count,
			total_bytes=run.total_bytes,
			failed_count=run.failed_count,
			deduplicated_count=run.deduplicated_count,
			stored_bytes=run.stored_bytes,
			message=run.message,
		)
