import dataclasses
from typing import Optional

from typing_extensions import Self

from chronicle_backup.db import schema


@dataclasses.dataclass(frozen=True)
class RunStatisticsInfo:
	backup_type: str
	count: int
	avg_size: float
	avg_duration: float
	succeeded_count: int
	partially_failed_count: int
	failed_count: int
	aborted_count: int

	@property
	def success_rate(self) -> float:
		"""
		Ratio of runs that ended as succeeded or partially failed. 0 if there's no run
		"""
		if self.count == 0:
			return 0.0
		return (self.succeeded_count + self.partially_failed_count) / self.count

	@classmethod
	def empty(cls, backup_type: str) -> Self:
		return cls(backup_type, 0, 0.0, 0.0, 0, 0, 0, 0)

	@classmethod
	def of(cls, backup_type: str, stats: Optional[schema.RunStatistics]) -> Self:
		if stats is None:
			return cls.empty(backup_type)
		return cls(
			backup_type=stats.backup_type,
			count=stats.count,
			avg_size=stats.mean_size,
			avg_duration=stats.mean_duration,
			succeeded_count=stats.succeeded_count,
			partially_failed_count=stats.partially_failed_count,
			failed_count=stats.failed_count,
			aborted_count=stats.aborted_count,
		)
