from chronicle_backup.db import schema
from chronicle_backup.db.session import DbSession
from chronicle_backup.db.values import RunOutcome


def incremental_mean(old_mean: float, value: float, count: int) -> float:
	"""
	:param count: the sample count, including the new value
	"""
	if count <= 0:
		raise ValueError('count should be positive, got {}'.format(count))
	return old_mean + (value - old_mean) / count


class StatisticsAggregator:
	"""
	Rolls committed runs into the per backup type running averages.
	Must be applied in the same transaction as the run commit
	"""

	def apply(self, session: DbSession, run: schema.BackupRun) -> schema.RunStatistics:
		stats = session.get_or_create_statistics(run.backup_type)
		stats.count += 1
		stats.mean_size = incremental_mean(stats.mean_size, run.total_bytes, stats.count)
		stats.mean_duration = incremental_mean(stats.mean_duration, run.duration, stats.count)

		outcome = RunOutcome(run.outcome)
		if outcome == RunOutcome.succeeded:
			stats.succeeded_count += 1
		elif outcome == RunOutcome.partially_failed:
			stats.partially_failed_count += 1
		elif outcome == RunOutcome.failed:
			stats.failed_count += 1
		elif outcome == RunOutcome.aborted:
			stats.aborted_count += 1
		else:
			raise AssertionError('unexpected outcome {!r}'.format(outcome))
		return stats
