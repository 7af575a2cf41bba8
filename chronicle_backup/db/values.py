import enum
from typing import List


class RunStrategy(enum.Enum):
	full = 'full'
	differential = 'differential'


class RunOutcome(enum.Enum):
	succeeded = 'succeeded'
	partially_failed = 'partially_failed'
	failed = 'failed'
	aborted = 'aborted'

	@classmethod
	def baseline_outcomes(cls) -> List['RunOutcome']:
		"""
		Outcomes of a full run that make it usable as a differential baseline
		"""
		return [cls.succeeded, cls.partially_failed]


class StorageMode(enum.Enum):
	stored = 'stored'
	deduplicated_reference = 'deduplicated_reference'
	failed = 'failed'
