import dataclasses
from pathlib import PurePosixPath
from typing import Optional, List, Set

from chronicle_backup import logger
from chronicle_backup.action.helpers.path_resolver import Candidate, ResolvedDirectory, ResolveResult
from chronicle_backup.db.values import RunStrategy
from chronicle_backup.exceptions import SelectionError
from chronicle_backup.ledger.run_ledger import RunLedger
from chronicle_backup.types.run_info import RunInfo


@dataclasses.dataclass(frozen=True)
class StrategyDecision:
	requested: RunStrategy
	strategy: RunStrategy
	baseline: Optional[RunInfo]

	@property
	def downgraded(self) -> bool:
		return self.requested != self.strategy

	@property
	def parent_run_id(self) -> Optional[str]:
		return self.baseline.id if self.baseline is not None else None


@dataclasses.dataclass(frozen=True)
class SelectionResult:
	candidates: List[Candidate]
	directories: List[ResolvedDirectory]
	parent_run_id: Optional[str]
	unchanged_count: int = 0


class DifferentialSelector:
	def __init__(self, ledger: RunLedger):
		self.logger = logger.get()
		self.ledger = ledger

	def resolve_strategy(self, backup_type: str, requested: RunStrategy) -> StrategyDecision:
		"""
		Picks the baseline for a differential run. Falls back to a full run if there's no usable baseline
		"""
		if requested == RunStrategy.full:
			return StrategyDecision(requested, RunStrategy.full, None)

		try:
			baseline = self.ledger.find_last_successful_full(backup_type)
		except SelectionError as e:
			self.logger.warning('Baseline lookup for backup type {!r} failed, downgrading to a full run: {}'.format(backup_type, e))
			return StrategyDecision(requested, RunStrategy.full, None)

		if baseline is None:
			self.logger.warning('No successful full run found for backup type {!r}, downgrading the differential run to a full run'.format(backup_type))
			return StrategyDecision(requested, RunStrategy.full, None)

		self.logger.info('Using full run {} (finished at {}) as the differential baseline'.format(baseline.id, baseline.finished_date_str))
		return StrategyDecision(requested, RunStrategy.differential, baseline)

	def select(self, decision: StrategyDecision, resolved: ResolveResult) -> SelectionResult:
		if decision.strategy == RunStrategy.full:
			return SelectionResult(list(resolved.candidates), list(resolved.directories), None)

		if decision.baseline is None:
			raise AssertionError('differential strategy without a baseline')

		# file granularity: one changed file never pulls its unchanged siblings in
		threshold_ns = decision.baseline.finished_at * 1000
		retained: List[Candidate] = []
		for candidate in resolved.candidates:
			if candidate.mtime_ns > threshold_ns:
				retained.append(candidate)

		needed_dirs: Set[str] = set()
		for candidate in retained:
			for parent in PurePosixPath(candidate.archive_path).parents:
				needed_dirs.add(parent.as_posix())
		directories = [d for d in resolved.directories if d.archive_path in needed_dirs]

		unchanged_count = len(resolved.candidates) - len(retained)
		self.logger.info('Differential selection against {}: {} changed file(s), {} unchanged'.format(
			decision.baseline.id, len(retained), unchanged_count,
		))
		return SelectionResult(retained, directories, decision.baseline.id, unchanged_count)
