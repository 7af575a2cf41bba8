import unittest
from pathlib import Path

from chronicle_backup.action.helpers.differential_selector import DifferentialSelector
from chronicle_backup.action.helpers.path_resolver import ResolveResult, Candidate, ResolvedDirectory
from chronicle_backup.db.values import RunStrategy, RunOutcome
from chronicle_backup.ledger.run_ledger import RunLedger
from chronicle_backup.types.hash_method import HashMethod
from chronicle_backup.types.manifest import ManifestSummary
from chronicle_backup.types.pending_run import PendingRun
from tests.storage_env import StorageTestCase

_STARTED_AT = 1700000000_000000
_FINISHED_AT = _STARTED_AT + 5_000_000
_FINISHED_AT_NS = _FINISHED_AT * 1000


def _candidate(archive_path: str, mtime_ns: int) -> Candidate:
	return Candidate('docs', Path('/src') / archive_path, archive_path, 1, mtime_ns)


class DifferentialSelectorTestCase(StorageTestCase):
	def setUp(self):
		super().setUp()
		self.ledger = RunLedger()
		self.selector = DifferentialSelector(self.ledger)

	def commit_run(self, strategy: RunStrategy, outcome: RunOutcome, started_at: int = _STARTED_AT, finished_at: int = _FINISHED_AT) -> str:
		run = PendingRun(backup_type='docs', strategy=strategy, hash_method=HashMethod.xxh128, started_at=started_at)
		self.ledger.record_run_start(run)
		run.finished_at = finished_at
		run.outcome = outcome
		self.ledger.commit_run(run, ManifestSummary(0, 0, 0, 0, 0, 0))
		return run.id

	def test_0_full_requested(self):
		self.commit_run(RunStrategy.full, RunOutcome.succeeded)
		decision = self.selector.resolve_strategy('docs', RunStrategy.full)
		self.assertEqual(RunStrategy.full, decision.strategy)
		self.assertFalse(decision.downgraded)
		self.assertIsNone(decision.parent_run_id)

	def test_1_downgrade_without_baseline(self):
		decision = self.selector.resolve_strategy('docs', RunStrategy.differential)
		self.assertEqual(RunStrategy.full, decision.strategy)
		self.assertTrue(decision.downgraded)

		# failed and aborted full runs are never a baseline
		self.commit_run(RunStrategy.full, RunOutcome.failed)
		self.commit_run(RunStrategy.full, RunOutcome.aborted, started_at=_STARTED_AT + 10_000_000, finished_at=_FINISHED_AT + 10_000_000)
		decision = self.selector.resolve_strategy('docs', RunStrategy.differential)
		self.assertTrue(decision.downgraded)
		self.assertIsNone(decision.baseline)

	def test_2_select_by_mtime(self):
		baseline_id = self.commit_run(RunStrategy.full, RunOutcome.succeeded)
		decision = self.selector.resolve_strategy('docs', RunStrategy.differential)
		self.assertEqual(RunStrategy.differential, decision.strategy)
		self.assertEqual(baseline_id, decision.parent_run_id)

		resolved = ResolveResult(
			candidates=[
				_candidate('docs/src/old.txt', _FINISHED_AT_NS - 1),
				_candidate('docs/src/equal.txt', _FINISHED_AT_NS),
				_candidate('docs/src/a/new.txt', _FINISHED_AT_NS + 1),
				_candidate('docs/src/a/b/sibling.txt', _FINISHED_AT_NS - 10 ** 9),
			],
			directories=[
				ResolvedDirectory('docs', Path('/src'), 'docs/src'),
				ResolvedDirectory('docs', Path('/src/a'), 'docs/src/a'),
				ResolvedDirectory('docs', Path('/src/a/b'), 'docs/src/a/b'),
				ResolvedDirectory('docs', Path('/src/c'), 'docs/src/c'),
			],
		)
		selection = self.selector.select(decision, resolved)
		self.assertEqual(['docs/src/a/new.txt'], [c.archive_path for c in selection.candidates])
		self.assertEqual(['docs/src', 'docs/src/a'], [d.archive_path for d in selection.directories])
		self.assertEqual(baseline_id, selection.parent_run_id)
		self.assertEqual(3, selection.unchanged_count)

	def test_3_full_selects_everything(self):
		resolved = ResolveResult(candidates=[_candidate('docs/src/x', 0), _candidate('docs/src/y', 1)])
		decision = self.selector.resolve_strategy('docs', RunStrategy.full)
		selection = self.selector.select(decision, resolved)
		self.assertEqual(2, len(selection.candidates))
		self.assertIsNone(selection.parent_run_id)


if __name__ == '__main__':
	unittest.main()
