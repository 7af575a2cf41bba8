import os
import socket
import unittest
from pathlib import Path
from typing import Dict

from chronicle_backup.action.diff_run_action import DiffRunAction
from chronicle_backup.action.get_manifest_action import GetManifestAction
from chronicle_backup.action.get_run_action import GetRunAction
from chronicle_backup.action.get_statistics_action import GetStatisticsAction
from chronicle_backup.action.list_run_action import ListRunAction, ListRunIdAction
from chronicle_backup.action.remove_orphan_runs_action import RemoveOrphanRunsAction
from chronicle_backup.action.restore_run_action import RestoreRunAction
from chronicle_backup.action.validate_run_action import ValidateRunAction
from chronicle_backup.db.access import DbAccess
from chronicle_backup.db.values import RunStrategy, RunOutcome
from chronicle_backup.exceptions import RunNotFound
from chronicle_backup.ledger.run_ledger import RunLedger
from chronicle_backup.orchestrator import BackupOrchestrator
from chronicle_backup.utils import run_storage_utils
from tests.storage_env import StorageTestCase, write_file, future_mtime_ns


def _read_tree(root: Path) -> Dict[str, bytes]:
	return {p.relative_to(root).as_posix(): p.read_bytes() for p in root.rglob('*') if p.is_file()}


class ToolingActionsTestCase(StorageTestCase):
	def run_backup(self, strategy: RunStrategy = RunStrategy.full):
		result = BackupOrchestrator().run('docs', strategy)
		self.assertTrue(result.committed)
		return result

	def make_tree(self):
		write_file(self.source_dir / 'a.txt', b'alpha')
		write_file(self.source_dir / 'sub' / 'b.txt', b'beta')
		write_file(self.source_dir / 'sub' / 'c.txt', b'gamma')

	def test_0_get_and_list(self):
		self.make_tree()
		r1 = self.run_backup()
		r2 = self.run_backup()

		self.assertEqual([r2.run_id, r1.run_id], ListRunIdAction().run())
		self.assertEqual([r2.run_id], [r.id for r in ListRunAction(limit=1).run()])
		self.assertEqual([r1.run_id], [r.id for r in ListRunAction(limit=1, offset=1).run()])
		self.assertEqual([], ListRunAction(backup_type='photos').run())
		self.assertEqual(r1.run_info, GetRunAction(r1.run_id).run())
		self.assertEqual(2, GetStatisticsAction('docs').run().count)

		with self.assertRaises(RunNotFound):
			GetRunAction('20000101-000000-000000').run()
		with self.assertRaises(RunNotFound):
			GetManifestAction('20000101-000000-000000').run()
		self.assertEqual(r2.manifest, GetManifestAction(r2.run_id).run())

	def test_1_restore_differential(self):
		self.make_tree()
		full = self.run_backup()

		write_file(self.source_dir / 'sub' / 'b.txt', b'beta v2', mtime_ns=future_mtime_ns())
		write_file(self.source_dir / 'new.txt', b'brand new', mtime_ns=future_mtime_ns())
		diff = self.run_backup(RunStrategy.differential)
		self.assertEqual(RunStrategy.differential, diff.strategy)
		self.assertEqual(2, len(diff.manifest))

		out = self.root / 'restored'
		result = RestoreRunAction(diff.run_id, out).run()
		self.assertEqual(4, result.restored_count)
		self.assertEqual([], result.errors)
		self.assertEqual(
			{('docs/source/' + k): v for k, v in _read_tree(self.source_dir).items()},
			_read_tree(out),
		)
		restored = out / 'docs' / 'source' / 'a.txt'
		self.assertEqual((self.source_dir / 'a.txt').stat().st_mtime_ns, restored.stat().st_mtime_ns)

		out_full = self.root / 'restored_full'
		RestoreRunAction(full.run_id, out_full).run()
		self.assertEqual(b'beta', (out_full / 'docs' / 'source' / 'sub' / 'b.txt').read_bytes())
		self.assertFalse((out_full / 'docs' / 'source' / 'new.txt').exists())

	def test_2_restore_deduplicated(self):
		self.make_tree()
		self.run_backup()
		second = self.run_backup()

		out = self.root / 'restored'
		result = RestoreRunAction(second.run_id, out).run()
		self.assertEqual(3, result.restored_count)
		self.assertEqual(b'gamma', (out / 'docs' / 'source' / 'sub' / 'c.txt').read_bytes())

	def test_3_diff(self):
		self.make_tree()
		r1 = self.run_backup()
		write_file(self.source_dir / 'a.txt', b'alpha v2')
		os.remove(self.source_dir / 'sub' / 'c.txt')
		write_file(self.source_dir / 'd.txt', b'delta')
		r2 = self.run_backup()

		result = DiffRunAction(r1.run_id, r2.run_id).run()
		self.assertEqual(['docs/source/d.txt'], [e.archive_path for e in result.added])
		self.assertEqual(['docs/source/sub/c.txt'], [e.archive_path for e in result.removed])
		self.assertEqual(['docs/source/a.txt'], [new.archive_path for old, new in result.changed])
		self.assertEqual(['docs/source/sub/b.txt'], [e.archive_path for e in result.unchanged])
		self.assertEqual(3, result.diff_count)

	def test_4_diff_effective(self):
		self.make_tree()
		full = self.run_backup()
		write_file(self.source_dir / 'a.txt', b'alpha v2', mtime_ns=future_mtime_ns())
		diff = self.run_backup(RunStrategy.differential)

		raw = DiffRunAction(full.run_id, diff.run_id).run()
		self.assertEqual(2, len(raw.removed))

		effective = DiffRunAction(full.run_id, diff.run_id, effective=True).run()
		self.assertEqual([], effective.removed)
		self.assertEqual(['docs/source/a.txt'], [new.archive_path for old, new in effective.changed])
		self.assertEqual(2, len(effective.unchanged))

	def test_5_validate(self):
		self.make_tree()
		run = self.run_backup()
		result = ValidateRunAction(run.run_id).run()
		self.assertEqual(3, result.total)
		self.assertEqual(3, result.ok)
		self.assertEqual(0, result.bad)

		run_storage_utils.get_blob_path(run.run_id, 'docs/source/a.txt').write_bytes(b'alphX')
		run_storage_utils.get_blob_path(run.run_id, 'docs/source/sub/b.txt').unlink()
		result = ValidateRunAction(run.run_id).run()
		self.assertEqual(1, result.ok)
		self.assertEqual(['docs/source/sub/b.txt'], [e.archive_path for e in result.missing])
		self.assertEqual(['docs/source/a.txt'], [e.archive_path for e, _ in result.mismatched])

		# same size, so only a hash check can tell
		self.assertEqual(0, len(ValidateRunAction(run.run_id, check_hash=False).run().mismatched))

	def test_6_remove_orphans(self):
		self.make_tree()
		run = self.run_backup()
		orphan = run_storage_utils.get_run_dir('20000101-000000-000000')
		write_file(orphan / 'data' / 'x.txt', b'left over')

		self.assertEqual([orphan.name], RemoveOrphanRunsAction(dry_run=True).run())
		self.assertTrue(orphan.is_dir())
		self.assertEqual([orphan.name], RemoveOrphanRunsAction().run())
		self.assertFalse(orphan.exists())
		self.assertTrue(run_storage_utils.get_run_dir(run.run_id).is_dir())
		self.assertEqual([], RemoveOrphanRunsAction().run())

	def test_7_failed_entries_not_restored(self):
		self.make_tree()
		self.config.retry.max_attempts = 1

		def transferer(src, dst, hash_method):
			raise OSError('nope')

		result = BackupOrchestrator(transferer=transferer).run('docs')
		self.assertEqual(RunOutcome.failed, result.outcome)
		restored = RestoreRunAction(result.run_id, self.root / 'out').run()
		self.assertEqual(0, restored.restored_count)
		self.assertEqual(3, len(restored.skipped_failed))
		self.assertEqual(3, ValidateRunAction(result.run_id).run().skipped_failed)

	def test_8_remove_orphans_with_stale_lease(self):
		dead = run_storage_utils.get_run_dir('20000101-000000-000000')
		remote = run_storage_utils.get_run_dir('20000101-000000-000001')
		write_file(dead / 'data' / 'x.txt', b'from a killed run')
		write_file(remote / 'data' / 'y.txt', b'from a run on another host')
		with DbAccess.open_session() as session:
			session.create_and_add_lease(backup_type='docs', run_id=dead.name, hostname=socket.gethostname(), pid=2 ** 30, acquired_at=0)
			session.create_and_add_lease(backup_type='other', run_id=remote.name, hostname=socket.gethostname() + '-other', pid=2 ** 30, acquired_at=0)

		ledger = RunLedger()
		self.assertEqual([remote.name], ledger.list_leased_run_ids(live_only=True))
		self.assertEqual([dead.name], RemoveOrphanRunsAction(dry_run=True).run())
		self.assertEqual(sorted([dead.name, remote.name]), sorted(ledger.list_leased_run_ids()))

		self.assertEqual([dead.name], RemoveOrphanRunsAction().run())
		self.assertFalse(dead.exists())
		self.assertTrue(remote.is_dir())
		self.assertEqual([remote.name], ledger.list_leased_run_ids())

		# the released lease no longer blocks a new run of the type
		write_file(self.source_dir / 'a.txt', b'alpha')
		self.assertEqual(RunOutcome.succeeded, self.run_backup().outcome)


if __name__ == '__main__':
	unittest.main()
