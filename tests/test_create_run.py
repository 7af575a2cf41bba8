import collections
import os
import unittest
from pathlib import Path
from typing import Dict
from unittest import mock

from chronicle_backup.action.helpers.copy_executor import default_transferer
from chronicle_backup.db.values import RunStrategy, RunOutcome, StorageMode
from chronicle_backup.exceptions import ConfigurationError, PreflightError, PersistenceError
from chronicle_backup.ledger.manifest_store import ManifestStore
from chronicle_backup.ledger.run_ledger import RunLedger
from chronicle_backup.orchestrator import BackupOrchestrator
from chronicle_backup.types.hash_method import HashMethod
from chronicle_backup.types.run_result import RunResult
from chronicle_backup.utils import run_storage_utils, hash_utils
from tests.storage_env import StorageTestCase, write_file, future_mtime_ns

_MiB = 2 ** 20


class CreateRunTestCase(StorageTestCase):
	def setUp(self):
		super().setUp()
		self.ledger = RunLedger()
		self.transfer_calls: Dict[str, int] = collections.defaultdict(int)

	def run_backup(self, strategy: RunStrategy = RunStrategy.full, **kwargs) -> RunResult:
		return BackupOrchestrator(**kwargs).run('docs', strategy)

	def failing_transferer(self, *names: str):
		def transferer(src: Path, dst: Path, hash_method: HashMethod):
			self.transfer_calls[src.name] += 1
			if src.name in names:
				raise OSError('injected failure for {}'.format(src.name))
			return default_transferer(src, dst, hash_method)
		return transferer

	def test_0_full_then_differential(self):
		a = write_file(self.source_dir / 'A.bin', os.urandom(10 * _MiB))
		write_file(self.source_dir / 'B.bin', os.urandom(5 * _MiB))

		full = self.run_backup()
		self.assertEqual(RunOutcome.succeeded, full.outcome)
		self.assertTrue(full.committed)
		self.assertEqual(RunStrategy.full, full.strategy)
		self.assertEqual(['docs/source/A.bin', 'docs/source/B.bin'], sorted(full.manifest.entries.keys()))
		self.assertEqual([StorageMode.stored] * 2, [e.storage_mode for e in full.manifest.entries.values()])
		self.assertEqual(15 * _MiB, full.run_info.total_bytes)
		self.assertEqual(15 * _MiB, full.run_info.stored_bytes)
		self.assertEqual(a.read_bytes(), run_storage_utils.get_blob_path(full.run_id, 'docs/source/A.bin').read_bytes())

		write_file(a, os.urandom(10 * _MiB), mtime_ns=future_mtime_ns())
		diff = self.run_backup(RunStrategy.differential)
		self.assertEqual(RunOutcome.succeeded, diff.outcome)
		self.assertEqual(RunStrategy.differential, diff.strategy)
		self.assertFalse(diff.downgraded)
		self.assertEqual(full.run_id, diff.parent_run_id)
		self.assertEqual(full.run_id, diff.run_info.parent_run_id)
		self.assertEqual(['docs/source/A.bin'], list(diff.manifest.entries.keys()))
		self.assertEqual(StorageMode.stored, diff.manifest.entries['docs/source/A.bin'].storage_mode)
		self.assertEqual(1, diff.unchanged_count)
		self.assertEqual(10 * _MiB, diff.run_info.total_bytes)

	def test_1_dedup_idempotence(self):
		for i in range(5):
			write_file(self.source_dir / 'dir{}'.format(i % 2) / 'f{}.txt'.format(i), 'content {}'.format(i).encode())

		first = self.run_backup()
		second = self.run_backup()
		self.assertEqual(RunOutcome.succeeded, second.outcome)
		self.assertEqual(5, len(second.manifest))
		for entry in second.manifest.entries.values():
			self.assertEqual(StorageMode.deduplicated_reference, entry.storage_mode)
			self.assertEqual(first.run_id, entry.ref_run_id)
			self.assertEqual(entry.archive_path, entry.ref_archive_path)
		self.assertEqual(0, second.run_info.stored_bytes)
		self.assertEqual(5, second.run_info.deduplicated_count)
		self.assertEqual(first.run_info.total_bytes, second.run_info.total_bytes)

		# no blob is written for references
		self.assertEqual([], [p for p in run_storage_utils.get_run_data_dir(second.run_id).rglob('*') if p.is_file()])

	def test_2_shared_content(self):
		write_file(self.source_dir / 'C.txt', b'shared content')
		first = self.run_backup()

		write_file(self.source_dir / 'D.txt', b'new content')
		write_file(self.source_dir / 'copy_of_D.txt', b'new content')
		second = self.run_backup()
		entries = second.manifest.entries

		c = entries['docs/source/C.txt']
		self.assertEqual(StorageMode.deduplicated_reference, c.storage_mode)
		self.assertEqual(first.run_id, c.ref_run_id)
		self.assertEqual('docs/source/C.txt', c.ref_archive_path)

		# two files with the same content in one run: one blob
		modes = sorted([entries['docs/source/D.txt'].storage_mode.value, entries['docs/source/copy_of_D.txt'].storage_mode.value])
		self.assertEqual([StorageMode.deduplicated_reference.value, StorageMode.stored.value], modes)
		ref = [e for e in (entries['docs/source/D.txt'], entries['docs/source/copy_of_D.txt']) if e.storage_mode == StorageMode.deduplicated_reference][0]
		self.assertEqual(second.run_id, ref.ref_run_id)

	def test_3_partially_failed(self):
		for name in ['a.txt', 'b.txt', 'c.txt']:
			write_file(self.source_dir / name, name.encode() * 10)

		result = self.run_backup(transferer=self.failing_transferer('b.txt'))
		self.assertEqual(RunOutcome.partially_failed, result.outcome)
		self.assertTrue(result.committed)
		self.assertEqual(3, self.transfer_calls['b.txt'])
		self.assertEqual(1, self.transfer_calls['a.txt'])
		self.assertEqual(1, self.transfer_calls['c.txt'])

		self.assertEqual(1, len(result.failures))
		failure = result.failures[0]
		self.assertEqual('docs/source/b.txt', failure.entry.archive_path)
		self.assertEqual(3, failure.attempts)
		self.assertIn('injected failure', failure.error)

		entries = result.manifest.entries
		self.assertEqual(StorageMode.failed, entries['docs/source/b.txt'].storage_mode)
		self.assertEqual(StorageMode.stored, entries['docs/source/a.txt'].storage_mode)
		self.assertEqual(StorageMode.stored, entries['docs/source/c.txt'].storage_mode)
		self.assertFalse(run_storage_utils.get_blob_path(result.run_id, 'docs/source/b.txt').exists())
		self.assertEqual(1, result.run_info.failed_count)
		self.assertEqual(2, result.run_info.file_count)

		# a partially failed full run is still a baseline
		self.assertEqual(result.run_id, self.ledger.find_last_successful_full('docs').id)

	def test_4_all_failed(self):
		write_file(self.source_dir / 'a.txt', b'a')
		write_file(self.source_dir / 'b.txt', b'b')

		result = self.run_backup(transferer=self.failing_transferer('a.txt', 'b.txt'))
		self.assertEqual(RunOutcome.failed, result.outcome)
		self.assertEqual(2, len(result.failures))
		self.assertIsNone(self.ledger.find_last_successful_full('docs'))
		self.assertEqual(1, self.ledger.aggregate_statistics('docs').failed_count)

	def test_5_abort_on_failure(self):
		self.config.retry.continue_on_failure = False
		self.config.concurrency = 1
		for name in ['a.txt', 'b.txt', 'c.txt']:
			write_file(self.source_dir / name, name.encode())

		result = self.run_backup(transferer=self.failing_transferer('a.txt'))
		self.assertEqual(RunOutcome.aborted, result.outcome)
		self.assertTrue(result.committed)
		self.assertIn('a.txt', result.message)
		self.assertEqual(3, self.transfer_calls['a.txt'])
		self.assertEqual(0, self.transfer_calls['b.txt'])
		self.assertEqual(0, self.transfer_calls['c.txt'])
		self.assertEqual(['docs/source/a.txt'], list(result.manifest.entries.keys()))

		self.assertEqual(RunOutcome.aborted, self.ledger.get_run(result.run_id).outcome)
		self.assertIsNone(self.ledger.find_last_successful_full('docs'))
		self.assertEqual([], self.ledger.list_leased_run_ids())

	def test_6_deleted_blob_is_stored_again(self):
		write_file(self.source_dir / 'a.txt', b'aaa')
		write_file(self.source_dir / 'b.txt', b'bbb')
		first = self.run_backup()
		run_storage_utils.get_blob_path(first.run_id, 'docs/source/a.txt').unlink()

		second = self.run_backup()
		self.assertEqual(StorageMode.stored, second.manifest.entries['docs/source/a.txt'].storage_mode)
		self.assertEqual(StorageMode.deduplicated_reference, second.manifest.entries['docs/source/b.txt'].storage_mode)
		self.assertEqual(b'aaa', run_storage_utils.get_blob_path(second.run_id, 'docs/source/a.txt').read_bytes())

	def test_7_no_candidates(self):
		result = self.run_backup()
		self.assertEqual(RunOutcome.succeeded, result.outcome)
		self.assertEqual(0, len(result.manifest))
		self.assertEqual(0, result.run_info.file_count)

	def test_8_differential_downgrade(self):
		write_file(self.source_dir / 'a.txt', b'a')
		result = self.run_backup(RunStrategy.differential)
		self.assertEqual(RunStrategy.full, result.strategy)
		self.assertTrue(result.downgraded)
		self.assertIsNone(result.parent_run_id)
		self.assertEqual(RunStrategy.full, result.manifest.strategy)
		self.assertEqual(RunOutcome.succeeded, result.outcome)

	def test_9_missing_and_reserved_paths(self):
		missing = self.root / 'not_there'
		self.config.backup_types['docs'].items[0].paths.append(str(missing))
		write_file(self.source_dir / 'ok.txt', b'ok')
		write_file(self.source_dir / 'CON', b'reserved')

		result = self.run_backup()
		self.assertEqual(RunOutcome.succeeded, result.outcome)
		self.assertEqual([str(missing)], result.missing_paths)
		self.assertEqual([str(self.source_dir / 'CON')], result.skipped_reserved)
		self.assertEqual(['docs/source/ok.txt'], list(result.manifest.entries.keys()))

	def test_9_location_labels_do_not_collide(self):
		locations = [self.root / 'p1' / 'docs_2', self.root / 'p2' / 'docs', self.root / 'p3' / 'docs']
		for i, loc in enumerate(locations):
			write_file(loc / 'f.txt', 'content {}'.format(i).encode())
		self.config.backup_types['docs'].items[0].paths = [str(p) for p in locations]

		result = self.run_backup()
		self.assertEqual(RunOutcome.succeeded, result.outcome, result.message)
		self.assertEqual(['docs/docs/f.txt', 'docs/docs_2/f.txt', 'docs/docs_3/f.txt'], sorted(result.manifest.entries.keys()))
		self.assertEqual(b'content 0', run_storage_utils.get_blob_path(result.run_id, 'docs/docs_2/f.txt').read_bytes())
		self.assertEqual(b'content 2', run_storage_utils.get_blob_path(result.run_id, 'docs/docs_3/f.txt').read_bytes())

	def test_10_configuration_errors(self):
		with self.assertRaises(ConfigurationError):
			BackupOrchestrator().start_run('unknown')

		self.config.backup_types['docs'].items[0].paths.clear()
		with self.assertRaises(ConfigurationError):
			BackupOrchestrator().start_run('docs')
		self.assertEqual([], self.ledger.list_leased_run_ids())

	def test_11_preflight(self):
		blocker = write_file(self.root / 'blocker', b'not a directory')
		self.config.storage_root = str(blocker / 'storage')
		with self.assertRaises(PreflightError):
			BackupOrchestrator().start_run('docs')

	def test_12_persistence_failure(self):
		write_file(self.source_dir / 'a.txt', b'a')
		with mock.patch.object(ManifestStore, 'write', side_effect=PersistenceError('disk full')):
			result = self.run_backup()

		self.assertEqual(RunOutcome.aborted, result.outcome)
		self.assertFalse(result.committed)
		self.assertIsNone(result.manifest)
		self.assertIn('disk full', result.message)
		self.assertFalse(self.ledger.has_run(result.run_id))
		self.assertEqual([], self.ledger.list_leased_run_ids())
		self.assertFalse(run_storage_utils.get_run_dir(result.run_id).exists())
		self.assertEqual(0, self.ledger.aggregate_statistics('docs').count)

		self.assertEqual(RunOutcome.succeeded, self.run_backup().outcome)

	def test_13_file_changed_during_transfer(self):
		a = write_file(self.source_dir / 'a.txt', b'before')

		def transferer(src: Path, dst: Path, hash_method: HashMethod):
			src.write_bytes(b'after, longer')
			return default_transferer(src, dst, hash_method)

		result = self.run_backup(transferer=transferer)
		entry = result.manifest.entries['docs/source/a.txt']
		self.assertEqual(StorageMode.stored, entry.storage_mode)
		self.assertEqual(len(b'after, longer'), entry.size_bytes)
		self.assertEqual(hash_utils.calc_file_hash(a, hash_method=HashMethod.xxh128), entry.content_hash)

	def test_13_file_changed_to_stored_content(self):
		self.config.concurrency = 1  # a.txt is stored before b.txt is processed
		write_file(self.source_dir / 'a.txt', b'shared content')
		b = write_file(self.source_dir / 'b.txt', b'original')

		def transferer(src: Path, dst: Path, hash_method: HashMethod):
			if src.name == 'b.txt':
				src.write_bytes(b'shared content')
			return default_transferer(src, dst, hash_method)

		result = self.run_backup(transferer=transferer)
		self.assertEqual(RunOutcome.succeeded, result.outcome, result.message)
		a_entry = result.manifest.entries['docs/source/a.txt']
		b_entry = result.manifest.entries['docs/source/b.txt']
		self.assertEqual(StorageMode.stored, a_entry.storage_mode)
		self.assertEqual(StorageMode.deduplicated_reference, b_entry.storage_mode)
		self.assertEqual((result.run_id, 'docs/source/a.txt'), (b_entry.ref_run_id, b_entry.ref_archive_path))
		self.assertEqual(a_entry.content_hash, b_entry.content_hash)
		self.assertEqual(hash_utils.calc_file_hash(b, hash_method=HashMethod.xxh128), b_entry.content_hash)
		self.assertFalse(run_storage_utils.get_blob_path(result.run_id, 'docs/source/b.txt').exists())

		stored_hashes = [e.content_hash for e in result.manifest.entries.values() if e.storage_mode == StorageMode.stored]
		self.assertEqual(len(stored_hashes), len(set(stored_hashes)))

	def test_14_statistics(self):
		write_file(self.source_dir / 'a.txt', b'a' * 100)
		self.run_backup()
		write_file(self.source_dir / 'b.txt', b'b' * 300)
		self.run_backup()
		write_file(self.source_dir / 'c.txt', b'c' * 600)
		self.run_backup(transferer=self.failing_transferer('c.txt'))

		stats = self.ledger.aggregate_statistics('docs')
		self.assertEqual(3, stats.count)
		self.assertEqual(2, stats.succeeded_count)
		self.assertEqual(1, stats.partially_failed_count)
		# total bytes of failed entries do not count
		self.assertAlmostEqual((100 + 400 + 400) / 3, stats.avg_size)
		self.assertAlmostEqual(1.0, stats.success_rate)


if __name__ == '__main__':
	unittest.main()
