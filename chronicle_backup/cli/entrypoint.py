import argparse
from pathlib import Path

from chronicle_backup.action.diff_run_action import DiffRunAction
from chronicle_backup.action.get_run_action import GetRunAction
from chronicle_backup.action.get_statistics_action import GetStatisticsAction
from chronicle_backup.action.list_run_action import ListRunAction
from chronicle_backup.action.remove_orphan_runs_action import RemoveOrphanRunsAction
from chronicle_backup.action.restore_run_action import RestoreRunAction
from chronicle_backup.action.validate_run_action import ValidateRunAction
from chronicle_backup.cli.return_codes import ErrorReturnCodes
from chronicle_backup.config.config import Config, set_config_instance
from chronicle_backup.db import db_constants
from chronicle_backup.db.access import DbAccess
from chronicle_backup.db.migration import BadDbVersion
from chronicle_backup.db.values import RunStrategy, RunOutcome
from chronicle_backup.exceptions import RunNotFound, RunNotCommitted, ManifestNotFound, ConfigurationError, PreflightError, AlreadyRunning
from chronicle_backup.logger import get as get_logger
from chronicle_backup.orchestrator import BackupOrchestrator
from chronicle_backup.types.units import ByteCount
from chronicle_backup.utils import log_utils

logger = get_logger()


class CliHandler:
	def __init__(self, args: argparse.Namespace):
		self.args = args

	def init_environment(self, *, create: bool = False):
		config_path = Path(self.args.config)
		if config_path.is_file():
			config = Config.load(config_path)
		elif create:
			logger.error('Config file {!r} does not exist'.format(config_path.as_posix()))
			ErrorReturnCodes.invalid_argument.sys_exit()
		else:
			config = Config.get_default()
		if self.args.storage_root is not None:
			config.storage_root = self.args.storage_root
		set_config_instance(config)
		logger.debug('Storage root set to {!r}'.format(config.storage_root))

		if not create and not (config.storage_path / db_constants.DB_FILE_NAME).is_file():
			logger.error('No run ledger found in storage root {!r}'.format(config.storage_root))
			ErrorReturnCodes.invalid_argument.sys_exit()
		try:
			DbAccess.init(create=create)
		except BadDbVersion as e:
			logger.error('Load database failed: {}'.format(e))
			ErrorReturnCodes.action_failed.sys_exit()

	def cmd_make(self):
		self.init_environment(create=True)
		strategy = RunStrategy.differential if self.args.differential else RunStrategy.full
		result = BackupOrchestrator().run(self.args.backup_type, strategy)

		logger.info('Run {} finished: {} ({})'.format(result.run_id, result.outcome.name, result.message))
		if result.downgraded:
			logger.warning('No successful full run as the baseline, the differential run was done as a full run')
		for path in result.missing_paths:
			logger.warning('Missing configured path: {}'.format(path))
		if len(result.failures) > 0:
			logger.warning('{} file(s) failed:'.format(len(result.failures)))
			for failure in result.failures:
				logger.warning('  {} ({} attempt(s)): {}'.format(failure.entry.original_path, failure.attempts, failure.error))
		if result.outcome != RunOutcome.succeeded:
			ErrorReturnCodes.run_not_succeeded.sys_exit()

	def cmd_list(self):
		self.init_environment()
		runs = ListRunAction(backup_type=self.args.type, limit=self.args.limit).run()
		logger.info('Run amount: {}'.format(len(runs)))
		for run in runs:
			values = {
				'id': run.id,
				'type': repr(run.backup_type),
				'strategy': run.strategy.name,
				'outcome': run.outcome.name,
				'date': repr(run.started_date_str),
				'files': run.file_count,
				'size': ByteCount(run.total_bytes).auto_str() if self.args.human else run.total_bytes,
			}
			logger.info('%s', ' '.join([f'{k}={v}' for k, v in values.items()]))

	def cmd_show(self):
		self.init_environment()
		run = GetRunAction(self.args.run_id).run()
		logger.info('%s', f'===== Run {run.id} =====')
		logger.info('%s', f'Backup type: {run.backup_type}')
		logger.info('%s', f'Strategy: {run.strategy.name}' + (f' (baseline {run.parent_run_id})' if run.parent_run_id else ''))
		logger.info('%s', f'Outcome: {run.outcome.name}')
		logger.info('%s', f'Message: {run.message}')
		logger.info('%s', f'Started at: {run.started_date_str}')
		logger.info('%s', f'Finished at: {run.finished_date_str}')
		logger.info('%s', f'Duration: {run.duration:.2f}s')
		logger.info('%s', f'Files: {run.file_count}, failed {run.failed_count}, deduplicated {run.deduplicated_count}')
		logger.info('%s', f'Size: {ByteCount(run.total_bytes).auto_str()} ({run.total_bytes}), stored {ByteCount(run.stored_bytes).auto_str()}')

	def cmd_stats(self):
		self.init_environment()
		stats = GetStatisticsAction(self.args.backup_type).run()
		logger.info('%s', f'===== Statistics of {stats.backup_type!r} =====')
		logger.info('%s', f'Runs: {stats.count}')
		logger.info('%s', f'Average size: {ByteCount(int(stats.avg_size)).auto_str()}')
		logger.info('%s', f'Average duration: {stats.avg_duration:.2f}s')
		logger.info('%s', f'Success rate: {100 * stats.success_rate:.1f}%')
		logger.info('%s', f'Outcomes: succeeded={stats.succeeded_count} partially_failed={stats.partially_failed_count} failed={stats.failed_count} aborted={stats.aborted_count}')

	def cmd_diff(self):
		self.init_environment()
		result = DiffRunAction(self.args.run_id_old, self.args.run_id_new, effective=not self.args.raw).run()
		for entry in result.added:
			logger.info('+ %s', entry.archive_path)
		for entry in result.removed:
			logger.info('- %s', entry.archive_path)
		for old, new in result.changed:
			logger.info('* %s', new.archive_path)
		logger.info('Added {}, removed {}, changed {}, unchanged {}'.format(len(result.added), len(result.removed), len(result.changed), len(result.unchanged)))

	def cmd_restore(self):
		self.init_environment()
		result = RestoreRunAction(self.args.run_id, Path(self.args.output), verify_hash=not self.args.no_verify).run()
		logger.info('Restored {} file(s), {}'.format(result.restored_count, ByteCount(result.restored_bytes).auto_str()))
		for entry in result.skipped_failed:
			logger.warning('Not restored, failed during backup: {}'.format(entry.archive_path))
		for entry, reason in result.errors:
			logger.error('Restore failed: {}: {}'.format(entry.archive_path, reason))
		if len(result.errors) > 0:
			ErrorReturnCodes.action_failed.sys_exit()

	def cmd_validate(self):
		self.init_environment()
		result = ValidateRunAction(self.args.run_id, check_hash=not self.args.fast).run()
		logger.info('Validated {} entries: ok {}, bad {}, failed during backup {}'.format(result.total, result.ok, result.bad, result.skipped_failed))
		for entry in result.missing[:self.args.samples]:
			logger.error('  missing blob: {}'.format(entry.archive_path))
		for entry, reason in result.mismatched[:self.args.samples]:
			logger.error('  bad blob: {}: {}'.format(entry.archive_path, reason))
		if result.bad > 0:
			ErrorReturnCodes.validation_failed.sys_exit()

	def cmd_clean(self):
		self.init_environment()
		removed = RemoveOrphanRunsAction(dry_run=self.args.dry_run).run()
		logger.info('{} orphan run director{}{}'.format(len(removed), 'y' if len(removed) == 1 else 'ies', ' found' if self.args.dry_run else ' removed'))

	@classmethod
	def entrypoint(cls):
		parser = argparse.ArgumentParser(description='Chronicle Backup CLI tools', formatter_class=argparse.ArgumentDefaultsHelpFormatter)
		parser.add_argument('-c', '--config', default='config.json', help='Path to the json config file')
		parser.add_argument('-s', '--storage-root', default=None, help='Override the storage root in the config')
		subparsers = parser.add_subparsers(title='Command', help='Available commands', dest='command')

		desc = 'Make a backup run of the given backup type'
		parser_make = subparsers.add_parser('make', help=desc, description=desc)
		parser_make.add_argument('backup_type', help='The backup type defined in the config')
		parser_make.add_argument('-d', '--differential', action='store_true', help='Only back up files changed since the last successful full run')

		desc = 'List committed runs, newest first'
		parser_list = subparsers.add_parser('list', help=desc, description=desc, add_help=False)
		parser_list.add_argument('--help', action='store_true', help='show this help message and exit')
		parser_list.add_argument('-t', '--type', default=None, help='Only list runs of the given backup type')
		parser_list.add_argument('-l', '--limit', type=int, default=None, help='Max amount of runs to list')
		parser_list.add_argument('-h', '--human', action='store_true', help='Prettify sizes, make it human-readable')

		desc = 'Show detailed information of the given run'
		parser_show = subparsers.add_parser('show', help=desc, description=desc)
		parser_show.add_argument('run_id', help='The ID of the run')

		desc = 'Show statistics of the given backup type'
		parser_stats = subparsers.add_parser('stats', help=desc, description=desc)
		parser_stats.add_argument('backup_type', help='The backup type')

		desc = 'Compare the files of two runs'
		parser_diff = subparsers.add_parser('diff', help=desc, description=desc)
		parser_diff.add_argument('run_id_old', help='The ID of the older run')
		parser_diff.add_argument('run_id_new', help='The ID of the newer run')
		parser_diff.add_argument('--raw', action='store_true', help='Compare the manifests only, do not merge the baselines of differential runs')

		desc = 'Restore the files of the given run to a directory'
		parser_restore = subparsers.add_parser('restore', help=desc, description=desc)
		parser_restore.add_argument('run_id', help='The ID of the run')
		parser_restore.add_argument('output', help='The directory to restore to')
		parser_restore.add_argument('--no-verify', action='store_true', help='Do not verify the restored file contents')

		desc = 'Check that all stored files of the given run are intact'
		parser_validate = subparsers.add_parser('validate', help=desc, description=desc)
		parser_validate.add_argument('run_id', help='The ID of the run')
		parser_validate.add_argument('--fast', action='store_true', help='Only check file existence and sizes, skip hashing')
		parser_validate.add_argument('--samples', type=int, default=20, help='Max amount of bad entries to print for each kind')

		desc = 'Remove run directories left by runs that never committed'
		parser_clean = subparsers.add_parser('clean', help=desc, description=desc)
		parser_clean.add_argument('--dry-run', action='store_true', help='Only report the orphan run directories')

		args = parser.parse_args()
		if args.command is None:
			parser.print_help()
			return

		handler = CliHandler(args)
		try:
			if args.command == 'make':
				handler.cmd_make()
			elif args.command == 'list':
				if args.help:
					parser_list.print_help()
				else:
					handler.cmd_list()
			elif args.command == 'show':
				handler.cmd_show()
			elif args.command == 'stats':
				handler.cmd_stats()
			elif args.command == 'diff':
				handler.cmd_diff()
			elif args.command == 'restore':
				handler.cmd_restore()
			elif args.command == 'validate':
				handler.cmd_validate()
			elif args.command == 'clean':
				handler.cmd_clean()
			else:
				logger.error('Unknown command {!r}'.format(args.command))
				ErrorReturnCodes.invalid_argument.sys_exit()
		except (RunNotFound, RunNotCommitted, ManifestNotFound) as e:
			logger.error('{}'.format(e))
			ErrorReturnCodes.run_not_found.sys_exit()
		except ConfigurationError as e:
			logger.error('Bad configuration: {}'.format(e))
			ErrorReturnCodes.configuration_error.sys_exit()
		except PreflightError as e:
			logger.error('Preflight check failed: {}'.format(e))
			ErrorReturnCodes.preflight_error.sys_exit()
		except AlreadyRunning as e:
			logger.error('{}'.format(e))
			ErrorReturnCodes.already_running.sys_exit()
		finally:
			DbAccess.shutdown()


def __prepare_logger():
	cli_logger = get_logger()
	for hdr in cli_logger.handlers:
		hdr.setFormatter(log_utils.LOG_FORMATTER_NO_FUNC)


def cli_entry():
	__prepare_logger()
	CliHandler.entrypoint()
