import functools
import json
import logging
from pathlib import Path
from typing import Optional, Dict

from mcdreforged.api.utils import Serializable

from chronicle_backup.config.backup_config import BackupTypeConfig
from chronicle_backup.config.sub_configs import RetryConfig, DeduplicationConfig, ArchiveConfig
from chronicle_backup.types.hash_method import HashMethod


class Config(Serializable):
	debug: bool = False
	storage_root: str = './cb_files'
	concurrency: int = 1
	hash_method: HashMethod = HashMethod.xxh128
	telemetry_interval_files: int = 10

	backup_types: Dict[str, BackupTypeConfig] = {}
	retry: RetryConfig = RetryConfig()
	deduplication: DeduplicationConfig = DeduplicationConfig()
	archive: ArchiveConfig = ArchiveConfig()

	# ==================== Instance getters ====================

	@classmethod
	@functools.lru_cache
	def __get_default(cls) -> 'Config':
		return Config.get_default()

	@classmethod
	def get(cls) -> 'Config':
		if _config is None:
			return cls.__get_default()
		return _config

	@classmethod
	def load(cls, file_path: Path) -> 'Config':
		with open(file_path, 'r', encoding='utf8') as f:
			data = json.load(f)
		return cls.deserialize(data)

	# ==================== Field getters ====================

	def get_backup_type(self, backup_type: str) -> BackupTypeConfig:
		"""
		:raise ConfigurationError: if the backup type is unknown, or its items are invalid
		"""
		from chronicle_backup.action.helpers.path_resolver import is_reserved_name
		from chronicle_backup.exceptions import ConfigurationError

		if (type_config := self.backup_types.get(backup_type)) is None:
			raise ConfigurationError('unknown backup type {!r}, known types: {}'.format(backup_type, list(self.backup_types.keys())))
		if len(type_config.items) == 0:
			raise ConfigurationError('backup type {!r} has no backup item'.format(backup_type))

		seen_names = set()
		for item in type_config.items:
			if len(item.name) == 0 or item.name in ('.', '..') or '/' in item.name or '\\' in item.name or is_reserved_name(item.name):
				raise ConfigurationError('bad backup item name {!r} in backup type {!r}'.format(item.name, backup_type))
			if item.name in seen_names:
				raise ConfigurationError('duplicated backup item name {!r} in backup type {!r}'.format(item.name, backup_type))
			seen_names.add(item.name)
			if len(item.paths) == 0:
				raise ConfigurationError('backup item {!r} of backup type {!r} has no path'.format(item.name, backup_type))
		if self.retry.max_attempts < 1:
			raise ConfigurationError('retry.max_attempts should be at least 1, got {}'.format(self.retry.max_attempts))
		if self.deduplication.lookback_runs < 0:
			raise ConfigurationError('deduplication.lookback_runs should not be negative, got {}'.format(self.deduplication.lookback_runs))
		return type_config

	def get_effective_concurrency(self) -> int:
		if self.concurrency == 0:
			import multiprocessing
			return max(1, int(multiprocessing.cpu_count() * 0.5))
		else:
			return max(1, self.concurrency)

	@property
	def storage_path(self) -> Path:
		return Path(self.storage_root)

	@property
	def runs_path(self) -> Path:
		return self.storage_path / 'runs'

	@property
	def temp_path(self) -> Path:
		return self.storage_path / 'temp'

	@property
	def logs_path(self) -> Path:
		return self.storage_path / 'logs'


_config: Optional[Config] = None


def set_config_instance(cfg: Config):
	global _config
	_config = cfg

	from chronicle_backup import logger
	logger.get().setLevel(logging.DEBUG if cfg.debug else logging.INFO)
	if cfg.debug:
		logger.get().debug('debug on')
