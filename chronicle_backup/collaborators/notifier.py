import logging
from typing import Protocol, Optional

from chronicle_backup import logger
from chronicle_backup.db.values import RunOutcome


class Notifier(Protocol):
	def notify(self, backup_type: str, run_id: str, outcome: RunOutcome, message: str):
		...


class LoggingNotifier:
	def __init__(self, target_logger: Optional[logging.Logger] = None):
		self.logger = target_logger or logger.get()

	def notify(self, backup_type: str, run_id: str, outcome: RunOutcome, message: str):
		level = logging.INFO if outcome == RunOutcome.succeeded else logging.WARNING
		self.logger.log(level, '[{}] run {} {}: {}'.format(backup_type, run_id, outcome.name, message))


def notify_safely(notifier: Notifier, backup_type: str, run_id: str, outcome: RunOutcome, message: str):
	"""
	Fire and forget. A broken notifier never affects the run
	"""
	try:
		notifier.notify(backup_type, run_id, outcome, message)
	except Exception as e:
		logger.get().error('Notifier {} failed: {}'.format(type(notifier).__name__, e))
