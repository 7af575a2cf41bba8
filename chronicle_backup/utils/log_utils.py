import contextlib
import logging
from logging.handlers import RotatingFileHandler
from typing import Generator

LOG_FORMATTER = logging.Formatter('[%(asctime)s %(levelname)s] (%(funcName)s) %(message)s')
LOG_FORMATTER_NO_FUNC = logging.Formatter('[%(asctime)s %(levelname)s] %(message)s')
for _fmt in (LOG_FORMATTER, LOG_FORMATTER_NO_FUNC):
	_fmt.default_msec_format = '%s.%03d'

_RUN_LOG_MAX_BYTES = 10 * 1024 * 1024


def get_log_level() -> int:
	from chronicle_backup.config.config import Config
	return logging.DEBUG if Config.get().debug else logging.INFO


@contextlib.contextmanager
def open_file_logger(name: str) -> Generator[logging.Logger, None, None]:
	"""
	A standalone logger appending to ``<storage_root>/logs/<name>.log``, rotated at 10MiB with 1 backup.
	Its handler is closed on exit, so the file is not held open between runs
	"""
	from chronicle_backup import constants
	from chronicle_backup.config.config import Config

	log_file = Config.get().logs_path / f'{name}.log'
	log_file.parent.mkdir(parents=True, exist_ok=True)

	file_logger = logging.Logger(f'{constants.APP_ID}-{name}', get_log_level())
	handler = RotatingFileHandler(log_file, maxBytes=_RUN_LOG_MAX_BYTES, backupCount=1, encoding='utf8')
	handler.setFormatter(LOG_FORMATTER_NO_FUNC)
	file_logger.addHandler(handler)
	try:
		yield file_logger
	finally:
		file_logger.removeHandler(handler)
		handler.close()
