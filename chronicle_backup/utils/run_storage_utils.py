from pathlib import Path, PurePosixPath

from chronicle_backup import constants


def get_runs_root() -> Path:
	from chronicle_backup.config.config import Config
	return Config.get().runs_path


def get_run_dir(run_id: str) -> Path:
	if len(run_id) == 0 or '/' in run_id or '\\' in run_id or run_id in ('.', '..'):
		raise ValueError('bad run id {!r}'.format(run_id))
	return get_runs_root() / run_id


def get_run_data_dir(run_id: str) -> Path:
	return get_run_dir(run_id) / constants.RUN_DATA_DIR_NAME


def get_manifest_path(run_id: str) -> Path:
	return get_run_dir(run_id) / constants.MANIFEST_FILE_NAME


def get_blob_path(run_id: str, archive_path: str) -> Path:
	pp = PurePosixPath(archive_path)
	if pp.is_absolute() or '..' in pp.parts:
		raise ValueError('bad archive path {!r}'.format(archive_path))
	return get_run_data_dir(run_id).joinpath(*pp.parts)
