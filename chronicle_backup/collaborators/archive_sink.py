import tarfile
from pathlib import Path
from typing import Protocol

from chronicle_backup import logger


class ArchiveSink(Protocol):
	def export(self, staging_dir: Path, destination: str, name: str) -> bool:
		"""
		:param staging_dir: the on-disk directory of a finished run
		:param destination: where to put the archive. The meaning depends on the implementation
		:param name: a base name for the produced artifact, e.g. the run id
		:return: success or not
		"""
		...


class TarArchiveSink:
	def __init__(self, gzip: bool = True):
		self.logger = logger.get()
		self.gzip = gzip

	def export(self, staging_dir: Path, destination: str, name: str) -> bool:
		dest_dir = Path(destination)
		suffix = '.tar.gz' if self.gzip else '.tar'
		output = dest_dir / (name + suffix)
		try:
			dest_dir.mkdir(parents=True, exist_ok=True)
			with tarfile.open(output, 'w:gz' if self.gzip else 'w') as tar:
				tar.add(staging_dir, arcname=name)
		except (OSError, tarfile.TarError) as e:
			self.logger.error('Archive {} to {} failed: {}'.format(str(staging_dir), str(output), e))
			output.unlink(missing_ok=True)
			return False
		self.logger.info('Archived {} to {}'.format(str(staging_dir), str(output)))
		return True
