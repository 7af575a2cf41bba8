import dataclasses
import os
import stat
import time
from pathlib import Path, PurePosixPath
from typing import List, Iterable, Tuple, Set

import pathspec

from chronicle_backup import logger
from chronicle_backup.config.backup_config import BackupItemConfig

RESERVED_DEVICE_NAMES = frozenset([
	'NUL', 'CON', 'PRN', 'AUX',
	*[f'COM{i}' for i in range(1, 10)],
	*[f'LPT{i}' for i in range(1, 10)],
])


def is_reserved_name(name: str) -> bool:
	return name.upper() in RESERVED_DEVICE_NAMES


def has_reserved_segment(parts: Iterable[str]) -> bool:
	return any(is_reserved_name(part) for part in parts)


@dataclasses.dataclass(frozen=True)
class Candidate:
	category: str
	path: Path  # full path of the source file
	archive_path: str  # posix path inside the run's data directory
	size: int
	mtime_ns: int

	@property
	def original_path(self) -> str:
		return str(self.path)


@dataclasses.dataclass(frozen=True)
class ResolvedDirectory:
	category: str
	path: Path
	archive_path: str


@dataclasses.dataclass
class ResolveResult:
	candidates: List[Candidate] = dataclasses.field(default_factory=list)
	directories: List[ResolvedDirectory] = dataclasses.field(default_factory=list)
	missing_paths: List[str] = dataclasses.field(default_factory=list)
	skipped_reserved: List[str] = dataclasses.field(default_factory=list)
	skipped_special: List[str] = dataclasses.field(default_factory=list)  # symlinks, sockets, etc.
	unreadable_paths: List[str] = dataclasses.field(default_factory=list)
	excluded_count: int = 0

	@property
	def total_size(self) -> int:
		return sum(c.size for c in self.candidates)


def _make_location_labels(locations: List[Path]) -> List[str]:
	"""
	One unique label per location: its base name, suffixed with _<n> on collisions
	"""
	labels: List[str] = []
	used: Set[str] = set()
	for loc in locations:
		base = loc.name or 'root'
		label, n = base, 1
		while label in used:
			n += 1
			label = f'{base}_{n}'
		used.add(label)
		labels.append(label)
	return labels


class PathResolver:
	"""
	Expands backup items into the concrete files to back up. Reads the file system only
	"""

	def __init__(self, items: List[BackupItemConfig]):
		self.logger = logger.get()
		self.items = items

	def resolve(self) -> ResolveResult:
		result = ResolveResult()
		start_time = time.time()

		for item in self.items:
			spec = pathspec.GitIgnoreSpec.from_lines(item.exclude_patterns)
			locations = [Path(p).expanduser() for p in item.paths]
			for location, label in zip(locations, _make_location_labels(locations)):
				self.__resolve_location(result, item.name, location, label, spec)

		self.logger.debug('Path resolve done, cost {:.2f}s, candidates {}, dirs {}, excluded {}, missing {}, reserved {}, special {}'.format(
			time.time() - start_time, len(result.candidates), len(result.directories), result.excluded_count,
			len(result.missing_paths), len(result.skipped_reserved), len(result.skipped_special),
		))
		if len(result.missing_paths) > 0:
			self.logger.warning('{} configured path(s) do not exist: {}'.format(len(result.missing_paths), result.missing_paths))
		if len(result.skipped_reserved) > 0:
			self.logger.warning('Skipped {} path(s) with reserved device names: {}'.format(len(result.skipped_reserved), result.skipped_reserved))
		return result

	def __resolve_location(self, result: ResolveResult, category: str, location: Path, label: str, spec: pathspec.PathSpec):
		try:
			st = location.stat()
		except FileNotFoundError:
			result.missing_paths.append(str(location))
			return
		except OSError as e:
			self.logger.warning('Cannot stat configured path {!r}: {}'.format(str(location), e))
			result.unreadable_paths.append(str(location))
			return

		archive_root = PurePosixPath(category, label)
		if has_reserved_segment([*location.parts, label]):
			result.skipped_reserved.append(str(location))
			return

		if stat.S_ISREG(st.st_mode):
			if spec.match_file(location.name):
				result.excluded_count += 1
				return
			result.candidates.append(Candidate(category, location, archive_root.as_posix(), st.st_size, st.st_mtime_ns))
			return
		if not stat.S_ISDIR(st.st_mode):
			result.skipped_special.append(str(location))
			return

		result.directories.append(ResolvedDirectory(category, location, archive_root.as_posix()))
		# iterative DFS, children sorted, to keep the output order stable
		stack: List[Tuple[Path, PurePosixPath]] = [(location, PurePosixPath())]
		while len(stack) > 0:
			dir_path, rel_dir = stack.pop()
			try:
				with os.scandir(dir_path) as it:
					entries = sorted(it, key=lambda e: e.name)
			except OSError as e:
				self.logger.warning('Cannot list directory {!r}: {}'.format(str(dir_path), e))
				result.unreadable_paths.append(str(dir_path))
				continue

			sub_dirs: List[Tuple[Path, PurePosixPath]] = []
			for entry in entries:
				full_path = dir_path / entry.name
				rel_path = rel_dir / entry.name
				if is_reserved_name(entry.name):
					result.skipped_reserved.append(str(full_path))
					continue
				try:
					entry_st = entry.stat(follow_symlinks=False)
				except OSError as e:
					self.logger.warning('Cannot stat {!r}: {}'.format(str(full_path), e))
					result.unreadable_paths.append(str(full_path))
					continue

				if stat.S_ISDIR(entry_st.st_mode):
					if spec.match_file(rel_path.as_posix() + '/'):
						result.excluded_count += 1
						continue
					result.directories.append(ResolvedDirectory(category, full_path, (archive_root / rel_path).as_posix()))
					sub_dirs.append((full_path, rel_path))
				elif stat.S_ISREG(entry_st.st_mode):
					if spec.match_file(rel_path.as_posix()):
						result.excluded_count += 1
						continue
					result.candidates.append(Candidate(category, full_path, (archive_root / rel_path).as_posix(), entry_st.st_size, entry_st.st_mtime_ns))
				else:
					self.logger.debug('Skipping non-regular file {!r}, mode {}'.format(str(full_path), oct(entry_st.st_mode)))
					result.skipped_special.append(str(full_path))

			stack.extend(reversed(sub_dirs))
