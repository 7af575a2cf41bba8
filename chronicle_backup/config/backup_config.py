from typing import List

from mcdreforged.api.utils import Serializable


class BackupItemConfig(Serializable):
	"""
	A named category of things to back up, e.g. "documents" -> ["~/Documents", "~/Desktop/notes"]
	"""
	name: str = ''
	paths: List[str] = []
	exclude_patterns: List[str] = []  # gitignore-style, matched against the path relative to each location


class BackupTypeConfig(Serializable):
	items: List[BackupItemConfig] = []
