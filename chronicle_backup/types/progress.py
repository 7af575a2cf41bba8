import dataclasses
from typing import Optional


@dataclasses.dataclass(frozen=True)
class ProgressSnapshot:
	percent: float  # 0 ~ 100
	current_file: Optional[str]
	speed_mbps: float  # MiB/s, sampled every few files

	processed_files: int = 0
	total_files: int = 0
	processed_bytes: int = 0
