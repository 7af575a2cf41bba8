import dataclasses
import enum
import threading
from pathlib import Path
from typing import Dict, Optional, Set, List, Union

from chronicle_backup import logger
from chronicle_backup.config.sub_configs import DeduplicationConfig
from chronicle_backup.exceptions import ManifestNotFound
from chronicle_backup.ledger.manifest_store import ManifestStore
from chronicle_backup.ledger.run_ledger import RunLedger
from chronicle_backup.types.hash_method import HashMethod
from chronicle_backup.types.manifest import BlobRef, Manifest
from chronicle_backup.utils import hash_utils


class _Claim:
	"""
	Marks a hash as being stored by one worker. Other workers with the same hash wait for it
	"""
	def __init__(self, content_hash: str):
		self.content_hash = content_hash
		self.done = threading.Event()


class HashCache:
	"""
	content hash -> the most recent known physical blob with that content.

	Scoped to a single run. Built from the manifests of recent runs, and extended as the run stores new blobs
	"""

	def __init__(self):
		self.__lock = threading.Lock()
		self.__entries: Dict[str, BlobRef] = {}
		self.__pending: Dict[str, _Claim] = {}

	def __len__(self) -> int:
		with self.__lock:
			return len(self.__entries)

	def get(self, content_hash: str) -> Optional[BlobRef]:
		with self.__lock:
			return self.__entries.get(content_hash)

	def put(self, content_hash: str, ref: BlobRef):
		with self.__lock:
			self.__entries[content_hash] = ref

	def put_if_absent(self, content_hash: str, ref: BlobRef) -> Optional[BlobRef]:
		"""
		:return: the ref already cached for the hash, or None if the hash was free.
			A hash claimed by another worker is left to that worker
		"""
		with self.__lock:
			if (existing := self.__entries.get(content_hash)) is not None:
				return existing
			if content_hash not in self.__pending:
				self.__entries[content_hash] = ref
		return None

	def load_manifest(self, manifest: Manifest) -> int:
		"""
		Indexes all non-failed entries of the manifest. Later loads override earlier ones
		"""
		cnt = 0
		with self.__lock:
			for entry in manifest.entries.values():
				ref = entry.get_blob_ref(manifest.run_id)
				if ref is not None and entry.content_hash is not None:
					self.__entries[entry.content_hash] = ref
					cnt += 1
		return cnt

	def evict(self, content_hash: str, ref: BlobRef):
		with self.__lock:
			if self.__entries.get(content_hash) == ref:
				self.__entries.pop(content_hash)

	def lookup_or_claim(self, content_hash: str) -> Union[BlobRef, _Claim, None]:
		"""
		:return: the cached blob ref, or a new claim if the caller should store the blob itself.
			None if another worker is storing this hash right now, and the caller has waited for it to finish
		"""
		with self.__lock:
			if (ref := self.__entries.get(content_hash)) is not None:
				return ref
			if (pending := self.__pending.get(content_hash)) is None:
				claim = _Claim(content_hash)
				self.__pending[content_hash] = claim
				return claim
		pending.done.wait()
		return None

	def fulfill(self, claim: _Claim, ref: BlobRef):
		with self.__lock:
			self.__entries[claim.content_hash] = ref
			self.__pending.pop(claim.content_hash, None)
		claim.done.set()

	def release(self, claim: _Claim):
		with self.__lock:
			self.__pending.pop(claim.content_hash, None)
		claim.done.set()


class DedupAction(enum.Enum):
	store = enum.auto()
	reference = enum.auto()


@dataclasses.dataclass(frozen=True)
class DedupDecision:
	action: DedupAction
	content_hash: str
	size: int
	ref: Optional[BlobRef] = None
	claim: Optional[_Claim] = None


class DedupEngine:
	def __init__(self, config: DeduplicationConfig, hash_method: HashMethod):
		self.logger = logger.get()
		self.config = config
		self.hash_method = hash_method
		self.cache = HashCache()
		self.__verified_lock = threading.Lock()
		self.__verified: Set[BlobRef] = set()

	@property
	def enabled(self) -> bool:
		return self.config.enabled

	def build_cache(self, backup_type: str, ledger: RunLedger, manifest_store: ManifestStore) -> List[str]:
		"""
		Indexes the manifests of the latest lookback_runs committed runs of the given backup type

		:return: ids of the runs whose manifests were loaded
		"""
		if not self.enabled or self.config.lookback_runs <= 0:
			return []

		loaded: List[str] = []
		runs = ledger.recent_runs(backup_type, self.config.lookback_runs)
		for run in reversed(runs):  # oldest first, so newer runs win on collision
			if run.hash_method != self.hash_method:
				self.logger.debug('Skipping run {} for the hash cache, hash method {} != {}'.format(run.id, run.hash_method.name, self.hash_method.name))
				continue
			try:
				manifest = manifest_store.read(run.id)
			except ManifestNotFound:
				self.logger.warning('Manifest of committed run {} is missing, skipped for deduplication'.format(run.id))
				continue
			except (OSError, ValueError, KeyError) as e:
				self.logger.warning('Manifest of run {} is unreadable, skipped for deduplication: {}'.format(run.id, e))
				continue
			cnt = self.cache.load_manifest(manifest)
			loaded.append(run.id)
			self.logger.debug('Loaded {} hash(es) from the manifest of run {}'.format(cnt, run.id))

		self.logger.info('Hash cache built from {} run(s), {} distinct hash(es)'.format(len(loaded), len(self.cache)))
		return loaded

	def hash_file(self, path: Path) -> hash_utils.SizeAndHash:
		return hash_utils.calc_file_size_and_hash(path, hash_method=self.hash_method)

	def __is_blob_present(self, ref: BlobRef, size: int, content_hash: str) -> bool:
		with self.__verified_lock:
			if ref in self.__verified:
				return True
		blob_path = ref.get_path()
		try:
			if not blob_path.is_file() or blob_path.stat().st_size != size:
				return False
			if self.config.verify_hash and hash_utils.calc_file_hash(blob_path, hash_method=self.hash_method) != content_hash:
				return False
		except OSError as e:
			self.logger.warning('Cannot verify blob {}: {}'.format(blob_path, e))
			return False
		with self.__verified_lock:
			self.__verified.add(ref)
		return True

	def decide(self, content_hash: str, size: int) -> DedupDecision:
		"""
		A store decision with a claim must be finished with :meth:`on_stored` or :meth:`on_store_failed`
		"""
		if not self.enabled:
			return DedupDecision(DedupAction.store, content_hash, size)

		while True:
			result = self.cache.lookup_or_claim(content_hash)
			if isinstance(result, _Claim):
				return DedupDecision(DedupAction.store, content_hash, size, claim=result)
			elif isinstance(result, BlobRef):
				if self.__is_blob_present(result, size, content_hash):
					return DedupDecision(DedupAction.reference, content_hash, size, ref=result)
				self.logger.warning('Blob {}:{} for hash {} is missing or altered, storing the file again'.format(result.run_id, result.archive_path, content_hash))
				self.cache.evict(content_hash, result)
			# else: another worker just finished the same hash, look again

	def on_stored(self, decision: DedupDecision, ref: BlobRef):
		if decision.claim is not None:
			with self.__verified_lock:
				self.__verified.add(ref)
			self.cache.fulfill(decision.claim, ref)

	def on_store_failed(self, decision: DedupDecision):
		if decision.claim is not None:
			self.cache.release(decision.claim)

	def adopt_unclaimed(self, content_hash: str, size: int, ref: BlobRef) -> Optional[BlobRef]:
		"""
		Registers a blob stored without a claim on its hash, e.g. a file that changed while being copied

		:return: a present blob with the same content that the caller should reference instead of its own copy,
			or None if the caller keeps its copy
		"""
		if not self.enabled:
			return None
		while (existing := self.cache.put_if_absent(content_hash, ref)) is not None:
			if existing == ref:
				return None
			if self.__is_blob_present(existing, size, content_hash):
				return existing
			self.cache.evict(content_hash, existing)
		if self.cache.get(content_hash) == ref:
			with self.__verified_lock:
				self.__verified.add(ref)
		return None
