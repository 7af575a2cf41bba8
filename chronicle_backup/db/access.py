import contextlib
from typing import Optional, ContextManager

from sqlalchemy import create_engine, Engine
from sqlalchemy.orm import Session

from chronicle_backup.db import db_constants
from chronicle_backup.db.migration import DbMigration
from chronicle_backup.db.session import DbSession


class DbAccess:
	__engine: Optional[Engine] = None

	@classmethod
	def init(cls, *, create: bool = True):
		"""
		Opens the ledger database inside the configured storage root.
		With create=True, a missing storage root and database are created
		"""
		from chronicle_backup.config.config import Config
		db_dir = Config.get().storage_path
		if create:
			db_dir.mkdir(parents=True, exist_ok=True)

		db_path = db_dir / db_constants.DB_FILE_NAME
		cls.__engine = create_engine('sqlite:///' + str(db_path))

		migration = DbMigration(cls.__engine)
		migration.check_and_migrate(create=create)

	@classmethod
	def shutdown(cls):
		if (engine := cls.__engine) is not None:
			engine.dispose()
			cls.__engine = None

	@classmethod
	def is_initialized(cls) -> bool:
		return cls.__engine is not None

	@classmethod
	def __ensure_engine(cls) -> Engine:
		if cls.__engine is None:
			raise RuntimeError('engine unavailable')
		return cls.__engine

	@classmethod
	@contextlib.contextmanager
	def open_session(cls) -> ContextManager['DbSession']:
		with Session(cls.__ensure_engine()) as session, session.begin():
			yield DbSession(session)
