DB_FILE_NAME = 'chronicle.db'
DB_MAGIC_INDEX = 0
DB_VERSION = 1
