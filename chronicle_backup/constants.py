import uuid

# run storage related
MANIFEST_FILE_NAME = 'manifest.json'
MANIFEST_VERSION = 1
RUN_DATA_DIR_NAME = 'data'

# misc
INSTANCE_ID = uuid.uuid4().hex[:4]
APP_ID = 'chronicle_backup'
