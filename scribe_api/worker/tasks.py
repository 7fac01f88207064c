# --------------------------------------------------------------------------------------
# Celery autodiscover only imports "scribe_api.worker.tasks". The tasks live in
# separate modules, so import them here to register their @celery_app.task decorators.
# --------------------------------------------------------------------------------------

from scribe_api.worker.transcription_tasks import run_transcription_job  # noqa: F401
from scribe_api.worker.enrichment_tasks import index_passages, notify, store_knowledge  # noqa: F401
from scribe_api.worker.maintenance_tasks import purge_terminal_jobs  # noqa: F401
