"""Engine dependency for the API routers."""

from power_importer.services.factory import build_import_engine
from power_importer.services.job_engine import ImportJobEngine


def get_import_engine() -> ImportJobEngine:
    """FastAPI dependency returning an engine bound to the app's database."""
    return build_import_engine()
