"""Database models package."""
from power_importer.db.models.product import Product
from power_importer.db.models.import_job import ImportJob
from power_importer.db.models.import_log import ImportLog

__all__ = ["Product", "ImportJob", "ImportLog"]
