from takeoff.repositories.base_repository import BaseRepository
from takeoff.repositories.chunk_repository import ChunkRepository, SheetRepository
from takeoff.repositories.job_repository import BatchRepository, JobRepository
from takeoff.repositories.ocr_repository import MistralOCRRepository

__all__ = [
    "BaseRepository",
    "BatchRepository",
    "ChunkRepository",
    "JobRepository",
    "MistralOCRRepository",
    "SheetRepository",
]
