# Services are imported where needed:
# from services.pipeline import GenerationPipeline
# from services.storage import get_storage

__all__ = []
