from .spec_updates import SpecIngestionService, SpecUpdate, extract_spec_info, spec_hash

__all__ = ["SpecIngestionService", "SpecUpdate", "extract_spec_info", "spec_hash"]
