from .envelopes import EnvelopeRepository, envelopes

__all__ = ["EnvelopeRepository", "envelopes"]
