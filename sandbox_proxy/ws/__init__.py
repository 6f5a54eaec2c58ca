from .relay import RelaySession, router

__all__ = ["RelaySession", "router"]
