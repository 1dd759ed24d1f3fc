from . import closures, metrics, tickets

__all__ = ["closures", "metrics", "tickets"]
