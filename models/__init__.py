"""ORM models exposed by the HerdSync application."""
from .pending_op import PendingOp

__all__ = ["PendingOp"]
