"""
Call lifecycle components.
"""

from chat_gateway.components.calls.session import CallSession, CallStatus, generate_call_id
from chat_gateway.components.calls.manager import CallSessionManager, NO_ANSWER

__all__ = [
    "CallSession",
    "CallStatus",
    "generate_call_id",
    "CallSessionManager",
    "NO_ANSWER",
]
