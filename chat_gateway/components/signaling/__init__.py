"""
WebRTC signaling relay.
"""

from chat_gateway.components.signaling.router import SignalingRouter

__all__ = ["SignalingRouter"]
