"""
Chat Gateway.

Real-time presence, chat relay and one-to-one call signaling over a single
authenticated WebSocket per user.
"""
