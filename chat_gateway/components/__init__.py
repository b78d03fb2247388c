"""
Chat Gateway Components.

Organized into domain-specific modules:
- core/       - Foundational components (constants, context, errors, DI)
- connection/ - Connection registry, rooms, locks, heartbeat, rate limiting
- presence/   - Online/offline announcements
- calls/      - Call sessions and their state machine
- signaling/  - WebRTC signaling relay
- events/     - Inbound command and outbound event types, command router
- auth/       - Authentication strategies (JWT)
- endpoints/  - WebSocket endpoints (base, mixins, handlers)
- metrics/    - Observability (collector)
- data/       - Data access (presence repository)

Import from the specific submodules; this package does not re-export them.
"""
