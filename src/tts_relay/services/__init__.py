"""
Relay services.

    - relay_service.py: RelayService, the single entry point for boundary operations
    - permissions.py: Permission hierarchy and user rows
    - store.py: Durable key-value store (JSON file or in-memory)
    - events.py: Outbound event bus
    - validators.py: Input validation
"""
