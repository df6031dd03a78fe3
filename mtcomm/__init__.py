"""Message-passing handles over TCP and shared memory, collective layouts and benchmark helpers."""

__version__ = "0.1.0"

__all__ = [
    "collectives",
    "config",
    "handle_user",
    "perf",
    "pingpong",
    "protocol",
    "shm",
    "shm_buffer",
    "tcp",
    "team_config",
]