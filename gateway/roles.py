from __future__ import annotations

from dataclasses import dataclass

# role -> (serves queue routes, default HTTP port)
_ROLE_TABLE: dict[str, tuple[bool, int]] = {
    "api": (True, 8000),
    "sweeper": (False, 8100),
}
SUPPORTED_ROLES = tuple(_ROLE_TABLE)


@dataclass(frozen=True)
class RuntimeRole:
    """Process role. Both roles own the sweeps; only ``api`` exposes the queue."""

    name: str

    @property
    def serves_queue(self) -> bool:
        return _ROLE_TABLE[self.name][0]

    @property
    def default_port(self) -> int:
        return _ROLE_TABLE[self.name][1]


def validate_role(role: str) -> RuntimeRole:
    if role not in _ROLE_TABLE:
        raise ValueError(
            f"Unsupported role '{role}'. Supported roles: {', '.join(SUPPORTED_ROLES)}. "
            "Note: classification workers are external and poll the api role."
        )
    return RuntimeRole(name=role)
