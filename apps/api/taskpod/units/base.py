"""Abstract base class for execution unit clients."""

from __future__ import annotations

from abc import ABC, abstractmethod

from taskpod.schemas import UnitHandle, UnitStatus


class ExecutionUnitClient(ABC):
    """Capability over a container-orchestration control plane.

    Implementations create single-container units that run one shell command
    to completion and are never restarted. Every method raises
    ``UnitClientError`` when the control plane cannot be reached or rejects
    the request.
    """

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Return the backend name (e.g., 'kubernetes')."""
        ...

    @abstractmethod
    async def create_unit(self, name: str, command: str) -> UnitHandle:
        """Provision a unit named ``name`` running ``command``.

        Args:
            name: Unique unit name (DNS-1123 label)
            command: Shell command passed to ``/bin/sh -c``

        Returns:
            Handle used for every later call on this unit
        """
        ...

    @abstractmethod
    async def get_status(self, handle: UnitHandle) -> UnitStatus:
        """Read the unit's phase and its container's start/termination details."""
        ...

    @abstractmethod
    async def get_output(self, handle: UnitHandle) -> str:
        """Read everything the unit's container has written so far."""
        ...

    @abstractmethod
    async def delete_unit(self, handle: UnitHandle) -> None:
        """Delete the unit. Deleting a missing unit is not an error."""
        ...

    async def close(self) -> None:
        """Release any underlying connections."""
        return None
