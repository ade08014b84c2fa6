from .container import (
    Container,
    ContainerError,
    CyclicDependencyError,
    Lifecycle,
    UnregisteredKeyError,
)

__all__ = [
    "Container",
    "ContainerError",
    "CyclicDependencyError",
    "Lifecycle",
    "UnregisteredKeyError",
]
