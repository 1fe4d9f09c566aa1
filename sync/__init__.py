from .base import (
    AuthEvent,
    Gateway,
    create_gateway,
    create_gateway_from_loaded_config,
    register_gateway,
)

__all__ = [
    "AuthEvent",
    "Gateway",
    "create_gateway",
    "create_gateway_from_loaded_config",
    "register_gateway",
]
