from .hasher import PasswordHasher

__all__: list[str] = ["PasswordHasher"]
