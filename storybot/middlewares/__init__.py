from .identity_middleware import ReaderIdentityMiddleware, GUEST_CACHE_KEY

__all__ = [
    "ReaderIdentityMiddleware",
    "GUEST_CACHE_KEY",
]
