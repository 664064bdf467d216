import os

# Basic settings helper to read environment configuration.


def _as_bool(val: str | None, default: bool = False) -> bool:
    if val is None:
        return default
    return val.lower() in ("1", "true", "yes", "on")


class Settings:
    def __init__(self) -> None:
        self.SEARCH_TIMEOUT: float = float(os.getenv("SEARCH_TIMEOUT", "5"))
        self.SEARCH_MAX_RESULTS: int = int(os.getenv("SEARCH_MAX_RESULTS", "25"))
        self.SEARCH_CACHE_ENABLED: bool = _as_bool(os.getenv("SEARCH_CACHE_ENABLED"), False)
        self.SEARCH_CACHE_PATH: str | None = os.getenv("SEARCH_CACHE_PATH")
        self.SEARCH_CACHE_TTL_SECONDS: int = int(
            os.getenv("SEARCH_CACHE_TTL_SECONDS", str(7 * 24 * 3600))
        )
        # Drop completions of searches that are no longer the latest one.
        self.SEARCH_DISCARD_STALE: bool = _as_bool(os.getenv("SEARCH_DISCARD_STALE"), False)


settings = Settings()
