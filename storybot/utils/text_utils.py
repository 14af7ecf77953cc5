def sanitize_text(value: str | None) -> str | None:
    """Remove characters that cannot be encoded in UTF-8."""
    if value is None:
        return None
    return value.encode("utf-8", "ignore").decode("utf-8", "ignore")


def truncate(value: str, limit: int) -> str:
    """Shorten ``value`` to ``limit`` characters, marking the cut with an ellipsis."""
    if len(value) <= limit:
        return value
    return value[: max(limit - 1, 0)].rstrip() + "…"


def spice_label(level: int | None) -> str:
    return "🌶️" * max(1, min(level or 1, 3))
