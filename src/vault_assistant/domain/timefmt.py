def format_duration(seconds: float) -> str:
    if seconds <= 0:
        return "0 ms"
    if seconds < 1:
        return f"{seconds * 1000:.1f} ms"
    if seconds < 60:
        return f"{seconds:.2f} s"
    return f"{seconds / 60:.2f} min"


def format_rate(count: int, seconds: float) -> str | None:
    """Human readable throughput, e.g. ``"12.5 items/s"``."""
    if count <= 0 or seconds <= 0:
        return None
    return f"{count / seconds:.1f} items/s"
