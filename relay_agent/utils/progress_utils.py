"""Progress formatting utilities for the relay agent."""


def format_bytes_human_readable(bytes_value: int) -> str:
    if bytes_value < 1024:
        return f"{bytes_value} B"
    elif bytes_value < 1024 * 1024:
        kb = bytes_value / 1024
        return f"{kb:.1f} KB"
    elif bytes_value < 1024 * 1024 * 1024:
        mb = bytes_value / (1024 * 1024)
        return f"{mb:.1f} MB"
    else:
        gb = bytes_value / (1024 * 1024 * 1024)
        return f"{gb:.1f} GB"


def calculate_transfer_rate(bytes_copied: int, elapsed_seconds: float) -> float:
    if elapsed_seconds <= 0:
        return 0.0

    return bytes_copied / elapsed_seconds


def format_transfer_rate_human_readable(rate_bytes_per_sec: float) -> str:
    return f"{format_bytes_human_readable(int(rate_bytes_per_sec))}/s"


def format_duration(seconds: float) -> str:
    """Format elapsed wall-clock time as ``Xm Ys``."""
    if seconds < 0:
        seconds = 0.0
    total = int(seconds)
    minutes, secs = divmod(total, 60)
    return f"{minutes}m {secs}s"
