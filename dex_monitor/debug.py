import datetime as dt

_verbose = False


def configure(debug: str | None) -> None:
    """Turn ``dbg`` tracing on when the ``DEBUG`` setting is ``verbose``."""
    global _verbose
    _verbose = debug == "verbose"


def dbg(msg: str) -> None:
    if _verbose:
        ts = dt.datetime.now(dt.timezone.utc).isoformat()
        print(f"[DEBUG] {ts} {msg}")
