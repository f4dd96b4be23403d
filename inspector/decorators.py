import gc
from functools import wraps

# Rewritten pages are held in memory as str and bytes at once; trim after big ones.
TRIM_THRESHOLD_BYTES = 1_000_000


def trim_now() -> None:
    """Force a GC and ask glibc to release arenas back to the OS."""
    gc.collect()
    try:
        import ctypes
        libc = ctypes.CDLL("libc.so.6")
        libc.malloc_trim(0)
    except (OSError, AttributeError):
        # Not fatal on non-glibc platforms
        pass


def trim_memory_after(view_func):
    @wraps(view_func)
    def _wrapped(request, *args, **kwargs):
        response = None
        try:
            response = view_func(request, *args, **kwargs)
            return response
        finally:
            # Trim after large proxied pages or streaming responses.
            if response is not None and _is_heavy(response):
                trim_now()
    return _wrapped


def _is_heavy(response):
    if getattr(response, "streaming", False):
        return True
    return len(getattr(response, "content", b"") or b"") >= TRIM_THRESHOLD_BYTES
