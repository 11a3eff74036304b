"""Execution timing for the pipeline stages."""

import time
from functools import wraps

_INDENT_LEVEL = 0


def time_it(func):
    """Decorator printing execution time with indentation for nested calls.

    Only methods whose instance has a truthy ``verbose`` attribute print
    anything; everything else runs untouched.
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        global _INDENT_LEVEL
        if not (args and getattr(args[0], "verbose", False)):
            return func(*args, **kwargs)

        _INDENT_LEVEL += 1
        tabs = "\t" * (_INDENT_LEVEL - 1)
        t0 = time.time()
        print(f"{tabs}Executing <{func.__name__}>")
        try:
            out = func(*args, **kwargs)
        finally:
            _INDENT_LEVEL -= 1
        dt = time.time() - t0
        mins = int(dt // 60)
        secs = dt % 60
        print(f"{tabs}Function <{func.__name__}> execution time : {mins:.0f} minutes and {secs:.1f} seconds")
        return out
    return wrapper
