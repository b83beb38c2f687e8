import os
import sys


def get_app_root():
    if getattr(sys, 'frozen', False):
        # Running from a bundled host plugin
        return os.path.dirname(sys.executable)
    # COLORQUANT_HOME lets the host point logs and config somewhere writable
    return os.path.abspath(os.environ.get("COLORQUANT_HOME", "."))
