# core.py
from typing import Optional
from libero_installer.utils.logger import RichAppLogger

# A global variable to hold the initialized logger wrapper
# It starts as None and is set by the CLI before any workflow runs
app_logger: Optional[RichAppLogger] = None
