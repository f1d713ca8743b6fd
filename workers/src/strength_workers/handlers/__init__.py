# Import all handlers so they register themselves.
from . import ranking  # noqa: F401
from . import reference_refresh  # noqa: F401
