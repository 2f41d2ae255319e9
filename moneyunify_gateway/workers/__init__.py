"""Background workers and poll loops."""
from .client_poller import ClientPoller, http_poll_function
from .scheduler import PeriodicScheduler

__all__ = ["ClientPoller", "PeriodicScheduler", "http_poll_function"]
