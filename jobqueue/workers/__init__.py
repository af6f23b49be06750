from jobqueue.workers.dispatcher import Dispatcher
from jobqueue.workers.handlers import HandlerRegistry, default_registry

__all__ = [
    'Dispatcher',
    'HandlerRegistry',
    'default_registry',
]
