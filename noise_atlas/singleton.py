import logging

logger = logging.getLogger(__name__)


class SingletonMeta(type):
    """
    Metaclass that hands out one shared instance per class.
    """
    _instances = {}

    def __call__(cls, *args, **kwargs):
        if cls not in cls._instances:
            logger.debug(f"Creating new instance for {cls.__name__}")
            cls._instances[cls] = super(SingletonMeta, cls).__call__(*args, **kwargs)
        else:
            logger.debug(f"Using existing instance for {cls.__name__}")
        return cls._instances[cls]

    def reset(cls):
        """Forget the shared instance so the next call builds a fresh one."""
        cls._instances.pop(cls, None)
