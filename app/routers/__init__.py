# app/routers/__init__.py
from . import health
from . import appointments
from . import doctor

__all__ = ["health", "appointments", "doctor"]
