"""
Domain models for the Memory Loop system.

This package contains the value types shared by the capture client,
the processing server and the memory store.
"""

from memory_loop.domains.memory import *
from memory_loop.domains.session import *
from memory_loop.domains.errors import *
