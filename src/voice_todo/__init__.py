from __future__ import annotations

__version__ = "0.3.0"

SEED_TODOS_URL = "https://dummyjson.com/todos"
