"""
Точка запуска API сегментации.

psycopg3 в async режиме на Windows требует WindowsSelectorEventLoopPolicy.

Запуск:
  python backend/start_server.py
"""

import asyncio
import os
import sys
from pathlib import Path

# PYTHONPATH на директорию backend, чтобы пакет segment_engine был доступен
backend_dir = Path(__file__).parent.absolute()
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

import uvicorn


def main() -> None:
    host = os.getenv("BACKEND_HOST", "127.0.0.1")
    port = int(os.getenv("BACKEND_PORT", "8000"))
    log_level = os.getenv("LOG_LEVEL", "info").lower()
    uvicorn.run("segment_engine.main:app", host=host, port=port, reload=False, log_level=log_level)


if __name__ == "__main__":
    main()
