#!/usr/bin/env python3
# main.py
"""
Главная точка входа сервиса поездок.
Запускает API (с фоновыми воркерами) или только воркеры.
"""

from __future__ import annotations

import asyncio
import signal
import sys

from ridehail.api.dependencies import build_worker_container
from ridehail.common.constants import TypeMsg
from ridehail.common.logger import log_error, log_info, setup_logging
from ridehail.config import settings

MODES = ("api", "workers")

# Глобальный флаг для graceful shutdown
_shutdown_event: asyncio.Event | None = None


def setup_signal_handlers() -> None:
    """Настраивает обработчики SIGINT и SIGTERM."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _shutdown_event.set)
        except NotImplementedError:
            # Windows не поддерживает add_signal_handler
            signal.signal(sig, lambda s, f: _shutdown_event.set() if _shutdown_event else None)


async def run_api() -> None:
    """Запускает FastAPI приложение через uvicorn."""
    import uvicorn

    from ridehail.api.app import create_app

    await log_info(
        f"Запуск API на {settings.deployment.API_HOST}:{settings.deployment.API_PORT}...",
        type_msg=TypeMsg.INFO,
    )
    config = uvicorn.Config(
        create_app(),
        host=settings.deployment.API_HOST,
        port=settings.deployment.API_PORT,
        log_level="debug" if settings.system.DEBUG else "info",
    )
    server = uvicorn.Server(config)
    await server.serve()


async def run_workers() -> None:
    """
    Запускает только фоновые воркеры.

    Требует общих хранилища (postgres) и шины (rabbitmq): события
    истечения заявок доставляют подключения экземпляров API.
    """
    try:
        container = build_worker_container(settings)
    except ValueError as e:
        await log_error(f"Режим workers недоступен: {e}")
        raise SystemExit(1) from e

    setup_signal_handlers()
    await container.startup(run_workers=True)
    try:
        assert _shutdown_event is not None
        await _shutdown_event.wait()
    finally:
        await container.shutdown()


async def main(mode: str = "api") -> None:
    """
    Главная функция запуска.

    Args:
        mode: api или workers
    """
    setup_logging()
    await log_info(
        f"{settings.system.PROJECT_NAME} v{settings.system.VERSION}: запуск в режиме '{mode}'",
        type_msg=TypeMsg.INFO,
    )
    if mode == "workers":
        await run_workers()
    else:
        await run_api()


def print_usage() -> None:
    print("""
Использование: python main.py [режим]

Режимы:
    api        API, WebSocket шлюз и фоновые воркеры (по умолчанию)
    workers    Только фоновые воркеры (STORE_BACKEND=postgres, PUSH_BACKEND=rabbitmq)
    """)


if __name__ == "__main__":
    mode = "api"
    if len(sys.argv) > 1:
        arg = sys.argv[1].lower()
        if arg in ("--help", "-h"):
            print_usage()
            sys.exit(0)
        if arg not in MODES:
            print(f"Ошибка: неизвестный режим '{arg}'")
            print_usage()
            sys.exit(1)
        mode = arg

    try:
        asyncio.run(main(mode))
    except KeyboardInterrupt:
        pass
