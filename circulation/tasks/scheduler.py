# circulation/tasks/scheduler.py
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from circulation.core.errors import CirculationError
from circulation.core.logging import get_logger
from circulation.services.engine import CirculationEngine

logger = get_logger("circulation.scheduler")


def run_sweeps(engine: CirculationEngine) -> dict:
    """
    Ejecuta los dos barridos periódicos:
    - préstamos BORROWED vencidos -> OVERDUE
    - reservas con la ventana de recogida vencida -> EXPIRED
    Los fallos por fila ya los absorbe cada barrido.
    """
    result = {"overdue_loans": 0, "expired_reservations": 0}
    try:
        result["overdue_loans"] = engine.promote_overdue()
        result["expired_reservations"] = engine.expire_reservations()
    except CirculationError as exc:
        # p.ej. StoreUnavailable al leer los candidatos: se reintenta en la próxima vuelta
        logger.warning(
            "Sweep run aborted",
            extra={"operation": "sweep_run", "error": exc.kind},
            exc_info=True,
        )
    return result


def start_scheduler(engine: CirculationEngine, interval_minutes: int) -> BackgroundScheduler | None:
    """
    Arranca el scheduler en segundo plano.

    Los barridos no bloquean checkout/return: cada fila va en su propia
    transacción corta.
    """
    if interval_minutes <= 0:
        logger.info("Sweep scheduler disabled", extra={"operation": "sweep_scheduler"})
        return None

    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        func=run_sweeps,
        args=[engine],
        trigger=IntervalTrigger(minutes=interval_minutes),
        id="circulation_sweeps",
        replace_existing=True,
        max_instances=1,        # que no se solapen dos barridos
        coalesce=True,          # los perdidos se juntan en una sola ejecución
        misfire_grace_time=120,
    )
    scheduler.start()
    logger.info(
        "Sweep scheduler started",
        extra={"operation": "sweep_scheduler", "interval_minutes": interval_minutes},
    )
    return scheduler


def stop_scheduler(scheduler: BackgroundScheduler | None) -> None:
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Sweep scheduler shutdown", extra={"operation": "sweep_scheduler"})
