from __future__ import annotations

from typing import Iterable, Optional

from dagsched.config import Settings, load_settings
from dagsched.domain.models import RunResult
from dagsched.engine import SchedulerConfig, TaskManager
from dagsched.logging import configure_logging, get_logger
from dagsched.reporting import Terminal, TopLikeStatusReporter
from dagsched.reporting.reporter import PrintFn
from dagsched.tasks import Task


def run_tasks(
    tasks: Iterable[Task],
    dependencies: Iterable[tuple[Task, Task]] = (),
    *,
    settings: Optional[Settings] = None,
    show_status: bool = True,
    print_fn: Optional[PrintFn] = None,
    terminal: Optional[Terminal] = None,
) -> RunResult:
    """
    Programmatic entrypoint: runs a task graph to completion.

    Settings come from the environment unless given (see
    dagsched.config.load_settings). `dependencies` are (upstream, downstream)
    pairs. With `show_status`, a TopLikeStatusReporter draws progress
    while the graph runs.

    Example:
      extract, load = CallableTask(extract_fn), CallableTask(load_fn)
      result = run_tasks([extract, load], [(extract, load)])
    """
    settings = settings if settings is not None else load_settings()
    configure_logging(settings.log_level)
    log = get_logger(__name__)

    reporter: Optional[TopLikeStatusReporter] = None
    with TaskManager(SchedulerConfig.from_settings(settings)) as manager:
        for upstream, downstream in dependencies:
            manager.add_dependency(upstream, downstream)
        manager.add_tasks(*tasks)
        log.info("Submitted %d task(s)", len(manager.snapshot()))

        if show_status:
            reporter = TopLikeStatusReporter(
                manager,
                print_fn=print_fn,
                terminal=terminal,
                refresh_interval_ms=settings.report_interval_ms,
            )
            reporter.start()
        try:
            return manager.run_to_completion()
        finally:
            if reporter is not None:
                reporter.shutdown()
