import structlog
from shared.observability import saga_compensation_total

log = structlog.get_logger(__name__)


class SagaStep:
    def __init__(self, name, action, compensation=None):
        self.name = name
        self.action = action
        self.compensation = compensation


class SagaOrchestrator:
    """
    Runs steps in order against a shared context dict. When a step raises,
    compensations run in reverse order for every completed step and for the
    failing step itself, since a step may fail after part of its work took
    effect (e.g. the third of five reservations). Compensations therefore
    have to be idempotent and safe for work that never happened.
    """

    def __init__(self, name: str = "saga"):
        self.name = name
        self.steps = []

    def add_step(self, name: str, action, compensation=None):
        """Builder pattern to add a step and its rollback compensation."""
        self.steps.append(SagaStep(name, action, compensation))
        return self

    async def execute(self, ctx: dict):
        """Executes steps sequentially. Triggers rollback on any exception."""
        executed_steps = []
        for step in self.steps:
            try:
                await step.action(ctx)
            except Exception as e:
                log.warning("saga_step_failed", saga=self.name, step=step.name, error=str(e))
                await self._rollback(executed_steps + [step], ctx)
                raise
            executed_steps.append(step)
        return ctx

    async def _rollback(self, steps: list, ctx: dict):
        """Executes compensations in reverse order. A failing compensation does not block the others."""
        log.info("saga_rollback_started", saga=self.name, steps=[s.name for s in steps])
        for step in reversed(steps):
            if not step.compensation:
                continue
            try:
                await step.compensation(ctx)
                log.info("saga_compensated", saga=self.name, step=step.name)
                saga_compensation_total.labels(step_name=step.name).inc()
            except Exception as ce:
                log.critical(
                    "saga_compensation_failed",
                    saga=self.name,
                    step=step.name,
                    error=str(ce),
                    detail="Manual intervention may be required",
                )
