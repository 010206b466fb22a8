import asyncio
import logging
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel, Field

from task_runner import HandlerRegistry, TaskRunner, WorkerSettings


class ReportTask(BaseModel):
    report: str = Field(..., description="Name of the report to build.")


async def build_report(data: dict) -> None:
    print(f"Building report {data['report']}")


def send_email(data: dict) -> None:
    print(f"Sending email to {data['to']}")


async def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    registry = HandlerRegistry(schemas={"report": ReportTask})
    registry.register_function("report", build_report)
    registry.register_function("email", send_email)

    settings = WorkerSettings.from_env()
    runner = await TaskRunner.connect("sqlite+aiosqlite:///./tasks.db", registry=registry, settings=settings)

    await runner.schedule("report", {"report": "daily"}, repeat_every=10)
    # Emails to one recipient are delivered in order, one at a time.
    for i in range(3):
        await runner.schedule("email", {"to": "ops@example.com", "n": i}, group="ops@example.com")
    await runner.schedule(
        "email",
        {"to": "later@example.com"},
        start_at=datetime.now(timezone.utc) + timedelta(seconds=5),
    )

    await runner.start(workers=2)
    await asyncio.sleep(30)
    await runner.close()

if __name__ == "__main__":
    asyncio.run(main())
