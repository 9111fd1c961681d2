"""Run the support triage workflow offline and walk through a review."""

import asyncio
from pathlib import Path

import yaml
from pydantic_ai.models.test import TestModel

from flowgate import (
    RunStatus,
    Workflow,
    WorkflowEngine,
    default_executors,
    get_repository,
    validate_workflow,
)

WORKFLOW_FILE = Path(__file__).with_name("support_triage.yaml")


async def main():
    print("🚀 Support triage with flowgate")

    repository = get_repository()
    await repository.connect()

    with open(WORKFLOW_FILE) as f:
        workflow = Workflow.model_validate(yaml.safe_load(f))
    report = validate_workflow(workflow)
    for warning in report.warnings:
        print(f"⚠️  {warning}")
    await repository.save_workflow(workflow)

    # TestModel stands in for a real provider so the guide needs no API key.
    engine = WorkflowEngine(repository, executors=default_executors(model=TestModel()))
    run = await engine.start_run(
        workflow.id,
        {"customer_name": "Ada", "message": "My invoice was charged twice."},
    )
    run = await engine.wait_for_run(run.id)
    print(f"📋 Run {run.id}: {run.status.value}")
    print(f"   judge said: {run.step_states['judge'].output['recommendation']}")

    if run.status == RunStatus.WAITING_FOR_REVIEW:
        print("✍️  Reviewer edits the draft and approves it")
        await engine.resume_run(
            run.id,
            {
                "action": "edit",
                "edited_output": {"result": "Hi Ada, we have refunded the duplicate charge."},
                "comment": "Softer wording",
            },
        )
        run = await engine.wait_for_run(run.id)
        print(f"✅ Run {run.id}: {run.status.value}")
        print(f"   final reply: {run.step_states['draft'].output['result']}")

    if run.usage is not None:
        print(f"💰 {run.usage.total.total_tokens} tokens, ${run.usage.estimated_cost_usd:.6f}")

    for event in await engine.get_trace(run.id):
        print(f"   {event.type.value:<20} {event.step_id or ''}")

    await repository.close()


if __name__ == "__main__":
    asyncio.run(main())
