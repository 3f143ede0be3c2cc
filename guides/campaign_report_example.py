"""Example running a campaign report workflow in-process."""

import asyncio

from stepflow import WorkflowDefinition, WorkflowEngine, WorkflowStep

CAMPAIGNS = [
    {"id": 1, "type": "search", "status": "active", "views": 1200, "clicks": 60, "spend": 150},
    {"id": 2, "type": "search", "status": "paused", "views": 300, "clicks": 3, "spend": 12},
    {"id": 3, "type": "catalog", "status": "active", "views": 800, "clicks": 24, "spend": 48},
]


async def main():
    """Filter active campaigns, compute CTR and aggregate by type."""
    workflow = WorkflowDefinition(
        name="campaign-report",
        steps=[
            WorkflowStep(
                id="active",
                type="data-filter",
                configuration={
                    "filters": [{"field": "status", "operator": "equals", "value": "active"}]
                },
            ),
            WorkflowStep(
                id="metrics",
                type="metric-calculator",
                dependencies=["active"],
                configuration={
                    "calculations": [
                        {"name": "ctr", "formula": "clicks / views", "format": "percentage"},
                        {"name": "cpc", "formula": "spend / clicks", "format": "currency"},
                    ]
                },
            ),
            WorkflowStep(
                id="by_type",
                type="data-aggregator",
                dependencies=["metrics"],
                configuration={
                    "groupBy": "type",
                    "aggregations": [
                        {"field": "spend", "operation": "sum", "alias": "total_spend"},
                        {"field": "ctr", "operation": "avg", "alias": "avg_ctr"},
                    ],
                },
            ),
        ],
    )

    async with WorkflowEngine.from_config() as engine:
        await engine.save_workflow(workflow)
        execution_id = await engine.create_execution(workflow.id, CAMPAIGNS)
        execution = await engine.wait_for_completion(execution_id, timeout=30)

    print(f"✅ Execution {execution.status.value}")
    print(f"📋 Execution ID: {execution_id}")
    for row in execution.output_data or []:
        print(f"🔗 {row}")


if __name__ == "__main__":
    asyncio.run(main())
